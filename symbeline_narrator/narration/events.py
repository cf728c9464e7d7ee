"""Event narration: turn game events into prompts, or into canned prose.

Every builder degrades to a short canned sentence when the event lacks the
players or cards it needs, so callers always get a string back.
"""

from __future__ import annotations

import random
from enum import IntEnum

from pydantic import BaseModel

from symbeline_narrator.models import CardInstance, Player
from symbeline_narrator.narration.forces import faction_adjective, faction_noun, get_theme
from symbeline_narrator.prompts import PromptType, PromptVars, build_prompt
from symbeline_narrator.world_state import WorldState


class GameEventType(IntEnum):
    CARD_PLAYED = 0
    CARD_PURCHASED = 1
    ATTACK_PLAYER = 2
    ATTACK_BASE = 3
    BASE_DESTROYED = 4
    TURN_START = 5
    TURN_END = 6
    GAME_OVER = 7
    ALLY_TRIGGERED = 8
    SCRAP = 9

    @property
    def display_name(self) -> str:
        return _EVENT_TYPE_NAMES[self]


_EVENT_TYPE_NAMES = {
    GameEventType.CARD_PLAYED: "card played",
    GameEventType.CARD_PURCHASED: "card purchased",
    GameEventType.ATTACK_PLAYER: "attack on player",
    GameEventType.ATTACK_BASE: "attack on base",
    GameEventType.BASE_DESTROYED: "base destroyed",
    GameEventType.TURN_START: "turn start",
    GameEventType.TURN_END: "turn end",
    GameEventType.GAME_OVER: "game over",
    GameEventType.ALLY_TRIGGERED: "ally triggered",
    GameEventType.SCRAP: "card scrapped",
}


class NarrationIntensity(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    EPIC = 3

    @property
    def word(self) -> str:
        return _INTENSITY_WORDS[self]


_INTENSITY_WORDS = {
    NarrationIntensity.LOW: "quietly",
    NarrationIntensity.MEDIUM: "dramatically",
    NarrationIntensity.HIGH: "furiously",
    NarrationIntensity.EPIC: "magnificently",
}


class NarrationEvent(BaseModel):
    """A game event to narrate.

    For TURN_END, `cost` is trade spent, `damage` is combat dealt and `turn`
    is the number of cards played. For GAME_OVER, `damage` carries the
    winner's final authority.
    """

    type: GameEventType
    actor: Player | None = None
    target: Player | None = None
    card: CardInstance | None = None
    base: CardInstance | None = None
    damage: int = 0
    cost: int = 0
    turn: int = 0
    intensity: NarrationIntensity = NarrationIntensity.MEDIUM


def calculate_intensity(state: WorldState | None, event: NarrationEvent | None) -> NarrationIntensity:
    if event is None:
        return NarrationIntensity.MEDIUM
    if event.type == GameEventType.GAME_OVER:
        return NarrationIntensity.EPIC
    if event.type == GameEventType.BASE_DESTROYED:
        return NarrationIntensity.HIGH
    if state is not None and state.tension > 0.7:
        return NarrationIntensity.HIGH
    if event.damage >= 10:
        return NarrationIntensity.HIGH
    if 0 < event.damage <= 2:
        return NarrationIntensity.LOW
    if event.type == GameEventType.CARD_PURCHASED and event.cost <= 2:
        return NarrationIntensity.LOW
    if event.type in (GameEventType.TURN_START, GameEventType.TURN_END):
        return NarrationIntensity.LOW
    return NarrationIntensity.MEDIUM


# ---------------------------------------------------------------------------
# Per-event prompt builders
# ---------------------------------------------------------------------------

def _name(player: Player | None, default: str) -> str:
    return player.name if player is not None and player.name else default


def build_card_played(player: Player | None, card: CardInstance | None) -> str:
    if player is None or card is None:
        return "A card is played."
    vars = PromptVars(
        player_name=_name(player, "A commander"),
        card_name=card.type.name or "a card",
        card_faction=get_theme(card.type.faction).name,
        card_effect="joins the battle",
    )
    return build_prompt(PromptType.CARD_PLAYED, vars)


def build_purchase(player: Player | None, card: CardInstance | None, cost: int,
                   rng: random.Random | None = None) -> str:
    if player is None or card is None:
        return "A card is acquired."
    faction = card.type.faction
    return (
        f"{_name(player, 'A commander')} acquires the {card.type.name or 'a card'} "
        f"from the trade row for {cost} trade. "
        f"The {faction_adjective(faction, rng)} {faction_noun(faction, rng)} strengthens their forces. "
        "Narrate this briefly."
    )


def build_attack(attacker: Player | None, defender: Player | None,
                 damage: int, remaining_authority: int) -> str:
    if attacker is None or defender is None:
        return "An attack is launched."
    vars = PromptVars(
        attacker=_name(attacker, "The attacker"),
        defender=_name(defender, "their opponent"),
        damage=damage,
        remaining_authority=remaining_authority,
    )
    return build_prompt(PromptType.ATTACK, vars)


def build_base_attack(attacker: Player | None, defender: Player | None,
                      base: CardInstance | None, damage: int) -> str:
    if attacker is None or defender is None or base is None:
        return "A base is attacked."
    base_name = base.type.name or "a base"
    remaining = max(0, base.type.defense - base.damage_taken - damage)
    return (
        f"{_name(attacker, 'The attacker')}'s forces assault "
        f"{_name(defender, 'their opponent')}'s {base_name}, dealing {damage} damage. "
        f"The {base_name} has {remaining} defense remaining. "
        "Narrate this attack vividly."
    )


def build_base_destroyed(owner: Player | None, base: CardInstance | None,
                         rng: random.Random | None = None) -> str:
    if base is None:
        return "A base falls."
    theme = get_theme(base.type.faction)
    return (
        f"The {faction_adjective(base.type.faction, rng)} {base.type.name or 'the base'} belonging to "
        f"{_name(owner, 'a commander')} has been destroyed! "
        f"Narrate its dramatic fall using {theme.name} imagery. "
        "Make it memorable in two sentences."
    )


def build_turn_start(player: Player | None, turn: int) -> str:
    if player is None:
        return "A new turn begins."
    return (
        f"Turn {turn} begins. {_name(player, 'A commander')} prepares their next move. "
        "One brief transitional sentence."
    )


def build_turn_end(player: Player | None, trade_spent: int,
                   combat_dealt: int, cards_played: int) -> str:
    if player is None:
        return "The turn ends."
    vars = PromptVars(
        player_name=_name(player, "The commander"),
        trade_made=trade_spent,
        combat_dealt=combat_dealt,
        cards_played=cards_played,
    )
    return build_prompt(PromptType.TURN_SUMMARY, vars)


def build_game_over(winner: Player | None, loser: Player | None, final_authority: int) -> str:
    if winner is None or loser is None:
        return "The battle concludes."
    return (
        f"VICTORY! {_name(winner, 'The victor')} triumphs over "
        f"{_name(loser, 'their opponent')} with {final_authority} authority remaining! "
        "The battle for Symbeline is decided. "
        "Narrate this epic conclusion in three dramatic sentences. "
        "Describe the victor's glory and the defeated's fall."
    )


def build_event_prompt(event: NarrationEvent | None, rng: random.Random | None = None) -> str:
    """Dispatch to the builder for the event's type.

    `rng` picks themed words; without it each faction's first word is used.
    """
    if event is None:
        return "Something happens."

    match event.type:
        case GameEventType.CARD_PLAYED:
            return build_card_played(event.actor, event.card)
        case GameEventType.CARD_PURCHASED:
            return build_purchase(event.actor, event.card, event.cost, rng)
        case GameEventType.ATTACK_PLAYER:
            remaining = event.target.authority if event.target is not None else 0
            return build_attack(event.actor, event.target, event.damage, remaining)
        case GameEventType.ATTACK_BASE:
            return build_base_attack(event.actor, event.target, event.base, event.damage)
        case GameEventType.BASE_DESTROYED:
            return build_base_destroyed(event.target, event.base, rng)
        case GameEventType.TURN_START:
            return build_turn_start(event.actor, event.turn)
        case GameEventType.TURN_END:
            return build_turn_end(event.actor, event.cost, event.damage, event.turn)
        case GameEventType.GAME_OVER:
            return build_game_over(event.actor, event.target, event.damage)
        case _:
            return "An event occurs."


# ---------------------------------------------------------------------------
# Model-free prose
# ---------------------------------------------------------------------------

def describe_event(event: NarrationEvent) -> str:
    """One-line factual description recorded in the event history."""
    actor = _name(event.actor, "A commander")
    target = _name(event.target, "their opponent")
    card = event.card.type.name if event.card is not None else "a card"
    base = event.base.type.name if event.base is not None else "a base"

    match event.type:
        case GameEventType.CARD_PLAYED:
            return f"{actor} played {card}"
        case GameEventType.CARD_PURCHASED:
            return f"{actor} bought {card} for {event.cost} trade"
        case GameEventType.ATTACK_PLAYER:
            return f"{actor} dealt {event.damage} damage to {target}"
        case GameEventType.ATTACK_BASE:
            return f"{actor} dealt {event.damage} damage to {target}'s {base}"
        case GameEventType.BASE_DESTROYED:
            return f"{target}'s {base} was destroyed"
        case GameEventType.TURN_START:
            return f"{actor} began turn {event.turn}"
        case GameEventType.TURN_END:
            return f"{actor} ended their turn"
        case GameEventType.GAME_OVER:
            return f"{actor} defeated {target}"
        case _:
            return f"{actor}: {event.type.display_name}"


def fallback_narration(event: NarrationEvent | None, rng: random.Random | None = None) -> str:
    """Prose used when no model is available, reproducible for a seeded `rng`."""
    if event is None:
        return "Something happens."

    word = event.intensity.word
    actor = _name(event.actor, "A commander")
    target = _name(event.target, "their opponent")

    match event.type:
        case GameEventType.CARD_PLAYED if event.card is not None:
            faction = event.card.type.faction
            return (f"{actor} {word} plays {event.card.type.name}, "
                    f"and the {faction_noun(faction, rng)} of {get_theme(faction).name} answer the call.")
        case GameEventType.CARD_PURCHASED if event.card is not None:
            return (f"{actor} acquires {event.card.type.name} for {event.cost} trade, "
                    f"adding {faction_adjective(event.card.type.faction, rng)} strength to their forces.")
        case GameEventType.ATTACK_PLAYER if event.actor is not None and event.target is not None:
            return (f"{actor} {word} strikes at {target} for {event.damage} damage. "
                    f"{target} holds with {event.target.authority} authority.")
        case GameEventType.ATTACK_BASE if event.base is not None:
            return f"{actor}'s forces {word} assault the {event.base.type.name}."
        case GameEventType.BASE_DESTROYED if event.base is not None:
            return f"The {event.base.type.name} crumbles as its defenders fall."
        case GameEventType.TURN_START if event.actor is not None:
            return f"Turn {event.turn} begins. {actor} surveys the battlefield."
        case GameEventType.TURN_END if event.actor is not None:
            return f"{actor} draws their forces back as the turn ends."
        case GameEventType.GAME_OVER if event.actor is not None:
            return (f"{actor} stands victorious over {target} with {event.damage} "
                    "authority remaining. The battle for Symbeline is decided.")
        case _:
            return _CANNED.get(event.type, "An event occurs.")


_CANNED = {
    GameEventType.CARD_PLAYED: "A card is played.",
    GameEventType.CARD_PURCHASED: "A card is acquired.",
    GameEventType.ATTACK_PLAYER: "An attack is launched.",
    GameEventType.ATTACK_BASE: "A base is attacked.",
    GameEventType.BASE_DESTROYED: "A base falls.",
    GameEventType.TURN_START: "A new turn begins.",
    GameEventType.TURN_END: "The turn ends.",
    GameEventType.GAME_OVER: "The battle concludes.",
}
