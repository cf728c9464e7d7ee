"""Force-description prompts: faction themes, player forces, cards and bases.

Randomised word choice always goes through an explicitly passed
`random.Random`, so a seeded source gives reproducible prompts.
"""

from __future__ import annotations

import random

from pydantic import BaseModel, ConfigDict

from symbeline_narrator.models import (
    BasePlacement,
    CardInstance,
    Faction,
    Player,
)
from symbeline_narrator.prompts import PromptType, PromptVars, build_prompt

FORCE_DESC_CACHE_SIZE = 16


class FactionTheme(BaseModel):
    model_config = ConfigDict(frozen=True)

    faction: Faction
    name: str
    adjectives: tuple[str, str, str, str]
    nouns: tuple[str, str, str, str]
    verbs: tuple[str, str, str, str]


FACTION_THEMES: tuple[FactionTheme, ...] = (
    FactionTheme(
        faction=Faction.NEUTRAL, name="Neutral",
        adjectives=("versatile", "adaptable", "reliable", "steady"),
        nouns=("scouts", "explorers", "mercenaries", "wanderers"),
        verbs=("survey", "scout", "roam", "traverse"),
    ),
    FactionTheme(
        faction=Faction.MERCHANT, name="Merchant Guilds",
        adjectives=("gilded", "prosperous", "cunning", "wealthy"),
        nouns=("caravans", "trade ships", "gold", "coffers"),
        verbs=("bargain", "acquire", "invest", "profit"),
    ),
    FactionTheme(
        faction=Faction.WILDS, name="The Wilds",
        adjectives=("primal", "savage", "untamed", "ferocious"),
        nouns=("beasts", "dire wolves", "thornwood", "claws"),
        verbs=("hunt", "stalk", "devour", "rampage"),
    ),
    FactionTheme(
        faction=Faction.KINGDOM, name="High Kingdom",
        adjectives=("noble", "valiant", "gleaming", "honorable"),
        nouns=("knights", "banners", "castles", "armor"),
        verbs=("defend", "charge", "rally", "proclaim"),
    ),
    FactionTheme(
        faction=Faction.ARTIFICER, name="Artificer Order",
        adjectives=("arcane", "mechanical", "intricate", "pulsing"),
        nouns=("constructs", "workshops", "gears", "crystals"),
        verbs=("forge", "assemble", "energize", "transmute"),
    ),
)


def get_theme(faction: Faction | int) -> FactionTheme:
    """Theme for a faction; out-of-range values get the neutral theme."""
    if 0 <= faction < len(FACTION_THEMES):
        return FACTION_THEMES[faction]
    return FACTION_THEMES[Faction.NEUTRAL]


def faction_adjective(faction: Faction | int, rng: random.Random | None = None) -> str:
    """A themed adjective; without `rng` the faction's first one."""
    adjectives = get_theme(faction).adjectives
    return rng.choice(adjectives) if rng is not None else adjectives[0]


def faction_noun(faction: Faction | int, rng: random.Random | None = None) -> str:
    nouns = get_theme(faction).nouns
    return rng.choice(nouns) if rng is not None else nouns[0]


# ---------------------------------------------------------------------------
# Description cache
# ---------------------------------------------------------------------------

class CachedDescription(BaseModel):
    card_id: str
    description: str
    turn_generated: int = 0


class ForceDescCache:
    """Fixed-size circular cache of card descriptions keyed by card id.

    Setting an existing id updates it in place; a new id overwrites the
    oldest slot once the cache is full.
    """

    def __init__(self, size: int = FORCE_DESC_CACHE_SIZE) -> None:
        if size <= 0:
            raise ValueError("size must be positive")
        self._slots: list[CachedDescription | None] = [None] * size
        self._cursor = 0

    def __len__(self) -> int:
        return sum(1 for s in self._slots if s is not None)

    def get(self, card_id: str) -> str | None:
        for slot in self._slots:
            if slot is not None and slot.card_id == card_id:
                return slot.description
        return None

    def set(self, card_id: str, description: str, turn: int = 0) -> None:
        for slot in self._slots:
            if slot is not None and slot.card_id == card_id:
                slot.description = description
                slot.turn_generated = turn
                return
        self._slots[self._cursor] = CachedDescription(
            card_id=card_id, description=description, turn_generated=turn,
        )
        self._cursor = (self._cursor + 1) % len(self._slots)


# ---------------------------------------------------------------------------
# Player forces
# ---------------------------------------------------------------------------

def dominant_faction_for(player: Player | None) -> Faction:
    """First non-neutral faction the player has played, else neutral."""
    if player is None:
        return Faction.NEUTRAL
    for faction in list(Faction)[1:]:
        if player.factions_played[faction]:
            return faction
    return Faction.NEUTRAL


def summarize_forces(player: Player | None) -> str:
    """e.g. "caravans of Merchant Guilds and knights of High Kingdom"."""
    if player is None:
        return "an unknown force"
    parts = [
        f"{get_theme(f).nouns[0]} of {get_theme(f).name}"
        for f in list(Faction)[1:]
        if player.factions_played[f]
    ]
    return " and ".join(parts) if parts else "scouts and vipers"


def build_player_forces(player: Player) -> str:
    deck = player.deck
    vars = PromptVars(
        player_name=player.name or "Unknown Commander",
        faction=get_theme(dominant_faction_for(player)).name,
        bases_in_play=len(deck.frontier_bases) + len(deck.interior_bases),
        cards_in_hand=len(deck.hand),
    )
    return build_prompt(PromptType.FORCE_DESCRIPTION, vars)


def build_card_played(card: CardInstance, player: Player | None = None) -> str:
    vars = PromptVars(
        player_name=(player.name if player is not None and player.name else "A commander"),
        card_name=card.type.name or "a mysterious card",
        card_faction=get_theme(card.type.faction).name,
        card_effect=f"costs {card.type.cost} trade to acquire",
    )
    return build_prompt(PromptType.CARD_PLAYED, vars)


def build_base(base: CardInstance, placement: BasePlacement, rng: random.Random) -> str:
    theme = get_theme(base.type.faction)
    where = "at the frontier" if placement == BasePlacement.FRONTIER else "in the interior"
    return (
        f"Describe the {rng.choice(theme.adjectives)} base named "
        f"{base.type.name or 'unnamed outpost'}, positioned {where}. "
        f"It is a {rng.choice(theme.adjectives)} {theme.name} stronghold "
        f"with {base.type.defense} defense. "
        f"Use {rng.choice(theme.nouns)} imagery in one dramatic sentence."
    )


def build_attack(attacker: Player, defender: Player, damage: int) -> str:
    vars = PromptVars(
        attacker=attacker.name or "The attacker",
        defender=defender.name or "their opponent",
        damage=damage,
        remaining_authority=defender.authority,
    )
    return build_prompt(PromptType.ATTACK, vars)
