"""Symbeline narrator: dev launcher. Plays a scripted match and prints the narration."""

import argparse
import asyncio
import logging
import random
import sys
from pathlib import Path

from dotenv import load_dotenv

from symbeline_narrator.config import load_llm_config, load_settings
from symbeline_narrator.llm import HttpLLM
from symbeline_narrator.models import (
    BasePlacement,
    CardInstance,
    CardKind,
    CardType,
    Faction,
    Game,
    GamePhase,
    Player,
    TradeRow,
)
from symbeline_narrator.narration.events import GameEventType, NarrationEvent
from symbeline_narrator.narration.orchestrator import Narrator

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

DEMO_CARDS = [
    CardType(id="guild_courier", name="Guild Courier", cost=2, faction=Faction.MERCHANT),
    CardType(id="dire_wolf", name="Dire Wolf", cost=3, faction=Faction.WILDS),
    CardType(id="royal_knight", name="Royal Knight", cost=4, faction=Faction.KINGDOM),
    CardType(id="clockwork_golem", name="Clockwork Golem", cost=5, faction=Faction.ARTIFICER),
    CardType(id="trade_post", name="Trade Post", cost=3, faction=Faction.MERCHANT,
             kind=CardKind.BASE, defense=4),
    CardType(id="thornwood_den", name="Thornwood Den", cost=4, faction=Faction.WILDS,
             kind=CardKind.BASE, defense=5),
    CardType(id="iron_citadel", name="Iron Citadel", cost=6, faction=Faction.KINGDOM,
             kind=CardKind.BASE, defense=7),
    CardType(id="arcane_forge", name="Arcane Forge", cost=5, faction=Faction.ARTIFICER,
             kind=CardKind.BASE, defense=5),
]


def build_demo_game() -> Game:
    players = [Player(id=0, name="Aldric"), Player(id=1, name="Morwen")]
    row = TradeRow(trade_deck=list(DEMO_CARDS) * 2, card_buy_counts=[0] * len(DEMO_CARDS))
    return Game(players=players, trade_row=row, turn_number=1, phase=GamePhase.MAIN)


async def refill_trade_row(game: Game, rng: random.Random) -> None:
    row = game.trade_row
    for i, slot in enumerate(row.slots):
        if slot is None:
            card = await row.select_next(rng)
            if card is None:
                return
            row.slots[i] = CardInstance(type=card, instance_id=f"row-{i}-{card.id}")


async def play_demo(narrator: Narrator, rng: random.Random) -> None:
    game = narrator.game
    game.trade_row.selection_policy = narrator.selection_policy()
    await refill_trade_row(game, rng)
    print("Trade row:", ", ".join(s.type.name for s in game.trade_row.filled_slots()))

    def say(text: str) -> None:
        print(f"\n[turn {game.turn_number}] {text}")

    for turn in range(1, 7):
        game.turn_number = turn
        actor = game.players[(turn - 1) % 2]
        target = game.players[turn % 2]
        game.active_player = actor.id

        say(await narrator.narrate(NarrationEvent(type=GameEventType.TURN_START, actor=actor, turn=turn)))

        bought_slot = rng.randrange(len(game.trade_row.slots))
        bought = game.trade_row.slots[bought_slot]
        if bought is not None:
            game.trade_row.slots[bought_slot] = None
            if bought.type.kind == CardKind.BASE:
                bought.placement = BasePlacement.FRONTIER
                actor.deck.frontier_bases.append(bought)
            else:
                actor.deck.played.append(bought)
            actor.factions_played[bought.type.faction] = True
            say(await narrator.narrate(NarrationEvent(
                type=GameEventType.CARD_PURCHASED, actor=actor, card=bought, cost=bought.type.cost,
            )))
            say(await narrator.narrate(NarrationEvent(
                type=GameEventType.CARD_PLAYED, actor=actor, card=bought,
            )))
            await refill_trade_row(game, rng)

        damage = rng.randint(2, 9) + turn
        target.authority = max(0, target.authority - damage)
        say(await narrator.narrate(NarrationEvent(
            type=GameEventType.ATTACK_PLAYER, actor=actor, target=target, damage=damage,
        )))

        if target.authority == 0:
            game.phase = GamePhase.GAME_OVER
            say(await narrator.narrate(NarrationEvent(
                type=GameEventType.GAME_OVER, actor=actor, target=target, damage=actor.authority,
            )))
            break

        say(await narrator.narrate(NarrationEvent(
            type=GameEventType.TURN_END, actor=actor, cost=bought.type.cost if bought else 0,
            damage=damage, turn=len(actor.deck.played),
        )))

    for player in game.players:
        say(await narrator.describe_forces(player))

    print("\nCache:", narrator.cache.stats().model_dump())
    print("Context:", narrator.context.stats().model_dump())
    print("Coherence:", narrator.coherence.stats().model_dump())
    print(narrator.coherence.recent_issues(5))


def main():
    parser = argparse.ArgumentParser(description="Symbeline narrator dev launcher")
    parser.add_argument("--demo", action="store_true",
                        help="Play a scripted match and print each narrative")
    parser.add_argument("--settings", type=Path, default=None,
                        help="JSON file with narrator settings (default: built-in)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the random source")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.demo:
        parser.print_help()
        return 0

    settings = load_settings(args.settings)
    llm_config = load_llm_config()
    if llm_config is None:
        print("No SYMBELINE_LLM_ENDPOINT set; narrating without a model.")
    llm = HttpLLM(llm_config) if llm_config is not None else None

    rng = random.Random(args.seed)
    narrator = Narrator(build_demo_game(), llm=llm, settings=settings, rng=rng)
    asyncio.run(play_demo(narrator, rng))
    return 0


if __name__ == "__main__":
    sys.exit(main())
