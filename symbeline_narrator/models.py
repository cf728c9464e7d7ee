"""Core domain models shared with the rules engine.

The narrator reads game state but never owns it: `Game`, `Player`, `Deck`,
`CardInstance` and `TradeRow` belong to the rules engine, which mutates
authority, decks and trade-row contents. Pydantic is used for validation and
serialisation at every data boundary, same as the message and lore models.
"""

from __future__ import annotations

import random
from enum import IntEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from symbeline_narrator.trade_select import SelectionPolicy

PLAYER_STARTING_AUTHORITY = 50
TRADE_ROW_SLOTS = 5
MAX_PLAYERS = 4


class Faction(IntEnum):
    NEUTRAL = 0
    MERCHANT = 1
    WILDS = 2
    KINGDOM = 3
    ARTIFICER = 4


FACTION_COUNT = len(Faction)

_FACTION_DISPLAY = {
    Faction.NEUTRAL: "Neutral",
    Faction.MERCHANT: "Merchant Guilds",
    Faction.WILDS: "The Wilds",
    Faction.KINGDOM: "High Kingdom",
    Faction.ARTIFICER: "Artificer Order",
}


def faction_to_string(faction: Faction | int) -> str:
    try:
        return _FACTION_DISPLAY[Faction(faction)]
    except ValueError:
        return "Unknown"


class CardKind(IntEnum):
    SHIP = 0
    BASE = 1
    UNIT = 2


class BasePlacement(IntEnum):
    NONE = 0
    FRONTIER = 1
    INTERIOR = 2


class GamePhase(IntEnum):
    NOT_STARTED = 0
    DRAW_ORDER = 1
    MAIN = 2
    END = 3
    GAME_OVER = 4

    @property
    def display_name(self) -> str:
        return self.name.replace("_", " ").title()


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------

class CardType(BaseModel):
    """Immutable card definition shared by every copy of a card."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    cost: int = 0
    faction: Faction = Faction.NEUTRAL
    kind: CardKind = CardKind.SHIP
    defense: int = 0  # bases only


class CardInstance(BaseModel):
    """A single copy of a card in a zone."""

    type: CardType
    instance_id: str = ""
    placement: BasePlacement = BasePlacement.NONE
    damage_taken: int = 0


class Deck(BaseModel):
    draw_pile: list[CardInstance] = Field(default_factory=list)
    hand: list[CardInstance] = Field(default_factory=list)
    discard: list[CardInstance] = Field(default_factory=list)
    played: list[CardInstance] = Field(default_factory=list)
    frontier_bases: list[CardInstance] = Field(default_factory=list)
    interior_bases: list[CardInstance] = Field(default_factory=list)

    def cards_in_play(self) -> list[CardInstance]:
        """Played ships plus every base on the table."""
        return [*self.played, *self.frontier_bases, *self.interior_bases]


class Player(BaseModel):
    id: int
    name: str = ""
    authority: int = PLAYER_STARTING_AUTHORITY
    factions_played: list[bool] = Field(default_factory=lambda: [False] * FACTION_COUNT)
    deck: Deck = Field(default_factory=Deck)


# ---------------------------------------------------------------------------
# Trade row
# ---------------------------------------------------------------------------

class TradeRow(BaseModel):
    """The marketplace: five visible slots plus the remaining trade deck.

    `selection_policy` is consulted whenever a slot is refilled. When it is
    absent, or declines to choose, the next card is drawn at random.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    slots: list[CardInstance | None] = Field(default_factory=lambda: [None] * TRADE_ROW_SLOTS)
    trade_deck: list[CardType] = Field(default_factory=list)
    card_buy_counts: list[int] | None = None
    selection_policy: Any = Field(default=None, exclude=True)

    def filled_slots(self) -> list[CardInstance]:
        return [s for s in self.slots if s is not None]

    async def select_next(self, rng: random.Random | None = None) -> CardType | None:
        """Remove and return the card type that should fill the next open slot."""
        if not self.trade_deck:
            return None

        chosen: CardType | None = None
        policy: SelectionPolicy | None = self.selection_policy
        if policy is not None:
            chosen = await policy.select(self)

        if chosen is None or chosen not in self.trade_deck:
            chosen = (rng or random).choice(self.trade_deck)

        self.trade_deck.remove(chosen)
        return chosen


class Game(BaseModel):
    players: list[Player] = Field(default_factory=list)
    active_player: int = 0
    trade_row: TradeRow | None = None
    turn_number: int = 0
    phase: GamePhase = GamePhase.NOT_STARTED

    @property
    def player_count(self) -> int:
        return len(self.players)

    def player(self, index: int) -> Player | None:
        if 0 <= index < len(self.players):
            return self.players[index]
        return None
