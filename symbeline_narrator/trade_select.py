"""Trade-row selection: pick which card refills the marketplace.

Each candidate from the front of the trade deck gets three deterministic
scores (faction need, singleton bonus, cost variety) plus a narrative-fit
score. With a model configured, the model is asked to name a candidate and
that candidate's narrative fit is raised to 1.0. The highest total wins; ties
go to the first candidate.

A `SelectionPolicy` is injected into the `TradeRow` and consulted on every
refill. Returning None means "draw at random".
"""

from __future__ import annotations

import logging
from typing import Protocol

from pydantic import BaseModel, Field

from symbeline_narrator.llm import LLM
from symbeline_narrator.models import CardType, Faction, Game, TradeRow, faction_to_string
from symbeline_narrator.prompts import render_prompt
from symbeline_narrator.text import contains_ignore_case
from symbeline_narrator.world_state import WorldState

logger = logging.getLogger(__name__)

WEIGHT_FACTION_NEED = 0.30
WEIGHT_SINGLETON = 0.25
WEIGHT_COST_VARIETY = 0.20
WEIGHT_NARRATIVE = 0.25

NEUTRAL_NARRATIVE_FIT = 0.5
MAX_CANDIDATES = 10
MAX_COST_BUCKET = 9
MAIN_FACTIONS = 4

TRADE_SELECT_SYSTEM = (
    "You are the Dungeon Master for Symbeline Realms, a fantasy card game.\n"
    "Your role is to select cards for the trade row that create interesting\n"
    "strategic and narrative opportunities. Consider:\n"
    "- Faction balance (don't let one faction dominate)\n"
    "- Player strategies (offer counters and synergies)\n"
    "- Narrative drama (exciting cards at climactic moments)\n"
    "Respond with ONLY the card name, nothing else."
)

SELECTION_PROMPT_TEMPLATE = (
    "{{#if has_players}}"
    "Turn {{turn}}. Players have {{p1_authority}} and {{p2_authority}} authority.\n"
    "{{else}}"
    "Current game state:\n"
    "{{/if}}"
    "{{#if balance}}"
    "Trade row factions: Merchant={{balance.merchant}}, Wilds={{balance.wilds}}, "
    "Kingdom={{balance.kingdom}}, Artificer={{balance.artificer}}\n"
    "{{/if}}"
    "\nAvailable cards to add to trade row:\n"
    "{{#numbered cards}}{{index}}. {{{item.name}}} ({{{item.faction}}}, cost {{item.cost}})\n{{/numbered}}"
    "\nSelect the card that would create the most interesting "
    "strategic and narrative opportunity.\n"
    "Respond with ONLY the card name."
)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class FactionBalance(BaseModel):
    neutral: int = 0
    merchant: int = 0
    wilds: int = 0
    kingdom: int = 0
    artificer: int = 0

    def add(self, faction: Faction) -> None:
        field = _BALANCE_FIELDS.get(faction)
        if field is not None:
            setattr(self, field, getattr(self, field) + 1)

    def count(self, faction: Faction) -> int:
        return getattr(self, _BALANCE_FIELDS[faction])

    @property
    def total(self) -> int:
        return self.neutral + self.merchant + self.wilds + self.kingdom + self.artificer


_BALANCE_FIELDS = {
    Faction.NEUTRAL: "neutral",
    Faction.MERCHANT: "merchant",
    Faction.WILDS: "wilds",
    Faction.KINGDOM: "kingdom",
    Faction.ARTIFICER: "artificer",
}


class SelectionScore(BaseModel):
    faction_need: float = 0.0
    singleton_bonus: float = 0.0
    cost_variety: float = 0.0
    narrative_fit: float = NEUTRAL_NARRATIVE_FIT
    total: float = 0.0

    def recompute(self, llm_weight: float) -> float:
        base = (
            self.faction_need * WEIGHT_FACTION_NEED
            + self.singleton_bonus * WEIGHT_SINGLETON
            + self.cost_variety * WEIGHT_COST_VARIETY
        )
        self.total = base * (1.0 - llm_weight) + self.narrative_fit * llm_weight
        return self.total


class CandidateCard(BaseModel):
    card: CardType
    score: SelectionScore = Field(default_factory=SelectionScore)


# ---------------------------------------------------------------------------
# Balance and candidates
# ---------------------------------------------------------------------------

def row_balance(row: TradeRow | None) -> FactionBalance:
    """Faction counts of the cards currently showing in the row."""
    balance = FactionBalance()
    if row is not None:
        for slot in row.filled_slots():
            balance.add(slot.type.faction)
    return balance


def deck_balance(row: TradeRow | None) -> FactionBalance:
    """Faction counts of the cards remaining in the trade deck."""
    balance = FactionBalance()
    if row is not None:
        for card in row.trade_deck:
            balance.add(card.faction)
    return balance


def underrepresented(balance: FactionBalance) -> Faction:
    """Least represented non-neutral faction; ties go to the lowest index."""
    return min(
        (Faction.MERCHANT, Faction.WILDS, Faction.KINGDOM, Faction.ARTIFICER),
        key=balance.count,
    )


def gather_candidates(row: TradeRow | None, max_count: int = MAX_CANDIDATES) -> list[CandidateCard]:
    if row is None or max_count <= 0:
        return []
    return [CandidateCard(card=card) for card in row.trade_deck[:max_count]]


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def score_faction_need(card: CardType, balance: FactionBalance) -> float:
    """Shortfall of the card's faction below total/4, as a fraction of it."""
    total = balance.total
    if total == 0:
        return 0.5
    ideal = total / MAIN_FACTIONS
    current = balance.count(card.faction)
    if current >= ideal:
        return 0.0
    return (ideal - current) / ideal


def score_singleton(card: CardType, row: TradeRow | None) -> float:
    # Buy counts are tracked but not yet mapped to card types, so every card
    # gets the full bonus. Changing this shifts marketplace balance.
    if row is None or row.card_buy_counts is None:
        return 0.5
    return 1.0


def score_cost_variety(card: CardType, row: TradeRow | None) -> float:
    if row is None:
        return 0.5
    bucket = min(card.cost, MAX_COST_BUCKET)
    same_cost = sum(1 for s in row.filled_slots() if min(s.type.cost, MAX_COST_BUCKET) == bucket)
    if same_cost == 0:
        return 1.0
    if same_cost == 1:
        return 0.5
    return 0.2


def score_candidate(candidate: CandidateCard, row: TradeRow | None, llm_weight: float) -> SelectionScore:
    """Fill in the candidate's sub-scores and weighted total."""
    balance = row_balance(row)
    candidate.score = SelectionScore(
        faction_need=score_faction_need(candidate.card, balance),
        singleton_bonus=score_singleton(candidate.card, row),
        cost_variety=score_cost_variety(candidate.card, row),
    )
    candidate.score.recompute(llm_weight)
    return candidate.score


def best_candidate(candidates: list[CandidateCard]) -> int:
    """Index of the highest total; the first one wins ties. -1 if empty."""
    best = -1
    for i, candidate in enumerate(candidates):
        if best < 0 or candidate.score.total > candidates[best].score.total:
            best = i
    return best


# ---------------------------------------------------------------------------
# Model interaction
# ---------------------------------------------------------------------------

def build_selection_prompt(candidates: list[CandidateCard], game: Game | None) -> str | None:
    if not candidates:
        return None

    has_players = game is not None and game.player_count >= 2
    balance = row_balance(game.trade_row) if game is not None and game.trade_row is not None else None
    context = {
        "has_players": has_players,
        "turn": str(game.turn_number) if game is not None else "0",
        "p1_authority": str(game.players[0].authority) if has_players else "",
        "p2_authority": str(game.players[1].authority) if has_players else "",
        "balance": {k: str(v) for k, v in balance.model_dump().items()} if balance is not None else None,
        "cards": [
            {"name": c.card.name, "faction": faction_to_string(c.card.faction), "cost": str(c.card.cost)}
            for c in candidates
        ],
    }
    return render_prompt(SELECTION_PROMPT_TEMPLATE, context)


def parse_selection(response: str | None, candidates: list[CandidateCard]) -> int:
    """Index of the candidate named in the response, by name then by id. -1 if none."""
    if not response:
        return -1
    for i, candidate in enumerate(candidates):
        if contains_ignore_case(response, candidate.card.name):
            return i
    for i, candidate in enumerate(candidates):
        if contains_ignore_case(response, candidate.card.id):
            return i
    return -1


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

class SelectionPolicy(Protocol):
    async def select(self, row: TradeRow) -> CardType | None: ...


class DungeonMasterPolicy:
    """Scores the front of the trade deck and optionally asks the model.

    Args:
        game: The match, for authority and trade-row context in the prompt.
        world_state: Narrative memory of the match (kept for callers that
            want tension-aware prompts).
        llm: Model to consult. None means deterministic scoring only, and the
            narrative weight drops to 0.
        llm_weight: Share of the total given to narrative fit.
    """

    def __init__(self, game: Game | None = None, world_state: WorldState | None = None,
                 llm: LLM | None = None, llm_weight: float = WEIGHT_NARRATIVE) -> None:
        self.game = game
        self.world_state = world_state
        self.llm = llm
        self.llm_weight = llm_weight

    @property
    def effective_weight(self) -> float:
        return self.llm_weight if self.llm is not None else 0.0

    async def select(self, row: TradeRow) -> CardType | None:
        candidates = gather_candidates(row, MAX_CANDIDATES)
        if not candidates:
            return None

        weight = self.effective_weight
        for candidate in candidates:
            score_candidate(candidate, row, weight)

        if self.llm is not None:
            await self._apply_model_choice(candidates)

        best = best_candidate(candidates)
        chosen = candidates[best].card
        logger.debug("trade row selection %s total=%.3f", chosen.name, candidates[best].score.total)
        return chosen

    async def _apply_model_choice(self, candidates: list[CandidateCard]) -> None:
        prompt = build_selection_prompt(candidates, self.game)
        if prompt is None:
            return
        response = await self.llm.request(TRADE_SELECT_SYSTEM, prompt)
        if not response.success or not response.text:
            logger.warning("trade selection request failed: %s", response.error)
            return

        choice = parse_selection(response.text, candidates)
        if choice < 0:
            logger.debug("model response named no candidate: %r", response.text[:80])
            return
        candidates[choice].score.narrative_fit = 1.0
        candidates[choice].score.recompute(self.effective_weight)
