"""Coherence checking and recovery.

Generated narrative is checked against ground truth with four cheap
heuristics (names, faction pairings, turn number, authority values). A bad
enough score triggers recovery: the World State is rebuilt from the live game
zones and a short scene-reestablishing transition replaces the narrative.

Checks are throttled by `should_check`; they do not run on every event.
"""

from __future__ import annotations

import logging
import re
from enum import IntEnum

from pydantic import BaseModel

from symbeline_narrator.llm import LLM
from symbeline_narrator.models import MAX_PLAYERS, PLAYER_STARTING_AUTHORITY, Game
from symbeline_narrator.prompts import render_prompt
from symbeline_narrator.ring_buffer import RingBuffer
from symbeline_narrator.text import contains_ignore_case, snippet
from symbeline_narrator.world_state import WorldState, faction_name

logger = logging.getLogger(__name__)

COHERENCE_MAX_LOG_ENTRIES = 50
SNIPPET_LENGTH = 200

THRESHOLD_MINOR = 0.7
THRESHOLD_MAJOR = 0.5
THRESHOLD_RECOVERY = 0.3

TIMELINE_TOLERANCE = 3
AUTHORITY_TOLERANCE = 10
LOW_AUTHORITY = 10
CHECK_EVERY_N_TURNS = 3
NUMBER_LOOKBEHIND = 20

RECOVERY_SYSTEM_PROMPT = (
    "You are the narrator for Symbeline Realms, a fantasy card game.\n"
    "The narrative context has been refreshed. Write a brief (1-2 sentences)\n"
    "transition that smoothly reestablishes the scene without drawing attention\n"
    "to any narrative discontinuity. Focus on the current moment."
)

RECOVERY_USER_TEMPLATE = (
    "Current state: Turn {{turn}}. {{{p1_name}}} has {{p1_authority}} authority. "
    "{{{p2_name}}} has {{p2_authority}} authority.\n"
    "Tension level: {{tension}}. Dominant faction: {{{faction}}}.\n\n"
    "Write a brief transition to reestablish the narrative."
)

RECOVERY_FALLBACK_TEMPLATE = (
    "The mists of battle shift, revealing the current state of the conflict. "
    "Turn {{turn}} unfolds as {{{p1_name}}} and {{{p2_name}}} continue their "
    "struggle for dominion."
)

RECENT_ISSUES_TEMPLATE = (
    "Recent coherence checks:\n"
    "{{#each entries}}"
    "- [{{level}}] Score: {{score}}{{#if recovered}} (recovered){{/if}} {{{issue}}}\n"
    "{{/each}}"
)

FACTION_KEYWORDS = (
    "neutral", "merchant", "guild", "wilds", "beast", "forest",
    "kingdom", "knight", "royal", "artificer", "construct", "golem",
)

# Faction pairings that never describe a real faction.
FORBIDDEN_FACTION_PAIRS = ("merchant wilds", "kingdom artificer", "wilds kingdom")

NO_ISSUES = "No issues detected."


class CoherenceLevel(IntEnum):
    OK = 0
    MINOR_ISSUE = 1
    MAJOR_ISSUE = 2
    RECOVERY_NEEDED = 3

    @property
    def display_name(self) -> str:
        return _LEVEL_NAMES[self]


_LEVEL_NAMES = {
    CoherenceLevel.OK: "OK",
    CoherenceLevel.MINOR_ISSUE: "Minor Issue",
    CoherenceLevel.MAJOR_ISSUE: "Major Issue",
    CoherenceLevel.RECOVERY_NEEDED: "Recovery Needed",
}


def level_for_score(score: float) -> CoherenceLevel:
    if score >= THRESHOLD_MINOR:
        return CoherenceLevel.OK
    if score >= THRESHOLD_MAJOR:
        return CoherenceLevel.MINOR_ISSUE
    if score >= THRESHOLD_RECOVERY:
        return CoherenceLevel.MAJOR_ISSUE
    return CoherenceLevel.RECOVERY_NEEDED


def tension_description(tension: float) -> str:
    if tension > 0.8:
        return "climactic"
    if tension > 0.5:
        return "intense"
    if tension > 0.2:
        return "building"
    return "calm"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class CoherenceCheck(BaseModel):
    names_consistent: bool = True
    faction_consistent: bool = True
    timeline_consistent: bool = True
    authority_plausible: bool = True
    event_referenced: bool = True  # soft signal, always assumed for now
    overall_score: float = 0.0
    level: CoherenceLevel = CoherenceLevel.OK
    issue_description: str = NO_ISSUES

    def calculate_score(self) -> float:
        """Four hard checks worth 1 each plus 0.5 for the event reference, over 5."""
        hard = sum((
            self.names_consistent,
            self.faction_consistent,
            self.timeline_consistent,
            self.authority_plausible,
        ))
        soft = 0.5 if self.event_referenced else 0.0
        return (hard + soft) / 5

    def describe_issues(self) -> str:
        issues = []
        if not self.names_consistent:
            issues.append("Name inconsistency. ")
        if not self.faction_consistent:
            issues.append("Faction reference error. ")
        if not self.timeline_consistent:
            issues.append("Timeline mismatch. ")
        if not self.authority_plausible:
            issues.append("Authority value implausible. ")
        return "".join(issues) or NO_ISSUES


class CoherenceLogEntry(BaseModel):
    turn_number: int
    level: CoherenceLevel
    score: float
    narrative_snippet: str
    issue_description: str
    recovery_triggered: bool = False


class CoherenceStats(BaseModel):
    total_checks: int
    total_recoveries: int
    average_score: float


# ---------------------------------------------------------------------------
# Heuristic checks
# ---------------------------------------------------------------------------

_DIGITS = re.compile(r"\d+")


def extract_number_near(text: str | None, keyword: str) -> int:
    """Number adjacent to the first occurrence of `keyword`, or -1.

    Looks for the first digit within 20 characters before the keyword, then
    for a number right after it (skipping whitespace and punctuation).
    Matching of the keyword ignores case.
    """
    if not text or not keyword:
        return -1
    found = re.search(re.escape(keyword), text, re.IGNORECASE)
    if found is None:
        return -1
    pos = found.start()

    before = _DIGITS.search(text, max(0, pos - NUMBER_LOOKBEHIND), pos)
    if before is not None:
        # The run may continue up to the keyword itself.
        return int(_DIGITS.match(text, before.start()).group())

    after = found.end()
    while after < len(text) and (text[after].isspace() or _is_punct(text[after])):
        after += 1
    match = _DIGITS.match(text, after)
    return int(match.group()) if match else -1


def _is_punct(ch: str) -> bool:
    return ch.isascii() and not ch.isalnum() and ch.isprintable() and not ch.isspace()


def check_names(narrative: str | None, game: Game | None) -> bool:
    """A generic "player N" reference must be backed by that player's name."""
    if not narrative or game is None:
        return True
    for i, player in enumerate(game.players[:MAX_PLAYERS]):
        if not player.name:
            continue
        if contains_ignore_case(narrative, f"player {i + 1}") and \
                not contains_ignore_case(narrative, player.name):
            return False
    return True


def check_factions(narrative: str | None) -> bool:
    """Flag only blatant, denylisted faction pairings."""
    if not narrative:
        return True
    if not any(contains_ignore_case(narrative, k) for k in FACTION_KEYWORDS):
        return True
    return not any(contains_ignore_case(narrative, pair) for pair in FORBIDDEN_FACTION_PAIRS)


def check_timeline(narrative: str | None, world_state: WorldState | None) -> bool:
    if not narrative or world_state is None:
        return True
    mentioned = extract_number_near(narrative, "turn")
    if mentioned > 0 and abs(mentioned - world_state.turn_number) > TIMELINE_TOLERANCE:
        return False
    return True


def check_authority(narrative: str | None, game: Game | None) -> bool:
    """Implausible only if far above starting authority and near no real player."""
    if not narrative or game is None:
        return True
    mentioned = extract_number_near(narrative, "authority")
    if mentioned < 0:
        mentioned = extract_number_near(narrative, "health")
    if mentioned <= 0:
        return True

    plausible = any(
        abs(mentioned - p.authority) <= AUTHORITY_TOLERANCE
        for p in game.players[:MAX_PLAYERS]
    )
    return plausible or mentioned <= PLAYER_STARTING_AUTHORITY * 2


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class CoherenceManager:
    """Runs checks, keeps a diagnostic log and performs recovery.

    Args:
        llm: Model used for recovery transitions. None means canned text.
    """

    def __init__(self, llm: LLM | None = None) -> None:
        self.llm = llm
        self.log: RingBuffer[CoherenceLogEntry] = RingBuffer(COHERENCE_MAX_LOG_ENTRIES)
        self.total_checks = 0
        self.total_recoveries = 0
        self.consecutive_issues = 0

    def check(self, narrative: str | None, game: Game | None,
              world_state: WorldState | None) -> CoherenceCheck:
        check = CoherenceCheck(
            names_consistent=check_names(narrative, game),
            faction_consistent=check_factions(narrative),
            timeline_consistent=check_timeline(narrative, world_state),
            authority_plausible=check_authority(narrative, game),
        )
        check.overall_score = check.calculate_score()
        check.level = level_for_score(check.overall_score)
        check.issue_description = check.describe_issues()

        self.total_checks += 1
        if check.level == CoherenceLevel.OK:
            self.consecutive_issues = 0
        else:
            self.consecutive_issues += 1
            logger.debug(
                "coherence %s score=%.2f issues=%s",
                check.level.display_name, check.overall_score, check.issue_description,
            )
        return check

    def should_check(self, game: Game) -> bool:
        if self.consecutive_issues > 0:
            return True
        if game.turn_number % CHECK_EVERY_N_TURNS == 0:
            return True
        return any(p.authority <= LOW_AUTHORITY for p in game.players[:MAX_PLAYERS])

    # ── Recovery ──────────────────────────────────────────

    @staticmethod
    def rebuild_world_state(world_state: WorldState, game: Game) -> None:
        """Recompute event history and faction counts from the live game zones."""
        world_state.events.clear()
        counts = [0] * len(world_state.faction_card_counts)
        for player in game.players[:MAX_PLAYERS]:
            for card in player.deck.cards_in_play():
                counts[card.type.faction] += 1
        world_state.faction_card_counts = counts
        world_state.turn_number = game.turn_number
        world_state.last_update_turn = game.turn_number
        world_state.update(game)

    async def generate_recovery_narrative(self, game: Game, world_state: WorldState) -> str:
        context = _recovery_context(game, world_state)
        if self.llm is None:
            return render_prompt(RECOVERY_FALLBACK_TEMPLATE, context)

        prompt = render_prompt(RECOVERY_USER_TEMPLATE, context)
        response = await self.llm.request(RECOVERY_SYSTEM_PROMPT, prompt)
        if not response.success or not response.text:
            logger.warning("recovery narrative failed, using canned transition: %s", response.error)
            return render_prompt(RECOVERY_FALLBACK_TEMPLATE, context)
        return response.text

    async def recover(self, game: Game, world_state: WorldState) -> str:
        """Rebuild the World State and return a transition narrative."""
        self.rebuild_world_state(world_state, game)
        narrative = await self.generate_recovery_narrative(game, world_state)
        self.total_recoveries += 1
        self.consecutive_issues = 0
        logger.info("coherence recovery at turn %d", game.turn_number)
        return narrative

    # ── Diagnostics ───────────────────────────────────────

    def log_entry(self, check: CoherenceCheck, narrative: str | None,
                  recovery_triggered: bool = False, turn: int = 0) -> None:
        self.log.push(CoherenceLogEntry(
            turn_number=turn,
            level=check.level,
            score=check.overall_score,
            narrative_snippet=snippet(narrative, SNIPPET_LENGTH),
            issue_description=check.issue_description,
            recovery_triggered=recovery_triggered,
        ))

    def stats(self) -> CoherenceStats:
        entries = list(self.log)
        average = sum(e.score for e in entries) / len(entries) if entries else 1.0
        return CoherenceStats(
            total_checks=self.total_checks,
            total_recoveries=self.total_recoveries,
            average_score=average,
        )

    def recent_issues(self, max_entries: int) -> str:
        """Report of the non-OK checks among the last `max_entries`, newest first."""
        if not len(self.log):
            return "No coherence issues logged."
        issues = [e for e in self.log.newest(max_entries) if e.level != CoherenceLevel.OK]
        if not issues:
            return "No coherence issues in recent history."
        return render_prompt(RECENT_ISSUES_TEMPLATE, {
            "entries": [
                {
                    "level": e.level.display_name,
                    "score": f"{e.score:.2f}",
                    "recovered": e.recovery_triggered,
                    "issue": e.issue_description.rstrip(),
                }
                for e in issues
            ],
        })


def _recovery_context(game: Game, world_state: WorldState) -> dict:
    p1, p2 = game.player(0), game.player(1)
    return {
        "turn": str(game.turn_number),
        "p1_name": (p1.name if p1 is not None and p1.name else "Player 1"),
        "p1_authority": str(p1.authority if p1 is not None else 0),
        "p2_name": (p2.name if p2 is not None and p2.name else "Player 2"),
        "p2_authority": str(p2.authority if p2 is not None else 0),
        "tension": tension_description(world_state.tension),
        "faction": faction_name(world_state.dominant_faction),
    }
