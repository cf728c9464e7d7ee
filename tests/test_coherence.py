"""Tests for coherence heuristics, scoring and recovery."""

import pytest

from conftest import StubLLM
from symbeline_narrator.coherence import (
    RECOVERY_SYSTEM_PROMPT,
    CoherenceCheck,
    CoherenceLevel,
    CoherenceManager,
    check_authority,
    check_factions,
    check_names,
    check_timeline,
    extract_number_near,
    level_for_score,
    tension_description,
)
from symbeline_narrator.llm import LLMResponse
from symbeline_narrator.models import Faction
from symbeline_narrator.world_state import WorldState

CLEAN = "Aldric's knights hold the line as Morwen's beasts circle the keep."
BROKEN = (
    "Player 1 and the merchant wilds clash on turn 40. "
    "The defenders rally behind a wall, 500 authority strong."
)


@pytest.fixture
def world_state(game) -> WorldState:
    ws = WorldState()
    ws.init_from_game(game)
    return ws


# ── extract_number_near ──────────────────────────────────────


@pytest.mark.parametrize("text,keyword,expected", [
    ("It is turn 12 now", "turn", 12),
    ("On the 7th turn", "turn", 7),
    ("Morwen has 45 authority", "authority", 45),
    ("Authority: 38 remains", "authority", 38),
    ("The turn passes quietly", "turn", -1),
    ("No keyword here", "turn", -1),
    ("", "turn", -1),
    (None, "turn", -1),
])
def test_extract_number_near(text, keyword, expected):
    assert extract_number_near(text, keyword) == expected


def test_extract_number_ignores_case_of_keyword():
    assert extract_number_near("TURN 5 dawns", "turn") == 5


def test_extract_number_with_text_that_changes_length_when_folded():
    assert extract_number_near("Straßeßßßß turn 7 begins", "turn") == 7
    assert extract_number_near("ßßßß 9 Authority at the gate", "authority") == 9


# ── Individual heuristics ────────────────────────────────────


class TestHeuristics:
    def test_generic_player_reference_without_name(self, game) -> None:
        assert not check_names("Player 1 attacks!", game)
        assert check_names("Player 1, Aldric, attacks!", game)
        assert check_names("The knights attack!", game)

    def test_forbidden_faction_pairs(self) -> None:
        assert not check_factions("The merchant wilds advance")
        assert not check_factions("A wilds kingdom rises")
        assert check_factions("The royal knights advance")
        assert check_factions("Nothing of note")

    def test_timeline_within_tolerance(self, world_state) -> None:
        world_state.turn_number = 5
        assert check_timeline("It is turn 8.", world_state)
        assert not check_timeline("It is turn 9.", world_state)
        assert check_timeline("The turn drags on.", world_state)

    def test_authority_plausibility(self, game) -> None:
        assert check_authority("Morwen has 45 authority left", game)
        assert check_authority("A legendary 90 authority", game)
        assert not check_authority("Holding 500 authority", game)
        assert not check_authority("Reduced to 250 health", game)
        assert check_authority("No numbers at all", game)

    def test_none_inputs_pass(self, game, world_state) -> None:
        assert check_names(None, game)
        assert check_factions(None)
        assert check_timeline(None, world_state)
        assert check_authority("500 authority", None)


# ── Scoring ──────────────────────────────────────────────────


@pytest.mark.parametrize("score,level", [
    (0.75, CoherenceLevel.OK),
    (0.7, CoherenceLevel.OK),
    (0.6, CoherenceLevel.MINOR_ISSUE),
    (0.5, CoherenceLevel.MINOR_ISSUE),
    (0.4, CoherenceLevel.MAJOR_ISSUE),
    (0.3, CoherenceLevel.MAJOR_ISSUE),
    (0.2, CoherenceLevel.RECOVERY_NEEDED),
])
def test_level_for_score(score, level):
    assert level_for_score(score) == level


@pytest.mark.parametrize("tension,word", [
    (0.9, "climactic"), (0.6, "intense"), (0.3, "building"), (0.1, "calm"),
])
def test_tension_description(tension, word):
    assert tension_description(tension) == word


def test_score_counts_failed_checks():
    assert CoherenceCheck().calculate_score() == pytest.approx(0.9)
    assert CoherenceCheck(names_consistent=False).calculate_score() == pytest.approx(0.7)
    check = CoherenceCheck(names_consistent=False, timeline_consistent=False)
    assert check.calculate_score() == pytest.approx(0.5)
    assert check.describe_issues() == "Name inconsistency. Timeline mismatch. "
    assert CoherenceCheck().describe_issues() == "No issues detected."


# ── Manager ──────────────────────────────────────────────────


class TestCoherenceManager:
    def test_clean_narrative(self, game, world_state) -> None:
        manager = CoherenceManager()
        check = manager.check(CLEAN, game, world_state)
        assert check.level == CoherenceLevel.OK
        assert check.overall_score == pytest.approx(0.9)
        assert manager.consecutive_issues == 0

    def test_broken_narrative_needs_recovery(self, game, world_state) -> None:
        manager = CoherenceManager()
        check = manager.check(BROKEN, game, world_state)
        assert not check.names_consistent
        assert not check.faction_consistent
        assert not check.timeline_consistent
        assert not check.authority_plausible
        assert check.level == CoherenceLevel.RECOVERY_NEEDED
        assert manager.consecutive_issues == 1
        manager.check(CLEAN, game, world_state)
        assert manager.consecutive_issues == 0
        assert manager.total_checks == 2

    def test_should_check(self, make_game) -> None:
        manager = CoherenceManager()
        assert not manager.should_check(make_game(turn=1))
        assert manager.should_check(make_game(turn=3))
        assert manager.should_check(make_game(50, 10, turn=1))
        manager.consecutive_issues = 1
        assert manager.should_check(make_game(turn=1))

    def test_rebuild_world_state_from_zones(self, game, world_state, make_card) -> None:
        aldric, morwen = game.players
        aldric.deck.played.append(make_card("Royal Knight", Faction.KINGDOM))
        aldric.deck.frontier_bases.append(make_card("Iron Citadel", Faction.KINGDOM, kind=1))
        morwen.deck.played.append(make_card("Dire Wolf", Faction.WILDS))
        morwen.deck.hand.append(make_card("Clockwork Golem", Faction.ARTIFICER))
        world_state.record_event("card played", "stale event")
        world_state.faction_card_counts[Faction.MERCHANT] = 9

        CoherenceManager.rebuild_world_state(world_state, game)

        assert len(world_state.events) == 0
        assert world_state.faction_card_counts == [0, 0, 1, 2, 0]
        assert world_state.dominant_faction == Faction.KINGDOM

    async def test_recover_without_model(self, game, world_state) -> None:
        manager = CoherenceManager()
        manager.consecutive_issues = 2
        narrative = await manager.recover(game, world_state)
        assert narrative == (
            "The mists of battle shift, revealing the current state of the conflict. "
            "Turn 1 unfolds as Aldric and Morwen continue their struggle for dominion."
        )
        assert manager.total_recoveries == 1
        assert manager.consecutive_issues == 0

    async def test_recover_with_model(self, game, world_state) -> None:
        llm = StubLLM("The dust settles over the ramparts.")
        manager = CoherenceManager(llm)
        narrative = await manager.recover(game, world_state)
        assert narrative == "The dust settles over the ramparts."
        system, user = llm.calls[0]
        assert system.content == RECOVERY_SYSTEM_PROMPT
        assert user.content.startswith(
            "Current state: Turn 1. Aldric has 50 authority. Morwen has 50 authority.\n"
        )
        assert "Tension level: building. Dominant faction: the Neutral forces." in user.content

    async def test_recover_model_failure_falls_back(self, game, world_state) -> None:
        manager = CoherenceManager(StubLLM(LLMResponse.failure("HTTP error 500", status_code=500)))
        narrative = await manager.recover(game, world_state)
        assert narrative.startswith("The mists of battle shift")

    def test_recent_issues_report(self, game, world_state) -> None:
        manager = CoherenceManager()
        assert manager.recent_issues(5) == "No coherence issues logged."

        manager.log_entry(manager.check(CLEAN, game, world_state), CLEAN, turn=1)
        assert manager.recent_issues(5) == "No coherence issues in recent history."

        broken = manager.check(BROKEN, game, world_state)
        manager.log_entry(broken, BROKEN, recovery_triggered=True, turn=2)
        assert manager.recent_issues(5) == (
            "Recent coherence checks:\n"
            "- [Recovery Needed] Score: 0.10 (recovered) Name inconsistency. "
            "Faction reference error. Timeline mismatch. Authority value implausible.\n"
        )

    def test_log_entry_snippet_and_turn(self, game, world_state) -> None:
        manager = CoherenceManager()
        long_text = "x" * 500
        manager.log_entry(manager.check(long_text, game, world_state), long_text, turn=7)
        entry = manager.log.newest(1)[0]
        assert entry.turn_number == 7
        assert len(entry.narrative_snippet) <= 200

    def test_stats(self, game, world_state) -> None:
        manager = CoherenceManager()
        assert manager.stats().average_score == 1.0
        manager.log_entry(manager.check(CLEAN, game, world_state), CLEAN)
        manager.log_entry(manager.check(BROKEN, game, world_state), BROKEN)
        stats = manager.stats()
        assert stats.total_checks == 2
        assert stats.average_score == pytest.approx(0.5)
