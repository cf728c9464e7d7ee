"""World State: long-lived narrative memory for one match.

Tracks the battlefield description, per-player force descriptions, per-faction
card-play counts, a bounded event history and a tension scalar in [0, 1].
Created once per match and updated after every significant action; owned by
the narrator, read by the narration builders.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

from symbeline_narrator.models import (
    FACTION_COUNT,
    MAX_PLAYERS,
    PLAYER_STARTING_AUTHORITY,
    Faction,
    Game,
)
from symbeline_narrator.prompts import MissingVariableError, PromptType, PromptVars, build_prompt
from symbeline_narrator.ring_buffer import RingBuffer

logger = logging.getLogger(__name__)

WORLD_STATE_MAX_EVENTS = 10
CONTEXT_EVENT_COUNT = 5

FACTION_NAMES = (
    "the Neutral forces",
    "the Merchant Guilds",
    "the forces of the Wilds",
    "the High Kingdom",
    "the Artificer Order",
)

INITIAL_BATTLEFIELD = (
    "The contested realm of Symbeline stretches before two rival commanders, "
    "each seeking dominion over these mystical lands."
)
INITIAL_FORCES = "A small band of scouts and vipers, awaiting orders."
NO_EVENTS = "No significant events yet."

# Battlefield descriptions by tension, checked top to bottom.
_BATTLEFIELD_BY_TENSION = (
    (0.8, "The battlefield is scarred from prolonged conflict. "
          "The air crackles with tension as both sides prepare for "
          "what may be the decisive clash."),
    (0.5, "Signs of battle mark the contested ground. "
          "Neither commander has yet secured the upper hand, "
          "but the struggle intensifies with each turn."),
    (0.2, "The battle lines are drawn as both forces marshal their strength. "
          "Skirmishes break out as commanders test each other's defenses."),
)


class GameEvent(BaseModel):
    event_type: str
    description: str
    player_id: int = -1  # -1 = neutral
    turn: int = 0


def faction_name(faction: Faction | int) -> str:
    """Narrative name of a faction, e.g. "the High Kingdom"."""
    if 0 <= faction < FACTION_COUNT:
        return FACTION_NAMES[faction]
    return "unknown forces"


def battlefield_for_tension(tension: float) -> str:
    for floor, description in _BATTLEFIELD_BY_TENSION:
        if tension > floor:
            return description
    return INITIAL_BATTLEFIELD


class WorldState:
    def __init__(self) -> None:
        self.battlefield_description = INITIAL_BATTLEFIELD
        self.player_forces: list[str | None] = [None] * MAX_PLAYERS
        self.turn_number = 0
        self.last_update_turn = 0
        self.faction_card_counts = [0] * FACTION_COUNT
        self.dominant_faction = Faction.NEUTRAL
        self.events: RingBuffer[GameEvent] = RingBuffer(WORLD_STATE_MAX_EVENTS)
        self.tension = 0.0

    # ── Lifecycle ─────────────────────────────────────────

    def init_from_game(self, game: Game) -> None:
        """Reset per-match state from a freshly started game."""
        self.turn_number = game.turn_number
        self.last_update_turn = game.turn_number
        for i in range(min(game.player_count, MAX_PLAYERS)):
            self.player_forces[i] = INITIAL_FORCES
        self.faction_card_counts = [0] * FACTION_COUNT
        self.tension = 0.0

    def calculate_tension(self, game: Game) -> float:
        """Recompute and store tension. Defined for exactly two players.

        closeness (0-0.4) + danger of the lower authority (0-0.4)
        + game length (0-0.2), clamped to [0, 1].
        """
        if game.player_count < 2:
            self.tension = 0.0
            return 0.0

        auth1 = game.players[0].authority
        auth2 = game.players[1].authority
        starting = PLAYER_STARTING_AUTHORITY

        closeness = 0.4 * (1.0 - abs(auth1 - auth2) / starting)
        danger = 0.4 * (1.0 - min(auth1, auth2) / starting)
        length = 0.2 * min(game.turn_number / 20.0, 1.0)

        self.tension = max(0.0, min(1.0, closeness + danger + length))
        return self.tension

    def update(self, game: Game) -> None:
        """Refresh turn, tension, dominant faction and battlefield description."""
        self.turn_number = game.turn_number
        self.calculate_tension(game)
        self.dominant_faction = self._compute_dominant_faction()
        self.battlefield_description = battlefield_for_tension(self.tension)
        self.last_update_turn = game.turn_number

    def _compute_dominant_faction(self) -> Faction:
        # Neutral never dominates; ties go to the lowest faction index.
        best_count = 0
        dominant = Faction.NEUTRAL
        for faction in list(Faction)[1:]:
            if self.faction_card_counts[faction] > best_count:
                best_count = self.faction_card_counts[faction]
                dominant = faction
        return dominant

    # ── Events ────────────────────────────────────────────

    def record_event(self, event_type: str, description: str,
                     player_id: int = -1, turn: int = 0) -> None:
        self.events.push(GameEvent(
            event_type=event_type, description=description,
            player_id=player_id, turn=turn,
        ))

    def record_card_played(self, faction: Faction | int) -> None:
        if 0 <= faction < FACTION_COUNT:
            self.faction_card_counts[faction] += 1

    def recent_events(self, max_events: int) -> str:
        """Bulleted list of up to `max_events` events, newest first."""
        if not len(self.events):
            return NO_EVENTS
        lines = ["Recent events:\n"]
        for event in self.events.newest(max_events):
            lines.append(f"- Turn {event.turn}: {event.description}\n")
        return "".join(lines)

    # ── Prompt building ───────────────────────────────────

    def to_prompt_vars(self, game: Game, vars: PromptVars | None = None) -> PromptVars:
        """Variables for the world-state template.

        Player variables are only present for seats that exist.
        """
        vars = vars if vars is not None else PromptVars()
        vars.add("turn", game.turn_number)
        for seat, player in enumerate(game.players[:2], start=1):
            vars.add(f"player{seat}_name", player.name or f"Player {seat}")
            vars.add(f"player{seat}_authority", player.authority)
        vars.add("phase", game.phase.display_name)
        return vars

    def build_context(self, game: Game) -> str | None:
        """World-state prompt + battlefield + recent events.

        None when the world-state prompt cannot be built (fewer than two
        players).
        """
        try:
            world_prompt = build_prompt(PromptType.WORLD_STATE, self.to_prompt_vars(game))
        except MissingVariableError as e:
            logger.debug("world state context unavailable: %s", e)
            return None
        events = self.recent_events(CONTEXT_EVENT_COUNT)
        return f"{world_prompt}\n\nBattlefield: {self.battlefield_description}\n\n{events}"
