"""Narrator: turns game events into prose.

One `Narrator` per match owns the World State, context window, narrative
cache and coherence manager. For each event:

  1. Update the World State and record the event.
  2. Build the event prompt.
  3. Return a cached narrative if the event's signature was seen recently.
  4. Without a model, return deterministic prose.
  5. Refresh the context window (summarizing old fragments under pressure)
     and request a narrative.
  6. On failure, return deterministic prose.
  7. Periodically check coherence; a bad result triggers recovery and the
     recovery transition replaces the narrative, cached under the same
     signature.
  8. Cache the narrative and keep it as context for later events.

Everything that can talk to the model is async; the model call is the only
blocking step.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable

from symbeline_narrator.cache import NarrativeCache, build_signature
from symbeline_narrator.coherence import CoherenceLevel, CoherenceManager
from symbeline_narrator.config import NarratorSettings
from symbeline_narrator.context import ContextManager, ContextPriority
from symbeline_narrator.llm import LLM
from symbeline_narrator.models import BasePlacement, CardInstance, CardKind, Game, Player
from symbeline_narrator.narration.events import (
    GameEventType,
    NarrationEvent,
    build_event_prompt,
    calculate_intensity,
    describe_event,
    fallback_narration,
)
from symbeline_narrator.narration.forces import (
    ForceDescCache,
    build_base,
    build_card_played,
    build_player_forces,
    faction_adjective,
    get_theme,
    summarize_forces,
)
from symbeline_narrator.prompts import (
    SYSTEM_PROMPT,
    PromptError,
    PromptVars,
    build_chain,
    build_chain_fallback,
)
from symbeline_narrator.text import snippet
from symbeline_narrator.trade_select import DungeonMasterPolicy
from symbeline_narrator.world_state import WorldState

logger = logging.getLogger(__name__)

SUMMARY_MAX_CHARS = 400


def _first_sentence(text: str) -> str:
    for mark in (". ", "! ", "? "):
        idx = text.find(mark)
        if idx >= 0:
            text = text[:idx + 1]
    return text.strip()


def summarize_fragments(texts: list[str]) -> str:
    """Condense old context fragments to their opening sentences."""
    body = " ".join(_first_sentence(t) for t in texts if t)
    return "Earlier in the battle: " + snippet(body, SUMMARY_MAX_CHARS)


class Narrator:
    """Narrative orchestration for one match.

    Args:
        game: The match being narrated. Read, never mutated.
        llm: Model backend. None means deterministic prose everywhere.
        settings: Context, cache and selection tuning.
        rng: Random source for themed word choice.
        clock: Monotonic clock shared by the context window and cache.
    """

    def __init__(
        self,
        game: Game,
        llm: LLM | None = None,
        settings: NarratorSettings | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.game = game
        self.llm = llm
        self.settings = settings or NarratorSettings()
        self.rng = rng or random.Random()
        clock = clock or time.monotonic

        self.world_state = WorldState()
        self.world_state.init_from_game(game)
        self.context = ContextManager(self.settings.context_max_tokens, clock=clock)
        self.cache = NarrativeCache(
            self.settings.cache_max_entries, self.settings.cache_ttl_seconds, clock=clock,
        )
        self.coherence = CoherenceManager(llm)
        self.descriptions = ForceDescCache()

        if not self.context.add(SYSTEM_PROMPT, ContextPriority.SYSTEM):
            logger.warning("system prompt does not fit a %d-token context", self.settings.context_max_tokens)

    # ── Events ────────────────────────────────────────────

    async def narrate(self, event: NarrationEvent) -> str:
        game = self.game
        ws = self.world_state

        if event.type == GameEventType.CARD_PLAYED and event.card is not None:
            ws.record_card_played(event.card.type.faction)
        ws.update(game)
        ws.record_event(
            event.type.display_name,
            describe_event(event),
            event.actor.id if event.actor is not None else -1,
            game.turn_number,
        )
        event = event.model_copy(update={"intensity": calculate_intensity(ws, event)})

        try:
            prompt = build_event_prompt(event, self.rng)
        except PromptError as e:
            logger.warning("event prompt failed, using canned text: %s", e)
            prompt = fallback_narration(event, self.rng)

        signature = build_signature(event)
        cached = self.cache.get(signature)
        if cached is not None:
            return cached

        if self.llm is None:
            text = fallback_narration(event, self.rng)
            self._remember(signature, text)
            return text

        self._refresh_context(event)
        user_prompt = f"{self.context.build_prompt(include_system=False)}\n\n{prompt}"
        response = await self.llm.request(SYSTEM_PROMPT, user_prompt)
        if not response.success or not response.text:
            logger.warning("narration failed for %s: %s", signature, response.error)
            return fallback_narration(event, self.rng)

        text = response.text
        if self.coherence.should_check(game):
            check = self.coherence.check(text, game, ws)
            recover = check.level >= CoherenceLevel.MAJOR_ISSUE
            self.coherence.log_entry(check, text, recover, game.turn_number)
            if recover:
                transition = await self.coherence.recover(game, ws)
                self.context.clear_priority(ContextPriority.OLD_EVENTS)
                self.context.clear_priority(ContextPriority.FORCE_DESC)
                self.context.add(transition, ContextPriority.OLD_EVENTS)
                self.cache.set(signature, transition)
                return transition

        self._remember(signature, text)
        return text

    def _remember(self, signature: str, text: str) -> None:
        self.cache.set(signature, text)
        if not self.context.add(text, ContextPriority.OLD_EVENTS):
            logger.debug("narrative not kept as context (%d chars)", len(text))

    def _refresh_context(self, event: NarrationEvent) -> None:
        ctx = self.context
        ctx.clear_priority(ContextPriority.CURRENT_TURN)
        ctx.clear_priority(ContextPriority.WORLD_STATE)

        if ctx.needs_summarization(self.settings.summarize_threshold):
            indices = ctx.find_summarizable()
            if len(indices) > 1:
                summary = summarize_fragments([ctx.entries[i].text for i in indices])
                ctx.replace_with_summary(indices, summary)
                logger.debug("summarized %d context entries", len(indices))

        world = self.world_state.build_context(self.game)
        if world is not None:
            ctx.add(world, ContextPriority.WORLD_STATE)
        ctx.add(f"Current moment: {describe_event(event)}.", ContextPriority.CURRENT_TURN)

    # ── Descriptions ──────────────────────────────────────

    async def describe_forces(self, player: Player) -> str:
        """Describe a player's forces and keep the result as context."""
        if self.llm is None:
            text = f"{player.name or 'A commander'} fields {summarize_forces(player)}."
        else:
            response = await self.llm.request(SYSTEM_PROMPT, build_player_forces(player))
            text = response.text if response.success and response.text else \
                f"{player.name or 'A commander'} fields {summarize_forces(player)}."

        if 0 <= player.id < len(self.world_state.player_forces):
            self.world_state.player_forces[player.id] = text
        self.context.add(text, ContextPriority.FORCE_DESC)
        return text

    async def describe_card(self, card: CardInstance, player: Player | None = None) -> str:
        """Describe a card or base once; repeat calls reuse the stored text."""
        cached = self.descriptions.get(card.type.id)
        if cached is not None:
            return cached

        if card.type.kind == CardKind.BASE:
            placement = card.placement if card.placement != BasePlacement.NONE else BasePlacement.FRONTIER
            prompt = build_base(card, placement, self.rng)
        else:
            prompt = build_card_played(card, player)

        text = None
        if self.llm is not None:
            response = await self.llm.request(SYSTEM_PROMPT, prompt)
            if response.success and response.text:
                text = response.text
        if text is None:
            faction = card.type.faction
            text = f"The {faction_adjective(faction, self.rng)} {card.type.name} of the {get_theme(faction).name}."

        self.descriptions.set(card.type.id, text, self.game.turn_number)
        self.context.add(text, ContextPriority.FORCE_DESC)
        return text

    # ── Chains and selection ──────────────────────────────

    async def narrate_chain(self, name: str, vars: PromptVars) -> str:
        """Narrate a named prompt chain as one generation."""
        try:
            prompts = build_chain(name, vars)
            canned = build_chain_fallback(name, vars)
        except PromptError as e:
            logger.warning("chain %r could not be built: %s", name, e)
            return "The battle continues."

        if self.llm is None:
            return canned

        response = await self.llm.request(SYSTEM_PROMPT, "\n\n".join(prompts))
        if not response.success or not response.text:
            logger.warning("chain %r narration failed: %s", name, response.error)
            return canned
        return response.text

    def selection_policy(self) -> DungeonMasterPolicy:
        """Trade-row policy bound to this match, its World State and model."""
        return DungeonMasterPolicy(
            game=self.game,
            world_state=self.world_state,
            llm=self.llm,
            llm_weight=self.settings.trade_llm_weight,
        )
