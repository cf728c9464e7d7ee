"""Prompt templates for narrative generation.

Two layers:

  * A fixed registry of `{name}`-placeholder templates, one per PromptType,
    each with the variables it requires. `build_prompt` validates and
    substitutes every occurrence of every required placeholder.
  * Handlebars rendering (`render_prompt`) for the composite prompts that need
    loops or conditionals: trade-row candidate lists, recovery transitions,
    diagnostic reports.

Chains are named, ordered lists of template types that callers use to
sequence several prompts; the registry itself never executes anything.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any

import pybars
from pydantic import BaseModel, ConfigDict

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a template fails to compile, render or validate."""


class MissingVariableError(PromptError):
    """A required template variable was not supplied."""

    def __init__(self, prompt_type: PromptType, variable: str) -> None:
        super().__init__(f"Missing required variable {variable!r} for {prompt_type.value} prompt")
        self.prompt_type = prompt_type
        self.variable = variable


# ── Narrator tone ────────────────────────────────────────

SYSTEM_PROMPT = (
    "You are the narrator of Symbeline Realms, a fantasy deck-building battle game. "
    "Your role is to describe the clash between two rival forces vying for control "
    "of the mystical realm of Symbeline. "
    "\n\n"
    "Guidelines:\n"
    "- Use vivid, evocative language befitting high fantasy\n"
    "- Keep descriptions concise (2-3 sentences unless asked for more)\n"
    "- Reference the mechanical effects of cards while maintaining narrative immersion\n"
    "- Maintain consistent characterization for each faction\n"
    "- Build tension as authority levels drop\n"
    "- Celebrate dramatic moments like powerful card combos\n"
)


# ── Template registry ────────────────────────────────────


class PromptType(str, Enum):
    WORLD_STATE = "world_state"
    FORCE_DESCRIPTION = "force_description"
    EVENT_NARRATION = "event_narration"
    TRADE_ROW_SELECTION = "trade_row_selection"
    TURN_SUMMARY = "turn_summary"
    CARD_PLAYED = "card_played"
    ATTACK = "attack"


class PromptTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: PromptType
    name: str
    text: str
    required_vars: tuple[str, ...]


def _template(type: PromptType, name: str, text: str, *required: str) -> PromptTemplate:
    return PromptTemplate(type=type, name=name, text=text, required_vars=required)


TEMPLATES: Mapping[PromptType, PromptTemplate] = MappingProxyType({
    t.type: t for t in (
        _template(
            PromptType.WORLD_STATE, "World State",
            "Turn {turn} of the battle for Symbeline. "
            "{player1_name} commands {player1_authority} authority. "
            "{player2_name} commands {player2_authority} authority. "
            "The current phase is {phase}.",
            "turn", "player1_name", "player1_authority",
            "player2_name", "player2_authority", "phase",
        ),
        _template(
            PromptType.FORCE_DESCRIPTION, "Force Description",
            "Describe the forces of {player_name}, aligned with the {faction}. "
            "They have {bases_in_play} bases in play and {cards_in_hand} cards in hand.",
            "player_name", "faction", "bases_in_play", "cards_in_hand",
        ),
        _template(
            PromptType.EVENT_NARRATION, "Event Narration",
            "Narrate this event: {event_type}. "
            "Actor: {actor}. Target: {target}. Effect: {effect}. "
            "Keep it brief and dramatic.",
            "event_type", "actor", "target", "effect",
        ),
        _template(
            PromptType.TRADE_ROW_SELECTION, "Trade Row Selection",
            "Select 5 cards for the trade row from available factions: {available_factions}. "
            "Current game tension level: {game_tension}. "
            "Player faction preferences: {player_factions}. "
            "Choose cards that create interesting strategic choices.",
            "available_factions", "game_tension", "player_factions",
        ),
        _template(
            PromptType.TURN_SUMMARY, "Turn Summary",
            "Summarize {player_name}'s turn. "
            "Trade value spent: {trade_made}. "
            "Combat dealt: {combat_dealt}. "
            "Cards played: {cards_played}.",
            "player_name", "trade_made", "combat_dealt", "cards_played",
        ),
        _template(
            PromptType.CARD_PLAYED, "Card Played",
            "{player_name} plays {card_name} from the {card_faction}. "
            "Effect: {card_effect}. Describe this moment.",
            "player_name", "card_name", "card_faction", "card_effect",
        ),
        _template(
            PromptType.ATTACK, "Attack",
            "{attacker} strikes at {defender} for {damage} damage! "
            "{defender} now has {remaining_authority} authority remaining.",
            "attacker", "defender", "damage", "remaining_authority",
        ),
    )
})


# Canned prose per template, used when no model narrates a chain. Each text
# uses only variables its template requires.
FALLBACK_TEXT: Mapping[PromptType, str] = MappingProxyType({
    PromptType.WORLD_STATE: (
        "Turn {turn} of the battle for Symbeline. {player1_name} holds "
        "{player1_authority} authority against {player2_name}'s {player2_authority}."
    ),
    PromptType.FORCE_DESCRIPTION: (
        "The forces of {player_name} rally under the {faction} banner, "
        "{bases_in_play} bases standing and {cards_in_hand} cards at the ready."
    ),
    PromptType.EVENT_NARRATION: "{actor} presses the fight against {target}: {effect}.",
    PromptType.TRADE_ROW_SELECTION: "Fresh recruits gather at the trade row.",
    PromptType.TURN_SUMMARY: (
        "{player_name} spends {trade_made} trade and deals {combat_dealt} damage "
        "across {cards_played} cards."
    ),
    PromptType.CARD_PLAYED: "{player_name} plays {card_name}, and the {card_faction} answers the call.",
    PromptType.ATTACK: (
        "{attacker} strikes {defender} for {damage} damage, "
        "leaving {remaining_authority} authority."
    ),
})


CHAINS: Mapping[str, tuple[PromptType, ...]] = MappingProxyType({
    "turn": (PromptType.WORLD_STATE, PromptType.FORCE_DESCRIPTION, PromptType.TURN_SUMMARY),
    "card_play": (PromptType.CARD_PLAYED, PromptType.EVENT_NARRATION),
    "combat": (PromptType.ATTACK, PromptType.EVENT_NARRATION),
})


class PromptVars:
    """Template variables. Keys are unique; the last write wins.

    Values are stored as strings so numbers can be passed directly.
    """

    def __init__(self, values: Mapping[str, Any] | None = None, **kwargs: Any) -> None:
        self._values: dict[str, str] = {}
        for name, value in {**(values or {}), **kwargs}.items():
            self.add(name, value)

    def add(self, name: str, value: Any) -> None:
        self._values[name] = str(value)

    def get(self, name: str) -> str | None:
        return self._values.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)


def get_template(prompt_type: PromptType) -> PromptTemplate:
    return TEMPLATES[prompt_type]


def validate_vars(prompt_type: PromptType, vars: PromptVars) -> str | None:
    """Return the first missing required variable, or None if all are present."""
    for name in TEMPLATES[prompt_type].required_vars:
        if name not in vars:
            return name
    return None


def build_prompt(prompt_type: PromptType, vars: PromptVars) -> str:
    """Substitute every required `{name}` placeholder of a template.

    Raises MissingVariableError naming the first absent variable. Variables
    the template does not require are ignored.
    """
    missing = validate_vars(prompt_type, vars)
    if missing is not None:
        raise MissingVariableError(prompt_type, missing)

    return _substitute(TEMPLATES[prompt_type].text, prompt_type, vars)


def build_fallback(prompt_type: PromptType, vars: PromptVars) -> str:
    """Canned prose for a template, validated the same way as `build_prompt`."""
    missing = validate_vars(prompt_type, vars)
    if missing is not None:
        raise MissingVariableError(prompt_type, missing)
    return _substitute(FALLBACK_TEXT[prompt_type], prompt_type, vars)


def _substitute(text: str, prompt_type: PromptType, vars: PromptVars) -> str:
    for name in TEMPLATES[prompt_type].required_vars:
        text = text.replace("{" + name + "}", vars.get(name) or "")
    return text


def get_chain(name: str) -> tuple[PromptType, ...] | None:
    return CHAINS.get(name)


def build_chain(name: str, vars: PromptVars) -> list[str]:
    """Build every template of a named chain, in order."""
    chain = get_chain(name)
    if chain is None:
        raise PromptError(f"Unknown prompt chain: {name!r}")
    return [build_prompt(t, vars) for t in chain]


def build_chain_fallback(name: str, vars: PromptVars) -> str:
    """Canned prose for every template of a chain, joined into one passage."""
    chain = get_chain(name)
    if chain is None:
        raise PromptError(f"Unknown prompt chain: {name!r}")
    return " ".join(build_fallback(t, vars) for t in chain)


# ── Handlebars rendering ─────────────────────────────────


def _helper_numbered(this, options, items):
    """{{#numbered list}}{{index}}. {{item}}{{/numbered}} with a 1-based index."""
    result = []
    for i, item in enumerate(list(items), start=1):
        result.extend(options["fn"]({"index": i, "item": item}))
    return result


_HELPERS: dict[str, Callable] = {
    "numbered": _helper_numbered,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e
