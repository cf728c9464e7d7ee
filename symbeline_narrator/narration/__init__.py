"""Narration builders and the per-match narrator.

  forces        faction themes, force/card/base description prompts
  events        event types, intensity, per-event prompts, canned prose
  orchestrator  `Narrator`: world state, context, cache, coherence, model

Event prompt flow: NarrationEvent -> calculate_intensity -> build_event_prompt
-> (model or fallback_narration). The orchestrator is imported from its own
module; it depends on the cache, which depends on `events`.
"""

from .events import (  # noqa: F401
    GameEventType,
    NarrationEvent,
    NarrationIntensity,
    build_event_prompt,
    calculate_intensity,
    describe_event,
    fallback_narration,
)
from .forces import (  # noqa: F401
    FACTION_THEMES,
    FactionTheme,
    ForceDescCache,
    get_theme,
)
