"""Narrative orchestration for Symbeline Realms.

Turns game-state transitions into short, tone-consistent prose under a token
budget, tolerating an unreliable model backend and degrading to deterministic
text when no model is configured. Entry point: `narration.orchestrator.Narrator`.
"""

__version__ = "0.1.0"
