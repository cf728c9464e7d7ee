"""Configuration: model connection from the environment, tuning from JSON.

Environment variables (a `.env` file in the working directory is loaded
first, without overriding variables already set):

    SYMBELINE_LLM_ENDPOINT     base URL of the chat-completion backend
    SYMBELINE_LLM_API_KEY      optional bearer token
    SYMBELINE_LLM_MODEL        model name
    SYMBELINE_LLM_TIMEOUT_MS   per-request timeout
    SYMBELINE_LLM_MAX_RETRIES  retries after the first attempt

Without SYMBELINE_LLM_ENDPOINT there is no model, and every narration and
selection path falls back to deterministic text.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from symbeline_narrator.llm import DEFAULT_MAX_RETRIES, DEFAULT_MODEL, DEFAULT_TIMEOUT_MS, LLMConfig

ENV_PREFIX = "SYMBELINE_LLM_"


class NarratorSettings(BaseModel):
    context_max_tokens: int = Field(default=4096, gt=0)
    summarize_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    cache_max_entries: int = Field(default=64, gt=0)
    cache_ttl_seconds: float = Field(default=300, ge=0)  # 0 = never expire
    trade_llm_weight: float = Field(default=0.25, ge=0.0, le=1.0)


def load_llm_config(environ: Mapping[str, str] | None = None,
                    dotenv_path: Path | None = None) -> LLMConfig | None:
    """Model connection from the environment, or None when no endpoint is set."""
    if environ is None:
        load_dotenv(dotenv_path)
        environ = os.environ

    endpoint = environ.get(f"{ENV_PREFIX}ENDPOINT", "").strip()
    if not endpoint:
        return None

    return LLMConfig(
        endpoint=endpoint,
        api_key=environ.get(f"{ENV_PREFIX}API_KEY") or None,
        model=environ.get(f"{ENV_PREFIX}MODEL") or DEFAULT_MODEL,
        timeout_ms=int(environ.get(f"{ENV_PREFIX}TIMEOUT_MS") or DEFAULT_TIMEOUT_MS),
        max_retries=int(environ.get(f"{ENV_PREFIX}MAX_RETRIES") or DEFAULT_MAX_RETRIES),
    )


def load_settings(path: Path | None = None) -> NarratorSettings:
    """Settings from a JSON file merged over the defaults.

    A missing file yields the defaults. Invalid values raise
    pydantic.ValidationError.
    """
    data: dict[str, Any] = {}
    if path is not None and path.is_file():
        data = json.loads(path.read_text())
    return NarratorSettings.model_validate(data)
