"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def load_env_files() -> None:
    """
    Load simple KEY=VALUE pairs from `.env` and `.env.local` (if present).
    Existing process environment variables are not overwritten.
    """

    project_root = Path(__file__).resolve().parents[1]
    for filename in (".env", ".env.local"):
        env_path = project_root / filename
        if not env_path.exists():
            continue

        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = value


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


@dataclass(frozen=True)
class DatasetCacheSettings:
    """
    Runtime settings for the tabular store cache.
    """

    ttl_seconds: float = 1800.0
    investigation_source: str | None = None
    keep_zero_measure: bool = True


@dataclass(frozen=True)
class LLMSettings:
    """
    Completion endpoint settings.
    """

    adapter: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7


@dataclass(frozen=True)
class InvestigationSettings:
    """
    Bounds for the scan and deep-dive steps.
    """

    max_turns: int = 15
    max_findings: int = 5
    max_deep_dive_findings: int = 5
    tool_summary_chars: int = 2000
    scan_retries: int = 2
    max_registered: int = 200


@lru_cache(maxsize=1)
def get_dataset_cache_settings() -> DatasetCacheSettings:
    """
    Return cached tabular store settings from environment variables.
    """

    return DatasetCacheSettings(
        ttl_seconds=max(0.0, _get_float_env("DATASET_CACHE_TTL_SECONDS", 1800.0)),
        investigation_source=_get_optional_str_env("INVESTIGATION_SOURCE"),
        keep_zero_measure=_get_bool_env("INVESTIGATION_KEEP_ZERO_MEASURE", True),
    )


@lru_cache(maxsize=1)
def get_llm_settings() -> LLMSettings:
    """
    Return cached completion endpoint settings from environment variables.
    """

    return LLMSettings(
        adapter=_get_str_env("LLM_ADAPTER", "openai").lower(),
        model=_get_str_env("LLM_MODEL", "gpt-4o-mini"),
        api_key=_get_optional_str_env("LLM_API_KEY") or _get_optional_str_env("OPENAI_API_KEY"),
        base_url=_get_optional_str_env("LLM_BASE_URL"),
        max_tokens=max(256, _get_int_env("LLM_MAX_TOKENS", 4096)),
        temperature=min(2.0, max(0.0, _get_float_env("LLM_TEMPERATURE", 0.7))),
    )


@lru_cache(maxsize=1)
def get_investigation_settings() -> InvestigationSettings:
    """
    Return cached investigation bounds from environment variables.
    """

    return InvestigationSettings(
        max_turns=max(1, _get_int_env("INVESTIGATION_MAX_TURNS", 15)),
        max_findings=max(1, _get_int_env("INVESTIGATION_MAX_FINDINGS", 5)),
        max_deep_dive_findings=max(1, _get_int_env("INVESTIGATION_MAX_DEEP_DIVE_FINDINGS", 5)),
        tool_summary_chars=max(200, _get_int_env("INVESTIGATION_TOOL_SUMMARY_CHARS", 2000)),
        scan_retries=max(0, _get_int_env("INVESTIGATION_SCAN_RETRIES", 2)),
        max_registered=max(1, _get_int_env("INVESTIGATION_REGISTRY_MAX", 200)),
    )
