"""Runtime settings for the APS AI backend."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _as_bool(value: str | None, *, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, *, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _first_env(*names: str) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


@dataclass(frozen=True)
class Settings:
    app_name: str = field(default_factory=lambda: os.getenv("APS_APP_NAME", "aps-ai-api"))

    gemini_api_key: str | None = field(
        default_factory=lambda: _first_env(
            "GEMINI_API_KEY",
            "API_KEY",
            "GOOGLE_API_KEY",
        )
    )
    gemini_base_url: str = field(
        default_factory=lambda: os.getenv(
            "APS_GEMINI_BASE_URL",
            "https://generativelanguage.googleapis.com/v1beta",
        )
    )

    # Plain chat and thinking-mode chat use different models.
    chat_model: str = field(default_factory=lambda: os.getenv("APS_CHAT_MODEL", "gemini-2.5-flash"))
    thinking_model: str = field(default_factory=lambda: os.getenv("APS_THINKING_MODEL", "gemini-2.5-pro"))
    thinking_budget: int = field(
        default_factory=lambda: _as_int(os.getenv("APS_THINKING_BUDGET"), default=32768)
    )

    triage_model: str = field(default_factory=lambda: os.getenv("APS_TRIAGE_MODEL", "gemini-2.5-flash"))
    analysis_model: str = field(default_factory=lambda: os.getenv("APS_ANALYSIS_MODEL", "gemini-2.5-pro"))

    request_timeout_sec: float = field(
        default_factory=lambda: float(os.getenv("APS_REQUEST_TIMEOUT_SEC", "120"))
    )

    # Mirrors the dashboard's triage-on-first-load behaviour.
    auto_triage_on_startup: bool = field(
        default_factory=lambda: _as_bool(os.getenv("APS_AUTO_TRIAGE"), default=True)
    )


def get_settings() -> Settings:
    return Settings()
