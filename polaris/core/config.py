"""
Runtime settings, read from the environment.

Everything here has a sane default so the service boots locally with an
empty environment (in-memory store, no credential). The iteration cap and
the suggestion rate limit are plain settings so they can be tuned per
deployment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass
class Settings:
    # ── Shared credential for every document-store call ──
    internal_key: str = field(default_factory=lambda: os.getenv("POLARIS_INTERNAL_KEY", ""))

    # ── Storage ──
    mongodb_url: str = field(default_factory=lambda: os.getenv("MONGODB_URL", ""))
    mongodb_database: str = field(default_factory=lambda: os.getenv("MONGODB_DATABASE", "polaris"))

    # ── Agent run ──
    max_iterations: int = field(default_factory=lambda: _env_int("AGENT_MAX_ITERATIONS", 20))
    history_limit: int = field(default_factory=lambda: _env_int("HISTORY_LIMIT", 10))
    db_sync_delay: float = field(default_factory=lambda: _env_float("DB_SYNC_DELAY_SECONDS", 1.0))

    # ── Step retry policy ──
    step_max_attempts: int = field(default_factory=lambda: _env_int("STEP_MAX_ATTEMPTS", 4))
    step_retry_min_seconds: float = field(default_factory=lambda: _env_float("STEP_RETRY_MIN_SECONDS", 0.5))
    step_retry_max_seconds: float = field(default_factory=lambda: _env_float("STEP_RETRY_MAX_SECONDS", 8.0))

    # ── Web scraping tool ──
    scrape_timeout: float = field(default_factory=lambda: _env_float("SCRAPE_TIMEOUT_SECONDS", 15.0))
    scrape_max_chars: int = field(default_factory=lambda: _env_int("SCRAPE_MAX_CHARS", 20_000))

    # ── Inline suggestions ──
    suggestion_rate_limit: int = field(default_factory=lambda: _env_int("SUGGESTION_RATE_LIMIT", 6))
    suggestion_rate_window: float = field(default_factory=lambda: _env_float("SUGGESTION_RATE_WINDOW_SECONDS", 60.0))
    suggestion_debounce: float = field(default_factory=lambda: _env_float("SUGGESTION_DEBOUNCE_SECONDS", 0.3))
    suggestion_context_lines: int = field(default_factory=lambda: _env_int("SUGGESTION_CONTEXT_LINES", 5))


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings(settings: Settings | None = None) -> Settings:
    """Replace the process-wide settings (tests, reloads)."""
    global _settings
    _settings = settings or Settings()
    return _settings
