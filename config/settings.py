"""Application settings — all configuration loaded from environment variables.

Usage:
    from config.settings import Settings
    settings = Settings()
    settings.validate()   # raises ValueError if FETCH_API_TOKEN is missing
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "fetch_state.db"


@dataclass
class Settings:
    """Centralised application configuration.

    All values are read from environment variables at instantiation time
    so that tests can override them by patching ``os.environ``.
    """

    # ── Remote API ──────────────────────────────────────────────────────────
    api_base_url: str = field(
        default_factory=lambda: os.environ.get(
            "FETCH_API_BASE_URL", "https://fetchnews-backend.onrender.com"
        )
    )
    api_token: str = field(
        default_factory=lambda: os.environ.get("FETCH_API_TOKEN", "")
    )
    #: Generous because assistant replies are generated server-side.
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("FETCH_REQUEST_TIMEOUT", "60"))
    )

    # ── Scheduling ──────────────────────────────────────────────────────────
    #: IANA timezone name sent with every schedule update.
    timezone: str = field(
        default_factory=lambda: os.environ.get("FETCH_TIMEZONE", "UTC")
    )
    save_debounce_ms: int = field(
        default_factory=lambda: int(os.environ.get("SCHEDULE_SAVE_DEBOUNCE_MS", "500"))
    )

    # ── Assistant ───────────────────────────────────────────────────────────
    #: Number of trailing turns sent as history; 0 sends everything.
    assistant_history_window: int = field(
        default_factory=lambda: int(os.environ.get("ASSISTANT_HISTORY_WINDOW", "0"))
    )

    # ── Local storage ───────────────────────────────────────────────────────
    db_path: Path = field(
        default_factory=lambda: Path(os.environ.get("DB_PATH") or DEFAULT_DB_PATH)
    )

    # ── Flask ───────────────────────────────────────────────────────────────
    debug: bool = field(
        default_factory=lambda: os.environ.get("FLASK_DEBUG", "0") == "1"
    )
    port: int = field(
        default_factory=lambda: int(os.environ.get("PORT", "5001"))
    )

    @property
    def save_debounce_seconds(self) -> float:
        return max(self.save_debounce_ms, 0) / 1000.0

    def validate(self) -> None:
        """Raise ``ValueError`` if any required setting is missing."""
        if not self.api_token:
            raise ValueError(
                "FETCH_API_TOKEN environment variable is not set. "
                "Copy .env.example to .env and add your token."
            )
        if not self.api_base_url.startswith(("http://", "https://")):
            raise ValueError(
                f"FETCH_API_BASE_URL must be an http(s) URL, got {self.api_base_url!r}."
            )
