"""Configuration for the Actions dashboard server.

All settings are loaded from environment variables (a ``.env`` file next
to the package is honoured by :mod:`actions_dashboard.main`).  Nothing is
strictly required at startup: without ``GITHUB_TOKEN`` callers must send
their own token per request, and without ``MISTRAL_API_KEY`` the
optimization endpoints answer 400.

Cache windows are in seconds.  The fast tier holds fully computed
dashboard payloads; the slow tier holds the raw run lists fetched from
GitHub.
"""

from __future__ import annotations

import logging
import os
import pathlib
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = pathlib.Path(__file__).resolve().parent.parent / "dashboard.db"

HOUR = 60 * 60


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer, using %d", name, raw, default)
        return default


@dataclass(frozen=True)
class AppConfig:
    github_token: str = ""
    github_api_base: str = "https://api.github.com"

    mistral_api_key: str = ""
    mistral_model: str = "mistral-large-latest"

    db_path: str = str(DEFAULT_DB_PATH)

    fast_cache_ttl: int = HOUR
    fast_cache_stale: int = HOUR
    fast_cache_retention: int = HOUR
    runs_cache_ttl: int = HOUR
    runs_cache_stale: int = 4 * HOUR
    runs_cache_retention: int = 24 * HOUR

    fetch_workers: int = 6
    refresh_workers: int = 2

    server_host: str = "0.0.0.0"
    server_port: int = 5000
    debug: bool = False

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        # A stale window shorter than the TTL would make entries skip STALE.
        object.__setattr__(self, "fast_cache_stale", max(self.fast_cache_stale, self.fast_cache_ttl))
        object.__setattr__(self, "fast_cache_retention", max(self.fast_cache_retention, self.fast_cache_stale))
        object.__setattr__(self, "runs_cache_stale", max(self.runs_cache_stale, self.runs_cache_ttl))
        object.__setattr__(self, "runs_cache_retention", max(self.runs_cache_retention, self.runs_cache_stale))

    @classmethod
    def from_env(cls) -> AppConfig:
        return cls(
            github_token=os.environ.get("GITHUB_TOKEN", ""),
            github_api_base=os.environ.get("GITHUB_API_BASE", "https://api.github.com").rstrip("/"),
            mistral_api_key=os.environ.get("MISTRAL_API_KEY", ""),
            mistral_model=os.environ.get("MISTRAL_MODEL", "mistral-large-latest"),
            db_path=os.environ.get("DASHBOARD_DB_PATH", str(DEFAULT_DB_PATH)),
            fast_cache_ttl=_env_int("FAST_CACHE_TTL", HOUR),
            fast_cache_stale=_env_int("FAST_CACHE_STALE", HOUR),
            fast_cache_retention=_env_int("FAST_CACHE_RETENTION", HOUR),
            runs_cache_ttl=_env_int("RUNS_CACHE_TTL", HOUR),
            runs_cache_stale=_env_int("RUNS_CACHE_STALE", 4 * HOUR),
            runs_cache_retention=_env_int("RUNS_CACHE_RETENTION", 24 * HOUR),
            fetch_workers=max(1, _env_int("FETCH_WORKERS", 6)),
            refresh_workers=max(1, _env_int("REFRESH_WORKERS", 2)),
            server_host=os.environ.get("SERVER_HOST", "0.0.0.0"),
            server_port=_env_int("SERVER_PORT", 5000),
            debug=os.environ.get("DEBUG", "false").lower() == "true",
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )
