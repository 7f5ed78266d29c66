from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict

_SOURCE_BACKENDS = {"api", "portal"}
_SOURCE_TYPES = {"relay", "bridge", "all"}
_SENSITIVITIES = {"LOW", "MEDIUM", "HIGH"}

_DEFAULT_COUNTRY_CATALOG = (
    "ru=Russia,us=United States,ee=Estonia,lv=Latvia,de=Germany,nl=Netherlands"
)


def _env_bool(name: str, default: str = "0") -> bool:
    value = os.getenv(name, default)
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # ── Upstream sources ─────────────────────────────────────
    source_backend: str = os.getenv("SOURCE_BACKEND", "api").strip().lower()
    metrics_api_base_url: str = os.getenv(
        "METRICS_API_BASE_URL", "http://localhost:8080"
    )
    metrics_api_server_side_all: bool = _env_bool("METRICS_API_SERVER_SIDE_ALL", "0")
    metrics_portal_base_url: str = os.getenv(
        "METRICS_PORTAL_BASE_URL", "https://metrics.torproject.org"
    )
    metrics_portal_header_rows: int = int(os.getenv("METRICS_PORTAL_HEADER_ROWS", "6"))
    fetch_timeout_seconds: float = float(os.getenv("FETCH_TIMEOUT_SECONDS", "30"))

    # ── Dashboard defaults ───────────────────────────────────
    default_source_type: str = (
        os.getenv("DEFAULT_SOURCE_TYPE", "relay").strip().lower()
    )
    default_lookback_days: int = int(os.getenv("DEFAULT_LOOKBACK_DAYS", "365"))
    default_sensitivity: str = (
        os.getenv("DEFAULT_SENSITIVITY", "MEDIUM").strip().upper()
    )
    target_name_min_length: int = int(os.getenv("TARGET_NAME_MIN_LENGTH", "3"))
    country_catalog: str = os.getenv("COUNTRY_CATALOG", _DEFAULT_COUNTRY_CATALOG)
    auto_refresh_interval_seconds: int = int(
        os.getenv("AUTO_REFRESH_INTERVAL_SECONDS", "0")
    )

    @property
    def country_catalog_map(self) -> Dict[str, str]:
        """Country code → display label, in configured order."""
        out: Dict[str, str] = {}
        for item in self.country_catalog.split(","):
            item = item.strip()
            if not item:
                continue
            code, _, label = item.partition("=")
            code = code.strip().lower()
            if not code:
                continue
            out[code] = label.strip() or code.upper()
        return out


def validate_settings(settings: Settings) -> None:
    if settings.source_backend not in _SOURCE_BACKENDS:
        raise ValueError(
            f"SOURCE_BACKEND must be one of {sorted(_SOURCE_BACKENDS)}, "
            f"got {settings.source_backend!r}"
        )
    if settings.default_source_type not in _SOURCE_TYPES:
        raise ValueError(
            f"DEFAULT_SOURCE_TYPE must be one of {sorted(_SOURCE_TYPES)}, "
            f"got {settings.default_source_type!r}"
        )
    if settings.default_sensitivity not in _SENSITIVITIES:
        raise ValueError(
            f"DEFAULT_SENSITIVITY must be one of {sorted(_SENSITIVITIES)}, "
            f"got {settings.default_sensitivity!r}"
        )
    if settings.default_lookback_days < 1:
        raise ValueError("DEFAULT_LOOKBACK_DAYS must be >= 1")
    if settings.metrics_portal_header_rows < 0:
        raise ValueError("METRICS_PORTAL_HEADER_ROWS must be >= 0")
    if settings.fetch_timeout_seconds <= 0:
        raise ValueError("FETCH_TIMEOUT_SECONDS must be > 0")
    if settings.target_name_min_length < 1:
        raise ValueError("TARGET_NAME_MIN_LENGTH must be >= 1")
    if settings.auto_refresh_interval_seconds < 0:
        raise ValueError("AUTO_REFRESH_INTERVAL_SECONDS must be >= 0")


def get_settings() -> Settings:
    return Settings()
