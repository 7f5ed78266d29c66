from __future__ import annotations

from typing import TYPE_CHECKING

from .api import MetricsApiFetcher
from .base import SourceFetcher
from .portal import MetricsPortalFetcher

if TYPE_CHECKING:
    from ..config import Settings


def create_source_fetcher(settings: "Settings") -> SourceFetcher:
    if settings.source_backend == "portal":
        return MetricsPortalFetcher(
            settings.metrics_portal_base_url,
            timeout=settings.fetch_timeout_seconds,
            header_rows=settings.metrics_portal_header_rows,
        )
    if settings.source_backend == "api":
        return MetricsApiFetcher(
            settings.metrics_api_base_url,
            timeout=settings.fetch_timeout_seconds,
            server_side_all=settings.metrics_api_server_side_all,
        )
    raise ValueError(f"Unknown SOURCE_BACKEND: {settings.source_backend!r}")
