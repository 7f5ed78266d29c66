"""Upstream user-count sources.

Both fetchers normalize their wire format (JSON service or legacy CSV
exports) into :class:`~relaywatch.schemas.FetchResult` at this boundary.
"""

from __future__ import annotations

from .api import MetricsApiFetcher, parse_metrics_payload
from .base import SourceFetcher
from .factory import create_source_fetcher
from .portal import MetricsPortalFetcher, parse_portal_csv

__all__ = [
    "MetricsApiFetcher",
    "MetricsPortalFetcher",
    "SourceFetcher",
    "create_source_fetcher",
    "parse_metrics_payload",
    "parse_portal_csv",
]
