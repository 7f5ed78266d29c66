"""Client for the JSON ``/v1/metrics`` service.

The service answers with per-country daily counts plus the anomaly
intervals its detector found for the requested window::

    {
      "metrics":   [{"date": "2024-01-01", "users": 123, "country": "ru"}],
      "anomalies": [{"interval": {"start": "2024-01-05", "end": "2024-01-07"}}]
    }
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Set

import httpx

from ..schemas import (
    AnomalyInterval,
    DateRange,
    FetchResult,
    MetricRecord,
    Sensitivity,
    SourceType,
)
from ..utils.datetime import parse_calendar_day, utc_midnight_iso
from .base import SourceFetcher

logger = logging.getLogger(__name__)

_PATHS = {
    SourceType.RELAY: "/v1/metrics/relays",
    SourceType.BRIDGE: "/v1/metrics/bridges",
    SourceType.ALL: "/v1/metrics/all",
}


def _single_format(formats: Set[str], what: str) -> Optional[str]:
    if len(formats) > 1:
        raise ValueError(f"{what} mix date formats: {sorted(formats)}")
    return next(iter(formats), None)


def _parse_day(value: Any, field: str, formats: Optional[Set[str]] = None) -> date:
    parsed = parse_calendar_day(value)
    if parsed is None:
        raise ValueError(f"invalid {field} {value!r}")
    day, fmt = parsed
    if formats is not None:
        formats.add(fmt)
    return day


def parse_metrics_payload(payload: Any, source: SourceType) -> FetchResult:
    """Normalize a ``/v1/metrics`` response body into a :class:`FetchResult`.

    Raises ``ValueError`` (including pydantic validation errors) on any
    structural problem.
    """
    if not isinstance(payload, dict):
        raise ValueError("expected a JSON object")
    metrics = payload.get("metrics") or []
    anomalies = payload.get("anomalies") or []
    if not isinstance(metrics, list) or not isinstance(anomalies, list):
        raise ValueError("'metrics' and 'anomalies' must be lists")

    formats: Set[str] = set()
    records: List[MetricRecord] = []
    for row in metrics:
        if not isinstance(row, dict):
            raise ValueError(f"metric row is not an object: {row!r}")
        records.append(
            MetricRecord(
                date=_parse_day(row.get("date"), "metric date", formats),
                country=str(row.get("country") or "").strip().lower(),
                count=row.get("users"),
            )
        )
    date_format = _single_format(formats, "metrics")

    intervals: List[AnomalyInterval] = []
    for item in anomalies:
        interval = item.get("interval") if isinstance(item, dict) else None
        if not isinstance(interval, dict):
            raise ValueError(f"anomaly has no interval: {item!r}")
        intervals.append(
            AnomalyInterval(
                start=_parse_day(interval.get("start"), "anomaly start"),
                end=_parse_day(interval.get("end"), "anomaly end"),
            )
        )

    return FetchResult(
        source=source,
        records=records,
        anomalies=intervals,
        date_format=date_format,
    )


class MetricsApiFetcher(SourceFetcher):
    name = "metrics-api"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        server_side_all: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(
            httpx.AsyncClient(
                base_url=base_url,
                timeout=timeout,
                transport=transport,
                headers={"Accept": "application/json"},
            )
        )
        self.supports_combined = server_side_all

    async def _fetch_impl(
        self,
        countries: List[str],
        source_type: SourceType,
        date_range: DateRange,
        sensitivity: Sensitivity,
    ) -> FetchResult:
        params: Dict[str, str] = {
            "from": utc_midnight_iso(date_range.start),
            "to": utc_midnight_iso(date_range.end),
            "countries": ",".join(countries),
            "sensitivity": sensitivity.value,
        }
        response = await self._client.get(_PATHS[source_type], params=params)
        response.raise_for_status()
        result = parse_metrics_payload(response.json(), source_type)
        logger.debug(
            "%s: %s returned %d records, %d anomalies",
            self.name,
            source_type.value,
            len(result.records),
            len(result.anomalies),
        )
        return result
