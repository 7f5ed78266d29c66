"""Legacy CSV source: the public metrics portal's per-country exports.

The portal serves one country per request. Each export starts with a
fixed block of comment/header rows followed by ``date,country,users,...``
rows. Days without an estimate carry an empty ``users`` value.
"""

from __future__ import annotations

import asyncio
import csv
import io
import logging
from typing import List, Optional, Set, Tuple

import httpx

from ..schemas import DateRange, FetchResult, MetricRecord, Sensitivity, SourceType
from ..utils.datetime import parse_calendar_day
from .base import SourceFetcher

logger = logging.getLogger(__name__)

DEFAULT_HEADER_ROWS = 6

_PATHS = {
    SourceType.RELAY: "/userstats-relay-country.csv",
    SourceType.BRIDGE: "/userstats-bridge-country.csv",
}


def parse_portal_csv(
    text: str,
    country: str,
    *,
    header_rows: int = DEFAULT_HEADER_ROWS,
) -> Tuple[List[MetricRecord], Optional[str]]:
    """Parse one portal export into records for *country*.

    Skips the first *header_rows* non-empty rows and reads columns
    ``[date, _, count]``. Rows with a blank or non-numeric count are
    skipped; an unparseable date raises ``ValueError``.
    """
    rows = [
        row
        for row in csv.reader(io.StringIO(text))
        if any(cell.strip() for cell in row)
    ]
    records: List[MetricRecord] = []
    formats: Set[str] = set()
    skipped = 0
    for row in rows[header_rows:]:
        if len(row) < 3:
            skipped += 1
            continue
        raw_count = row[2].strip()
        try:
            count = int(raw_count)
        except ValueError:
            skipped += 1
            continue
        parsed = parse_calendar_day(row[0])
        if parsed is None:
            raise ValueError(f"invalid date {row[0]!r} in {country} export")
        day, fmt = parsed
        formats.add(fmt)
        records.append(MetricRecord(date=day, country=country, count=count))
    if skipped:
        logger.debug(
            "portal export for %s: skipped %d rows without counts", country, skipped
        )
    if len(formats) > 1:
        raise ValueError(f"{country} export mixes date formats: {sorted(formats)}")
    return records, next(iter(formats), None)


class MetricsPortalFetcher(SourceFetcher):
    name = "metrics-portal"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        header_rows: int = DEFAULT_HEADER_ROWS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(
            httpx.AsyncClient(
                base_url=base_url,
                timeout=timeout,
                transport=transport,
                follow_redirects=True,
            )
        )
        self.header_rows = header_rows

    async def _fetch_country(
        self,
        country: str,
        source_type: SourceType,
        date_range: DateRange,
    ) -> Tuple[List[MetricRecord], Optional[str]]:
        params = {
            "start": date_range.start.isoformat(),
            "end": date_range.end.isoformat(),
            "country": country,
        }
        response = await self._client.get(_PATHS[source_type], params=params)
        response.raise_for_status()
        return parse_portal_csv(response.text, country, header_rows=self.header_rows)

    async def _fetch_impl(
        self,
        countries: List[str],
        source_type: SourceType,
        date_range: DateRange,
        sensitivity: Sensitivity,
    ) -> FetchResult:
        # sensitivity only affects the anomaly service; the portal has none
        outcomes = await asyncio.gather(
            *(
                self._fetch_country(country, source_type, date_range)
                for country in countries
            ),
            return_exceptions=True,
        )
        records: List[MetricRecord] = []
        formats: Set[str] = set()
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
            country_records, fmt = outcome
            records.extend(country_records)
            if fmt:
                formats.add(fmt)
        if len(formats) > 1:
            raise ValueError(f"exports mix date formats: {sorted(formats)}")
        return FetchResult(
            source=source_type,
            records=records,
            date_format=next(iter(formats), None),
        )
