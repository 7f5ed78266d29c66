"""Date aggregation and source merging for daily user counts.

Records coming out of the fetchers are unordered and may repeat a date
(several countries, several sources). These helpers collapse them into
date-ordered series with exactly one entry per key.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Protocol, Sequence, Set, Tuple

from .errors import MergeInconsistency
from .schemas import (
    AnomalyInterval,
    CountrySeriesPoint,
    FetchResult,
    MetricRecord,
    SeriesPoint,
)

# Country code used when a merged date mixes several countries.
MERGED_COUNTRY = "all"


class _DatedCount(Protocol):
    date: date
    count: int


def aggregate_by_date(items: Iterable[_DatedCount]) -> List[SeriesPoint]:
    """Sum counts per date, ignoring country.

    Accepts records or series points, so re-aggregating a series is a no-op.
    """
    totals: Dict[date, int] = defaultdict(int)
    for item in items:
        totals[item.date] += item.count
    return [SeriesPoint(date=day, count=totals[day]) for day in sorted(totals)]


def aggregate_by_date_and_country(
    records: Iterable[MetricRecord],
) -> List[CountrySeriesPoint]:
    """Sum counts per ``(date, country)`` for the per-country stacked view."""
    totals: Dict[Tuple[date, str], int] = defaultdict(int)
    for record in records:
        totals[(record.date, record.country)] += record.count
    return [
        CountrySeriesPoint(date=day, country=country, count=totals[(day, country)])
        for day, country in sorted(totals)
    ]


def merge_sources(*record_lists: Iterable[MetricRecord]) -> List[MetricRecord]:
    """Merge several record lists into one record per date.

    Counts sharing a date are summed across every input. The merged record
    keeps the country when all contributing records agree on it, otherwise
    it is tagged :data:`MERGED_COUNTRY`.
    """
    totals: Dict[date, int] = defaultdict(int)
    countries: Dict[date, Set[str]] = defaultdict(set)
    for records in record_lists:
        for record in records:
            totals[record.date] += record.count
            countries[record.date].add(record.country)

    merged: List[MetricRecord] = []
    for day in sorted(totals):
        seen = countries[day]
        country = next(iter(seen)) if len(seen) == 1 else MERGED_COUNTRY
        merged.append(MetricRecord(date=day, country=country, count=totals[day]))
    return merged


def merge_fetch_results(
    results: Sequence[FetchResult],
) -> Tuple[List[MetricRecord], List[AnomalyInterval]]:
    """Merge the records and anomalies of several fetches.

    Anomalies are concatenated in input order. Raises
    :class:`MergeInconsistency` when the sources reported days in different
    textual formats, since timestamp-keyed days may be shifted relative to
    plain dates.
    """
    formats = {result.date_format for result in results if result.date_format}
    if len(formats) > 1:
        detail = ", ".join(
            f"{result.source.value}={result.date_format}"
            for result in results
            if result.date_format
        )
        raise MergeInconsistency(f"sources use different date formats: {detail}")

    records = merge_sources(*(result.records for result in results))
    anomalies = [anomaly for result in results for anomaly in result.anomalies]
    return records, anomalies
