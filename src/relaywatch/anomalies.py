from __future__ import annotations

from typing import Iterable

from .schemas import AnomalyInterval, ClassifiedAnomalies


def classify_anomalies(intervals: Iterable[AnomalyInterval]) -> ClassifiedAnomalies:
    """Split intervals into single-day markers and multi-day spans.

    Overlapping or repeated intervals are kept as-is: every input produces
    exactly one marker or one span, in input order.
    """
    classified = ClassifiedAnomalies()
    for interval in intervals:
        if interval.is_point:
            classified.points.append(interval.start)
        else:
            classified.ranges.append((interval.start, interval.end))
    return classified
