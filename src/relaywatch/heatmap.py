from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Tuple

from .schemas import SeriesPoint, WeeklyCell
from .utils.datetime import iso_week_start


def bucketize_weekly(series: Iterable[SeriesPoint]) -> List[WeeklyCell]:
    """Project a daily series onto an ISO week × weekday grid.

    Each day lands in the cell ``(Monday of its ISO week, weekday)`` with
    Monday = 0. Counts sharing a cell are summed; empty cells are omitted.
    Cells come back ordered by ``(week_start, weekday)``.
    """
    cells: Dict[Tuple[date, int], int] = defaultdict(int)
    for point in series:
        cells[(iso_week_start(point.date), point.date.weekday())] += point.count
    return [
        WeeklyCell(week_start=week_start, weekday=weekday, count=count)
        for (week_start, weekday), count in sorted(cells.items())
    ]
