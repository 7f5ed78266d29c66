"""Target store and concurrent refresh orchestration.

Every target owns one state slot. A refresh moves it ``STALE → FETCHING``
and then to ``READY`` or ``FAILED``. Refreshes run as independent asyncio
tasks, one fetch→merge→aggregate chain per target, so a slow or failing
target never holds up the others.

Each refresh bumps the target's ``generation``. A finished chain applies
its result only while its generation is still current; results from
superseded requests are dropped no matter when they resolve.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple
from uuid import uuid4

from .aggregation import (
    aggregate_by_date,
    aggregate_by_date_and_country,
    merge_fetch_results,
)
from .anomalies import classify_anomalies
from .config import Settings, validate_settings
from .errors import FetchFailure, MergeInconsistency, ValidationFailure
from .heatmap import bucketize_weekly
from .schemas import (
    AnomalyInterval,
    ClassifiedAnomalies,
    CountrySeriesPoint,
    DateRange,
    MetricRecord,
    Sensitivity,
    SeriesPoint,
    SourceType,
    TargetState,
    WeeklyCell,
)
from .sources.base import SourceFetcher
from .sources.factory import create_source_fetcher
from .utils.datetime import utc_today

logger = logging.getLogger(__name__)

_COUNTRY_CODE_RE = re.compile(r"^[a-z]{2}$")


@dataclass
class Target:
    """A named country set and its latest refresh outcome.

    ``STALE`` only marks a target that has never been scheduled. The
    orchestrator schedules a refresh as part of registering a target, so
    stored targets are always ``FETCHING``, ``READY`` or ``FAILED``.
    """

    id: str
    name: str
    countries: List[str]
    sensitivity: Sensitivity
    state: TargetState = TargetState.STALE
    generation: int = 0
    records: List[MetricRecord] = field(default_factory=list)
    series: List[SeriesPoint] = field(default_factory=list)
    anomalies: List[AnomalyInterval] = field(default_factory=list)
    error: Optional[str] = None
    refreshed_at: Optional[datetime] = None

    def country_series(self) -> List[CountrySeriesPoint]:
        return aggregate_by_date_and_country(self.records)

    def weekly_cells(self) -> List[WeeklyCell]:
        return bucketize_weekly(self.series)

    def classified_anomalies(self) -> ClassifiedAnomalies:
        return classify_anomalies(self.anomalies)


def default_date_range(lookback_days: int, today: Optional[date] = None) -> DateRange:
    end = today or utc_today()
    return DateRange(start=end - timedelta(days=lookback_days), end=end)


def validate_date_range(date_range: DateRange) -> DateRange:
    if date_range.start > date_range.end:
        raise ValidationFailure(
            f"date range start {date_range.start} is after end {date_range.end}"
        )
    return date_range


def normalize_countries(countries: Iterable[str]) -> List[str]:
    """Lowercase, trim and de-duplicate country codes, keeping first-seen order."""
    out: List[str] = []
    for raw in countries:
        code = str(raw or "").strip().lower()
        if not code:
            continue
        if not _COUNTRY_CODE_RE.match(code):
            raise ValidationFailure(f"invalid country code {raw!r}")
        if code not in out:
            out.append(code)
    if not out:
        raise ValidationFailure("at least one country is required")
    return out


def default_target_name(countries: List[str], labels: Mapping[str, str]) -> str:
    return ", ".join(labels.get(code, code.upper()) for code in countries)


class TargetRefreshOrchestrator:
    """In-memory target store driving concurrent per-target refreshes.

    Methods that start refreshes schedule tasks on the running event loop
    and return immediately; use :meth:`wait_for` or :meth:`wait_idle` to
    block until they settle.
    """

    def __init__(
        self,
        fetcher: SourceFetcher,
        *,
        source_type: SourceType = SourceType.RELAY,
        date_range: Optional[DateRange] = None,
        default_sensitivity: Sensitivity = Sensitivity.MEDIUM,
        country_labels: Optional[Mapping[str, str]] = None,
        name_min_length: int = 3,
    ) -> None:
        self._fetcher = fetcher
        self._source_type = source_type
        self._date_range = validate_date_range(date_range or default_date_range(365))
        self._default_sensitivity = default_sensitivity
        self._country_labels: Dict[str, str] = dict(country_labels or {})
        self._name_min_length = name_min_length
        self._targets: Dict[str, Target] = {}
        self._latest: Dict[str, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()

    # ── Filters ─────────────────────────────────────────────────

    @property
    def source_type(self) -> SourceType:
        return self._source_type

    @property
    def date_range(self) -> DateRange:
        return self._date_range

    @property
    def country_labels(self) -> Dict[str, str]:
        return dict(self._country_labels)

    def set_filters(
        self,
        source_type: Optional[SourceType] = None,
        date_range: Optional[DateRange] = None,
    ) -> List[asyncio.Task]:
        """Change the global filters; refresh every target if anything changed."""
        new_source = source_type or self._source_type
        new_range = validate_date_range(date_range or self._date_range)
        if new_source == self._source_type and new_range == self._date_range:
            return []
        logger.info(
            "Filters changed: source=%s range=%s..%s; refreshing %d targets",
            new_source.value,
            new_range.start,
            new_range.end,
            len(self._targets),
        )
        self._source_type = new_source
        self._date_range = new_range
        return self.refresh_all()

    # ── Target store ────────────────────────────────────────────

    def list_targets(self) -> List[Target]:
        return list(self._targets.values())

    def get_target(self, target_id: str) -> Optional[Target]:
        return self._targets.get(target_id)

    def add_target(
        self,
        countries: Iterable[str],
        name: Optional[str] = None,
        sensitivity: Optional[Sensitivity] = None,
    ) -> Target:
        """Validate and register a target, then schedule its first refresh."""
        codes = normalize_countries(countries)
        resolved_name = (name or "").strip() or default_target_name(
            codes, self._country_labels
        )
        if len(resolved_name) < self._name_min_length:
            raise ValidationFailure(
                f"target name must be at least {self._name_min_length} characters"
            )
        target = Target(
            id=uuid4().hex[:12],
            name=resolved_name,
            countries=codes,
            sensitivity=sensitivity or self._default_sensitivity,
        )
        self._targets[target.id] = target
        logger.info(
            "Target %s added: name=%r countries=%s", target.id, target.name, codes
        )
        self._schedule(target)
        return target

    def remove_target(self, target_id: str) -> bool:
        target = self._targets.pop(target_id, None)
        if target is None:
            return False
        self._latest.pop(target_id, None)
        logger.info("Target %s removed", target_id)
        return True

    # ── Refresh ─────────────────────────────────────────────────

    def refresh_target(self, target_id: str) -> asyncio.Task:
        target = self._targets.get(target_id)
        if target is None:
            raise KeyError(target_id)
        return self._schedule(target)

    def refresh_all(self) -> List[asyncio.Task]:
        return [self._schedule(target) for target in list(self._targets.values())]

    async def wait_for(self, target_id: str) -> None:
        """Wait until the most recent refresh of *target_id* settles."""
        while True:
            task = self._latest.get(target_id)
            if task is None or task.done():
                return
            await asyncio.wait({task})

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    async def aclose(self) -> None:
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self._fetcher.aclose()

    def _schedule(self, target: Target) -> asyncio.Task:
        target.generation += 1
        target.state = TargetState.FETCHING
        target.records = []
        target.series = []
        target.anomalies = []
        target.error = None

        task = asyncio.create_task(
            self._run_refresh(
                target.id,
                target.generation,
                list(target.countries),
                target.sensitivity,
                self._source_type,
                self._date_range,
            ),
            name=f"refresh-{target.id}-{target.generation}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._latest[target.id] = task
        return task

    async def _load(
        self,
        countries: List[str],
        sensitivity: Sensitivity,
        source_type: SourceType,
        date_range: DateRange,
    ) -> Tuple[List[MetricRecord], List[AnomalyInterval]]:
        if source_type is SourceType.ALL and not self._fetcher.supports_combined:
            results = await asyncio.gather(
                *(
                    self._fetcher.fetch(countries, part, date_range, sensitivity)
                    for part in (SourceType.RELAY, SourceType.BRIDGE)
                ),
                return_exceptions=True,
            )
            # both sub-fetches settle before the first failure is raised
            for outcome in results:
                if isinstance(outcome, BaseException):
                    raise outcome
            return merge_fetch_results(results)
        result = await self._fetcher.fetch(
            countries, source_type, date_range, sensitivity
        )
        return result.records, result.anomalies

    def _current(self, target_id: str, generation: int) -> Optional[Target]:
        target = self._targets.get(target_id)
        if target is None:
            logger.debug("Discarding refresh of removed target %s", target_id)
            return None
        if target.generation != generation:
            logger.debug(
                "Discarding stale refresh of target %s (generation %d, current %d)",
                target_id,
                generation,
                target.generation,
            )
            return None
        return target

    def _fail(self, target_id: str, generation: int, message: str) -> None:
        target = self._current(target_id, generation)
        if target is None:
            return
        target.state = TargetState.FAILED
        target.error = message

    async def _run_refresh(
        self,
        target_id: str,
        generation: int,
        countries: List[str],
        sensitivity: Sensitivity,
        source_type: SourceType,
        date_range: DateRange,
    ) -> None:
        try:
            records, anomalies = await self._load(
                countries, sensitivity, source_type, date_range
            )
            series = aggregate_by_date(records)
        except (FetchFailure, MergeInconsistency, ValidationFailure) as exc:
            logger.warning("Refresh of target %s failed: %s", target_id, exc)
            self._fail(target_id, generation, str(exc))
            return
        except Exception as exc:
            logger.exception("Refresh of target %s failed unexpectedly", target_id)
            self._fail(target_id, generation, f"unexpected error: {exc}")
            return

        target = self._current(target_id, generation)
        if target is None:
            return
        target.records = records
        target.series = series
        target.anomalies = anomalies
        target.state = TargetState.READY
        target.refreshed_at = datetime.now(timezone.utc)
        logger.debug(
            "Target %s ready: %d days, %d anomalies",
            target_id,
            len(series),
            len(anomalies),
        )


def create_orchestrator(
    settings: Settings,
    fetcher: Optional[SourceFetcher] = None,
) -> TargetRefreshOrchestrator:
    validate_settings(settings)
    return TargetRefreshOrchestrator(
        fetcher or create_source_fetcher(settings),
        source_type=SourceType(settings.default_source_type),
        date_range=default_date_range(settings.default_lookback_days),
        default_sensitivity=Sensitivity(settings.default_sensitivity),
        country_labels=settings.country_catalog_map,
        name_min_length=settings.target_name_min_length,
    )
