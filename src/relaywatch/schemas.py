from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SourceType(str, Enum):
    RELAY = "relay"
    BRIDGE = "bridge"
    ALL = "all"


class Sensitivity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TargetState(str, Enum):
    # never reported for a registered target; see orchestrator.Target
    STALE = "stale"
    FETCHING = "fetching"
    READY = "ready"
    FAILED = "failed"


# ── Core value types ────────────────────────────────────────────


class MetricRecord(BaseModel):
    """One daily user count for one country."""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    country: str
    count: int = Field(ge=0)


class SeriesPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: dt.date
    count: int = Field(ge=0)


class CountrySeriesPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: dt.date
    country: str
    count: int = Field(ge=0)


class AnomalyInterval(BaseModel):
    """Externally detected anomaly span; ``start == end`` is a single day."""

    model_config = ConfigDict(frozen=True)

    start: dt.date
    end: dt.date

    @model_validator(mode="after")
    def _check_order(self) -> "AnomalyInterval":
        if self.start > self.end:
            raise ValueError(
                f"anomaly interval start {self.start} is after end {self.end}"
            )
        return self

    @property
    def is_point(self) -> bool:
        return self.start == self.end


class WeeklyCell(BaseModel):
    model_config = ConfigDict(frozen=True)

    week_start: dt.date
    weekday: int = Field(ge=0, le=6)
    count: int = Field(ge=0)


class ClassifiedAnomalies(BaseModel):
    points: List[dt.date] = Field(default_factory=list)
    ranges: List[Tuple[dt.date, dt.date]] = Field(default_factory=list)


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: dt.date
    end: dt.date


class FetchResult(BaseModel):
    """Normalized output of one source fetch."""

    source: SourceType
    records: List[MetricRecord] = Field(default_factory=list)
    anomalies: List[AnomalyInterval] = Field(default_factory=list)
    # "date" or "datetime"; None when the upstream returned no dated rows
    date_format: Optional[str] = None


# ── API request/response models ─────────────────────────────────


class TargetCreateRequest(BaseModel):
    countries: List[str] = Field(default_factory=list)
    name: Optional[str] = None
    sensitivity: Optional[Sensitivity] = None


class FiltersUpdateRequest(BaseModel):
    source_type: Optional[SourceType] = None
    start: Optional[dt.date] = None
    end: Optional[dt.date] = None


class FiltersResponse(BaseModel):
    source_type: SourceType
    start: dt.date
    end: dt.date


class CountryOption(BaseModel):
    code: str
    label: str


class TargetView(BaseModel):
    id: str
    name: str
    countries: List[str]
    sensitivity: Sensitivity
    state: TargetState
    generation: int
    error: Optional[str] = None
    refreshed_at: Optional[dt.datetime] = None
    points: int = 0
    anomalies: int = 0


class SeriesResponse(BaseModel):
    target_id: str
    state: TargetState
    source_type: SourceType
    series: List[SeriesPoint] = Field(default_factory=list)
    country_series: List[CountrySeriesPoint] = Field(default_factory=list)


class HeatmapResponse(BaseModel):
    target_id: str
    state: TargetState
    cells: List[WeeklyCell] = Field(default_factory=list)


class AnomaliesResponse(BaseModel):
    target_id: str
    state: TargetState
    points: List[dt.date] = Field(default_factory=list)
    ranges: List[Tuple[dt.date, dt.date]] = Field(default_factory=list)
