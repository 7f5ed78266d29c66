"""Abstract base for upstream user-count sources."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List

import httpx

from ..errors import FetchFailure, ValidationFailure
from ..schemas import DateRange, FetchResult, Sensitivity, SourceType

logger = logging.getLogger(__name__)


class SourceFetcher(ABC):
    """Retrieve per-country daily records for one source over a date range.

    Subclasses implement :meth:`_fetch_impl` and return a normalized
    :class:`FetchResult`. Transport and payload errors escaping the
    implementation are converted to :class:`FetchFailure` here, so callers
    only ever see the typed error.
    """

    name: str = "base"
    # Whether SourceType.ALL can be requested in one call.
    supports_combined: bool = False

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @abstractmethod
    async def _fetch_impl(
        self,
        countries: List[str],
        source_type: SourceType,
        date_range: DateRange,
        sensitivity: Sensitivity,
    ) -> FetchResult:
        raise NotImplementedError

    async def fetch(
        self,
        countries: Iterable[str],
        source_type: SourceType,
        date_range: DateRange,
        sensitivity: Sensitivity,
    ) -> FetchResult:
        codes = list(countries)
        if not codes:
            raise ValidationFailure("at least one country is required")
        if date_range.start > date_range.end:
            raise ValidationFailure(
                f"date range start {date_range.start} is after end {date_range.end}"
            )
        if source_type is SourceType.ALL and not self.supports_combined:
            raise ValueError(f"{self.name} cannot fetch the combined source directly")

        logger.debug(
            "%s: fetching %s for %s (%s..%s, sensitivity=%s)",
            self.name,
            source_type.value,
            ",".join(codes),
            date_range.start,
            date_range.end,
            sensitivity.value,
        )
        try:
            return await self._fetch_impl(codes, source_type, date_range, sensitivity)
        except FetchFailure:
            raise
        except httpx.HTTPError as exc:
            raise FetchFailure(self.name, f"request failed: {exc}", exc) from exc
        except ValueError as exc:
            raise FetchFailure(self.name, f"invalid payload: {exc}", exc) from exc

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SourceFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
