"""Global filter routes: source type, date range and the country catalog."""

from __future__ import annotations

import asyncio
from typing import List

from fastapi import APIRouter, HTTPException, Query

from ...errors import ValidationFailure
from ...schemas import (
    CountryOption,
    DateRange,
    FiltersResponse,
    FiltersUpdateRequest,
)
from ._helpers import orchestrator

router = APIRouter()


def _current_filters() -> FiltersResponse:
    return FiltersResponse(
        source_type=orchestrator.source_type,
        start=orchestrator.date_range.start,
        end=orchestrator.date_range.end,
    )


@router.get("/api/health")
async def health():
    return {
        "status": "ok",
        "targets": len(orchestrator.list_targets()),
        "source_type": orchestrator.source_type.value,
    }


@router.get("/api/countries", response_model=List[CountryOption])
async def list_countries():
    """Countries offered when composing a target."""
    return [
        CountryOption(code=code, label=label)
        for code, label in orchestrator.country_labels.items()
    ]


@router.get("/api/filters", response_model=FiltersResponse)
async def get_filters():
    return _current_filters()


@router.put("/api/filters", response_model=FiltersResponse)
async def update_filters(
    body: FiltersUpdateRequest,
    wait: bool = Query(default=False),
):
    """Change source type and/or date range; every target is refreshed."""
    date_range = None
    if body.start is not None or body.end is not None:
        current = orchestrator.date_range
        date_range = DateRange(
            start=body.start or current.start,
            end=body.end or current.end,
        )
    try:
        tasks = orchestrator.set_filters(
            source_type=body.source_type,
            date_range=date_range,
        )
    except ValidationFailure as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if wait and tasks:
        await asyncio.wait(tasks)
    return _current_filters()
