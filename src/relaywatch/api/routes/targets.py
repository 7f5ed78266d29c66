"""Target management and per-target chart data routes."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, HTTPException, Query, Response

from ...errors import ValidationFailure
from ...schemas import (
    AnomaliesResponse,
    HeatmapResponse,
    SeriesResponse,
    TargetCreateRequest,
    TargetView,
)
from ._helpers import orchestrator, require_target, target_view

router = APIRouter()


# ── Target store ────────────────────────────────────────────────


@router.get("/api/targets", response_model=List[TargetView])
async def list_targets():
    return [target_view(target) for target in orchestrator.list_targets()]


@router.post("/api/targets", response_model=TargetView, status_code=201)
async def create_target(
    body: TargetCreateRequest,
    wait: bool = Query(default=False),
):
    """Create a target and start fetching its data.

    The name defaults to the joined country labels when left blank.
    """
    try:
        target = orchestrator.add_target(
            body.countries,
            name=body.name,
            sensitivity=body.sensitivity,
        )
    except ValidationFailure as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if wait:
        await orchestrator.wait_for(target.id)
    return target_view(target)


@router.get("/api/targets/{target_id}", response_model=TargetView)
async def get_target(target_id: str):
    return target_view(require_target(target_id))


@router.delete("/api/targets/{target_id}", status_code=204)
async def delete_target(target_id: str):
    if not orchestrator.remove_target(target_id):
        raise HTTPException(status_code=404, detail="Target not found")
    return Response(status_code=204)


@router.post("/api/targets/{target_id}/refresh", response_model=TargetView)
async def refresh_target(
    target_id: str,
    wait: bool = Query(default=False),
):
    """Re-run the fetch for one target, e.g. after it failed."""
    target = require_target(target_id)
    orchestrator.refresh_target(target.id)
    if wait:
        await orchestrator.wait_for(target.id)
    return target_view(target)


# ── Chart data ──────────────────────────────────────────────────


@router.get("/api/targets/{target_id}/series", response_model=SeriesResponse)
async def get_series(
    target_id: str,
    by_country: bool = Query(default=False),
):
    target = require_target(target_id)
    return SeriesResponse(
        target_id=target.id,
        state=target.state,
        source_type=orchestrator.source_type,
        series=target.series,
        country_series=target.country_series() if by_country else [],
    )


@router.get("/api/targets/{target_id}/heatmap", response_model=HeatmapResponse)
async def get_heatmap(target_id: str):
    target = require_target(target_id)
    return HeatmapResponse(
        target_id=target.id,
        state=target.state,
        cells=target.weekly_cells(),
    )


@router.get("/api/targets/{target_id}/anomalies", response_model=AnomaliesResponse)
async def get_anomalies(target_id: str):
    target = require_target(target_id)
    classified = target.classified_anomalies()
    return AnomaliesResponse(
        target_id=target.id,
        state=target.state,
        points=classified.points,
        ranges=classified.ranges,
    )
