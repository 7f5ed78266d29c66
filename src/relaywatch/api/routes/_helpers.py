"""Shared helpers used across route sub-modules.

Provides the settings/orchestrator singletons and the mapping from
in-memory targets to response models.
"""

from __future__ import annotations

from fastapi import HTTPException

from ...config import get_settings
from ...orchestrator import Target, create_orchestrator
from ...schemas import TargetView

# ── Singletons ──────────────────────────────────────────────────

settings = get_settings()
orchestrator = create_orchestrator(settings)


def require_target(target_id: str) -> Target:
    target = orchestrator.get_target(target_id)
    if target is None:
        raise HTTPException(status_code=404, detail="Target not found")
    return target


def target_view(target: Target) -> TargetView:
    return TargetView(
        id=target.id,
        name=target.name,
        countries=list(target.countries),
        sensitivity=target.sensitivity,
        state=target.state,
        generation=target.generation,
        error=target.error,
        refreshed_at=target.refreshed_at,
        points=len(target.series),
        anomalies=len(target.anomalies),
    )
