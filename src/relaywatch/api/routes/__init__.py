"""Routes package: assembles domain sub-routers into a single ``router``."""

from __future__ import annotations

from fastapi import APIRouter

from ._helpers import orchestrator, settings  # noqa: F401
from .filters import router as filters_router
from .targets import router as targets_router

router = APIRouter()

router.include_router(filters_router)
router.include_router(targets_router)
