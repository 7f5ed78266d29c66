from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .. import __version__
from ..config import get_settings, validate_settings
from .routes import router

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


async def _auto_refresh_loop() -> None:
    """Periodically refresh every target in the background."""
    from .routes import orchestrator

    interval = settings.auto_refresh_interval_seconds
    if interval <= 0:
        logger.info("Auto-refresh disabled.")
        return

    logger.info("Auto-refresh started (every %ds)", interval)
    while True:
        await asyncio.sleep(interval)
        try:
            tasks = orchestrator.refresh_all()
            if tasks:
                await asyncio.wait(tasks)
            logger.info("Auto-refresh completed for %d targets.", len(tasks))
        except Exception:
            logger.exception("Auto-refresh failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    from .routes import orchestrator

    validate_settings(settings)
    logger.info(
        "API started: backend=%s source=%s range=%s..%s",
        settings.source_backend,
        orchestrator.source_type.value,
        orchestrator.date_range.start,
        orchestrator.date_range.end,
    )
    refresh_task = asyncio.create_task(_auto_refresh_loop())
    try:
        yield
    finally:
        refresh_task.cancel()
        try:
            await refresh_task
        except asyncio.CancelledError:
            pass
        await orchestrator.aclose()


app = FastAPI(title="Relaywatch API", version=__version__, lifespan=lifespan)

app.include_router(router)
