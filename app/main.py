from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app import api
from app.api import router
from logging_config import configure_logging
from services.notifications import build_default_router
from services.sampler import build_default_scheduler
from transport.simulated import build_default_peripheral


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    scheduler = build_default_scheduler()
    try:
        yield
    finally:
        await scheduler.stop()
        build_default_scheduler.cache_clear()
        build_default_peripheral.cache_clear()
        build_default_router.cache_clear()
        api._writer_for.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Sensor Sampler",
        description="Burst sampling, calibration and logging of a sensor characteristic.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
