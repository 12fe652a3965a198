from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tubely.api.v1 import get_api_router
from tubely.core.config import get_settings
from tubely.core.db import create_all, create_engine, create_session_factory
from tubely.core.logging import configure_logging, get_logger
from tubely.core.storage import get_object_store

logger = get_logger(component="app")


def create_app() -> FastAPI:
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    configure_logging(level=log_level)
    object_store = get_object_store(settings)
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        app.state.object_store = object_store
        app.state.engine = engine
        app.state.session_factory = session_factory
        if settings.create_schema_on_startup:
            await create_all(engine)
        logger.info(
            "app_started",
            environment=settings.environment,
            storage_backend=settings.storage_backend,
            bucket=settings.storage_bucket,
        )
        try:
            yield
        finally:
            await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )

    app.include_router(get_api_router())
    return app


__all__ = ["create_app"]
