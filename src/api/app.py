# src/api/app.py — v1
"""FastAPI application factory.

Usage:
    uvicorn reportflow.api.app:create_app --factory
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from reportflow.api.errors import register_exception_handlers
from reportflow.api.facade import ReportService
from reportflow.api.routes import router, streaming_router
from reportflow.config.settings import Settings, load_settings
from reportflow.llm.base_client import BaseLLMClient
from reportflow.llm.client_factory import create_llm_client
from reportflow.pipeline.runtime import PipelineRuntime
from reportflow.storage.base_store import BaseReportStore
from reportflow.storage.store_factory import create_report_store
from reportflow.version import __version__

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    llm_client: BaseLLMClient | None = None,
    store: BaseReportStore | None = None,
) -> FastAPI:
    """Build the HTTP application around one PipelineRuntime.

    Args:
        settings: Application settings. Loaded from .env if None.
        llm_client: AI collaborator. Built by the client factory if None.
        store: Report store. Built from settings if None.
    """
    settings = settings or load_settings()
    runtime = PipelineRuntime(
        settings,
        llm_client or create_llm_client(settings),
        store or create_report_store(settings),
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await runtime.start()
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(title="reportflow", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.runtime = runtime
    app.state.service = ReportService(runtime)
    app.state.express_tasks = set()

    register_exception_handlers(app)
    app.include_router(router)
    app.include_router(streaming_router)

    @app.get("/health")
    async def health() -> dict[str, object]:
        return {
            "status": "ok",
            "version": __version__,
            "active_sessions": len(runtime.bus.active_sessions()),
            "in_flight": runtime.dedup.active_count,
        }

    logger.info("API ready (store=%s)", type(runtime.store).__name__)
    return app
