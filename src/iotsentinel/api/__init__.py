"""
Read API.

FastAPI interface over the device registry and inventory report.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from iotsentinel import __version__
from iotsentinel.api.routes import get_orchestrator, router
from iotsentinel.api.schemas import (
    CatalogStatus,
    CatalogStatusResponse,
    DeviceListResponse,
    ErrorResponse,
    HealthCheck,
    PolicyResponse,
    PolicyRuleSchema,
)

if TYPE_CHECKING:
    from iotsentinel.core.pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)


def create_app(
    orchestrator: PipelineOrchestrator | None = None,
    title: str = "IoT Sentinel API",
    debug: bool = False,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        orchestrator: Pipeline whose state is served
        title: API title
        debug: Include exception text in 500 responses

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=title,
        description="Read-only API for the IoT Sentinel device inventory",
        version=__version__,
        debug=debug,
    )
    app.state.orchestrator = orchestrator
    app.state.start_time = time.time()

    app.include_router(router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error("Unhandled exception: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if debug else None,
            },
        )

    return app


__all__ = [
    # Application
    "create_app",
    "get_orchestrator",
    "router",
    # Schemas
    "CatalogStatus",
    "CatalogStatusResponse",
    "DeviceListResponse",
    "ErrorResponse",
    "HealthCheck",
    "PolicyResponse",
    "PolicyRuleSchema",
]
