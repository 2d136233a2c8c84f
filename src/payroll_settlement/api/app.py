"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payroll_settlement import __version__
from payroll_settlement.api.routes import (
    health_router,
    payment_hashes_router,
    payment_requests_router,
    time_applications_router,
    timestamps_router,
)
from payroll_settlement.config import Settings, get_settings
from payroll_settlement.database import Datastores
from payroll_settlement.errors import ErrorKind
from payroll_settlement.services.container import build_services
from payroll_settlement.settlement.config import SettlementConfig
from payroll_settlement.settlement.ledger import LedgerClient, XrplLedgerClient

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    ledger: LedgerClient | None = None,
    rate_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Settings are read when the app starts, not when it is created. Tests
    pass their own settings, ledger client and price-feed HTTP client.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        resolved = settings or get_settings()
        datastores = Datastores.from_settings(resolved)
        if resolved.debug:
            await datastores.create_all()
        ledger_client = ledger or XrplLedgerClient(resolved.xrpl_endpoint)
        await ledger_client.connect()
        services = build_services(
            datastores,
            ledger_client,
            SettlementConfig.from_settings(resolved),
            network=resolved.xrpl_network,
            http_client=rate_client,
        )
        app.state.services = services
        logger.info("Settlement API started (network %s)", resolved.xrpl_network)
        try:
            yield
        finally:
            await services.close()
            await ledger_client.disconnect()
            await datastores.dispose()

    app = FastAPI(
        title="Payroll Settlement API",
        description="Crypto payroll settlement: time applications to on-ledger payouts",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Answer malformed requests with the operation envelope."""
        fields = {
            ".".join(str(part) for part in error["loc"][1:]) or "body": error["msg"]
            for error in exc.errors()
        }
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "error": "Request validation failed",
                "errorKind": ErrorKind.VALIDATION.value,
                "errorCode": "VALIDATION_ERROR",
                "fields": fields,
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "An unexpected error occurred",
                "errorKind": ErrorKind.INTERNAL.value,
                "errorCode": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(timestamps_router, prefix="/api/v1")
    app.include_router(time_applications_router, prefix="/api/v1")
    app.include_router(payment_requests_router, prefix="/api/v1")
    app.include_router(payment_hashes_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
