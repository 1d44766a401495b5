"""FastAPI application factory"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from coop_credit.api.middleware import MetricsMiddleware, RequestIDMiddleware
from coop_credit.api.v1 import cron, members, payment_requests, sales, settings as settings_router
from coop_credit.config import Settings, settings
from coop_credit.domain.exceptions import (
    ConsistencyError,
    CreditEngineError,
    NotFoundError,
    TransientStorageError,
    ValidationError,
)
from coop_credit.infrastructure.database.session import create_db_engine, create_session_factory
from coop_credit.infrastructure.observability.logging import setup_logging
from coop_credit.services.credit_engine import CreditEngine
from coop_credit.services.penalty_processor import PenaltyProcessor
from coop_credit.services.sweep import PenaltySweep
from coop_credit.services.unit_of_work import UnitOfWork

# Setup structured logging
setup_logging(settings.log_level)

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (ValidationError, 422),
    (NotFoundError, 404),
    (ConsistencyError, 409),
    (TransientStorageError, 503),
)


async def credit_engine_error_handler(request: Request, exc: CreditEngineError) -> JSONResponse:
    """Map domain errors to HTTP status codes"""
    request_id = getattr(request.state, "request_id", "unknown")
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            if status_code >= 500:
                logger.error(f"Storage unavailable: {exc}", extra={"request_id": request_id})
            else:
                logger.warning(f"{type(exc).__name__}: {exc}", extra={"request_id": request_id})
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    logger.error(f"Unexpected engine error: {exc}", extra={"request_id": request_id})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    app.state.db_engine.dispose()


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(f"Unexpected error: {exc}", extra={"request_id": request_id, "error_type": type(exc).__name__})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(config: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application"""
    config = config or settings

    app = FastAPI(
        title="Cooperative Credit Ledger",
        description="Member credit ledger, payment allocation and penalty service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Storage and services live on app.state; nothing is bound at import time
    db_engine = create_db_engine(config.database_url)
    session_factory = create_session_factory(db_engine)
    uow = UnitOfWork(session_factory, timeout_ms=config.transaction_timeout_ms, max_retries=config.storage_max_retries)
    credit_engine = CreditEngine(uow, config)
    penalty_processor = PenaltyProcessor(credit_engine)

    app.state.settings = config
    app.state.db_engine = db_engine
    app.state.session_factory = session_factory
    app.state.credit_engine = credit_engine
    app.state.penalty_processor = penalty_processor
    app.state.penalty_sweep = PenaltySweep(credit_engine, penalty_processor, db_engine)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(CreditEngineError, credit_engine_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": config.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(members.router, prefix="/v1", tags=["members"])
    app.include_router(payment_requests.router, prefix="/v1", tags=["payment-requests"])
    app.include_router(settings_router.router, prefix="/v1", tags=["credit-settings"])
    app.include_router(sales.router, prefix="/v1", tags=["sales"])
    app.include_router(cron.router, prefix="/v1", tags=["cron"])

    return app
