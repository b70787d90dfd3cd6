"""
FastAPI application factory.

* Registers routes for trips, presence, quotes and admin.
* Builds the dispatch coordinator and starts / stops the sweeper and the
  inbound relay via lifespan events.
* Maps domain errors to JSON responses with a stable ``error`` code.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

from src.api.middleware import limiter
from src.api.routes import admin, presence, quotes, trips
from src.api.schemas import ErrorResponse, TripResponse
from src.config import settings
from src.domain.errors import (
    AlreadyMatched,
    BidNotFound,
    DispatchError,
    InvalidState,
    InvalidTransition,
    NoCoverage,
    RoutingUnavailable,
    TripNotFound,
)
from src.services.coordinator import DispatchCoordinator
from src.services.factory import build_coordinator, shutdown_coordinator
from src.workers import relay as _relay
from src.workers import sweeper as _sweeper

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[DispatchError], int] = {
    InvalidTransition: 409,
    AlreadyMatched: 409,
    InvalidState: 409,
    NoCoverage: 409,
    TripNotFound: 404,
    BidNotFound: 404,
    RoutingUnavailable: 503,
}


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    status = ERROR_STATUS.get(type(exc), 400)
    body = ErrorResponse(
        error=exc.code,
        detail=str(exc),
        trip=TripResponse.from_trip(exc.trip) if exc.trip is not None else None,
    )
    return JSONResponse(status_code=status, content=body.model_dump(mode="json"))


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Store failure on %s %s", request.method, request.url.path)
    body = ErrorResponse(error="STORE_UNAVAILABLE", detail="Trip store unavailable")
    return JSONResponse(status_code=503, content=body.model_dump(mode="json"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the coordinator, recover open books, run background workers."""
    owned = getattr(app.state, "coordinator", None) is None
    if owned:
        app.state.coordinator = build_coordinator(settings)
    coordinator: DispatchCoordinator = app.state.coordinator
    await coordinator.recover()
    await _sweeper.start_sweeper_loop(coordinator)
    await _relay.start_relay(coordinator)
    yield
    await _relay.stop_relay()
    await _sweeper.stop_sweeper_loop()
    if owned:
        await shutdown_coordinator(coordinator)
        if settings.store_backend == "sql":
            from src.infrastructure.database import dispose_engine

            await dispose_engine()
        if settings.use_redis:
            from src.infrastructure.redis_client import close_redis

            await close_redis()


def create_app(coordinator: Optional[DispatchCoordinator] = None) -> FastAPI:
    app = FastAPI(
        title="Ridein Dispatch API",
        description=(
            "Matches riders with nearby drivers through competitive "
            "bidding.  Tracks driver presence per sector, collects "
            "offers, and guarantees at most one accepted bid per trip."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    if coordinator is not None:
        app.state.coordinator = coordinator

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Errors
    app.add_exception_handler(DispatchError, dispatch_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    # Routers
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(presence.router, prefix="/api/v1")
    app.include_router(quotes.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
