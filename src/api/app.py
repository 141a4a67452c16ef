"""
FastAPI application factory.

* Registers routes for rides, the real-time WebSocket and admin.
* Wires the shared collaborators onto ``app.state``: the broadcaster
  (in-memory or Redis pub/sub), the per-ride lock registry and the fare
  allocation engine.
* Maps ``RideError`` subclasses onto HTTP responses.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import admin, realtime, rides
from src.config import Settings, settings
from src.domain.errors import RideError
from src.domain.pricing import FareAllocationEngine
from src.infrastructure.locks import LocalRideLocks, NoRideLocks, RedisRideLocks
from src.realtime.broadcaster import Broadcaster, InMemoryBroadcaster

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


def build_broadcaster(config: Settings) -> Broadcaster:
    if config.broadcast_backend == "redis":
        from src.infrastructure.redis_client import get_redis
        from src.realtime.redis_broadcaster import RedisBroadcaster

        return RedisBroadcaster(get_redis(), prefix=config.broadcast_channel_prefix)
    return InMemoryBroadcaster()


def build_ride_locks(config: Settings):
    if config.ride_lock_backend == "redis":
        from src.infrastructure.redis_client import get_redis

        return RedisRideLocks(
            get_redis(),
            ttl_seconds=config.ride_lock_ttl_seconds,
            wait_seconds=config.ride_lock_wait_seconds,
        )
    if config.ride_lock_backend == "none":
        return NoRideLocks()
    return LocalRideLocks()


async def ride_error_handler(request: Request, exc: RideError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "SplitRide API starting (broadcast=%s, ride locks=%s)",
        settings.broadcast_backend, settings.ride_lock_backend,
    )
    yield
    await app.state.broadcaster.close()
    logger.info("SplitRide API stopped")


def create_app(config: Settings = settings) -> FastAPI:
    app = FastAPI(
        title="SplitRide API",
        description=(
            "Shared rides with fair, distance-weighted fares.  Passengers "
            "request rides, drivers accept them, more passengers join with "
            "approval, and every membership change re-splits the fare and "
            "is pushed to connected clients in real time."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.broadcaster = build_broadcaster(config)
    app.state.ride_locks = build_ride_locks(config)
    app.state.fare_engine = FareAllocationEngine(
        rate_per_km=config.rate_per_km,
        pooling_efficiency=config.pooling_efficiency,
        solo_discount=config.solo_discount,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(RideError, ride_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(realtime.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
