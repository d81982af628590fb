"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fleetdispatch.api.routes import router
from fleetdispatch.api.websocket import handle_live_updates
from fleetdispatch.config import Settings, get_settings
from fleetdispatch.exceptions import (
    IllegalTransitionError,
    NotFoundError,
    ResourceInUseError,
    ValidationError,
)
from fleetdispatch.models.events import SubscriptionFilter
from fleetdispatch.services.dispatch import DispatchService
from fleetdispatch.services.relay import LiveRelay
from fleetdispatch.services.seed import seed_sample_fleet
from fleetdispatch.services.transport import InMemoryTransport, RedisTransport
from fleetdispatch.state.store import EntityStore
from fleetdispatch.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def build_service(settings: Settings) -> DispatchService:
    """Wire store, relay and transport for the configured backend."""
    if settings.transport_backend == "redis":
        transport = RedisTransport.from_settings(settings)
    else:
        transport = InMemoryTransport()

    relay = LiveRelay(transport=transport, queue_size=settings.relay_queue_size)
    return DispatchService(store=EntityStore(), relay=relay, settings=settings)


def create_app(
    settings: Settings | None = None,
    service: DispatchService | None = None,
) -> FastAPI:
    """Create the FastAPI app, optionally around an existing service."""
    settings = settings or get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        # Startup
        logger.info("application_starting", environment=settings.environment)

        if getattr(app.state, "service", None) is None:
            app.state.service = build_service(settings)
        dispatch: DispatchService = app.state.service

        transport = dispatch.relay.transport
        if isinstance(transport, RedisTransport):
            await transport.connect()
            await transport.start()

        if settings.seed_sample_data:
            await seed_sample_fleet(dispatch)

        logger.info(
            "dispatch_service_initialized",
            transport=settings.transport_backend,
            vehicles=len(dispatch.store.vehicles),
            drivers=len(dispatch.store.drivers),
        )

        yield

        # Shutdown
        logger.info("application_shutting_down")
        if isinstance(transport, RedisTransport):
            await transport.disconnect()

    app = FastAPI(
        title="Fleet Dispatch",
        description="Delivery scheduling and lifecycle engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"detail": str(exc), "kind": exc.kind, "id": exc.entity_id},
        )

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "detail": str(exc),
                "errors": exc.errors,
                "conflicts": [c.model_dump(mode="json") for c in exc.conflicts],
            },
        )

    @app.exception_handler(IllegalTransitionError)
    async def transition_handler(request: Request, exc: IllegalTransitionError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "status": exc.status, "action": exc.action},
        )

    @app.exception_handler(ResourceInUseError)
    async def in_use_handler(request: Request, exc: ResourceInUseError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "delivery_ids": exc.delivery_ids},
        )

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "fleet-dispatch"}

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "Fleet Dispatch API",
            "docs": "/docs",
            "health": "/health",
        }

    app.include_router(router, prefix="/api/v1", tags=["api"])

    # WebSocket endpoint
    @app.websocket("/ws/updates")
    async def websocket_endpoint(
        websocket: WebSocket,
        customer_email: str | None = None,
        driver_id: list[str] | None = Query(default=None),
        delivery_id: list[str] | None = Query(default=None),
    ) -> None:
        """Live updates; query parameters narrow the events received."""
        event_filter = SubscriptionFilter(
            customer_email=customer_email,
            driver_ids=frozenset(driver_id) if driver_id else None,
            delivery_ids=frozenset(delivery_id) if delivery_id else None,
        )
        await handle_live_updates(websocket, websocket.app.state.service.relay, event_filter)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "fleetdispatch.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development",
    )
