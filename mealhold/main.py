"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from mealhold.api.errors import register_exception_handlers
from mealhold.api.routes import router
from mealhold.api.sessions import registry
from mealhold.api.websocket import handle_booking_feed, handle_reservation_feed
from mealhold.config import get_settings
from mealhold.services.sweeper import ExpirySweeper
from mealhold.state.manager import get_state_manager
from mealhold.utils.logging import get_logger, setup_logging

# Setup logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    logger.info("application_starting")

    # Initialize state manager
    state_manager = await get_state_manager()
    logger.info("state_manager_initialized")

    sweeper = None
    if get_settings().expiry_sweep_enabled:
        sweeper = ExpirySweeper(state_manager)
        sweeper.start()

    yield

    # Shutdown
    logger.info("application_shutting_down")
    if sweeper is not None:
        await sweeper.stop()
    await registry.shutdown()
    await state_manager.disconnect()


# Create FastAPI app
app = FastAPI(
    title="Mealhold",
    description="Set-meal reservations with live inventory and store-side booking screens",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": "mealhold"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": "Mealhold Reservation API",
        "docs": "/docs",
        "health": "/health",
    }


app.include_router(router, prefix="/api/v1", tags=["api"])


# WebSocket endpoints
@app.websocket("/ws/stores/{store_id}/bookings")
async def booking_feed_endpoint(websocket: WebSocket, store_id: str) -> None:
    """Live booking list for a store's screen."""
    await handle_booking_feed(websocket, store_id)


@app.websocket("/ws/users/{user_id}/reservation")
async def reservation_feed_endpoint(websocket: WebSocket, user_id: str) -> None:
    """Live countdown for a diner's reservation."""
    await handle_reservation_feed(websocket, user_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mealhold.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development",
    )
