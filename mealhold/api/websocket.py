"""WebSocket feeds for the store's booking screen and the diner's countdown."""

import asyncio
import json
from typing import Any, Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from mealhold.api.sessions import registry
from mealhold.config import get_settings
from mealhold.errors import MealholdError
from mealhold.services.alerts import RecordingAlertSink
from mealhold.services.booking_monitor import BookingMonitor
from mealhold.state.ledger import InventoryLedger
from mealhold.state.manager import get_state_manager
from mealhold.utils.logging import get_logger

logger = get_logger(__name__)


class WebSocketMessage(BaseModel):
    """WebSocket message format."""

    type: str  # "ping", "mark_arrived"
    reservation_id: str | None = None
    max_dining_minutes: int | None = Field(default=None, ge=1)
    metadata: dict[str, Any] = {}


class ConnectionManager:
    """Manages WebSocket connections; a feed may have several screens attached."""

    def __init__(self) -> None:
        self.active_connections: dict[str, dict[int, WebSocket]] = {}

    async def connect(self, feed_id: str, websocket: WebSocket) -> None:
        """Accept and register a WebSocket connection."""
        await websocket.accept()
        self.active_connections.setdefault(feed_id, {})[id(websocket)] = websocket
        logger.info("websocket_connected", feed_id=feed_id)

    def disconnect(self, feed_id: str, websocket: WebSocket) -> None:
        """Remove one WebSocket connection, leaving other screens on the feed."""
        connections = self.active_connections.get(feed_id)
        if connections is None or connections.pop(id(websocket), None) is None:
            return

        if not connections:
            del self.active_connections[feed_id]
        logger.info("websocket_disconnected", feed_id=feed_id)

    def connection_count(self, feed_id: str | None = None) -> int:
        """Open connections on one feed, or on every feed."""
        if feed_id is not None:
            return len(self.active_connections.get(feed_id, {}))
        return sum(len(connections) for connections in self.active_connections.values())


# Global connection manager
manager = ConnectionManager()


async def _push_every(interval: float, push: Callable[[], Awaitable[None]]) -> None:
    while True:
        await push()
        await asyncio.sleep(interval)


async def _receive_loop(
    websocket: WebSocket,
    feed_id: str,
    on_message: Callable[[WebSocketMessage], Awaitable[None]],
) -> None:
    while True:
        data = await websocket.receive_text()

        try:
            ws_message = WebSocketMessage(**json.loads(data))

            if ws_message.type == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                await on_message(ws_message)

        except (ValidationError, json.JSONDecodeError) as e:
            await websocket.send_json(
                {
                    "type": "error",
                    "message": "Invalid message format",
                    "details": str(e),
                }
            )

        except MealholdError as e:
            await websocket.send_json({"type": "error", "message": e.message})

        except Exception as e:
            logger.error("websocket_message_error", feed_id=feed_id, error=str(e))
            await websocket.send_json(
                {
                    "type": "error",
                    "message": "Failed to process message",
                }
            )


async def _serve(
    websocket: WebSocket,
    feed_id: str,
    push: Callable[[], Awaitable[None]],
    on_message: Callable[[WebSocketMessage], Awaitable[None]],
) -> None:
    settings = get_settings()
    pusher = asyncio.create_task(_push_every(settings.tick_interval_seconds, push))

    try:
        await _receive_loop(websocket, feed_id, on_message)

    except WebSocketDisconnect:
        logger.info("websocket_client_disconnected", feed_id=feed_id)

    except Exception as e:
        logger.error("websocket_error", feed_id=feed_id, error=str(e))

    finally:
        pusher.cancel()
        try:
            await pusher
        except (asyncio.CancelledError, WebSocketDisconnect):
            pass
        except Exception as e:
            logger.warning("websocket_push_failed", feed_id=feed_id, error=str(e))
        manager.disconnect(feed_id, websocket)


async def handle_booking_feed(websocket: WebSocket, store_id: str) -> None:
    """
    Stream a store's open bookings.

    Each push carries the booking rows with countdowns and ETA, the active and
    arrived counts, and any alerts raised since the previous push. The client
    may send ``mark_arrived`` with a reservation id.
    """
    feed_id = f"bookings:{store_id}"

    state_manager = await get_state_manager()
    ledger = InventoryLedger(state_manager)
    alerts = RecordingAlertSink()
    monitor = BookingMonitor(state_manager, store_id, ledger=ledger, alert=alerts)

    await manager.connect(feed_id, websocket)
    await monitor.start()

    async def push() -> None:
        store = await ledger.get(store_id)
        rows = monitor.rows(store_location=store.location if store else None)
        await websocket.send_json(
            {
                "type": "bookings",
                "store_id": store_id,
                "is_loading": monitor.is_loading,
                "error": monitor.error,
                "active_count": monitor.active_count,
                "arrived_count": monitor.arrived_count,
                "rows": [row.model_dump(mode="json") for row in rows],
                "alerts": [{"kind": kind, **context} for kind, context in alerts.drain()],
            }
        )

    async def on_message(message: WebSocketMessage) -> None:
        if message.type != "mark_arrived" or not message.reservation_id:
            await websocket.send_json({"type": "error", "message": f"Unknown message type {message.type}"})
            return

        reservation = await monitor.mark_as_arrived(message.reservation_id, message.max_dining_minutes)
        await websocket.send_json(
            {
                "type": "marked_arrived",
                "reservation": reservation.model_dump(mode="json"),
            }
        )

    try:
        await _serve(websocket, feed_id, push, on_message)
    finally:
        await monitor.stop()


async def handle_reservation_feed(websocket: WebSocket, user_id: str) -> None:
    """Stream the diner's reservation snapshot on every tick."""
    feed_id = f"reservation:{user_id}"

    state_manager = await get_state_manager()
    await registry.get(state_manager, user_id)

    await manager.connect(feed_id, websocket)

    async def push() -> None:
        # Looked up each push so an open feed keeps the engine from going idle
        engine = await registry.get(state_manager, user_id)
        snapshot = engine.snapshot
        await websocket.send_json(
            {
                "type": "reservation",
                "snapshot": snapshot.model_dump(mode="json"),
                "formatted_time": snapshot.formatted_time,
                "is_expired": snapshot.is_expired,
                "is_overtime": snapshot.is_overtime,
            }
        )

    async def on_message(message: WebSocketMessage) -> None:
        await websocket.send_json({"type": "error", "message": f"Unknown message type {message.type}"})

    await _serve(websocket, feed_id, push, on_message)
