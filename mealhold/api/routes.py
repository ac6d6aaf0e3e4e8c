"""API routes for stores, reservations and store-side bookings."""

from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from pydantic import BaseModel, Field

from mealhold.api.sessions import registry
from mealhold.api.websocket import manager
from mealhold.errors import (
    AuthenticationRequiredError,
    ForbiddenError,
    NoActiveReservationError,
    ReservationNotFoundError,
)
from mealhold.models.geo import ETAEstimate, GeoPoint
from mealhold.models.reservation import Reservation
from mealhold.models.store import StoreInventory
from mealhold.services.booking_monitor import BookingMonitor, BookingRow
from mealhold.services.lifecycle import LifecycleSnapshot, ReservationLifecycleEngine
from mealhold.state.ledger import InventoryLedger
from mealhold.state.manager import get_state_manager
from mealhold.state.reservations import RESERVATIONS, ReservationRepository
from mealhold.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


# Request/Response Models


class StoreResponse(BaseModel):
    """Store inventory as shown on the map."""

    store_id: str
    name: str | None
    is_open: bool
    remaining_count: int
    last_updated: int
    location: GeoPoint
    max_dining_minutes: int | None

    @classmethod
    def from_inventory(cls, inventory: StoreInventory) -> "StoreResponse":
        return cls(
            store_id=inventory.store_id,
            name=inventory.name,
            is_open=inventory.is_open,
            remaining_count=inventory.remaining_count,
            last_updated=inventory.last_updated,
            location=inventory.location,
            max_dining_minutes=inventory.max_dining_minutes,
        )


class RegisterStoreRequest(BaseModel):
    """Request to create a store's inventory record."""

    location: GeoPoint
    remaining_count: int = Field(default=0, ge=0)
    is_open: bool = False
    max_dining_minutes: int | None = Field(default=None, ge=1)
    name: str | None = None


class SetRemainingRequest(BaseModel):
    count: int


class AdjustRemainingRequest(BaseModel):
    delta: int


class SetOpenRequest(BaseModel):
    is_open: bool


class CreateReservationRequest(BaseModel):
    """Request to hold a slot at a store."""

    store_id: str
    user_display_name: str | None = None


class LocationRequest(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class CancelResponse(BaseModel):
    reservation_id: str
    cancelled: bool


class MarkArrivedRequest(BaseModel):
    max_dining_minutes: int | None = Field(default=None, ge=1)


class SnapshotResponse(BaseModel):
    """Diner's reservation state with derived countdowns."""

    reservation: Reservation | None
    phase: str | None
    remaining_seconds: int
    formatted_time: str
    dining_expires_at: int | None
    dining_remaining_seconds: int | None
    overtime_handled: bool
    error: str | None

    @classmethod
    def from_snapshot(cls, snapshot: LifecycleSnapshot) -> "SnapshotResponse":
        return cls(
            reservation=snapshot.reservation,
            phase=snapshot.phase.value if snapshot.phase else None,
            remaining_seconds=snapshot.remaining_seconds,
            formatted_time=snapshot.formatted_time,
            dining_expires_at=snapshot.dining_expires_at,
            dining_remaining_seconds=snapshot.dining_remaining_seconds,
            overtime_handled=snapshot.overtime_handled,
            error=snapshot.error,
        )


class BookingsResponse(BaseModel):
    store_id: str
    active_count: int
    arrived_count: int
    rows: list[BookingRow]


# Dependencies


async def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Identity of the signed-in diner; authentication happens upstream."""
    if not x_user_id:
        raise AuthenticationRequiredError()
    return x_user_id


async def get_ledger() -> InventoryLedger:
    state_manager = await get_state_manager()
    return InventoryLedger(state_manager)


async def get_repository() -> ReservationRepository:
    state_manager = await get_state_manager()
    return ReservationRepository(state_manager)


async def get_engine(
    user_id: str = Depends(get_user_id),
) -> ReservationLifecycleEngine:
    state_manager = await get_state_manager()
    return await registry.get(state_manager, user_id)


def _require_current(engine: ReservationLifecycleEngine, reservation_id: str) -> None:
    current = engine.snapshot.reservation
    if current is None or current.id != reservation_id:
        raise NoActiveReservationError()


async def _load_owned(
    repository: ReservationRepository,
    reservation_id: str,
    user_id: str,
) -> Reservation:
    reservation = await repository.get_reservation(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError(reservation_id)
    if reservation.user_id != user_id:
        raise ForbiddenError("Reservation belongs to another user")
    return reservation


# Store routes


@router.get("/stores", response_model=list[StoreResponse])
async def list_stores(
    open_only: bool = False,
    ledger: InventoryLedger = Depends(get_ledger),
) -> list[StoreResponse]:
    """List stores, optionally only those with a slot left right now."""
    stores = await ledger.list_open_stores() if open_only else await ledger.list_stores()
    return [StoreResponse.from_inventory(store) for store in stores]


@router.get("/stores/{store_id}", response_model=StoreResponse)
async def get_store(
    store_id: str,
    ledger: InventoryLedger = Depends(get_ledger),
) -> StoreResponse:
    inventory = await ledger.get(store_id)
    if inventory is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    return StoreResponse.from_inventory(inventory)


@router.post(
    "/stores/{store_id}",
    response_model=StoreResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_store(
    store_id: str,
    request: RegisterStoreRequest,
    ledger: InventoryLedger = Depends(get_ledger),
) -> StoreResponse:
    """Create or replace a store's inventory record."""
    inventory = await ledger.register_store(
        store_id,
        location=request.location,
        remaining_count=request.remaining_count,
        is_open=request.is_open,
        max_dining_minutes=request.max_dining_minutes,
        name=request.name,
    )
    return StoreResponse.from_inventory(inventory)


def _found(inventory: StoreInventory | None) -> StoreResponse:
    if inventory is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    return StoreResponse.from_inventory(inventory)


@router.put("/stores/{store_id}/remaining", response_model=StoreResponse)
async def set_remaining(
    store_id: str,
    request: SetRemainingRequest,
    ledger: InventoryLedger = Depends(get_ledger),
) -> StoreResponse:
    """Set the remaining count; negative values clamp to zero."""
    return _found(await ledger.set_remaining(store_id, request.count))


@router.post("/stores/{store_id}/remaining/adjust", response_model=StoreResponse)
async def adjust_remaining(
    store_id: str,
    request: AdjustRemainingRequest,
    ledger: InventoryLedger = Depends(get_ledger),
) -> StoreResponse:
    return _found(await ledger.adjust_remaining(store_id, request.delta))


@router.put("/stores/{store_id}/open", response_model=StoreResponse)
async def set_open(
    store_id: str,
    request: SetOpenRequest,
    ledger: InventoryLedger = Depends(get_ledger),
) -> StoreResponse:
    return _found(await ledger.set_open(store_id, request.is_open))


@router.post("/stores/{store_id}/toggle", response_model=StoreResponse)
async def toggle_store(
    store_id: str,
    ledger: InventoryLedger = Depends(get_ledger),
) -> StoreResponse:
    """Start or stop serving."""
    return _found(await ledger.toggle_open(store_id))


# Diner reservation routes


@router.post(
    "/reservations",
    response_model=Reservation,
    status_code=status.HTTP_201_CREATED,
)
async def create_reservation(
    request: CreateReservationRequest,
    engine: ReservationLifecycleEngine = Depends(get_engine),
) -> Reservation:
    """
    Hold one slot at a store.

    Responds 409 with the exact reason when the store is missing, closed or
    sold out.
    """
    if request.user_display_name:
        engine.user_display_name = request.user_display_name
    return await engine.create(request.store_id)


@router.get("/reservations/active", response_model=SnapshotResponse)
async def get_active_reservation(
    engine: ReservationLifecycleEngine = Depends(get_engine),
) -> SnapshotResponse:
    """Current reservation with countdowns."""
    await engine.tick()
    return SnapshotResponse.from_snapshot(engine.snapshot)


@router.post("/reservations/{reservation_id}/cancel", response_model=CancelResponse)
async def cancel_reservation(
    reservation_id: str,
    user_id: str = Depends(get_user_id),
    engine: ReservationLifecycleEngine = Depends(get_engine),
    repository: ReservationRepository = Depends(get_repository),
) -> CancelResponse:
    """Cancel and return the slot. Repeated cancels are harmless."""
    reservation = await _load_owned(repository, reservation_id, user_id)
    cancelled = await engine.cancel(reservation_id, reservation.store_id)

    logger.info("reservation_cancelled_via_api", reservation_id=reservation_id, cancelled=cancelled)
    return CancelResponse(reservation_id=reservation_id, cancelled=cancelled)


@router.post(
    "/reservations/{reservation_id}/complete",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def complete_reservation(
    reservation_id: str,
    user_id: str = Depends(get_user_id),
    engine: ReservationLifecycleEngine = Depends(get_engine),
    repository: ReservationRepository = Depends(get_repository),
) -> Response:
    await _load_owned(repository, reservation_id, user_id)
    await engine.complete(reservation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/reservations/{reservation_id}/confirm-arrival", response_model=SnapshotResponse)
async def confirm_arrival(
    reservation_id: str,
    engine: ReservationLifecycleEngine = Depends(get_engine),
) -> SnapshotResponse:
    _require_current(engine, reservation_id)
    await engine.confirm_arrival()
    return SnapshotResponse.from_snapshot(engine.snapshot)


@router.post("/reservations/{reservation_id}/photo", response_model=SnapshotResponse)
async def submit_photo(
    reservation_id: str,
    engine: ReservationLifecycleEngine = Depends(get_engine),
) -> SnapshotResponse:
    """Photo of the served meal received; the dining window starts."""
    _require_current(engine, reservation_id)
    await engine.submit_photo()
    return SnapshotResponse.from_snapshot(engine.snapshot)


@router.post("/reservations/{reservation_id}/location", response_model=ETAEstimate | None)
async def report_location(
    reservation_id: str,
    request: LocationRequest,
    engine: ReservationLifecycleEngine = Depends(get_engine),
) -> ETAEstimate | None:
    _require_current(engine, reservation_id)
    return await engine.report_location(request.lat, request.lng)


# Store-side booking routes


@router.get("/stores/{store_id}/bookings", response_model=BookingsResponse)
async def list_bookings(
    store_id: str,
    ledger: InventoryLedger = Depends(get_ledger),
) -> BookingsResponse:
    """Open bookings for a store, newest first, with countdowns and ETA."""
    state_manager = await get_state_manager()
    monitor = BookingMonitor(state_manager, store_id, ledger=ledger)
    monitor.handle_snapshot(await state_manager.read_collection(RESERVATIONS))

    store = await ledger.get(store_id)
    rows = monitor.rows(store_location=store.location if store else None)

    return BookingsResponse(
        store_id=store_id,
        active_count=monitor.active_count,
        arrived_count=monitor.arrived_count,
        rows=rows,
    )


@router.post(
    "/stores/{store_id}/bookings/{reservation_id}/arrived",
    response_model=Reservation,
)
async def mark_booking_arrived(
    store_id: str,
    reservation_id: str,
    request: MarkArrivedRequest | None = None,
    repository: ReservationRepository = Depends(get_repository),
    ledger: InventoryLedger = Depends(get_ledger),
) -> Reservation:
    """Mark a diner as arrived and start their dining window."""
    reservation = await repository.get_reservation(reservation_id)
    if reservation is None or reservation.store_id != store_id:
        raise ReservationNotFoundError(reservation_id)

    state_manager = await get_state_manager()
    monitor = BookingMonitor(state_manager, store_id, repository=repository, ledger=ledger)
    max_dining_minutes = request.max_dining_minutes if request else None
    return await monitor.mark_as_arrived(reservation_id, max_dining_minutes)


# Admin endpoints


@router.get("/admin/status")
async def get_status() -> dict[str, Any]:
    """Engine registry and feed health."""
    return {
        "active_engines": len(registry),
        "websocket_connections": manager.connection_count(),
        "status": "healthy",
    }
