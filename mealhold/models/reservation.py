"""Reservation models."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ReservationStatus(str, Enum):
    """Persisted reservation status."""

    ACTIVE = "active"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class UserLocation(BaseModel):
    """Last reported position of a diner on the way to the store."""

    model_config = ConfigDict(populate_by_name=True)

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    updated_at: int = Field(alias="updatedAt")


class EstimatedArrival(BaseModel):
    """Remaining walk reported alongside the user location."""

    model_config = ConfigDict(populate_by_name=True)

    duration_seconds: int = Field(ge=0, alias="durationSeconds")
    distance_meters: int = Field(ge=0, alias="distanceMeters")
    updated_at: int = Field(alias="updatedAt")


class Reservation(BaseModel):
    """A single-unit hold on a store's nightly set meal."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    store_id: str = Field(alias="storeId")
    user_id: str = Field(alias="userId")
    status: ReservationStatus = ReservationStatus.ACTIVE
    created_at: int | None = Field(default=None, alias="createdAt")
    expires_at: int = Field(alias="expiresAt")
    quantity: int = Field(default=1, ge=1)

    user_display_name: str | None = Field(default=None, alias="userDisplayName")
    user_location: UserLocation | None = Field(default=None, alias="userLocation")
    estimated_arrival: EstimatedArrival | None = Field(default=None, alias="estimatedArrival")

    arrived_at: int | None = Field(default=None, alias="arrivedAt")
    dining_expires_at: int | None = Field(default=None, alias="diningExpiresAt")

    @field_validator("created_at", mode="before")
    @classmethod
    def drop_server_placeholder(cls, v: Any) -> int | None:
        """Server-assigned timestamps may arrive as placeholders; treat them as unknown."""
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        return int(v)

    @property
    def is_open(self) -> bool:
        """Check if the reservation still occupies the store's attention."""
        return self.status in (ReservationStatus.ACTIVE, ReservationStatus.ARRIVED)

    @classmethod
    def from_record(cls, reservation_id: str, data: dict[str, Any]) -> "Reservation":
        return cls(id=reservation_id, **data)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"id"},
            exclude_none=True,
        )
