"""Store inventory models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mealhold.models.geo import GeoPoint


class StoreInventory(BaseModel):
    """Realtime serving state of one store, as kept in the ledger."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    store_id: str | None = Field(default=None, exclude=True)
    is_open: bool = Field(default=False, alias="isOpen")
    remaining_count: int = Field(default=0, ge=0, alias="remainingCount")
    last_updated: int = Field(default=0, alias="lastUpdated")
    location: GeoPoint
    max_dining_minutes: int | None = Field(default=None, ge=1, alias="maxDiningMinutes")
    name: str | None = None

    @property
    def is_available(self) -> bool:
        """Check if a diner could reserve here right now."""
        return self.is_open and self.remaining_count > 0

    @classmethod
    def from_record(cls, store_id: str, data: dict[str, Any]) -> "StoreInventory":
        return cls(store_id=store_id, **data)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
