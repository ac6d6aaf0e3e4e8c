"""Geographic models."""

from pydantic import BaseModel, Field


class GeoPoint(BaseModel):
    """Geographic location."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class ETAEstimate(BaseModel):
    """Walking-time estimate between a diner and a store."""

    distance_meters: int
    estimated_distance_meters: int
    estimated_minutes: int
    is_very_close: bool
    has_arrived: bool
