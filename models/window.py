"""
Time and place primitives shared by every part of the coverage scheduler.

This module is the leaf of the system:
1. TimeWindow (half-open [start, end) interval with overlap test)
2. GeoPoint (latitude/longitude with great-circle distance)
3. Location (named place with optional coordinates)
"""

import math
from datetime import datetime, timedelta
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates, in kilometers."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


class TimeWindow(BaseModel):
    """A half-open interval [start, end). End must be strictly after start."""
    start: datetime = Field(description="Inclusive start instant")
    end: datetime = Field(description="Exclusive end instant")

    @model_validator(mode='after')
    def validate_bounds(self):
        if self.end <= self.start:
            raise ValueError("Window end must be strictly after window start")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "TimeWindow") -> bool:
        """Standard overlap test. Touching edges (a.end == b.start) do not overlap."""
        return self.start < other.end and self.end > other.start

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    def shifted(self, delta: timedelta) -> "TimeWindow":
        return TimeWindow(start=self.start + delta, end=self.end + delta)


class GeoPoint(BaseModel):
    """WGS84 coordinate."""
    lat: float = Field(ge=-90, le=90, description="Latitude in degrees")
    lng: float = Field(ge=-180, le=180, description="Longitude in degrees")

    def distance_km(self, other: "GeoPoint") -> float:
        return haversine_km(self.lat, self.lng, other.lat, other.lng)


class Location(BaseModel):
    """
    Where coverage happens.
    Coordinates are optional; spatial checks are skipped when they are missing.
    """
    name: str = Field(default="", description="Venue or place name")
    address: Optional[str] = Field(default=None, description="Street address")
    coordinates: Optional[GeoPoint] = Field(default=None, description="Geo position, if known")

    def distance_km(self, other: Optional["Location"]) -> Optional[float]:
        """Distance to another location, or None when either side lacks coordinates."""
        if other is None or self.coordinates is None or other.coordinates is None:
            return None
        return self.coordinates.distance_km(other.coordinates)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "Millennium Hall",
            "address": "Bole Road, Addis Ababa",
            "coordinates": {"lat": 8.9899, "lng": 38.7881}
        }
    })
