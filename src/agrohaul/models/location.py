"""Location models for pickup, dropoff and tracking points."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from ..geo.distance import validate_coordinates
from .enums import TimeSlot


class Coordinates(BaseModel):
    """A latitude/longitude pair in degrees."""

    latitude: float
    longitude: float

    @model_validator(mode="after")
    def _check_range(self) -> "Coordinates":
        validate_coordinates(self.latitude, self.longitude)
        return self

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)

    def __str__(self) -> str:
        return f"({self.latitude:.4f}, {self.longitude:.4f})"


class Address(BaseModel):
    """Postal address of a pickup or dropoff point."""

    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)

    def __str__(self) -> str:
        return f"{self.street}, {self.city}, {self.state} {self.pincode}"


class ContactPerson(BaseModel):
    """Person to call at a route point."""

    name: Optional[str] = None
    phone: Optional[str] = None


class RoutePoint(BaseModel):
    """Pickup or dropoff: an address plus the coordinates used for distance."""

    address: Address
    coordinates: Coordinates
    contact: Optional[ContactPerson] = None


class TimeWindow(BaseModel):
    """Requested pickup window."""

    earliest: datetime
    latest: Optional[datetime] = None
    time_slot: TimeSlot = TimeSlot.FLEXIBLE

    @field_validator("earliest", "latest")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Naive datetimes are taken as UTC."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_order(self) -> "TimeWindow":
        if self.latest is not None and self.latest < self.earliest:
            raise ValueError("Time window ends before it starts")
        return self

    @computed_field
    @property
    def window_hours(self) -> Optional[float]:
        """Hours between earliest and latest."""
        if self.latest is None:
            return None
        return (self.latest - self.earliest).total_seconds() / 3600
