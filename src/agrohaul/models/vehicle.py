"""Vehicle model: the carrier resource a booking is claimed against."""

from datetime import datetime
from typing import Optional
import uuid

from pydantic import BaseModel, Field

from .booking import utcnow
from .enums import VehicleType
from .location import Coordinates


class Vehicle(BaseModel):
    """
    A vehicle owned by exactly one carrier identity.

    ``is_available`` is true iff no active booking holds the vehicle. Only the
    claim and terminal transitions change it.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    vehicle_number: str = Field(..., min_length=1)
    vehicle_type: VehicleType

    # Capability
    capacity_kg: float = Field(..., gt=0)
    rate_per_km: float = Field(..., gt=0)
    refrigerated: bool = False
    covered: bool = True

    # Availability
    is_available: bool = True
    is_active: bool = True  # Approved for dispatch
    current_location: Optional[Coordinates] = None
    current_address: Optional[str] = None

    # Track record
    rating: float = Field(default=0.0, ge=0, le=5)
    total_ratings: int = Field(default=0, ge=0)
    total_trips: int = Field(default=0, ge=0)

    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def can_carry(self, weight_kg: float) -> bool:
        """Check the cargo fits the vehicle's capacity."""
        return weight_kg <= self.capacity_kg
