"""Identity models for requesters and carriers."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .booking import utcnow
from .enums import Role


class ActorContext(BaseModel):
    """Authenticated identity supplied by the collaborator layer."""

    actor_id: str = Field(..., min_length=1)
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class Identity(BaseModel):
    """
    A requester or carrier account as seen by the dispatch engine.

    ``rating`` is derived from received ratings and never set directly.
    """

    id: str
    name: Optional[str] = None
    role: Role

    rating: float = Field(default=0.0, ge=0, le=5)
    total_ratings: int = Field(default=0, ge=0)

    # Carrier track record
    completed_trips: int = Field(default=0, ge=0)
    earnings: float = Field(default=0.0, ge=0)

    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
