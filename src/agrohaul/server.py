"""
AgroHaul FastAPI Server

RESTful API over the booking dispatch engine. Authentication happens
upstream: a trusted gateway passes the caller's identity in the
``X-Actor-Id`` and ``X-Actor-Role`` headers.

USAGE:
    Local: agrohaul serve (runs on http://localhost:8000)
    Docs: http://localhost:8000/docs (Swagger UI)
"""

from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import settings
from .db import get_repository
from .dispatch import DispatchEngine, NearbyResult, PricingCalculator
from .exceptions import (
    AuthorizationError,
    ConflictError,
    DispatchError,
    NotFoundError,
    ValidationError,
)
from .models import (
    ActorContext,
    AdditionalCharges,
    Booking,
    BookingStatus,
    Cargo,
    Coordinates,
    Decision,
    EntityKind,
    Message,
    MessageType,
    Pricing,
    Rating,
    Role,
    RoutePoint,
    TimeWindow,
    UrgencyTier,
    Vehicle,
    VehicleType,
)
from .utils import configure_logging

logger = structlog.get_logger(__name__)


# =============================================================================
# API Models (Request/Response Schemas)
# =============================================================================

class QuoteRequest(BaseModel):
    """Price a trip without creating a booking"""
    pickup: Coordinates
    dropoff: Coordinates
    rate_per_km: float = Field(..., gt=0, description="Carrier rate per km")
    charges: Optional[AdditionalCharges] = None


class CreateBookingRequest(BaseModel):
    """Request to create a booking against a vehicle"""
    vehicle_id: str
    cargo: Cargo
    pickup: RoutePoint
    dropoff: RoutePoint
    time_window: Optional[TimeWindow] = None
    urgency: UrgencyTier = UrgencyTier.STANDARD


class RespondRequest(BaseModel):
    """Carrier's answer to a pending booking"""
    decision: Decision
    vehicle_id: Optional[str] = Field(default=None, description="Defaults to the requested vehicle")
    note: Optional[str] = None


class AdvanceStatusRequest(BaseModel):
    """Move a booking one step along its lifecycle"""
    status: BookingStatus
    note: Optional[str] = None
    location: Optional[Coordinates] = None


class CancelRequest(BaseModel):
    """Cancel a booking"""
    reason: str


class RateRequest(BaseModel):
    """Rate the other party of a booking"""
    score: int
    comment: Optional[str] = None


class ChargesRequest(BaseModel):
    """Replace some of a booking's additional charges"""
    loading: Optional[float] = None
    unloading: Optional[float] = None
    waiting: Optional[float] = None
    toll: Optional[float] = None


class LocationRequest(BaseModel):
    """A reported position"""
    location: Coordinates
    address: Optional[str] = None


class MessageRequest(BaseModel):
    """A message to the other party"""
    text: str
    message_type: MessageType = MessageType.TEXT


class RegisterVehicleRequest(BaseModel):
    """Register a vehicle for the calling carrier"""
    id: Optional[str] = None
    vehicle_number: str = Field(..., min_length=1)
    vehicle_type: VehicleType
    capacity_kg: float = Field(..., gt=0)
    rate_per_km: float = Field(..., gt=0)
    refrigerated: bool = False
    covered: bool = True
    current_location: Optional[Coordinates] = None
    current_address: Optional[str] = None


class NearbyItem(BaseModel):
    """One nearby vehicle or request"""
    kind: EntityKind
    id: str
    distance_km: float
    vehicle: Optional[Vehicle] = None
    booking: Optional[Booking] = None


class NearbyResponse(BaseModel):
    """Nearby search results, nearest first"""
    total: int
    radius_km: float
    results: List[NearbyItem]


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    timestamp: str
    database_connected: bool


# =============================================================================
# Dependencies
# =============================================================================

@lru_cache
def get_engine() -> DispatchEngine:
    """Get cached engine over the configured repository."""
    engine = DispatchEngine(get_repository())
    engine.rebuild_index()
    return engine


def get_actor(
    x_actor_id: str = Header(..., description="Authenticated identity"),
    x_actor_role: Role = Header(..., description="Role of the authenticated identity"),
) -> ActorContext:
    """Identity context supplied by the gateway."""
    return ActorContext(actor_id=x_actor_id, role=x_actor_role)


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="AgroHaul API",
    description=(
        "Produce transport dispatch API\n\n"
        "- Create bookings against carrier vehicles\n"
        "- Accept, track and complete trips\n"
        "- Rate the other party\n"
        "- Find nearby vehicles and requests"
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


def _status_code(exc: DispatchError) -> int:
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, AuthorizationError):
        return 403
    if isinstance(exc, ConflictError):
        return 409
    return 400


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    """Map engine errors to HTTP responses."""
    status_code = _status_code(exc)
    logger.info("Request rejected", path=request.url.path, status_code=status_code, error=exc.code)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# =============================================================================
# Health & Status Endpoints
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns system status, version, and database connectivity.
    """
    try:
        get_repository()
        db_connected = True
    except Exception:
        logger.exception("Database unavailable")
        db_connected = False

    return HealthResponse(
        status="healthy" if db_connected else "degraded",
        version=settings.APP_VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
        database_connected=db_connected,
    )


@app.get("/", tags=["System"])
def root():
    """Root endpoint with API information"""
    return {
        "name": "AgroHaul API",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "openapi": "/openapi.json",
        "endpoints": {
            "quote": "POST /v1/quote",
            "bookings": "POST /v1/bookings",
            "respond": "POST /v1/bookings/{ref}/respond",
            "status": "POST /v1/bookings/{ref}/status",
            "cancel": "POST /v1/bookings/{ref}/cancel",
            "rating": "POST /v1/bookings/{ref}/rating",
            "nearby": "GET /v1/nearby",
        },
    }


# =============================================================================
# Pricing Endpoints
# =============================================================================

@app.post("/v1/quote", response_model=Pricing, tags=["Pricing"])
def quote_trip(request: QuoteRequest):
    """
    Price a trip between two points.

    Example:
        ```json
        {
          "pickup": {"latitude": 26.8467, "longitude": 80.9462},
          "dropoff": {"latitude": 28.6139, "longitude": 77.2090},
          "rate_per_km": 15
        }
        ```
    """
    return PricingCalculator().quote(request.pickup, request.dropoff, request.rate_per_km, request.charges)


# =============================================================================
# Vehicle Endpoints
# =============================================================================

@app.post("/v1/vehicles", response_model=Vehicle, status_code=201, tags=["Vehicles"])
def register_vehicle(
    request: RegisterVehicleRequest,
    actor: ActorContext = Depends(get_actor),
    engine: DispatchEngine = Depends(get_engine),
):
    """Register a vehicle owned by the calling carrier."""
    fields = request.model_dump(exclude_none=True)
    vehicle = Vehicle(owner_id=actor.actor_id, **fields)
    return engine.register_vehicle(actor, vehicle)


@app.put("/v1/vehicles/{vehicle_id}/location", response_model=Vehicle, tags=["Vehicles"])
def update_vehicle_location(
    vehicle_id: str,
    request: LocationRequest,
    actor: ActorContext = Depends(get_actor),
    engine: DispatchEngine = Depends(get_engine),
):
    """Move a vehicle; owner only."""
    return engine.update_vehicle_location(vehicle_id, actor, request.location, request.address)


@app.get("/v1/nearby", response_model=NearbyResponse, tags=["Vehicles"])
def find_nearby(
    kind: EntityKind = Query(default=EntityKind.VEHICLE, description="vehicle or request"),
    latitude: float = Query(..., description="Centre latitude"),
    longitude: float = Query(..., description="Centre longitude"),
    radius_km: float = Query(default=settings.DEFAULT_SEARCH_RADIUS_KM, description="Search radius"),
    limit: int = Query(default=settings.NEARBY_RESULT_LIMIT, description="Max results"),
    vehicle_type: Optional[VehicleType] = Query(default=None),
    min_capacity_kg: Optional[float] = Query(default=None, ge=0),
    engine: DispatchEngine = Depends(get_engine),
):
    """
    Vehicles or pending requests within a radius, nearest first.

    Example:
        GET /v1/nearby?kind=vehicle&latitude=26.85&longitude=80.95&radius_km=50
    """
    point = Coordinates.model_construct(latitude=latitude, longitude=longitude)
    results = engine.find_nearby(
        kind,
        point,
        radius_km=radius_km,
        limit=limit,
        vehicle_type=vehicle_type,
        min_capacity_kg=min_capacity_kg,
    )
    return NearbyResponse(
        total=len(results),
        radius_km=radius_km,
        results=[_nearby_item(result) for result in results],
    )


def _nearby_item(result: NearbyResult) -> NearbyItem:
    is_vehicle = result.kind == EntityKind.VEHICLE
    return NearbyItem(
        kind=result.kind,
        id=result.entity_id,
        distance_km=result.display_distance_km,
        vehicle=result.entity if is_vehicle else None,
        booking=None if is_vehicle else result.entity,
    )


# =============================================================================
# Booking Endpoints
# =============================================================================

@app.post("/v1/bookings", response_model=Booking, status_code=201, tags=["Bookings"])
def create_booking(
    request: CreateBookingRequest,
    actor: ActorContext = Depends(get_actor),
    engine: DispatchEngine = Depends(get_engine),
):
    """Create a pending booking against a vehicle."""
    return engine.create_booking(
        actor,
        cargo=request.cargo,
        pickup=request.pickup,
        dropoff=request.dropoff,
        vehicle_id=request.vehicle_id,
        time_window=request.time_window,
        urgency=request.urgency,
    )


@app.get("/v1/bookings/{booking_ref}", response_model=Booking, tags=["Bookings"])
def get_booking(
    booking_ref: str,
    actor: ActorContext = Depends(get_actor),
    engine: DispatchEngine = Depends(get_engine),
):
    """Get a booking (parties, requested carrier or admin)."""
    return engine.get_booking(booking_ref, actor)


@app.post("/v1/bookings/{booking_ref}/respond", response_model=Booking, tags=["Bookings"])
def respond_to_booking(
    booking_ref: str,
    request: RespondRequest,
    actor: ActorContext = Depends(get_actor),
    engine: DispatchEngine = Depends(get_engine),
):
    """
    Accept or reject a pending booking.

    Of several concurrent accepts exactly one succeeds; the others get 409
    with reason ``already_accepted`` or ``vehicle_unavailable``.
    """
    return engine.respond_to_booking(
        booking_ref,
        actor,
        request.decision,
        vehicle_id=request.vehicle_id,
        note=request.note,
    )


@app.post("/v1/bookings/{booking_ref}/status", response_model=Booking, tags=["Bookings"])
def advance_status(
    booking_ref: str,
    request: AdvanceStatusRequest,
    actor: ActorContext = Depends(get_actor),
    engine: DispatchEngine = Depends(get_engine),
):
    """Move a booking to its next status."""
    return engine.advance_status(
        booking_ref,
        actor,
        request.status,
        note=request.note,
        location=request.location,
    )


@app.post("/v1/bookings/{booking_ref}/cancel", response_model=Booking, tags=["Bookings"])
def cancel_booking(
    booking_ref: str,
    request: CancelRequest,
    actor: ActorContext = Depends(get_actor),
    engine: DispatchEngine = Depends(get_engine),
):
    """Cancel a booking with a reason."""
    return engine.cancel_booking(booking_ref, actor, request.reason)


@app.post("/v1/bookings/{booking_ref}/rating", response_model=Rating, status_code=201, tags=["Bookings"])
def rate_booking(
    booking_ref: str,
    request: RateRequest,
    actor: ActorContext = Depends(get_actor),
    engine: DispatchEngine = Depends(get_engine),
):
    """Rate the other party of a delivered or completed booking."""
    return engine.rate_booking(booking_ref, actor, request.score, request.comment)


@app.patch("/v1/bookings/{booking_ref}/charges", response_model=Booking, tags=["Bookings"])
def update_charges(
    booking_ref: str,
    request: ChargesRequest,
    actor: ActorContext = Depends(get_actor),
    engine: DispatchEngine = Depends(get_engine),
):
    """Update additional charges (assigned carrier, before delivery)."""
    return engine.update_charges(booking_ref, actor, **request.model_dump())


@app.post("/v1/bookings/{booking_ref}/location", response_model=Booking, tags=["Bookings"])
def record_location(
    booking_ref: str,
    request: LocationRequest,
    actor: ActorContext = Depends(get_actor),
    engine: DispatchEngine = Depends(get_engine),
):
    """Report the vehicle's position during a trip."""
    return engine.record_location(booking_ref, actor, request.location, request.address)


@app.post("/v1/bookings/{booking_ref}/messages", response_model=Message, status_code=201, tags=["Bookings"])
def post_message(
    booking_ref: str,
    request: MessageRequest,
    actor: ActorContext = Depends(get_actor),
    engine: DispatchEngine = Depends(get_engine),
):
    """Send a message to the other party."""
    return engine.post_message(booking_ref, actor, request.text, request.message_type)


# =============================================================================
# Statistics Endpoints
# =============================================================================

@app.get("/v1/stats", tags=["Data"])
def get_stats(engine: DispatchEngine = Depends(get_engine)):
    """Booking, vehicle and identity counts."""
    stats_fn = getattr(engine.repository, "get_stats", None)
    return {
        "success": True,
        "database": stats_fn() if stats_fn else None,
        "geo_index": {
            "vehicles": engine.geo.count(EntityKind.VEHICLE),
            "requests": engine.geo.count(EntityKind.REQUEST),
        },
    }


# =============================================================================
# Server Lifecycle
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize logging on startup"""
    configure_logging()
    logger.info("AgroHaul API starting", version=settings.APP_VERSION, docs="/docs")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    logger.info("AgroHaul API shutting down")


# =============================================================================
# Main Entry Point (for direct execution)
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "agrohaul.server:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
