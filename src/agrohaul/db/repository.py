"""Repository interface and SQLite/SQL implementation for persistent storage."""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Callable, Optional

import structlog
from sqlalchemy import (
    create_engine,
    Column,
    String,
    Integer,
    Float,
    Boolean,
    DateTime,
    Text,
    Index,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from ..config import settings
from ..exceptions import ConflictError, NotFoundError
from ..models import Booking, BookingStatus, Identity, Vehicle

logger = structlog.get_logger(__name__)

Base = declarative_base()


class ClaimOutcome(str, Enum):
    """Result of the atomic booking + vehicle conditional write."""

    WON = "won"
    BOOKING_CHANGED = "booking_changed"
    VEHICLE_UNAVAILABLE = "vehicle_unavailable"


# =============================================================================
# Repository Interface
# =============================================================================

class DispatchRepository(ABC):
    """
    Persistence contract used by the dispatch engine.

    Every write that can race is conditional: bookings are written only if
    the stored ``version`` still equals the version the caller read, and a
    claim commits the booking write and the vehicle availability flip
    together or not at all.
    """

    # Bookings ----------------------------------------------------------------

    @abstractmethod
    def get_booking(self, ref: str) -> Optional[Booking]:
        """Load a booking by reference."""

    @abstractmethod
    def add_booking(self, booking: Booking) -> Booking:
        """Insert a new booking at version 0."""

    @abstractmethod
    def compare_and_swap(self, booking: Booking, expected_version: int) -> Optional[Booking]:
        """
        Replace the stored booking if its version is still ``expected_version``.

        Returns:
            The stored booking with its bumped version, or None if stale
        """

    @abstractmethod
    def claim(
        self,
        booking: Booking,
        expected_version: int,
        vehicle_id: str,
    ) -> tuple[ClaimOutcome, Optional[Booking]]:
        """
        Bind a pending booking to a vehicle in one atomic commit.

        The booking is written only if it is still pending at
        ``expected_version`` and the vehicle is still available; the vehicle
        flips to unavailable in the same commit.
        """

    @abstractmethod
    def list_bookings(self, status: Optional[BookingStatus] = None) -> list[Booking]:
        """List bookings, optionally by status."""

    # Vehicles ----------------------------------------------------------------

    @abstractmethod
    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        """Load a vehicle by ID."""

    @abstractmethod
    def save_vehicle(self, vehicle: Vehicle) -> Vehicle:
        """
        Insert or replace a vehicle (registration and seeding).

        Replacing keeps the stored availability; only ``claim`` and
        ``release_vehicle`` change it once the vehicle exists.
        """

    @abstractmethod
    def update_vehicle(self, vehicle_id: str, mutate: Callable[[Vehicle], None]) -> Vehicle:
        """Atomically apply ``mutate`` to a vehicle; availability is not written."""

    @abstractmethod
    def release_vehicle(self, vehicle_id: str) -> bool:
        """Mark a vehicle available again. Returns False if it does not exist."""

    @abstractmethod
    def list_vehicles(self, available_only: bool = False) -> list[Vehicle]:
        """List vehicles."""

    # Identities --------------------------------------------------------------

    @abstractmethod
    def get_identity(self, identity_id: str) -> Optional[Identity]:
        """Load an identity by ID."""

    @abstractmethod
    def save_identity(self, identity: Identity) -> Identity:
        """Insert or replace an identity."""

    @abstractmethod
    def ensure_identity(self, identity: Identity) -> Identity:
        """Insert ``identity`` unless one with its ID exists; return the stored one."""

    @abstractmethod
    def update_identity(self, identity_id: str, mutate: Callable[[Identity], None]) -> Identity:
        """Atomically apply ``mutate`` to an identity and return the result."""


# =============================================================================
# SQLAlchemy Models (Database Tables)
# =============================================================================

class BookingRecord(Base):
    """SQLAlchemy model for bookings table."""

    __tablename__ = "bookings"

    id = Column(String(40), primary_key=True)
    requester_id = Column(String(64), nullable=False, index=True)
    requested_vehicle_id = Column(String(64), nullable=False)
    carrier_id = Column(String(64), index=True)
    vehicle_id = Column(String(64), index=True)

    status = Column(String(24), nullable=False, default="pending", index=True)

    # Route
    pickup_latitude = Column(Float, nullable=False)
    pickup_longitude = Column(Float, nullable=False)
    dropoff_latitude = Column(Float, nullable=False)
    dropoff_longitude = Column(Float, nullable=False)

    # Pricing
    distance_km = Column(Float, nullable=False)
    total_amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow)

    # Full JSON blob
    full_data = Column(Text, nullable=False)

    __table_args__ = (
        Index("ix_bookings_status_created", "status", "created_at"),
    )


class VehicleRecord(Base):
    """SQLAlchemy model for vehicles table."""

    __tablename__ = "vehicles"

    id = Column(String(64), primary_key=True)
    owner_id = Column(String(64), nullable=False, index=True)
    vehicle_number = Column(String(20), nullable=False, unique=True)
    vehicle_type = Column(String(20), nullable=False, index=True)

    capacity_kg = Column(Float, nullable=False)
    rate_per_km = Column(Float, nullable=False)

    # Authoritative availability flag; full_data's copy is overridden on read
    is_available = Column(Boolean, nullable=False, default=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    latitude = Column(Float)
    longitude = Column(Float)

    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow)

    full_data = Column(Text, nullable=False)

    __table_args__ = (
        Index("ix_vehicles_type_available", "vehicle_type", "is_available", "is_active"),
    )


class IdentityRecord(Base):
    """SQLAlchemy model for identities table."""

    __tablename__ = "identities"

    id = Column(String(64), primary_key=True)
    role = Column(String(16), nullable=False, index=True)
    rating = Column(Float, default=0.0)
    total_ratings = Column(Integer, default=0)
    completed_trips = Column(Integer, default=0)
    earnings = Column(Float, default=0.0)

    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow)

    full_data = Column(Text, nullable=False)


# =============================================================================
# Repository Class
# =============================================================================

class SqlRepository(DispatchRepository):
    """Repository backed by a SQL database through SQLAlchemy."""

    def __init__(self, database_url: Optional[str] = None, write_attempts: Optional[int] = None):
        self.database_url = database_url or settings.DATABASE_URL
        self.write_attempts = write_attempts or settings.IDENTITY_UPDATE_ATTEMPTS

        # Ensure data directory exists
        if self.database_url.startswith("sqlite:///"):
            db_path = Path(self.database_url.replace("sqlite:///", ""))
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            self.database_url,
            echo=settings.DEBUG,
            connect_args={"check_same_thread": False} if "sqlite" in self.database_url else {},
        )
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

    def init_db(self) -> None:
        """Create all tables."""
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    # =========================================================================
    # Booking Operations
    # =========================================================================

    @staticmethod
    def _booking_columns(booking: Booking) -> dict:
        return {
            "requester_id": booking.requester_id,
            "requested_vehicle_id": booking.requested_vehicle_id,
            "carrier_id": booking.carrier_id,
            "vehicle_id": booking.vehicle_id,
            "status": booking.status.value,
            "pickup_latitude": booking.pickup.coordinates.latitude,
            "pickup_longitude": booking.pickup.coordinates.longitude,
            "dropoff_latitude": booking.dropoff.coordinates.latitude,
            "dropoff_longitude": booking.dropoff.coordinates.longitude,
            "distance_km": booking.pricing.distance_km,
            "total_amount": booking.pricing.total_amount,
            "currency": booking.pricing.currency,
            "version": booking.version,
            "updated_at": booking.updated_at,
            "full_data": booking.model_dump_json(),
        }

    def get_booking(self, ref: str) -> Optional[Booking]:
        """Get a booking by reference."""
        with self.get_session() as session:
            record = session.query(BookingRecord).filter_by(id=ref).first()
            if record and record.full_data:
                return Booking.model_validate_json(record.full_data)
            return None

    def add_booking(self, booking: Booking) -> Booking:
        """Insert a new booking."""
        stored = booking.model_copy(update={"version": 0})
        with self.get_session() as session:
            record = BookingRecord(id=stored.ref, created_at=stored.created_at, **self._booking_columns(stored))
            session.add(record)
            session.commit()
        return stored

    def compare_and_swap(self, booking: Booking, expected_version: int) -> Optional[Booking]:
        """Conditional write on the version column."""
        stored = booking.model_copy(update={"version": expected_version + 1})
        with self.get_session() as session:
            updated = (
                session.query(BookingRecord)
                .filter(
                    BookingRecord.id == booking.ref,
                    BookingRecord.version == expected_version,
                )
                .update(self._booking_columns(stored), synchronize_session=False)
            )
            if updated != 1:
                session.rollback()
                return None
            session.commit()
        return stored

    def claim(
        self,
        booking: Booking,
        expected_version: int,
        vehicle_id: str,
    ) -> tuple[ClaimOutcome, Optional[Booking]]:
        """Booking write and vehicle flip in one transaction."""
        stored = booking.model_copy(update={"version": expected_version + 1})
        with self.get_session() as session:
            booking_rows = (
                session.query(BookingRecord)
                .filter(
                    BookingRecord.id == booking.ref,
                    BookingRecord.version == expected_version,
                    BookingRecord.status == BookingStatus.PENDING.value,
                )
                .update(self._booking_columns(stored), synchronize_session=False)
            )
            if booking_rows != 1:
                session.rollback()
                return ClaimOutcome.BOOKING_CHANGED, None

            vehicle_rows = (
                session.query(VehicleRecord)
                .filter(
                    VehicleRecord.id == vehicle_id,
                    VehicleRecord.is_available == True,  # noqa: E712
                    VehicleRecord.is_active == True,  # noqa: E712
                )
                .update(
                    {
                        "is_available": False,
                        "version": VehicleRecord.version + 1,
                        "updated_at": datetime.utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if vehicle_rows != 1:
                session.rollback()
                return ClaimOutcome.VEHICLE_UNAVAILABLE, None

            session.commit()
        return ClaimOutcome.WON, stored

    def list_bookings(self, status: Optional[BookingStatus] = None) -> list[Booking]:
        """List bookings, newest first."""
        with self.get_session() as session:
            query = session.query(BookingRecord)
            if status:
                query = query.filter(BookingRecord.status == status.value)
            query = query.order_by(BookingRecord.created_at.desc())

            bookings = []
            for record in query.all():
                if record.full_data:
                    bookings.append(Booking.model_validate_json(record.full_data))
            return bookings

    # =========================================================================
    # Vehicle Operations
    # =========================================================================

    @staticmethod
    def _vehicle_from_record(record: VehicleRecord) -> Vehicle:
        vehicle = Vehicle.model_validate_json(record.full_data)
        return vehicle.model_copy(update={"is_available": record.is_available, "version": record.version})

    @staticmethod
    def _vehicle_columns(vehicle: Vehicle) -> dict:
        location = vehicle.current_location
        return {
            "owner_id": vehicle.owner_id,
            "vehicle_number": vehicle.vehicle_number,
            "vehicle_type": vehicle.vehicle_type.value,
            "capacity_kg": vehicle.capacity_kg,
            "rate_per_km": vehicle.rate_per_km,
            "is_active": vehicle.is_active,
            "latitude": location.latitude if location else None,
            "longitude": location.longitude if location else None,
            "updated_at": vehicle.updated_at,
            "full_data": vehicle.model_dump_json(),
        }

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        """Get a vehicle by ID."""
        with self.get_session() as session:
            record = session.query(VehicleRecord).filter_by(id=vehicle_id).first()
            if record and record.full_data:
                return self._vehicle_from_record(record)
            return None

    def save_vehicle(self, vehicle: Vehicle) -> Vehicle:
        """Save or replace a vehicle."""
        with self.get_session() as session:
            record = session.query(VehicleRecord).filter_by(id=vehicle.id).first()

            if record is None:
                record = VehicleRecord(id=vehicle.id, version=0, is_available=vehicle.is_available)
                session.add(record)
            else:
                record.version = record.version + 1

            # is_available is only set on insert; claim and release own it afterwards
            for column, value in self._vehicle_columns(vehicle).items():
                setattr(record, column, value)

            session.commit()
            return self._vehicle_from_record(record)

    def update_vehicle(self, vehicle_id: str, mutate: Callable[[Vehicle], None]) -> Vehicle:
        """Read-modify-write guarded by the version column."""
        for _ in range(self.write_attempts):
            with self.get_session() as session:
                record = session.query(VehicleRecord).filter_by(id=vehicle_id).first()
                if record is None:
                    raise NotFoundError("Vehicle", vehicle_id)
                vehicle = self._vehicle_from_record(record)
                mutate(vehicle)
                vehicle.version = record.version + 1

                columns = self._vehicle_columns(vehicle)
                columns["version"] = vehicle.version
                updated = (
                    session.query(VehicleRecord)
                    .filter(VehicleRecord.id == vehicle_id, VehicleRecord.version == record.version)
                    .update(columns, synchronize_session=False)
                )
                if updated == 1:
                    session.commit()
                    return vehicle
                session.rollback()
            logger.debug("Vehicle write raced, re-reading", vehicle_id=vehicle_id)
        raise ConflictError(f"Vehicle '{vehicle_id}' kept changing during update")

    def release_vehicle(self, vehicle_id: str) -> bool:
        """Mark a vehicle available again."""
        with self.get_session() as session:
            updated = (
                session.query(VehicleRecord)
                .filter(VehicleRecord.id == vehicle_id)
                .update(
                    {
                        "is_available": True,
                        "version": VehicleRecord.version + 1,
                        "updated_at": datetime.utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            session.commit()
            return updated == 1

    def list_vehicles(self, available_only: bool = False) -> list[Vehicle]:
        """List vehicles."""
        with self.get_session() as session:
            query = session.query(VehicleRecord)
            if available_only:
                query = query.filter(
                    VehicleRecord.is_available == True,  # noqa: E712
                    VehicleRecord.is_active == True,  # noqa: E712
                )
            return [self._vehicle_from_record(record) for record in query.all() if record.full_data]

    # =========================================================================
    # Identity Operations
    # =========================================================================

    @staticmethod
    def _identity_columns(identity: Identity) -> dict:
        return {
            "role": identity.role.value,
            "rating": identity.rating,
            "total_ratings": identity.total_ratings,
            "completed_trips": identity.completed_trips,
            "earnings": identity.earnings,
            "version": identity.version,
            "updated_at": identity.updated_at,
            "full_data": identity.model_dump_json(),
        }

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        """Get an identity by ID."""
        with self.get_session() as session:
            record = session.query(IdentityRecord).filter_by(id=identity_id).first()
            if record and record.full_data:
                return Identity.model_validate_json(record.full_data)
            return None

    def save_identity(self, identity: Identity) -> Identity:
        """Save or replace an identity."""
        with self.get_session() as session:
            record = session.query(IdentityRecord).filter_by(id=identity.id).first()
            stored = identity.model_copy(update={"version": (record.version + 1) if record else 0})

            if record is None:
                record = IdentityRecord(id=identity.id)
                session.add(record)

            for column, value in self._identity_columns(stored).items():
                setattr(record, column, value)

            session.commit()
            return stored

    def ensure_identity(self, identity: Identity) -> Identity:
        """Insert an identity if it is not stored yet."""
        existing = self.get_identity(identity.id)
        if existing is not None:
            return existing

        stored = identity.model_copy(update={"version": 0})
        with self.get_session() as session:
            record = IdentityRecord(id=stored.id, **self._identity_columns(stored))
            session.add(record)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.debug("Identity inserted concurrently", identity_id=identity.id)
                return self.get_identity(identity.id)
        return stored

    def update_identity(self, identity_id: str, mutate: Callable[[Identity], None]) -> Identity:
        """Read-modify-write guarded by the version column."""
        for _ in range(self.write_attempts):
            with self.get_session() as session:
                record = session.query(IdentityRecord).filter_by(id=identity_id).first()
                if record is None:
                    raise NotFoundError("Identity", identity_id)
                identity = Identity.model_validate_json(record.full_data)
                mutate(identity)
                identity.version = record.version + 1

                updated = (
                    session.query(IdentityRecord)
                    .filter(IdentityRecord.id == identity_id, IdentityRecord.version == record.version)
                    .update(self._identity_columns(identity), synchronize_session=False)
                )
                if updated == 1:
                    session.commit()
                    return identity
                session.rollback()
            logger.debug("Identity write raced, re-reading", identity_id=identity_id)
        raise ConflictError(f"Identity '{identity_id}' kept changing during update")

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> dict:
        """Get database statistics."""
        with self.get_session() as session:
            by_status = {
                status.value: session.query(BookingRecord).filter_by(status=status.value).count()
                for status in BookingStatus
            }
            return {
                "bookings": {
                    "total": session.query(BookingRecord).count(),
                    **by_status,
                },
                "vehicles": {
                    "total": session.query(VehicleRecord).count(),
                    "available": session.query(VehicleRecord).filter_by(is_available=True).count(),
                },
                "identities": {
                    "total": session.query(IdentityRecord).count(),
                },
            }


@lru_cache
def get_repository() -> SqlRepository:
    """Get cached repository instance."""
    repo = SqlRepository()
    repo.init_db()
    return repo
