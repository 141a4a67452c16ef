"""
SQLAlchemy ORM models  (PostgreSQL in production, SQLite in tests).

Tables
------
* ``users``  -- identities referenced by rides (passengers and drivers)
* ``rides``  -- one row per Ride aggregate; route, passengers and approvals
  are embedded JSON documents so the whole aggregate is written by a single
  versioned UPDATE.

Indexes
-------
* **B-Tree** on ``status`` (available / active look-ups) and ``driver_id``
  (driver's active ride).

Concurrency
-----------
``rides.version`` is the optimistic-concurrency token.  See
``SqlRideRepository.save``.
"""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Boolean,
    func,
)

from .database import Base
from src.domain.enums import RideStatus, UserRole


def _values(enum_cls):
    return [member.value for member in enum_cls]


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(
        Enum(UserRole, values_callable=_values),
        default=UserRole.PASSENGER,
        nullable=False,
    )
    vehicle = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # {"start": {"name", "location": {"type": "Point", "coordinates": [lng, lat]}}, ...}
    route = Column(JSON, nullable=False)
    passengers = Column(JSON, nullable=False, default=list)
    approvals = Column(JSON, nullable=False, default=list)

    status = Column(
        Enum(RideStatus, values_callable=_values),
        default=RideStatus.SEARCHING,
        nullable=False,
    )
    base_fare = Column(Float, default=0.0, nullable=False)
    current_total = Column(Float, default=0.0, nullable=False)
    otp = Column(String(4), nullable=False)
    otp_verified = Column(Boolean, default=False, nullable=False)
    seats_requested = Column(Integer, default=1, nullable=False)
    max_passengers = Column(Integer, default=3, nullable=False)
    version = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_driver", "driver_id"),
    )
