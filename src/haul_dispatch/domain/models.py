"""SQLAlchemy ORM models for the dispatch engine.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- DateTime for timestamps (no TIMESTAMPTZ)
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from haul_dispatch.infra.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Companies / Fleet
# ---------------------------------------------------------------------------


class Company(Base):
    """A moving company. Acts as shipper (owns loads) and as carrier (bids on loads)."""

    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    owner_id = Column(String(36), nullable=True, index=True)
    loads_accepted_total = Column(Integer, nullable=False, default=0)
    loads_given_back = Column(Integer, nullable=False, default=0)
    loads_assigned_total = Column(Integer, nullable=False, default=0)
    loads_canceled_on_carriers = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_utcnow)


class Driver(Base):
    """Driver with default compensation terms. Trips snapshot these on assignment."""

    __tablename__ = "drivers"

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(36), nullable=False, index=True)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(50))
    pay_mode = Column(String(30))  # DriverPayMode
    rate_per_mile = Column(Float)
    rate_per_cuft = Column(Float)
    percent_of_revenue = Column(Float)
    flat_daily_rate = Column(Float)
    created_at = Column(DateTime, default=_utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Truck(Base):
    """Power unit. vehicle_type decides whether a trailer is required."""

    __tablename__ = "trucks"

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(36), nullable=False, index=True)
    unit_number = Column(String(50), nullable=False)
    vehicle_type = Column(String(30), nullable=False, default="tractor")  # VehicleType
    created_at = Column(DateTime, default=_utcnow)


class Trailer(Base):
    __tablename__ = "trailers"

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(36), nullable=False, index=True)
    unit_number = Column(String(50), nullable=False)
    created_at = Column(DateTime, default=_utcnow)


# ---------------------------------------------------------------------------
# Loads / Marketplace
# ---------------------------------------------------------------------------


class Load(Base):
    """A shippable unit.

    The carrier fields and the trip assignment are two exclusive ways of
    fulfilling a load. Equipment and driver fields are inherited from the
    trip the load rides on and are cleared when it leaves that trip.
    """

    __tablename__ = "loads"

    id = Column(String(36), primary_key=True, default=_uuid)
    load_number = Column(String(50))
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    owner_id = Column(String(36), nullable=False, index=True)
    posted_by_company_id = Column(String(36), ForeignKey("companies.id"), nullable=True)

    # Marketplace posting
    posting_status = Column(String(20), nullable=False, default="draft")  # PostingStatus
    is_marketplace_visible = Column(Boolean, nullable=False, default=False)
    posting_type = Column(String(20))  # PostingType
    posted_at = Column(DateTime)

    # Lifecycle
    load_status = Column(String(20), nullable=False, default="pending", index=True)  # LoadStatus

    # Route / dates
    pickup_city = Column(String(100))
    pickup_state = Column(String(50))
    delivery_city = Column(String(100))
    delivery_state = Column(String(50))
    rfd_date = Column(Date)

    # Size
    cubic_feet = Column(Float)
    weight_lbs = Column(Float)

    # Pricing
    rate_per_unit = Column(Float)
    rate_type = Column(String(20), default="per_cuft")  # RateType
    total_rate = Column(Float)
    is_open_to_counter = Column(Boolean, nullable=False, default=False)

    # Carrier assignment (marketplace path)
    assigned_carrier_id = Column(String(36), ForeignKey("companies.id"), nullable=True, index=True)
    carrier_assigned_at = Column(DateTime)
    carrier_confirmed_at = Column(DateTime)
    carrier_rate = Column(Float)
    carrier_rate_type = Column(String(20))
    marketplace_request_id = Column(String(36), nullable=True)

    # Fulfilment (inherited from trip)
    assigned_driver_id = Column(String(36), ForeignKey("drivers.id"), nullable=True)
    assigned_driver_name = Column(String(255))
    assigned_driver_phone = Column(String(50))
    assigned_truck_id = Column(String(36), ForeignKey("trucks.id"), nullable=True)
    assigned_trailer_id = Column(String(36), ForeignKey("trailers.id"), nullable=True)
    delivery_order = Column(Integer)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    requests = relationship("LoadRequest", back_populates="load")
    events = relationship("LoadEvent", back_populates="load")


class LoadRequest(Base):
    """A carrier's bid or claim against a posted load."""

    __tablename__ = "load_requests"
    __table_args__ = (
        # Store-level backstop for the one-accepted-request-per-load rule
        Index(
            "uq_load_requests_accepted_per_load",
            "load_id",
            unique=True,
            sqlite_where=text("status = 'accepted'"),
            postgresql_where=text("status = 'accepted'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    load_id = Column(String(36), ForeignKey("loads.id"), nullable=False, index=True)
    carrier_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    carrier_owner_id = Column(String(36), nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)  # RequestStatus
    request_type = Column(String(20), nullable=False, default="accept_listed")  # RequestType
    offered_rate = Column(Float)
    message = Column(Text)
    proposed_load_date_start = Column(Date)
    proposed_load_date_end = Column(Date)
    proposed_delivery_date_start = Column(Date)
    proposed_delivery_date_end = Column(Date)

    # Response
    responded_at = Column(DateTime)
    responded_by_id = Column(String(36))
    response_message = Column(Text)
    final_rate = Column(Float)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    load = relationship("Load", back_populates="requests")


class LoadCancellation(Base):
    """Audit record written whenever a carrier assignment is ended early."""

    __tablename__ = "load_cancellations"

    id = Column(String(36), primary_key=True, default=_uuid)
    load_id = Column(String(36), ForeignKey("loads.id"), nullable=False, index=True)
    load_number = Column(String(50))
    canceled_by_type = Column(String(20), nullable=False)  # CanceledByType
    canceled_by_company_id = Column(String(36), nullable=False)
    canceled_by_user_id = Column(String(36), nullable=False)
    affected_company_id = Column(String(36), nullable=True)
    reason_code = Column(String(50), nullable=False)
    reason_details = Column(Text)
    fault_party = Column(String(20), nullable=False)  # FaultParty
    load_stage = Column(String(20), nullable=False)  # CancellationStage
    reposted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_utcnow)


class LoadEvent(Base):
    """Audit trail of every engine mutation touching a load."""

    __tablename__ = "load_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    load_id = Column(String(36), ForeignKey("loads.id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)  # LoadEventType
    actor_company_id = Column(String(36))
    actor_owner_id = Column(String(36))
    from_status = Column(String(20))
    to_status = Column(String(20))
    data = Column(JSON)
    created_at = Column(DateTime, default=_utcnow)

    load = relationship("Load", back_populates="events")


# ---------------------------------------------------------------------------
# Trips
# ---------------------------------------------------------------------------


class Trip(Base):
    """A driver-and-equipment-bound run carrying one or more loads."""

    __tablename__ = "trips"
    __table_args__ = (
        UniqueConstraint("owner_id", "trip_number", name="uq_trips_owner_trip_number"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(36), nullable=False, index=True)
    trip_number = Column(String(50), nullable=False)
    reference_number = Column(String(100))
    status = Column(String(20), nullable=False, default="planned")  # TripStatus

    driver_id = Column(String(36), ForeignKey("drivers.id"), nullable=True)
    truck_id = Column(String(36), ForeignKey("trucks.id"), nullable=True)
    trailer_id = Column(String(36), ForeignKey("trailers.id"), nullable=True)
    share_driver_with_companies = Column(Boolean, nullable=False, default=True)

    origin_city = Column(String(100))
    origin_state = Column(String(50))
    destination_city = Column(String(100))
    destination_state = Column(String(50))
    start_date = Column(Date)
    end_date = Column(Date)
    total_miles = Column(Float)
    odometer_start = Column(Float)
    odometer_end = Column(Float)

    # Driver pay snapshot, copied from the driver when assigned
    pay_mode = Column(String(30))
    rate_per_mile = Column(Float)
    rate_per_cuft = Column(Float)
    percent_of_revenue = Column(Float)
    flat_daily_rate = Column(Float)

    # Financial aggregates
    revenue_total = Column(Float, default=0)
    driver_pay_total = Column(Float, default=0)
    expenses_total = Column(Float, default=0)
    profit_total = Column(Float, default=0)
    total_cuft = Column(Float)
    reimbursable_total = Column(Float, default=0)
    cash_collected_total = Column(Float, default=0)
    net_driver_pay = Column(Float)
    driver_pay_breakdown = Column(JSON)
    settled_at = Column(DateTime)

    notes = Column(Text)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    trip_loads = relationship(
        "TripLoad", back_populates="trip", order_by="TripLoad.sequence_index"
    )
    expenses = relationship("TripExpense", back_populates="trip")


class TripLoad(Base):
    """Ordered assignment of a load to a trip. A load rides on one trip at a time."""

    __tablename__ = "trip_loads"
    __table_args__ = (
        UniqueConstraint("load_id", name="uq_trip_loads_load"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(36), nullable=False, index=True)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=False, index=True)
    load_id = Column(String(36), ForeignKey("loads.id"), nullable=False)
    sequence_index = Column(Integer, nullable=False)
    role = Column(String(20), nullable=False, default="primary")  # TripLoadRole
    created_at = Column(DateTime, default=_utcnow)

    # Relationships
    trip = relationship("Trip", back_populates="trip_loads")
    load = relationship("Load")


class TripExpense(Base):
    __tablename__ = "trip_expenses"

    id = Column(String(36), primary_key=True, default=_uuid)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=False, index=True)
    owner_id = Column(String(36), nullable=False)
    category = Column(String(30), nullable=False, default="other")  # ExpenseCategory
    description = Column(Text)
    amount = Column(Float, nullable=False)
    paid_by = Column(String(30))  # ExpensePaidBy
    incurred_at = Column(Date)
    created_at = Column(DateTime, default=_utcnow)

    trip = relationship("Trip", back_populates="expenses")
