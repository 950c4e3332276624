"""Domain enumerations for the dispatch engine.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


# ---------------------------------------------------------------------------
# Load Enums
# ---------------------------------------------------------------------------


class PostingStatus(str, Enum):
    """Whether a load is listed on the marketplace."""

    DRAFT = "draft"
    POSTED = "posted"


class PostingType(str, Enum):
    """How a posted load is offered to carriers."""

    LIVE_LOAD = "live_load"
    RFD = "rfd"
    PICKUP = "pickup"


class LoadStatus(str, Enum):
    """Lifecycle status of a load."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    LOADING = "loading"
    LOADED = "loaded"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class RateType(str, Enum):
    """Unit the load's posted rate is quoted in."""

    PER_CUFT = "per_cuft"
    PER_LB = "per_lb"
    FLAT = "flat"


class LoadEventType(str, Enum):
    """Type of event in the load audit trail."""

    CREATED = "created"
    POSTED = "posted"
    UNPOSTED = "unposted"
    STATUS_CHANGED = "status_changed"
    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_ACCEPTED = "request_accepted"
    REQUEST_DECLINED = "request_declined"
    REQUEST_WITHDRAWN = "request_withdrawn"
    REQUEST_EXPIRED = "request_expired"
    CARRIER_CONFIRMED = "carrier_confirmed"
    CARRIER_CANCELLED = "carrier_cancelled"
    GIVEN_BACK = "given_back"
    ADDED_TO_TRIP = "added_to_trip"
    REMOVED_FROM_TRIP = "removed_from_trip"


# ---------------------------------------------------------------------------
# Marketplace Request Enums
# ---------------------------------------------------------------------------


class RequestStatus(str, Enum):
    """Status of a carrier's request against a load."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"


class RequestType(str, Enum):
    """Whether the carrier takes the listed rate or proposes its own."""

    ACCEPT_LISTED = "accept_listed"
    COUNTER_OFFER = "counter_offer"


# ---------------------------------------------------------------------------
# Trip Enums
# ---------------------------------------------------------------------------


class TripStatus(str, Enum):
    """Status of a trip."""

    PLANNED = "planned"
    ACTIVE = "active"
    EN_ROUTE = "en_route"
    COMPLETED = "completed"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class TripLoadRole(str, Enum):
    """Role a load plays within a trip."""

    PRIMARY = "primary"
    BACKHAUL = "backhaul"
    PARTIAL = "partial"


class VehicleType(str, Enum):
    """Kind of power unit. Only tractors pull trailers."""

    TRACTOR = "tractor"
    BOX_TRUCK = "box_truck"
    STRAIGHT_TRUCK = "straight_truck"
    CARGO_VAN = "cargo_van"


class ExpenseCategory(str, Enum):
    """Category of a trip expense."""

    FUEL = "fuel"
    TOLLS = "tolls"
    LODGING = "lodging"
    MAINTENANCE = "maintenance"
    DRIVER_PAY = "driver_pay"
    OTHER = "other"


class ExpensePaidBy(str, Enum):
    """Who paid a trip expense."""

    DRIVER_PERSONAL = "driver_personal"
    DRIVER_CASH = "driver_cash"
    COMPANY_CARD = "company_card"
    FUEL_CARD = "fuel_card"


class DriverPayMode(str, Enum):
    """How a driver is compensated for a trip."""

    PER_MILE = "per_mile"
    PER_CUFT = "per_cuft"
    PER_MILE_AND_CUFT = "per_mile_and_cuft"
    PERCENT_OF_REVENUE = "percent_of_revenue"
    FLAT_DAILY_RATE = "flat_daily_rate"


# ---------------------------------------------------------------------------
# Cancellation Enums
# ---------------------------------------------------------------------------


class CanceledByType(str, Enum):
    """Party that ended a carrier assignment."""

    COMPANY = "company"
    CARRIER = "carrier"


class FaultParty(str, Enum):
    """Party charged with a cancellation in company stats."""

    COMPANY = "company"
    CARRIER = "carrier"


class CancellationStage(str, Enum):
    """How far the carrier assignment had progressed when it was ended."""

    ACCEPTED = "accepted"
    CONFIRMED = "confirmed"


class CompanyCancelReason(str, Enum):
    """Reasons a load's company can give for dropping a carrier."""

    CUSTOMER_CHANGED_DATES = "customer_changed_dates"
    CUSTOMER_CANCELED = "customer_canceled"
    LOAD_UNAVAILABLE = "load_unavailable"
    CARRIER_NOT_RESPONDING = "carrier_not_responding"
    CARRIER_REQUESTED = "carrier_requested"
    FOUND_DIFFERENT_CARRIER = "found_different_carrier"
    OTHER = "other"


class CarrierGiveBackReason(str, Enum):
    """Reasons a carrier can give for handing a load back."""

    SCHEDULE_CONFLICT = "schedule_conflict"
    EQUIPMENT_ISSUE = "equipment_issue"
    FOUND_BETTER_LOAD = "found_better_load"
    EMERGENCY = "emergency"
    CAPACITY_ISSUE = "capacity_issue"
    DRIVER_UNAVAILABLE = "driver_unavailable"
    OTHER = "other"
