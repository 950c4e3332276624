"""Pydantic v2 schemas for API request/response validation."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from haul_dispatch.domain.enums import (
    DriverPayMode,
    ExpenseCategory,
    ExpensePaidBy,
    RateType,
    TripLoadRole,
)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str


# ---------------------------------------------------------------------------
# Loads
# ---------------------------------------------------------------------------


class LoadCreate(BaseModel):
    """Schema for creating a draft load."""

    load_number: str | None = None
    posted_by_company_id: str | None = None
    pickup_city: str | None = None
    pickup_state: str | None = None
    delivery_city: str | None = None
    delivery_state: str | None = None
    rfd_date: date | None = None
    cubic_feet: float | None = Field(default=None, ge=0)
    weight_lbs: float | None = Field(default=None, ge=0)
    rate_per_unit: float | None = Field(default=None, ge=0)
    rate_type: RateType = RateType.PER_CUFT
    total_rate: float | None = Field(default=None, ge=0)
    is_open_to_counter: bool = False


class LoadResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    load_number: str | None = None
    company_id: str
    owner_id: str
    posted_by_company_id: str | None = None
    posting_status: str
    is_marketplace_visible: bool
    posting_type: str | None = None
    posted_at: datetime | None = None
    load_status: str
    pickup_city: str | None = None
    pickup_state: str | None = None
    delivery_city: str | None = None
    delivery_state: str | None = None
    rfd_date: date | None = None
    cubic_feet: float | None = None
    weight_lbs: float | None = None
    rate_per_unit: float | None = None
    rate_type: str | None = None
    total_rate: float | None = None
    is_open_to_counter: bool
    assigned_carrier_id: str | None = None
    carrier_assigned_at: datetime | None = None
    carrier_confirmed_at: datetime | None = None
    carrier_rate: float | None = None
    marketplace_request_id: str | None = None
    assigned_driver_id: str | None = None
    assigned_driver_name: str | None = None
    assigned_driver_phone: str | None = None
    assigned_truck_id: str | None = None
    assigned_trailer_id: str | None = None
    delivery_order: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoadEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    load_id: str
    event_type: str
    actor_company_id: str | None = None
    actor_owner_id: str | None = None
    from_status: str | None = None
    to_status: str | None = None
    data: dict | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class ProposedDates(BaseModel):
    load_date_start: date | None = None
    load_date_end: date | None = None
    delivery_date_start: date | None = None
    delivery_date_end: date | None = None


class LoadRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    load_id: str
    carrier_id: str
    carrier_owner_id: str
    status: str
    request_type: str
    offered_rate: float | None = None
    message: str | None = None
    proposed_load_date_start: date | None = None
    proposed_load_date_end: date | None = None
    proposed_delivery_date_start: date | None = None
    proposed_delivery_date_end: date | None = None
    responded_at: datetime | None = None
    response_message: str | None = None
    final_rate: float | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Cancellations
# ---------------------------------------------------------------------------


class LoadCancellationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    load_id: str
    load_number: str | None = None
    canceled_by_type: str
    canceled_by_company_id: str
    affected_company_id: str | None = None
    reason_code: str
    reason_details: str | None = None
    fault_party: str
    load_stage: str
    reposted: bool
    created_at: datetime | None = None


class CancellationStatsResponse(BaseModel):
    company_id: str
    loads_accepted_total: int
    loads_assigned_total: int
    loads_given_back: int
    loads_canceled_on_carriers: int
    give_back_rate: float
    cancel_rate: float
    cancellations_made: int
    cancellations_received: int
    by_reason: dict[str, int]


# ---------------------------------------------------------------------------
# Trips
# ---------------------------------------------------------------------------


class TripBase(BaseModel):
    reference_number: str | None = None
    driver_id: str | None = None
    truck_id: str | None = None
    trailer_id: str | None = None
    share_driver_with_companies: bool | None = None
    origin_city: str | None = None
    origin_state: str | None = None
    destination_city: str | None = None
    destination_state: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    total_miles: float | None = Field(default=None, ge=0)
    odometer_start: float | None = Field(default=None, ge=0)
    odometer_end: float | None = Field(default=None, ge=0)
    notes: str | None = None


class TripCreate(TripBase):
    """Leave trip_number empty to get the next number for the owner."""

    trip_number: str | None = None


class TripUpdate(TripBase):
    """Partial update; only the fields sent are changed."""


class TripResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    trip_number: str
    reference_number: str | None = None
    status: str
    driver_id: str | None = None
    truck_id: str | None = None
    trailer_id: str | None = None
    share_driver_with_companies: bool
    origin_city: str | None = None
    origin_state: str | None = None
    destination_city: str | None = None
    destination_state: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    total_miles: float | None = None
    odometer_start: float | None = None
    odometer_end: float | None = None
    pay_mode: DriverPayMode | None = None
    rate_per_mile: float | None = None
    rate_per_cuft: float | None = None
    percent_of_revenue: float | None = None
    flat_daily_rate: float | None = None
    revenue_total: float | None = None
    driver_pay_total: float | None = None
    expenses_total: float | None = None
    profit_total: float | None = None
    total_cuft: float | None = None
    reimbursable_total: float | None = None
    cash_collected_total: float | None = None
    net_driver_pay: float | None = None
    driver_pay_breakdown: dict | None = None
    settled_at: datetime | None = None
    notes: str | None = None


class TripLoadResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    trip_id: str
    load_id: str
    sequence_index: int
    role: TripLoadRole


class TripLoadDetail(TripLoadResponse):
    load: LoadResponse


class TripExpenseCreate(BaseModel):
    category: ExpenseCategory = ExpenseCategory.OTHER
    description: str | None = None
    amount: float = Field(gt=0)
    paid_by: ExpensePaidBy | None = None
    incurred_at: date | None = None


class TripExpenseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    trip_id: str
    category: str
    description: str | None = None
    amount: float
    paid_by: str | None = None
    incurred_at: date | None = None


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


class BadgeCounts(BaseModel):
    posted_loads: int = 0
    incoming_requests: int = 0
    my_pending_requests: int = 0
    assigned_loads: int = 0
    awaiting_confirmation: int = 0
    open_trips: int = 0
    trips_to_settle: int = 0
