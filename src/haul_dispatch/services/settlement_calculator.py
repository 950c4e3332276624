"""Settlement Calculator - Driver pay formulas.

Pure functions only: no session, no clock. Trip settlement
(settlement_service.py) gathers the inputs from the ledger store and
persists what these functions return.
"""

import logging
import math
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from typing import Iterable, Optional, Union

from haul_dispatch.domain.enums import DriverPayMode, ExpensePaidBy

logger = logging.getLogger(__name__)

DateLike = Union[str, date, datetime, None]


def _num(value) -> float:
    return float(value) if value else 0.0


def _as_datetime(value: DateLike) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    else:
        moment = datetime.fromisoformat(str(value))
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def count_pay_days(start_date: DateLike, end_date: DateLike) -> int:
    """Inclusive day count between two dates, never less than one.

    Partial days round up, so a trip from 08:00 to 20:00 the same day pays
    two days. Missing dates count as a single day.
    """
    start = _as_datetime(start_date)
    end = _as_datetime(end_date)
    if start is None or end is None:
        return 1
    diff_days = (end - start).total_seconds() / 86400
    return max(1, math.ceil(diff_days) + 1)


def calculate_driver_pay(
    mode: Optional[str],
    rate_per_mile: Optional[float],
    rate_per_cuft: Optional[float],
    percent_of_revenue: Optional[float],
    flat_daily_rate: Optional[float],
    total_miles: Optional[float],
    total_cuft: Optional[float],
    total_revenue: Optional[float],
    start_date: DateLike = None,
    end_date: DateLike = None,
) -> float:
    """Gross driver pay for a trip, rounded to cents.

    Null rates and totals count as zero. An unknown or missing pay mode
    pays nothing.
    """
    try:
        pay_mode = DriverPayMode(mode) if mode else None
    except ValueError:
        logger.warning("Unknown driver pay mode %s, paying 0", mode)
        return 0.0

    if pay_mode == DriverPayMode.PER_MILE:
        gross = _num(rate_per_mile) * _num(total_miles)
    elif pay_mode == DriverPayMode.PER_CUFT:
        gross = _num(rate_per_cuft) * _num(total_cuft)
    elif pay_mode == DriverPayMode.PER_MILE_AND_CUFT:
        gross = _num(rate_per_mile) * _num(total_miles) + _num(rate_per_cuft) * _num(total_cuft)
    elif pay_mode == DriverPayMode.PERCENT_OF_REVENUE:
        gross = (_num(percent_of_revenue) / 100) * _num(total_revenue)
    elif pay_mode == DriverPayMode.FLAT_DAILY_RATE:
        gross = _num(flat_daily_rate) * count_pay_days(start_date, end_date)
    else:
        gross = 0.0

    return round(gross, 2)


@dataclass
class ExpenseSummary:
    """Trip expenses split by who paid them."""

    total: float = 0.0
    reimbursable: float = 0.0  # paid out of the driver's pocket
    cash_collected: float = 0.0  # cash the driver took on the company's behalf


def summarize_expenses(expenses: Iterable) -> ExpenseSummary:
    """Sum expense rows (anything with `amount` and `paid_by`)."""
    summary = ExpenseSummary()
    for expense in expenses:
        amount = _num(getattr(expense, "amount", None))
        paid_by = getattr(expense, "paid_by", None)
        summary.total += amount
        if paid_by == ExpensePaidBy.DRIVER_PERSONAL.value:
            summary.reimbursable += amount
        elif paid_by == ExpensePaidBy.DRIVER_CASH.value:
            summary.cash_collected += amount
    summary.total = round(summary.total, 2)
    summary.reimbursable = round(summary.reimbursable, 2)
    summary.cash_collected = round(summary.cash_collected, 2)
    return summary


def calculate_net_pay(gross_pay: float, reimbursable: float, cash_collected: float) -> float:
    """Net pay = gross + reimbursable expenses - cash collected."""
    return round(_num(gross_pay) + _num(reimbursable) - _num(cash_collected), 2)


@dataclass
class TripMetrics:
    total_miles: float
    total_cuft: float
    total_revenue: float


def extract_trip_metrics(trip, loads: Iterable) -> TripMetrics:
    """Miles from the odometer when both readings exist, else the planned miles.

    Cubic feet and revenue are summed over the loads riding on the trip.
    """
    if trip.odometer_start is not None and trip.odometer_end is not None:
        miles = max(0.0, _num(trip.odometer_end) - _num(trip.odometer_start))
    else:
        miles = _num(trip.total_miles)

    total_cuft = 0.0
    total_revenue = 0.0
    for load in loads:
        total_cuft += _num(load.cubic_feet)
        total_revenue += _num(load.total_rate)

    return TripMetrics(
        total_miles=round(miles, 2),
        total_cuft=round(total_cuft, 2),
        total_revenue=round(total_revenue, 2),
    )


@dataclass
class PayBreakdown:
    """Everything a settlement stores about the driver's pay."""

    pay_mode: Optional[str]
    total_miles: float
    total_cuft: float
    total_revenue: float
    days: int
    gross_pay: float
    reimbursable: float
    cash_collected: float
    net_pay: float

    def to_dict(self) -> dict:
        return asdict(self)


def build_pay_breakdown(trip, loads: Iterable, expenses: Iterable) -> PayBreakdown:
    """Run the pay formulas over a trip's pay snapshot, loads, and expenses."""
    metrics = extract_trip_metrics(trip, loads)
    summary = summarize_expenses(expenses)
    gross = calculate_driver_pay(
        trip.pay_mode,
        trip.rate_per_mile,
        trip.rate_per_cuft,
        trip.percent_of_revenue,
        trip.flat_daily_rate,
        metrics.total_miles,
        metrics.total_cuft,
        metrics.total_revenue,
        trip.start_date,
        trip.end_date,
    )
    return PayBreakdown(
        pay_mode=trip.pay_mode,
        total_miles=metrics.total_miles,
        total_cuft=metrics.total_cuft,
        total_revenue=metrics.total_revenue,
        days=count_pay_days(trip.start_date, trip.end_date),
        gross_pay=gross,
        reimbursable=summary.reimbursable,
        cash_collected=summary.cash_collected,
        net_pay=calculate_net_pay(gross, summary.reimbursable, summary.cash_collected),
    )
