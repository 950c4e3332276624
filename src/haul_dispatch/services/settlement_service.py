"""Settlement Service - Persists trip financials and settles completed trips.

This is business logic around the pure formulas in settlement_calculator:
it gathers a trip's loads and expenses from the ledger store, runs the
driver pay snapshot through the formulas, and writes the aggregates back
onto the trip.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from haul_dispatch.domain.enums import TripStatus
from haul_dispatch.domain.errors import InvalidTransition, TripClosed
from haul_dispatch.domain.models import Trip
from haul_dispatch.services.authorization import ActorContext, require_owner
from haul_dispatch.services.change_notifier import ChangeNotifier
from haul_dispatch.services.repository import LedgerRepository
from haul_dispatch.services.settlement_calculator import (
    PayBreakdown,
    build_pay_breakdown,
    summarize_expenses,
)
from haul_dispatch.services.trip_assignment import trip_changed
from haul_dispatch.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class SettlementService:
    """Computes and settles driver pay for trips.

    Both operations run in their own UnitOfWork; the trip row is re-read
    inside the transaction so totals always match the loads and expenses
    committed at that moment.
    """

    def __init__(self, notifier: Optional[ChangeNotifier] = None):
        self.notifier = notifier

    async def _apply_financials(self, repo: LedgerRepository, trip: Trip) -> PayBreakdown:
        loads = await repo.loads_on_trip(trip.id)
        expenses = await repo.trip_expenses(trip.id)
        breakdown = build_pay_breakdown(trip, loads, expenses)
        summary = summarize_expenses(expenses)

        trip.revenue_total = breakdown.total_revenue
        trip.total_cuft = breakdown.total_cuft
        trip.driver_pay_total = breakdown.gross_pay
        trip.expenses_total = summary.total
        trip.reimbursable_total = summary.reimbursable
        trip.cash_collected_total = summary.cash_collected
        trip.net_driver_pay = breakdown.net_pay
        trip.profit_total = round(breakdown.total_revenue - breakdown.gross_pay - summary.total, 2)
        trip.driver_pay_breakdown = breakdown.to_dict()
        return breakdown

    # ------------------------------------------------------------------
    # Financials
    # ------------------------------------------------------------------

    async def compute_trip_financials(
        self, db: AsyncSession, actor: ActorContext, trip_id: str
    ) -> Trip:
        """Recompute revenue, pay, expense and profit totals without settling."""
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            trip = await repo.get_trip(trip_id, fresh=True)
            require_owner(actor, trip, "Trip")
            if trip.status == TripStatus.SETTLED.value:
                raise TripClosed(f"Trip {trip.trip_number} is settled; its totals are final")

            breakdown = await self._apply_financials(repo, trip)
            uow.record(trip_changed(trip, actor, "financials_updated"))

        logger.info(
            "Trip %s financials: revenue=%s gross=%s net=%s",
            trip.trip_number, breakdown.total_revenue, breakdown.gross_pay, breakdown.net_pay,
        )
        return trip

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def settle_trip(self, db: AsyncSession, actor: ActorContext, trip_id: str) -> Trip:
        """Freeze the final pay for a completed trip and mark it settled.

        Raises:
            InvalidTransition: If the trip is not completed.
        """
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            trip = await repo.get_trip(trip_id, fresh=True)
            require_owner(actor, trip, "Trip")
            if trip.status != TripStatus.COMPLETED.value:
                raise InvalidTransition(
                    trip.status, TripStatus.SETTLED.value, "Only completed trips can be settled"
                )

            breakdown = await self._apply_financials(repo, trip)
            trip.status = TripStatus.SETTLED.value
            trip.settled_at = datetime.now(timezone.utc)
            uow.record(trip_changed(trip, actor, "settled"))

        logger.info(
            "Trip %s settled: gross=%s reimbursable=%s cash=%s net=%s",
            trip.trip_number,
            breakdown.gross_pay,
            breakdown.reimbursable,
            breakdown.cash_collected,
            breakdown.net_pay,
        )
        return trip
