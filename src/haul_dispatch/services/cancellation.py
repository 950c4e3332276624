"""Cancellation & Repost - ending a carrier assignment early.

Either side can end an assignment while the load is still `accepted` or
`loading`: the load's company cancels the carrier, or the carrier gives the
load back. Both release the load in one transaction. They clear the carrier,
driver, and equipment, take the load off any trip, reset it to `pending`,
invalidate the accepted request, write a LoadCancellation audit row, and
charge the at-fault company's counter.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from haul_dispatch.domain.enums import (
    CanceledByType,
    CancellationStage,
    CarrierGiveBackReason,
    CompanyCancelReason,
    FaultParty,
    LoadEventType,
    LoadStatus,
    RequestStatus,
)
from haul_dispatch.domain.errors import CannotCancelAtStage, Unauthorized
from haul_dispatch.domain.events import TripChanged
from haul_dispatch.domain.models import Load, LoadCancellation
from haul_dispatch.services.authorization import (
    ActorContext,
    is_assigned_carrier,
    require_load_manager,
)
from haul_dispatch.services.change_notifier import ChangeNotifier
from haul_dispatch.services.load_lifecycle import apply_posting, apply_unposting, load_changed
from haul_dispatch.services.load_state_machine import LoadStateMachine
from haul_dispatch.services.repository import LedgerRepository
from haul_dispatch.services.request_negotiation import request_changed
from haul_dispatch.services.trip_assignment import clear_fulfilment, detach_load
from haul_dispatch.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

# Company-side reasons that put the blame on the carrier
CARRIER_FAULT_REASONS = {
    CompanyCancelReason.CARRIER_NOT_RESPONDING,
    CompanyCancelReason.CARRIER_REQUESTED,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def fault_party_for(reason: CompanyCancelReason) -> FaultParty:
    return FaultParty.CARRIER if reason in CARRIER_FAULT_REASONS else FaultParty.COMPANY


class CancellationService:
    """Company cancellations, carrier give-backs, and their statistics."""

    def __init__(self, notifier: Optional[ChangeNotifier] = None):
        self.notifier = notifier
        self.state_machine = LoadStateMachine()

    def _check_stage(self, load: Load) -> CancellationStage:
        if not load.assigned_carrier_id:
            raise CannotCancelAtStage(f"Load {load.id} has no carrier assignment to cancel")
        if not self.state_machine.is_carrier_cancellable(load.load_status):
            raise CannotCancelAtStage(
                f"Load {load.id} is {load.load_status}; carrier assignments can only be "
                f"cancelled while accepted or loading"
            )
        if load.carrier_confirmed_at is not None:
            return CancellationStage.CONFIRMED
        return CancellationStage.ACCEPTED

    async def _release(
        self,
        repo: LedgerRepository,
        uow: UnitOfWork,
        actor: ActorContext,
        load: Load,
        repost: bool,
        request_status: RequestStatus,
        response_message: str,
    ) -> None:
        """Undo the carrier assignment on the load and its accepted request."""
        trip_load = await repo.trip_load_for_load(load.id)
        if trip_load is not None:
            trip_id = await detach_load(repo, trip_load, load, actor)
            uow.record(
                TripChanged(
                    entity_id=trip_id,
                    company_id=actor.company_id,
                    owner_id=trip_load.owner_id,
                    action="load_removed",
                )
            )

        now = _now()
        for req in await repo.requests_for_load(load.id, RequestStatus.ACCEPTED.value):
            req.status = request_status.value
            req.responded_at = now
            req.responded_by_id = actor.owner_id
            req.response_message = response_message
            uow.record(request_changed(req, request_status.value))

        load.assigned_carrier_id = None
        load.carrier_assigned_at = None
        load.carrier_confirmed_at = None
        load.carrier_rate = None
        load.carrier_rate_type = None
        load.marketplace_request_id = None
        clear_fulfilment(load)
        load.load_status = LoadStatus.PENDING.value
        if repost:
            apply_posting(load)
        else:
            apply_unposting(load)

    # ------------------------------------------------------------------
    # Company side
    # ------------------------------------------------------------------

    async def cancel_carrier_assignment(
        self,
        db: AsyncSession,
        actor: ActorContext,
        load_id: str,
        reason_code: str,
        note: Optional[str] = None,
        repost_to_marketplace: bool = False,
    ) -> LoadCancellation:
        """The load's company drops its carrier."""
        reason = CompanyCancelReason(getattr(reason_code, "value", reason_code))

        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            load = await repo.get_load(load_id, fresh=True)
            require_load_manager(actor, load)
            stage = self._check_stage(load)

            carrier_id = load.assigned_carrier_id
            from_status = load.load_status
            fault = fault_party_for(reason)

            await self._release(
                repo,
                uow,
                actor,
                load,
                repost=repost_to_marketplace,
                request_status=RequestStatus.DECLINED,
                response_message=f"Cancelled: {reason.value}",
            )

            cancellation = LoadCancellation(
                id=str(uuid.uuid4()),
                load_id=load.id,
                load_number=load.load_number,
                canceled_by_type=CanceledByType.COMPANY.value,
                canceled_by_company_id=actor.company_id,
                canceled_by_user_id=actor.owner_id,
                affected_company_id=carrier_id,
                reason_code=reason.value,
                reason_details=note,
                fault_party=fault.value,
                load_stage=stage.value,
                reposted=repost_to_marketplace,
            )
            db.add(cancellation)

            if fault == FaultParty.COMPANY:
                owner = await repo.find_company(load.company_id)
                if owner is not None:
                    owner.loads_canceled_on_carriers = (owner.loads_canceled_on_carriers or 0) + 1
            else:
                carrier = await repo.find_company(carrier_id)
                if carrier is not None:
                    carrier.loads_given_back = (carrier.loads_given_back or 0) + 1

            repo.add_load_event(
                load,
                LoadEventType.CARRIER_CANCELLED,
                actor,
                from_status=from_status,
                to_status=LoadStatus.PENDING.value,
                data={
                    "carrier_id": carrier_id,
                    "reason_code": reason.value,
                    "note": note,
                    "reposted": repost_to_marketplace,
                },
            )
            uow.record(load_changed(load, "carrier_cancelled"))

        logger.info(
            "Carrier %s cancelled on load %s (%s, fault=%s, repost=%s)",
            carrier_id, load.id, reason.value, fault.value, repost_to_marketplace,
        )
        return cancellation

    # ------------------------------------------------------------------
    # Carrier side
    # ------------------------------------------------------------------

    async def give_load_back(
        self,
        db: AsyncSession,
        actor: ActorContext,
        load_id: str,
        reason_code: str,
        note: Optional[str] = None,
    ) -> LoadCancellation:
        """The assigned carrier hands the load back. It always goes back on the marketplace."""
        reason = CarrierGiveBackReason(getattr(reason_code, "value", reason_code))

        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            load = await repo.get_load(load_id, fresh=True)
            if not is_assigned_carrier(actor.company_id, load):
                raise Unauthorized(
                    f"Company {actor.company_id} is not the carrier on load {load.id}"
                )
            stage = self._check_stage(load)
            from_status = load.load_status

            await self._release(
                repo,
                uow,
                actor,
                load,
                repost=True,
                request_status=RequestStatus.WITHDRAWN,
                response_message=f"Given back: {reason.value}",
            )

            cancellation = LoadCancellation(
                id=str(uuid.uuid4()),
                load_id=load.id,
                load_number=load.load_number,
                canceled_by_type=CanceledByType.CARRIER.value,
                canceled_by_company_id=actor.company_id,
                canceled_by_user_id=actor.owner_id,
                affected_company_id=load.company_id,
                reason_code=reason.value,
                reason_details=note,
                fault_party=FaultParty.CARRIER.value,
                load_stage=stage.value,
                reposted=True,
            )
            db.add(cancellation)

            carrier = await repo.find_company(actor.company_id)
            if carrier is not None:
                carrier.loads_given_back = (carrier.loads_given_back or 0) + 1

            repo.add_load_event(
                load,
                LoadEventType.GIVEN_BACK,
                actor,
                from_status=from_status,
                to_status=LoadStatus.PENDING.value,
                data={"reason_code": reason.value, "note": note},
            )
            uow.record(load_changed(load, "given_back"))

        logger.info("Carrier %s gave back load %s (%s)", actor.company_id, load.id, reason.value)
        return cancellation

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def get_cancellation_stats(self, db: AsyncSession, company_id: str) -> dict:
        """Reliability numbers for a company, as shipper and as carrier."""
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            company = await repo.get_company(company_id)

            made = await uow.run(
                db.execute(
                    select(LoadCancellation.reason_code, func.count(LoadCancellation.id))
                    .where(LoadCancellation.canceled_by_company_id == company_id)
                    .group_by(LoadCancellation.reason_code)
                )
            )
            by_reason = {code: count for code, count in made.all()}

            received = await uow.run(
                db.execute(
                    select(func.count(LoadCancellation.id)).where(
                        LoadCancellation.affected_company_id == company_id
                    )
                )
            )
            received_count = int(received.scalar_one())

        accepted = company.loads_accepted_total or 0
        assigned = company.loads_assigned_total or 0
        given_back = company.loads_given_back or 0
        canceled_on_carriers = company.loads_canceled_on_carriers or 0
        return {
            "company_id": company.id,
            "loads_accepted_total": accepted,
            "loads_assigned_total": assigned,
            "loads_given_back": given_back,
            "loads_canceled_on_carriers": canceled_on_carriers,
            "give_back_rate": round(given_back / accepted * 100, 1) if accepted else 0.0,
            "cancel_rate": round(canceled_on_carriers / assigned * 100, 1) if assigned else 0.0,
            "cancellations_made": sum(by_reason.values()),
            "cancellations_received": received_count,
            "by_reason": by_reason,
        }
