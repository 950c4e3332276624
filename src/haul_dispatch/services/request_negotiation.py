"""Request Negotiation - carrier requests against posted loads.

Accepting a request is the one operation here that touches several rows:
the target request, every competing pending request, the load, and the
two companies' counters. All of it happens in a single transaction, and
the target is claimed with a conditional UPDATE so two concurrent accepts
on the same load can never both win. The partial unique index
`uq_load_requests_accepted_per_load` backs that at the store.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from haul_dispatch.domain.enums import (
    LoadEventType,
    LoadStatus,
    PostingStatus,
    RequestStatus,
    RequestType,
)
from haul_dispatch.domain.errors import (
    CarrierAlreadyAssigned,
    CounterOfferNotAllowed,
    InvalidProposal,
    LoadAlreadyOnTrip,
    NotPostable,
    RequestNotPending,
    Unauthorized,
)
from haul_dispatch.domain.events import RequestChanged
from haul_dispatch.domain.models import Load, LoadRequest
from haul_dispatch.services.authorization import ActorContext, can_manage_load, require_load_manager
from haul_dispatch.services.change_notifier import ChangeNotifier
from haul_dispatch.services.load_lifecycle import load_changed
from haul_dispatch.services.load_state_machine import LoadStateMachine, ensure_request_pending
from haul_dispatch.services.repository import LedgerRepository
from haul_dispatch.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

COMPETING_DECLINE_MESSAGE = "Load assigned to another carrier"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def request_changed(req: LoadRequest, action: str, company_id: Optional[str] = None) -> RequestChanged:
    return RequestChanged(
        entity_id=req.id,
        company_id=company_id or req.carrier_id,
        owner_id=req.carrier_owner_id,
        action=action,
        load_id=req.load_id,
    )


def validate_proposed_dates(load: Load, proposed: Optional[dict]) -> dict:
    """Check proposed date ranges and return the columns to store."""
    proposed = proposed or {}
    load_start: Optional[date] = proposed.get("load_date_start")
    load_end: Optional[date] = proposed.get("load_date_end")
    delivery_start: Optional[date] = proposed.get("delivery_date_start")
    delivery_end: Optional[date] = proposed.get("delivery_date_end")

    if load_start and load_end and load_end < load_start:
        raise InvalidProposal("Proposed load window ends before it starts")
    if delivery_start and delivery_end and delivery_end < delivery_start:
        raise InvalidProposal("Proposed delivery window ends before it starts")
    if load_start and delivery_end and delivery_end < load_start:
        raise InvalidProposal("Proposed delivery ends before loading starts")
    if load_start and load.rfd_date and load_start < load.rfd_date:
        raise InvalidProposal(
            f"Proposed load date {load_start} is before the load's RFD date {load.rfd_date}"
        )

    return {
        "proposed_load_date_start": load_start,
        "proposed_load_date_end": load_end,
        "proposed_delivery_date_start": delivery_start,
        "proposed_delivery_date_end": delivery_end,
    }


class RequestNegotiationService:
    """Submit, accept, decline, and withdraw carrier requests."""

    def __init__(self, notifier: Optional[ChangeNotifier] = None):
        self.notifier = notifier
        self.state_machine = LoadStateMachine()

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit_request(
        self,
        db: AsyncSession,
        actor: ActorContext,
        load_id: str,
        request_type: str = RequestType.ACCEPT_LISTED.value,
        offered_rate: Optional[float] = None,
        proposed_dates: Optional[dict] = None,
        message: Optional[str] = None,
    ) -> LoadRequest:
        """Create a pending request from the acting company as carrier.

        Duplicate requests from the same carrier are allowed; callers upsert.
        """
        request_type = RequestType(getattr(request_type, "value", request_type))

        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            load = await repo.get_load(load_id)

            if (
                load.posting_status != PostingStatus.POSTED.value
                or not load.is_marketplace_visible
            ):
                raise NotPostable(f"Load {load.id} is not posted to the marketplace")
            if can_manage_load(actor.company_id, load):
                raise Unauthorized("A company cannot request its own load")

            if request_type == RequestType.COUNTER_OFFER:
                if not load.is_open_to_counter:
                    raise CounterOfferNotAllowed(f"Load {load.id} has a fixed rate")
                if offered_rate is None or offered_rate <= 0:
                    raise CounterOfferNotAllowed("A counter offer needs a positive rate")
                rate = offered_rate
            else:
                rate = load.rate_per_unit

            req = LoadRequest(
                id=str(uuid.uuid4()),
                load_id=load.id,
                carrier_id=actor.company_id,
                carrier_owner_id=actor.owner_id,
                status=RequestStatus.PENDING.value,
                request_type=request_type.value,
                offered_rate=rate,
                message=message,
                **validate_proposed_dates(load, proposed_dates),
            )
            db.add(req)
            repo.add_load_event(
                load,
                LoadEventType.REQUEST_SUBMITTED,
                actor,
                data={"request_id": req.id, "request_type": req.request_type, "offered_rate": rate},
            )
            uow.record(request_changed(req, "submitted"))

        logger.info(
            "Request %s submitted on load %s by carrier %s (%s)",
            req.id, load.id, actor.company_id, request_type.value,
        )
        return req

    # ------------------------------------------------------------------
    # Accept
    # ------------------------------------------------------------------

    async def accept_request(
        self, db: AsyncSession, actor: ActorContext, request_id: str
    ) -> LoadRequest:
        """Accept one request, decline its competitors, and assign the carrier."""
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            req = await repo.get_request(request_id, fresh=True)
            ensure_request_pending(req.id, req.status)

            load = await repo.get_load(req.load_id, fresh=True)
            require_load_manager(actor, load)
            if load.assigned_carrier_id:
                raise CarrierAlreadyAssigned(
                    f"Load {load.id} is already assigned to {load.assigned_carrier_id}"
                )
            if load.posting_status != PostingStatus.POSTED.value:
                raise NotPostable(f"Load {load.id} is no longer posted")
            scheduled = await repo.trip_load_for_load(load.id)
            if scheduled is not None:
                # A load is hauled by an outside carrier or by its own fleet, never both
                trip = await repo.get_trip(scheduled.trip_id)
                raise LoadAlreadyOnTrip(
                    f"Load {load.id} is scheduled on trip {trip.trip_number}; "
                    "remove it before accepting a carrier"
                )
            self.state_machine.validate_transition(load.load_status, LoadStatus.ACCEPTED)

            rate = self._final_rate(req, load)
            await self._mark_accepted(db, uow, actor, req, rate)
            declined = await self._decline_competing(repo, actor, req)
            await self._assign_carrier(repo, actor, load, req, rate)

            uow.record(request_changed(req, "accepted"))
            for other in declined:
                uow.record(request_changed(other, "declined"))
            uow.record(load_changed(load, "carrier_assigned"))

        logger.info(
            "Request %s accepted: load %s assigned to carrier %s at %s (%d declined)",
            req.id, load.id, req.carrier_id, rate, len(declined),
        )
        return req

    @staticmethod
    def _final_rate(req: LoadRequest, load: Load) -> Optional[float]:
        if req.request_type == RequestType.COUNTER_OFFER.value:
            return req.offered_rate
        return load.rate_per_unit

    async def _mark_accepted(
        self,
        db: AsyncSession,
        uow: UnitOfWork,
        actor: ActorContext,
        req: LoadRequest,
        rate: Optional[float],
    ) -> None:
        """Claim the request with a check-and-set on its pending status."""
        stmt = (
            update(LoadRequest)
            .where(
                LoadRequest.id == req.id,
                LoadRequest.status == RequestStatus.PENDING.value,
            )
            .values(
                status=RequestStatus.ACCEPTED.value,
                responded_at=_now(),
                responded_by_id=actor.owner_id,
                final_rate=rate,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await uow.run(db.execute(stmt))
        except IntegrityError as e:
            raise RequestNotPending(
                req.id, req.status, f"Load {req.load_id} already has an accepted request"
            ) from e
        if result.rowcount != 1:
            raise RequestNotPending(req.id, req.status, f"Request {req.id} was changed concurrently")
        await uow.run(db.refresh(req))

    async def _decline_competing(
        self, repo: LedgerRepository, actor: ActorContext, accepted: LoadRequest
    ) -> list[LoadRequest]:
        pending = await repo.requests_for_load(accepted.load_id, RequestStatus.PENDING.value)
        declined = []
        now = _now()
        for other in pending:
            if other.id == accepted.id:
                continue
            other.status = RequestStatus.DECLINED.value
            other.responded_at = now
            other.responded_by_id = actor.owner_id
            other.response_message = COMPETING_DECLINE_MESSAGE
            declined.append(other)
        return declined

    async def _assign_carrier(
        self,
        repo: LedgerRepository,
        actor: ActorContext,
        load: Load,
        req: LoadRequest,
        rate: Optional[float],
    ) -> None:
        from_status = load.load_status
        load.assigned_carrier_id = req.carrier_id
        load.carrier_assigned_at = _now()
        load.carrier_confirmed_at = None
        load.carrier_rate = rate
        load.carrier_rate_type = load.rate_type
        load.marketplace_request_id = req.id
        load.load_status = LoadStatus.ACCEPTED.value
        load.is_marketplace_visible = False

        carrier = await repo.find_company(req.carrier_id)
        if carrier is not None:
            carrier.loads_accepted_total = (carrier.loads_accepted_total or 0) + 1
        owner = await repo.find_company(load.company_id)
        if owner is not None:
            owner.loads_assigned_total = (owner.loads_assigned_total or 0) + 1

        repo.add_load_event(
            load,
            LoadEventType.REQUEST_ACCEPTED,
            actor,
            from_status=from_status,
            to_status=LoadStatus.ACCEPTED.value,
            data={"request_id": req.id, "carrier_id": req.carrier_id, "carrier_rate": rate},
        )

    # ------------------------------------------------------------------
    # Decline / withdraw
    # ------------------------------------------------------------------

    async def decline_request(
        self,
        db: AsyncSession,
        actor: ActorContext,
        request_id: str,
        reason: Optional[str] = None,
    ) -> LoadRequest:
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            req = await repo.get_request(request_id, fresh=True)
            load = await repo.get_load(req.load_id)
            require_load_manager(actor, load)
            ensure_request_pending(req.id, req.status)

            req.status = RequestStatus.DECLINED.value
            req.responded_at = _now()
            req.responded_by_id = actor.owner_id
            req.response_message = reason
            repo.add_load_event(
                load,
                LoadEventType.REQUEST_DECLINED,
                actor,
                data={"request_id": req.id, "reason": reason},
            )
            uow.record(request_changed(req, "declined"))

        logger.info("Request %s declined on load %s", req.id, req.load_id)
        return req

    async def withdraw_request(
        self, db: AsyncSession, actor: ActorContext, request_id: str
    ) -> LoadRequest:
        """The carrier pulls its own pending request."""
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            req = await repo.get_request(request_id, fresh=True)
            if req.carrier_id != actor.company_id:
                raise Unauthorized(f"Request {req.id} was not made by company {actor.company_id}")
            ensure_request_pending(req.id, req.status)

            load = await repo.get_load(req.load_id)
            req.status = RequestStatus.WITHDRAWN.value
            repo.add_load_event(
                load, LoadEventType.REQUEST_WITHDRAWN, actor, data={"request_id": req.id}
            )
            uow.record(request_changed(req, "withdrawn"))

        logger.info("Request %s withdrawn by carrier %s", req.id, actor.company_id)
        return req

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_requests_for_load(
        self, db: AsyncSession, actor: ActorContext, load_id: str
    ) -> list[LoadRequest]:
        """All requests on a load. Carriers only see their own."""
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            load = await repo.get_load(load_id)
            requests = await repo.requests_for_load(load_id)
        if can_manage_load(actor.company_id, load):
            return requests
        return [r for r in requests if r.carrier_id == actor.company_id]

    async def list_my_requests(
        self, db: AsyncSession, actor: ActorContext, status: Optional[str] = None
    ) -> list[LoadRequest]:
        """Requests the acting company has made as a carrier."""
        query = select(LoadRequest).where(LoadRequest.carrier_id == actor.company_id)
        if status:
            query = query.where(LoadRequest.status == status)
        query = query.order_by(LoadRequest.created_at.desc())
        async with UnitOfWork(db, self.notifier) as uow:
            result = await uow.run(db.execute(query))
            return list(result.scalars().all())
