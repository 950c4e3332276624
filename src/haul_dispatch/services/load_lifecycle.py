"""Load Lifecycle - marketplace posting and forward-only status changes.

Every mutation runs in its own UnitOfWork, writes a LoadEvent audit row, and
emits LoadChanged once committed.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from haul_dispatch.domain.enums import LoadEventType, LoadStatus, PostingStatus, PostingType
from haul_dispatch.domain.errors import CarrierAlreadyAssigned, InvalidTransition, Unauthorized
from haul_dispatch.domain.events import LoadChanged
from haul_dispatch.domain.models import Load, LoadEvent
from haul_dispatch.services.authorization import (
    ActorContext,
    can_manage_load,
    is_assigned_carrier,
    require_load_manager,
    require_load_participant,
)
from haul_dispatch.services.change_notifier import ChangeNotifier
from haul_dispatch.services.load_state_machine import LOAD_TERMINAL_STATES, LoadStateMachine
from haul_dispatch.services.repository import LedgerRepository
from haul_dispatch.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

# Fields a caller may set when creating a load
LOAD_CREATE_FIELDS = {
    "load_number",
    "posted_by_company_id",
    "pickup_city",
    "pickup_state",
    "delivery_city",
    "delivery_state",
    "rfd_date",
    "cubic_feet",
    "weight_lbs",
    "rate_per_unit",
    "rate_type",
    "total_rate",
    "is_open_to_counter",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def load_changed(load: Load, action: str) -> LoadChanged:
    return LoadChanged(
        entity_id=load.id,
        company_id=load.company_id,
        owner_id=load.owner_id,
        action=action,
    )


def apply_posting(load: Load, posting_type: Optional[str] = None) -> None:
    """Put a load on the marketplace."""
    load.posting_status = PostingStatus.POSTED.value
    load.is_marketplace_visible = True
    load.posted_at = _now()
    if posting_type:
        load.posting_type = getattr(posting_type, "value", posting_type)
    elif not load.posting_type:
        load.posting_type = PostingType.LIVE_LOAD.value


def apply_unposting(load: Load) -> None:
    load.posting_status = PostingStatus.DRAFT.value
    load.is_marketplace_visible = False


class LoadLifecycleService:
    """Posting, unposting, and status advancement for loads."""

    def __init__(self, notifier: Optional[ChangeNotifier] = None):
        self.notifier = notifier
        self.state_machine = LoadStateMachine()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_load(self, db: AsyncSession, actor: ActorContext, data: dict) -> Load:
        """Create a draft load owned by the acting company."""
        fields = {k: v for k, v in data.items() if k in LOAD_CREATE_FIELDS and v is not None}
        if hasattr(fields.get("rate_type"), "value"):
            fields["rate_type"] = fields["rate_type"].value
        if not fields.get("load_number"):
            fields["load_number"] = f"LD-{uuid.uuid4().hex[:8].upper()}"

        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            await repo.get_company(actor.company_id)

            load = Load(
                id=str(uuid.uuid4()),
                company_id=actor.company_id,
                owner_id=actor.owner_id,
                posting_status=PostingStatus.DRAFT.value,
                is_marketplace_visible=False,
                load_status=LoadStatus.PENDING.value,
                **fields,
            )
            db.add(load)
            repo.add_load_event(
                load, LoadEventType.CREATED, actor, to_status=LoadStatus.PENDING.value
            )
            uow.record(load_changed(load, "created"))

        logger.info("Load %s created by company %s", load.load_number, actor.company_id)
        return load

    # ------------------------------------------------------------------
    # Marketplace posting
    # ------------------------------------------------------------------

    async def post_to_marketplace(
        self,
        db: AsyncSession,
        actor: ActorContext,
        load_id: str,
        posting_type: Optional[str] = None,
    ) -> Load:
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            load = await repo.get_load(load_id, fresh=True)
            require_load_manager(actor, load)

            if load.assigned_carrier_id:
                raise CarrierAlreadyAssigned(
                    f"Load {load.id} is assigned to carrier {load.assigned_carrier_id}"
                )
            if LoadStatus(load.load_status) in LOAD_TERMINAL_STATES:
                raise InvalidTransition(
                    load.load_status, PostingStatus.POSTED.value, "Finished loads cannot be posted"
                )

            apply_posting(load, posting_type)
            repo.add_load_event(
                load, LoadEventType.POSTED, actor, data={"posting_type": load.posting_type}
            )
            uow.record(load_changed(load, "posted"))

        logger.info("Load %s posted to marketplace (%s)", load.id, load.posting_type)
        return load

    async def unpost_from_marketplace(
        self, db: AsyncSession, actor: ActorContext, load_id: str
    ) -> Load:
        """Hide a load from the marketplace. Existing requests are left as they are."""
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            load = await repo.get_load(load_id, fresh=True)
            require_load_manager(actor, load)

            apply_unposting(load)
            repo.add_load_event(load, LoadEventType.UNPOSTED, actor)
            uow.record(load_changed(load, "unposted"))

        logger.info("Load %s removed from marketplace", load.id)
        return load

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def advance_status(
        self,
        db: AsyncSession,
        actor: ActorContext,
        load_id: str,
        next_status: str,
    ) -> Load:
        """Move a load one step forward, or cancel it."""
        target = LoadStatus(getattr(next_status, "value", next_status))

        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            load = await repo.get_load(load_id, fresh=True)
            require_load_participant(actor, load)

            self.state_machine.validate_transition(load.load_status, target)

            from_status = load.load_status
            load.load_status = target.value
            if target == LoadStatus.CANCELLED:
                load.is_marketplace_visible = False

            repo.add_load_event(
                load,
                LoadEventType.STATUS_CHANGED,
                actor,
                from_status=from_status,
                to_status=target.value,
            )
            uow.record(load_changed(load, "status_changed"))

        logger.info("Load %s: %s -> %s", load.id, from_status, target.value)
        return load

    async def confirm_carrier_assignment(
        self, db: AsyncSession, actor: ActorContext, load_id: str
    ) -> Load:
        """The assigned carrier confirms it will haul the load."""
        async with UnitOfWork(db, self.notifier) as uow:
            repo = LedgerRepository(db, uow)
            load = await repo.get_load(load_id, fresh=True)

            if not load.assigned_carrier_id:
                raise InvalidTransition(
                    load.load_status, "confirmed", "Load has no assigned carrier"
                )
            if not is_assigned_carrier(actor.company_id, load):
                raise Unauthorized(
                    f"Company {actor.company_id} is not the carrier on load {load.id}"
                )
            if load.carrier_confirmed_at is not None:
                return load

            load.carrier_confirmed_at = _now()
            repo.add_load_event(load, LoadEventType.CARRIER_CONFIRMED, actor)
            uow.record(load_changed(load, "carrier_confirmed"))

        return load

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_load(self, db: AsyncSession, actor: ActorContext, load_id: str) -> Load:
        """Managers and the assigned carrier always see a load; others only while it is listed."""
        async with UnitOfWork(db, self.notifier) as uow:
            load = await LedgerRepository(db, uow).get_load(load_id)
        if (
            can_manage_load(actor.company_id, load)
            or is_assigned_carrier(actor.company_id, load)
            or load.is_marketplace_visible
        ):
            return load
        raise Unauthorized(f"Load {load_id} is not visible to company {actor.company_id}")

    async def list_loads(
        self,
        db: AsyncSession,
        actor: ActorContext,
        scope: str = "own",
        status: Optional[str] = None,
    ) -> list[Load]:
        """List loads by scope: `own`, `assigned` (as carrier) or `marketplace`."""
        query = select(Load)
        if scope == "marketplace":
            query = query.where(
                Load.posting_status == PostingStatus.POSTED.value,
                Load.is_marketplace_visible.is_(True),
                Load.company_id != actor.company_id,
            )
        elif scope == "assigned":
            query = query.where(Load.assigned_carrier_id == actor.company_id)
        else:
            query = query.where(
                or_(
                    Load.company_id == actor.company_id,
                    Load.posted_by_company_id == actor.company_id,
                )
            )
        if status:
            query = query.where(Load.load_status == status)
        query = query.order_by(Load.created_at.desc())

        async with UnitOfWork(db, self.notifier) as uow:
            result = await uow.run(db.execute(query))
            return list(result.scalars().all())

    async def timeline(self, db: AsyncSession, actor: ActorContext, load_id: str) -> list[LoadEvent]:
        """Audit events for a load, oldest first."""
        async with UnitOfWork(db, self.notifier) as uow:
            load = await LedgerRepository(db, uow).get_load(load_id)
            require_load_participant(actor, load)
            result = await uow.run(
                db.execute(
                    select(LoadEvent)
                    .where(LoadEvent.load_id == load_id)
                    .order_by(LoadEvent.created_at.asc())
                )
            )
            return list(result.scalars().all())
