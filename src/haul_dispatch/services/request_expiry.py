"""Background sweep that expires stale pending requests."""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from haul_dispatch.app.config import get_settings
from haul_dispatch.domain.enums import LoadEventType, RequestStatus
from haul_dispatch.domain.models import LoadEvent, LoadRequest
from haul_dispatch.services.change_notifier import ChangeNotifier
from haul_dispatch.services.request_negotiation import request_changed
from haul_dispatch.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


async def expire_stale_requests(
    db: AsyncSession,
    older_than: Optional[timedelta] = None,
    now: Optional[datetime] = None,
    notifier: Optional[ChangeNotifier] = None,
) -> int:
    """Flip pending requests created before the cutoff to expired.

    Returns the number of requests expired.
    """
    if older_than is None:
        older_than = timedelta(hours=get_settings().request_expiry_hours)
    now = now or datetime.now(timezone.utc)
    cutoff = now - older_than

    async with UnitOfWork(db, notifier) as uow:
        result = await uow.run(
            db.execute(
                select(LoadRequest).where(
                    LoadRequest.status == RequestStatus.PENDING.value,
                    LoadRequest.created_at < cutoff,
                )
            )
        )
        stale = result.scalars().all()

        for req in stale:
            req.status = RequestStatus.EXPIRED.value
            req.responded_at = now
            db.add(
                LoadEvent(
                    id=str(uuid.uuid4()),
                    load_id=req.load_id,
                    event_type=LoadEventType.REQUEST_EXPIRED.value,
                    actor_owner_id="system",
                    data={"request_id": req.id, "cutoff": cutoff.isoformat()},
                )
            )
            uow.record(request_changed(req, "expired"))
            logger.info("Request expired: request=%s, load=%s", req.id, req.load_id)

    return len(stale)
