"""Dashboard badge counts."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from haul_dispatch.app.deps import get_actor, to_http
from haul_dispatch.domain.errors import DispatchError
from haul_dispatch.domain.schemas import BadgeCounts
from haul_dispatch.infra.database import get_db
from haul_dispatch.services.authorization import ActorContext
from haul_dispatch.services.dashboard_counts import get_badge_counts

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/counts", response_model=BadgeCounts)
async def badge_counts(
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await get_badge_counts(db, actor)
    except DispatchError as e:
        raise to_http(e)
