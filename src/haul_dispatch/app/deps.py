"""Shared FastAPI dependencies."""

from fastapi import Header, HTTPException, status

from haul_dispatch.domain.errors import DispatchError
from haul_dispatch.services.authorization import ActorContext


async def get_actor(
    x_owner_id: str | None = Header(default=None),
    x_company_id: str | None = Header(default=None),
) -> ActorContext:
    """Dependency: the acting identity, as established by the gateway in front of us."""
    if not x_owner_id or not x_company_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Owner-Id and X-Company-Id headers are required",
        )
    return ActorContext(owner_id=x_owner_id, company_id=x_company_id)


def to_http(e: DispatchError) -> HTTPException:
    """Translate an engine error into the HTTP answer for it."""
    headers = {"Retry-After": "1"} if e.retryable else None
    return HTTPException(status_code=e.status_code, detail=str(e), headers=headers)
