"""Ownership checks shared by every mutating operation.

The engine performs no authentication: callers pass an ActorContext that
has already been established upstream, and these predicates only decide
whether that actor may touch a given row.
"""

from dataclasses import dataclass

from haul_dispatch.domain.errors import Unauthorized


@dataclass(frozen=True)
class ActorContext:
    """Acting identity: the user performing the call and the company they act for."""

    owner_id: str
    company_id: str


def can_manage_load(actor_company_id: str | None, load) -> bool:
    """Return True if the company owns the load or posted it on the owner's behalf."""
    if not actor_company_id or load is None:
        return False
    return actor_company_id in (load.company_id, load.posted_by_company_id)


def is_assigned_carrier(actor_company_id: str | None, load) -> bool:
    if not actor_company_id or load is None:
        return False
    return load.assigned_carrier_id == actor_company_id


def require_load_manager(actor: ActorContext, load) -> None:
    """Raise Unauthorized unless the actor's company manages the load."""
    if not can_manage_load(actor.company_id, load):
        raise Unauthorized(f"Company {actor.company_id} cannot manage load {load.id}")


def require_load_participant(actor: ActorContext, load) -> None:
    """Raise Unauthorized unless the actor manages the load or is its carrier."""
    if can_manage_load(actor.company_id, load) or is_assigned_carrier(actor.company_id, load):
        return
    raise Unauthorized(f"Company {actor.company_id} is not a party to load {load.id}")


def require_owner(actor: ActorContext, row, label: str) -> None:
    """Raise Unauthorized unless the row belongs to the acting user."""
    if row.owner_id != actor.owner_id:
        raise Unauthorized(f"{label} {row.id} does not belong to {actor.owner_id}")
