"""Domain events published after an engine transaction commits.

Subscribers use these to invalidate caches; they carry identifiers only,
never the changed row itself.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DomainEvent:
    entity_id: str
    company_id: Optional[str]
    action: str
    owner_id: Optional[str] = None
    occurred_at: datetime = field(default_factory=_now)

    @property
    def event_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.event_type
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


@dataclass(frozen=True)
class LoadChanged(DomainEvent):
    """A load's status, posting state, or assignment changed."""


@dataclass(frozen=True)
class RequestChanged(DomainEvent):
    """A load request was created or changed status."""

    load_id: Optional[str] = None


@dataclass(frozen=True)
class TripChanged(DomainEvent):
    """A trip, its load sequence, or its financials changed."""
