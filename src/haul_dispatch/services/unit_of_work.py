"""Unit of work: one database transaction per engine operation.

Every mutating operation runs inside `async with UnitOfWork(db) as uow:`.
Leaving the block normally commits and then publishes the domain events
recorded during the operation; leaving it with an exception rolls the whole
session back, so partial application of a multi-row change is never
visible. Store calls go through `uow.run()`, which bounds them with the
configured timeout and turns transport failures into StoreUnavailable.
"""

import asyncio
import logging

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from haul_dispatch.app.config import get_settings
from haul_dispatch.domain.errors import StoreUnavailable
from haul_dispatch.domain.events import DomainEvent
from haul_dispatch.services.change_notifier import ChangeNotifier, notifier as default_notifier

logger = logging.getLogger(__name__)

_STORE_ERRORS = (OperationalError, InterfaceError, DisconnectionError)


class UnitOfWork:
    """Commit-or-rollback scope around an AsyncSession."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: ChangeNotifier | None = None,
        timeout: float | None = None,
    ):
        self.db = db
        self.notifier = notifier or default_notifier
        self.timeout = timeout if timeout is not None else get_settings().store_timeout_seconds
        self._events: list[DomainEvent] = []

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self._events.clear()
            await self._rollback()
            if isinstance(exc, _STORE_ERRORS):
                raise StoreUnavailable(f"Ledger store error: {exc}") from exc
            return False

        try:
            await self.run(self.db.commit())
        except Exception:
            self._events.clear()
            await self._rollback()
            raise

        events, self._events = self._events, []
        await self.notifier.publish(events)
        return False

    def record(self, event: DomainEvent) -> None:
        """Queue an event for publication once the transaction commits."""
        self._events.append(event)

    @property
    def pending_events(self) -> list[DomainEvent]:
        return list(self._events)

    async def run(self, awaitable):
        """Await a store call with the configured timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(
                f"Ledger store did not answer within {self.timeout}s"
            ) from e
        except _STORE_ERRORS as e:
            raise StoreUnavailable(f"Ledger store error: {e}") from e

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except Exception as e:
            logger.error("Rollback failed: %s", e)
