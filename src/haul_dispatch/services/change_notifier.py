"""Change Notifier - fans committed domain events out to cache-invalidation sinks.

The engine only emits. Sinks are wired once at startup (see app.main) and
delivery is best effort: a failing sink is logged and skipped, it never
undoes the committed transaction that produced the event.
"""

import logging
from typing import Awaitable, Callable, Iterable

from haul_dispatch.domain.events import DomainEvent

logger = logging.getLogger(__name__)

Sink = Callable[[DomainEvent], Awaitable[None]]


async def log_sink(event: DomainEvent) -> None:
    logger.info(
        "%s %s: %s (company=%s)",
        event.event_type,
        event.entity_id,
        event.action,
        event.company_id,
    )


class ChangeNotifier:
    """Publishes domain events to a fixed list of async sinks."""

    def __init__(self, sinks: Iterable[Sink] | None = None):
        self._sinks: list[Sink] = list(sinks) if sinks is not None else [log_sink]

    def add_sink(self, sink: Sink) -> None:
        if sink not in self._sinks:
            self._sinks.append(sink)

    async def publish(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            for sink in self._sinks:
                try:
                    await sink(event)
                except Exception as e:
                    logger.warning(
                        "Change sink %s failed for %s %s: %s",
                        getattr(sink, "__name__", sink),
                        event.event_type,
                        event.entity_id,
                        e,
                    )


notifier = ChangeNotifier()


def get_notifier() -> ChangeNotifier:
    """FastAPI dependency: the process-wide notifier."""
    return notifier
