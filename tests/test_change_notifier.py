"""Tests for event fan-out and the commit-or-rollback unit of work."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from haul_dispatch.domain.errors import StoreUnavailable
from haul_dispatch.domain.events import LoadChanged, RequestChanged, TripChanged
from haul_dispatch.domain.models import Company
from haul_dispatch.services.change_notifier import ChangeNotifier
from haul_dispatch.services.unit_of_work import UnitOfWork


def _event(action="updated"):
    return LoadChanged(entity_id="load-1", company_id="co-1", owner_id="user-1", action=action)


class TestChangeNotifier:
    async def test_fans_out_to_every_sink(self):
        first, second = AsyncMock(), AsyncMock()
        notifier = ChangeNotifier(sinks=[first, second])

        await notifier.publish([_event("a"), _event("b")])

        assert [c.args[0].action for c in first.await_args_list] == ["a", "b"]
        assert second.await_count == 2

    async def test_failing_sink_is_logged_not_raised(self, caplog):
        broken = AsyncMock(side_effect=ConnectionError("redis down"))
        broken.__name__ = "broken"
        healthy = AsyncMock()
        notifier = ChangeNotifier(sinks=[broken, healthy])

        with caplog.at_level(logging.WARNING):
            await notifier.publish([_event()])

        healthy.assert_awaited_once()
        assert "redis down" in caplog.text

    def test_add_sink_ignores_duplicates(self):
        sink = AsyncMock()
        notifier = ChangeNotifier(sinks=[])
        notifier.add_sink(sink)
        notifier.add_sink(sink)
        assert notifier._sinks == [sink]

    def test_event_payload(self):
        event = RequestChanged(
            entity_id="req-1", company_id="co-2", owner_id="user-2", action="accepted", load_id="load-1"
        )
        payload = event.to_dict()
        assert payload["type"] == "RequestChanged"
        assert payload["entity_id"] == "req-1"
        assert payload["load_id"] == "load-1"
        assert payload["action"] == "accepted"
        assert "occurred_at" in payload

    def test_event_types(self):
        assert _event().event_type == "LoadChanged"
        assert TripChanged(entity_id="t", company_id="c", action="created").event_type == "TripChanged"


class TestUnitOfWork:
    async def test_commit_then_publish(self, db_session, notifier, recorded_events):
        async with UnitOfWork(db_session, notifier) as uow:
            db_session.add(Company(id="co-1", name="Atlas", owner_id="user-1"))
            uow.record(_event("created"))
            assert recorded_events == []

        assert [e.action for e in recorded_events] == ["created"]
        assert await db_session.get(Company, "co-1") is not None

    async def test_rollback_discards_rows_and_events(
        self, db_session, notifier, recorded_events
    ):
        with pytest.raises(RuntimeError):
            async with UnitOfWork(db_session, notifier) as uow:
                db_session.add(Company(id="co-2", name="Atlas", owner_id="user-1"))
                await db_session.flush()
                uow.record(_event("created"))
                raise RuntimeError("boom")

        assert recorded_events == []
        assert await db_session.get(Company, "co-2") is None

    async def test_failed_commit_publishes_nothing(self, notifier, recorded_events):
        db = MagicMock()
        db.commit = AsyncMock(side_effect=RuntimeError("disk full"))
        db.rollback = AsyncMock()

        with pytest.raises(RuntimeError):
            async with UnitOfWork(db, notifier) as uow:
                uow.record(_event())

        db.rollback.assert_awaited_once()
        assert recorded_events == []

    async def test_slow_store_call_times_out(self, notifier):
        db = MagicMock()
        db.rollback = AsyncMock()
        uow = UnitOfWork(db, notifier, timeout=0.01)

        with pytest.raises(StoreUnavailable) as exc:
            await uow.run(asyncio.sleep(1))
        assert exc.value.retryable is True
        assert exc.value.status_code == 503

    async def test_driver_error_maps_to_store_unavailable(self, notifier):
        db = MagicMock()
        db.rollback = AsyncMock()

        async def dropped():
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        with pytest.raises(StoreUnavailable):
            async with UnitOfWork(db, notifier, timeout=1) as uow:
                await uow.run(dropped())

        db.rollback.assert_awaited_once()

    async def test_store_error_outside_run_is_mapped_on_exit(self, notifier):
        db = MagicMock()
        db.rollback = AsyncMock()

        with pytest.raises(StoreUnavailable):
            async with UnitOfWork(db, notifier, timeout=1):
                raise OperationalError("UPDATE loads", {}, Exception("disk I/O error"))

    async def test_rollback_failure_is_logged(self, notifier, caplog):
        db = MagicMock()
        db.rollback = AsyncMock(side_effect=RuntimeError("connection gone"))

        with caplog.at_level(logging.ERROR):
            with pytest.raises(ValueError):
                async with UnitOfWork(db, notifier, timeout=1):
                    raise ValueError("bad input")

        assert "connection gone" in caplog.text
