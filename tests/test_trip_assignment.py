"""Integration tests for trips, load sequencing, equipment, and expenses."""

import asyncio
import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import select

from haul_dispatch.domain.errors import (
    CarrierAlreadyAssigned,
    DuplicateTripNumber,
    EquipmentMismatch,
    InvalidSequence,
    InvalidTransition,
    LoadAlreadyOnTrip,
    LoadNotOnTrip,
    TripClosed,
    Unauthorized,
)
from haul_dispatch.domain.models import Company, Driver, Load, Trip, TripLoad
from haul_dispatch.services.authorization import ActorContext
from haul_dispatch.services.change_notifier import ChangeNotifier
from haul_dispatch.services.trip_assignment import (
    TripAssignmentService,
    format_trip_number,
    parse_trip_number,
)


@pytest.fixture
def trips(notifier):
    return TripAssignmentService(notifier=notifier)


async def _sequence(db, trip_id):
    """[(load_id, sequence_index, delivery_order)] in trip order."""
    result = await db.execute(
        select(TripLoad.load_id, TripLoad.sequence_index, Load.delivery_order)
        .join(Load, Load.id == TripLoad.load_id)
        .where(TripLoad.trip_id == trip_id)
        .order_by(TripLoad.sequence_index)
    )
    return [tuple(row) for row in result.all()]


class TestTripNumbers:
    def test_format_and_parse(self):
        assert format_trip_number("TRP", 7) == "TRP-0007"
        assert format_trip_number("TRP", 12345) == "TRP-12345"
        assert parse_trip_number("TRP", "TRP-0042") == 42
        assert parse_trip_number("TRP", "TRP-12345") == 12345
        assert parse_trip_number("TRP", "ABC-0042") is None
        assert parse_trip_number("TRP", "TRP-00x2") is None
        assert parse_trip_number("TRP", None) is None

    async def test_numbers_follow_owner_maximum(
        self, db_session, trips, make_company, make_trip, as_actor
    ):
        owner = await make_company()
        other = await make_company("Other")
        actor = as_actor(owner)
        await make_trip(owner.owner_id, "TRP-0009")
        await make_trip(owner.owner_id, "Run to Reno")
        await make_trip(other.owner_id, "TRP-0050")

        first = await trips.create_trip(db_session, actor, {})
        second = await trips.create_trip(db_session, actor, {})

        assert first.trip_number == "TRP-0010"
        assert second.trip_number == "TRP-0011"
        assert first.status == "planned"

    async def test_first_trip_is_one(self, db_session, trips, make_company, as_actor):
        owner = await make_company()
        trip = await trips.create_trip(db_session, as_actor(owner), {"origin_city": "Tulsa"})
        assert trip.trip_number == "TRP-0001"
        assert trip.origin_city == "Tulsa"

    async def test_explicit_number_kept(self, db_session, trips, make_company, as_actor):
        owner = await make_company()
        trip = await trips.create_trip(db_session, as_actor(owner), {"trip_number": "SPRING-1"})
        assert trip.trip_number == "SPRING-1"

    async def test_explicit_duplicate_rejected(
        self, db_session, trips, make_company, make_trip, as_actor
    ):
        owner = await make_company()
        actor = as_actor(owner)
        await make_trip(owner.owner_id, "TRP-0003")
        with pytest.raises(DuplicateTripNumber):
            await trips.create_trip(db_session, actor, {"trip_number": "TRP-0003"})

    async def test_collision_retries_with_next_number(
        self, db_session, trips, make_company, make_trip, as_actor
    ):
        owner = await make_company()
        actor = as_actor(owner)
        await make_trip(owner.owner_id, "TRP-0001")
        allocate = trips._next_trip_number
        calls = []

        async def stale_then_real(uow, db, owner_id):
            calls.append(owner_id)
            if len(calls) == 1:
                return "TRP-0001"
            return await allocate(uow, db, owner_id)

        with patch.object(trips, "_next_trip_number", stale_then_real):
            trip = await trips.create_trip(db_session, actor, {})

        assert trip.trip_number == "TRP-0002"
        assert len(calls) == 2

    async def test_gives_up_after_configured_attempts(
        self, db_session, trips, make_company, make_trip, as_actor
    ):
        owner = await make_company()
        actor = as_actor(owner)
        await make_trip(owner.owner_id, "TRP-0001")

        async def always_taken(uow, db, owner_id):
            return "TRP-0001"

        with patch.object(trips, "_next_trip_number", always_taken):
            with pytest.raises(DuplicateTripNumber, match="after 5 attempts"):
                await trips.create_trip(db_session, actor, {})

    async def test_concurrent_creations_get_distinct_numbers(self, file_session_factory):
        owner_id = str(uuid.uuid4())
        company = Company(id=str(uuid.uuid4()), name="Racing Movers", owner_id=owner_id)
        async with file_session_factory() as session:
            session.add(company)
            await session.commit()

        actor = ActorContext(owner_id=owner_id, company_id=company.id)
        service = TripAssignmentService(notifier=ChangeNotifier(sinks=[]))

        async def create():
            async with file_session_factory() as session:
                trip = await service.create_trip(session, actor, {})
                return trip.trip_number

        numbers = await asyncio.gather(create(), create(), create())

        assert sorted(numbers) == ["TRP-0001", "TRP-0002", "TRP-0003"]


class TestEquipmentAndDriver:
    async def test_tractor_needs_trailer(
        self, db_session, trips, make_company, make_truck, as_actor
    ):
        owner = await make_company()
        actor = as_actor(owner)
        tractor = await make_truck(owner.owner_id, "tractor")
        with pytest.raises(EquipmentMismatch):
            await trips.create_trip(db_session, actor, {"truck_id": tractor.id})

    async def test_tractor_with_trailer(
        self, db_session, trips, make_company, make_truck, make_trailer, as_actor
    ):
        owner = await make_company()
        tractor = await make_truck(owner.owner_id, "tractor")
        trailer = await make_trailer(owner.owner_id)
        trip = await trips.create_trip(
            db_session, as_actor(owner), {"truck_id": tractor.id, "trailer_id": trailer.id}
        )
        assert (trip.truck_id, trip.trailer_id) == (tractor.id, trailer.id)

    async def test_box_truck_drops_trailer(
        self, db_session, trips, make_company, make_truck, make_trailer, as_actor
    ):
        owner = await make_company()
        box = await make_truck(owner.owner_id, "box_truck")
        trailer = await make_trailer(owner.owner_id)
        trip = await trips.create_trip(
            db_session, as_actor(owner), {"truck_id": box.id, "trailer_id": trailer.id}
        )
        assert trip.truck_id == box.id
        assert trip.trailer_id is None

    async def test_foreign_truck_unauthorized(
        self, db_session, trips, make_company, make_truck, as_actor
    ):
        owner = await make_company()
        other = await make_company("Other")
        actor = as_actor(owner)
        truck = await make_truck(other.owner_id, "box_truck")
        with pytest.raises(Unauthorized):
            await trips.create_trip(db_session, actor, {"truck_id": truck.id})

    async def test_driver_pay_is_snapshotted(
        self, db_session, trips, make_company, make_driver, as_actor, reload
    ):
        owner = await make_company()
        driver = await make_driver(owner.owner_id, pay_mode="per_cuft", rate_per_cuft=0.4)
        trip = await trips.create_trip(db_session, as_actor(owner), {"driver_id": driver.id})
        assert (trip.pay_mode, trip.rate_per_cuft) == ("per_cuft", 0.4)

        driver.rate_per_cuft = 0.9
        await db_session.commit()

        trip = await reload(db_session, Trip, trip.id)
        assert trip.rate_per_cuft == 0.4


@pytest.fixture
async def fleet(make_company, make_driver, make_load, make_trip, as_actor):
    """A company with a driver, two planned trips, and three unposted loads."""
    company = await make_company("Northstar Moving")
    driver = await make_driver(company.owner_id)
    trip_a = await make_trip(company.owner_id, "TRP-0001", driver_id=driver.id)
    trip_b = await make_trip(company.owner_id, "TRP-0002")
    loads = [await make_load(company, posted=False) for _ in range(3)]
    return {
        "company": company,
        "actor": as_actor(company),
        "owner_id": company.owner_id,
        "driver_id": driver.id,
        "trip_a": trip_a.id,
        "trip_b": trip_b.id,
        "loads": [load.id for load in loads],
    }


class TestAssignLoad:
    async def test_appends_in_order_and_inherits_trip(
        self, db_session, trips, fleet, reload, recorded_events
    ):
        actor, trip_id = fleet["actor"], fleet["trip_a"]
        for load_id in fleet["loads"]:
            await trips.assign_load_to_trip(db_session, actor, load_id, trip_id)

        assert await _sequence(db_session, trip_id) == [
            (fleet["loads"][0], 0, 1),
            (fleet["loads"][1], 1, 2),
            (fleet["loads"][2], 2, 3),
        ]
        load = await reload(db_session, Load, fleet["loads"][0])
        assert load.assigned_driver_id == fleet["driver_id"]
        assert load.assigned_driver_name == "Dana Reyes"
        assert load.assigned_driver_phone == "+15550001111"
        assert {e.action for e in recorded_events} == {"load_added", "added_to_trip"}

    async def test_driver_contact_withheld_when_not_shared(
        self, db_session, trips, fleet, make_trip, reload
    ):
        private = await make_trip(
            fleet["owner_id"],
            "TRP-0003",
            driver_id=fleet["driver_id"],
            share_driver_with_companies=False,
        )
        await trips.assign_load_to_trip(db_session, fleet["actor"], fleet["loads"][0], private.id)

        load = await reload(db_session, Load, fleet["loads"][0])
        assert load.assigned_driver_id == fleet["driver_id"]
        assert load.assigned_driver_name is None
        assert load.assigned_driver_phone is None

    async def test_move_detaches_from_old_trip(self, db_session, trips, fleet, reload):
        actor = fleet["actor"]
        first, second, third = fleet["loads"]
        for load_id in (first, second, third):
            await trips.assign_load_to_trip(db_session, actor, load_id, fleet["trip_a"])

        await trips.assign_load_to_trip(db_session, actor, first, fleet["trip_b"])

        assert await _sequence(db_session, fleet["trip_a"]) == [(second, 0, 1), (third, 1, 2)]
        assert await _sequence(db_session, fleet["trip_b"]) == [(first, 0, 1)]
        moved = await reload(db_session, Load, first)
        assert moved.assigned_driver_id is None

    async def test_same_trip_rejected(self, db_session, trips, fleet):
        actor, load_id = fleet["actor"], fleet["loads"][0]
        await trips.assign_load_to_trip(db_session, actor, load_id, fleet["trip_a"])
        with pytest.raises(LoadAlreadyOnTrip):
            await trips.assign_load_to_trip(db_session, actor, load_id, fleet["trip_a"])
        assert await _sequence(db_session, fleet["trip_a"]) == [(load_id, 0, 1)]

    @pytest.mark.parametrize("status", ["completed", "settled", "cancelled"])
    async def test_closed_trip_rejected(
        self, db_session, trips, fleet, make_trip, status
    ):
        closed = await make_trip(fleet["owner_id"], f"C-{status}", status=status)
        with pytest.raises(TripClosed):
            await trips.assign_load_to_trip(
                db_session, fleet["actor"], fleet["loads"][0], closed.id
            )

    @pytest.mark.parametrize("status", ["completed", "settled"])
    async def test_load_stays_on_closed_trip(
        self, db_session, trips, fleet, reload, status
    ):
        actor, load_id = fleet["actor"], fleet["loads"][0]
        await trips.assign_load_to_trip(db_session, actor, load_id, fleet["trip_a"])
        trip_a = await reload(db_session, Trip, fleet["trip_a"])
        trip_a.status = status
        await db_session.commit()

        with pytest.raises(TripClosed, match="TRP-0001"):
            await trips.assign_load_to_trip(db_session, actor, load_id, fleet["trip_b"])
        with pytest.raises(TripClosed):
            await trips.remove_load_from_trip(db_session, actor, load_id, fleet["trip_a"])

        assert await _sequence(db_session, fleet["trip_a"]) == [(load_id, 0, 1)]
        assert await _sequence(db_session, fleet["trip_b"]) == []
        load = await reload(db_session, Load, load_id)
        assert load.assigned_driver_id == fleet["driver_id"]

    async def test_load_with_carrier_stays_off_shipper_trip(
        self, db_session, trips, fleet, make_company, make_load
    ):
        carrier = await make_company("Carrier")
        load = await make_load(
            fleet["company"], assigned_carrier_id=carrier.id, load_status="accepted"
        )
        with pytest.raises(CarrierAlreadyAssigned):
            await trips.assign_load_to_trip(db_session, fleet["actor"], load.id, fleet["trip_a"])

    async def test_carrier_schedules_assigned_load_on_own_trip(
        self, db_session, trips, make_company, make_load, make_trip, as_actor
    ):
        shipper = await make_company("Shipper")
        carrier = await make_company("Carrier")
        load = await make_load(shipper, assigned_carrier_id=carrier.id, load_status="accepted")
        trip = await make_trip(carrier.owner_id, "TRP-0001")

        row = await trips.assign_load_to_trip(db_session, as_actor(carrier), load.id, trip.id)
        assert row.sequence_index == 0
        assert row.owner_id == carrier.owner_id

    async def test_stranger_cannot_schedule(
        self, db_session, trips, make_company, make_load, make_trip, as_actor
    ):
        shipper = await make_company("Shipper")
        stranger = await make_company("Stranger")
        load = await make_load(shipper)
        trip = await make_trip(stranger.owner_id)
        with pytest.raises(Unauthorized):
            await trips.assign_load_to_trip(db_session, as_actor(stranger), load.id, trip.id)


class TestRemoveAndReorder:
    @pytest.fixture
    async def loaded_trip(self, db_session, trips, fleet):
        for load_id in fleet["loads"]:
            await trips.assign_load_to_trip(db_session, fleet["actor"], load_id, fleet["trip_a"])
        return fleet

    async def test_remove_closes_gap(self, db_session, trips, loaded_trip, reload):
        first, second, third = loaded_trip["loads"]
        await trips.remove_load_from_trip(
            db_session, loaded_trip["actor"], second, loaded_trip["trip_a"]
        )

        assert await _sequence(db_session, loaded_trip["trip_a"]) == [
            (first, 0, 1),
            (third, 1, 2),
        ]
        removed = await reload(db_session, Load, second)
        assert removed.delivery_order is None
        assert removed.assigned_driver_id is None

    async def test_remove_load_not_on_trip(self, db_session, trips, loaded_trip):
        with pytest.raises(LoadNotOnTrip):
            await trips.remove_load_from_trip(
                db_session, loaded_trip["actor"], loaded_trip["loads"][0], loaded_trip["trip_b"]
            )

    async def test_reorder(self, db_session, trips, loaded_trip):
        first, second, third = loaded_trip["loads"]
        rows = await trips.reorder_trip_loads(
            db_session, loaded_trip["actor"], loaded_trip["trip_a"], [third, first, second]
        )

        assert [r.load_id for r in rows] == [third, first, second]
        assert await _sequence(db_session, loaded_trip["trip_a"]) == [
            (third, 0, 1),
            (first, 1, 2),
            (second, 2, 3),
        ]

    @pytest.mark.parametrize(
        "picks",
        [[0, 1], [0, 1, 1], [0, 1, 2, 2]],
        ids=["missing", "duplicate", "extra"],
    )
    async def test_reorder_must_be_permutation(self, db_session, trips, loaded_trip, picks):
        load_ids = [loaded_trip["loads"][i] for i in picks]
        with pytest.raises(InvalidSequence):
            await trips.reorder_trip_loads(
                db_session, loaded_trip["actor"], loaded_trip["trip_a"], load_ids
            )

    async def test_other_owner_cannot_reorder(
        self, db_session, trips, loaded_trip, make_company, as_actor
    ):
        other = await make_company("Other")
        with pytest.raises(Unauthorized):
            await trips.reorder_trip_loads(
                db_session, as_actor(other), loaded_trip["trip_a"], loaded_trip["loads"]
            )


class TestTripUpdates:
    async def test_driver_change_flows_to_loads(
        self, db_session, trips, fleet, make_driver, reload
    ):
        actor = fleet["actor"]
        await trips.assign_load_to_trip(db_session, actor, fleet["loads"][0], fleet["trip_a"])
        relief = await make_driver(
            fleet["owner_id"], first_name="Sam", last_name="Ortiz", pay_mode="per_cuft"
        )

        trip = await trips.update_trip(
            db_session, actor, fleet["trip_a"], {"driver_id": relief.id, "total_miles": 640}
        )

        assert trip.pay_mode == "per_cuft"
        assert trip.total_miles == 640
        load = await reload(db_session, Load, fleet["loads"][0])
        assert load.assigned_driver_id == relief.id
        assert load.assigned_driver_name == "Sam Ortiz"

    async def test_settled_trip_is_locked(self, db_session, trips, fleet, make_trip):
        settled = await make_trip(fleet["owner_id"], "S-1", status="settled")
        with pytest.raises(TripClosed):
            await trips.update_trip(db_session, fleet["actor"], settled.id, {"notes": "late"})

    async def test_status_walk(self, db_session, trips, fleet):
        actor = fleet["actor"]
        for status in ["active", "en_route", "completed"]:
            trip = await trips.update_trip_status(db_session, actor, fleet["trip_a"], status)
            assert trip.status == status

    async def test_settled_only_through_settlement(self, db_session, trips, fleet, make_trip):
        done = await make_trip(fleet["owner_id"], "D-1", status="completed")
        with pytest.raises(InvalidTransition):
            await trips.update_trip_status(db_session, fleet["actor"], done.id, "settled")

    async def test_skipping_to_completed_rejected(self, db_session, trips, fleet):
        with pytest.raises(InvalidTransition):
            await trips.update_trip_status(db_session, fleet["actor"], fleet["trip_a"], "completed")

    async def test_cancel_releases_loads(self, db_session, trips, fleet, reload):
        actor = fleet["actor"]
        for load_id in fleet["loads"][:2]:
            await trips.assign_load_to_trip(db_session, actor, load_id, fleet["trip_a"])

        trip = await trips.update_trip_status(db_session, actor, fleet["trip_a"], "cancelled")

        assert trip.status == "cancelled"
        assert await _sequence(db_session, fleet["trip_a"]) == []
        for load_id in fleet["loads"][:2]:
            load = await reload(db_session, Load, load_id)
            assert load.delivery_order is None
            assert load.assigned_driver_id is None


class TestExpenses:
    async def test_expense_adds_to_total(self, db_session, trips, fleet, reload):
        actor = fleet["actor"]
        await trips.add_trip_expense(
            db_session, actor, fleet["trip_a"], {"amount": 120.5, "category": "fuel", "paid_by": "fuel_card"}
        )
        expense = await trips.add_trip_expense(
            db_session, actor, fleet["trip_a"], {"amount": 30, "paid_by": "driver_personal"}
        )

        assert expense.category == "other"
        trip = await reload(db_session, Trip, fleet["trip_a"])
        assert trip.expenses_total == 150.5
        listed = await trips.list_trip_expenses(db_session, actor, fleet["trip_a"])
        assert sorted(e.amount for e in listed) == [30, 120.5]

    async def test_cancelled_trip_takes_no_expenses(self, db_session, trips, fleet, make_trip):
        cancelled = await make_trip(fleet["owner_id"], "X-1", status="cancelled")
        with pytest.raises(TripClosed):
            await trips.add_trip_expense(db_session, fleet["actor"], cancelled.id, {"amount": 10})


class TestReads:
    async def test_list_trips_scoped_to_owner(
        self, db_session, trips, fleet, make_company, make_trip, as_actor
    ):
        other = await make_company("Other")
        await make_trip(other.owner_id, "TRP-0001")

        listed = await trips.list_trips(db_session, fleet["actor"])
        assert {t.id for t in listed} == {fleet["trip_a"], fleet["trip_b"]}

        active = await trips.list_trips(db_session, as_actor(other), status="active")
        assert active == []

    async def test_list_trip_loads_pairs(self, db_session, trips, fleet):
        actor = fleet["actor"]
        await trips.assign_load_to_trip(db_session, actor, fleet["loads"][1], fleet["trip_b"])
        pairs = await trips.list_trip_loads(db_session, actor, fleet["trip_b"])
        assert [(row.sequence_index, load.id) for row, load in pairs] == [(0, fleet["loads"][1])]

    async def test_foreign_trip_unreadable(
        self, db_session, trips, fleet, make_company, as_actor
    ):
        other = await make_company("Other")
        with pytest.raises(Unauthorized):
            await trips.get_trip(db_session, as_actor(other), fleet["trip_a"])


async def test_driver_row_unchanged_by_trip_edits(db_session, trips, fleet, reload):
    await trips.update_trip(db_session, fleet["actor"], fleet["trip_a"], {"notes": "Fragile piano"})
    driver = await reload(db_session, Driver, fleet["driver_id"])
    assert driver.pay_mode == "per_mile"
    assert driver.rate_per_mile == 0.6


async def test_concurrent_moves_leave_load_on_one_trip(file_session_factory):
    owner_id = str(uuid.uuid4())
    company = Company(id=str(uuid.uuid4()), name="Racing Movers", owner_id=owner_id)
    load = Load(
        id=str(uuid.uuid4()),
        company_id=company.id,
        owner_id=owner_id,
        posting_status="draft",
        is_marketplace_visible=False,
        load_status="pending",
    )
    trip_ids = [str(uuid.uuid4()), str(uuid.uuid4())]
    async with file_session_factory() as session:
        session.add_all([company, load])
        session.add_all(
            Trip(id=trip_id, owner_id=owner_id, trip_number=f"TRP-000{n}", status="planned")
            for n, trip_id in enumerate(trip_ids, start=1)
        )
        await session.commit()

    actor = ActorContext(owner_id=owner_id, company_id=company.id)
    service = TripAssignmentService(notifier=ChangeNotifier(sinks=[]))

    async def assign(trip_id):
        async with file_session_factory() as session:
            row = await service.assign_load_to_trip(session, actor, load.id, trip_id)
            return row.trip_id

    outcomes = await asyncio.gather(*(assign(t) for t in trip_ids), return_exceptions=True)

    # Either the moves serialize or the loser gets a conflict, never a raw store error
    for outcome in outcomes:
        assert isinstance(outcome, (str, LoadAlreadyOnTrip)), repr(outcome)
    assert any(isinstance(outcome, str) for outcome in outcomes)

    async with file_session_factory() as check:
        result = await check.execute(
            select(TripLoad.trip_id, TripLoad.sequence_index).where(TripLoad.load_id == load.id)
        )
        ((trip_id, sequence_index),) = result.all()
        stored = await check.get(Load, load.id)
    assert trip_id in trip_ids
    assert sequence_index == 0
    assert stored.delivery_order == 1
