"""Shared test infrastructure for the Haul Dispatch test suite.

Provides:
- db_session: async SQLite in-memory session with all tables created
- file_session_factory: sessions on a file-backed SQLite ledger, for races
- notifier / recorded_events: ChangeNotifier capturing published events
- reload: re-read a row from the store, ignoring the identity map
- make_company, make_load, make_driver, make_truck, make_trailer, make_trip
- marketplace: a shipper with a posted load and two carriers
"""

import uuid
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from haul_dispatch.infra.database import Base
import haul_dispatch.domain.models  # noqa: F401

from haul_dispatch.domain.models import Company, Driver, Load, Trailer, Trip, Truck
from haul_dispatch.services.authorization import ActorContext
from haul_dispatch.services.change_notifier import ChangeNotifier


def actor_for(company: Company) -> ActorContext:
    """Acting identity for a company's owner."""
    return ActorContext(owner_id=company.owner_id, company_id=company.id)


@pytest.fixture
def as_actor():
    """The actor_for helper, for tests that build their own companies."""
    return actor_for


# ---------------------------------------------------------------------------
# Database session fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_session():
    """Async SQLite in-memory session with all tables created.

    Creates a fresh engine + tables for each test, yields a session,
    then rolls back and tears down.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def file_session_factory(tmp_path):
    """Session factory over a file-backed SQLite ledger.

    Separate sessions get separate connections, so two sessions can race
    on the same rows the way two API workers would.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.execute(text("PRAGMA journal_mode=WAL"))
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def reload():
    """Re-read a row from the store, overwriting whatever the session holds.

    Usage:
        load = await reload(db_session, Load, load_id)
    """
    async def _reload(session: AsyncSession, model, entity_id: str):
        result = await session.execute(
            select(model)
            .where(model.id == entity_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    return _reload


# ---------------------------------------------------------------------------
# Change notifier
# ---------------------------------------------------------------------------

@pytest.fixture
def recorded_events():
    return []


@pytest.fixture
def notifier(recorded_events):
    """ChangeNotifier whose only sink appends to recorded_events."""
    async def _record(event):
        recorded_events.append(event)

    return ChangeNotifier(sinks=[_record])


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_company(db_session):
    """Factory that creates a Company owned by a fresh user id.

    Usage:
        shipper = await make_company("Atlas Movers")
    """
    async def _factory(name: str = "Test Movers", owner_id: str | None = None) -> Company:
        company = Company(
            id=str(uuid.uuid4()),
            name=name,
            owner_id=owner_id or str(uuid.uuid4()),
        )
        db_session.add(company)
        await db_session.commit()
        return company

    return _factory


@pytest.fixture
def make_load(db_session):
    """Factory that creates a Load for a company, posted to the marketplace by default.

    Usage:
        load = await make_load(shipper, is_open_to_counter=True)
    """
    async def _factory(company: Company, posted: bool = True, **overrides) -> Load:
        fields = {
            "id": str(uuid.uuid4()),
            "load_number": f"LD-{uuid.uuid4().hex[:6].upper()}",
            "company_id": company.id,
            "owner_id": company.owner_id,
            "posting_status": "posted" if posted else "draft",
            "is_marketplace_visible": posted,
            "posting_type": "live_load" if posted else None,
            "load_status": "pending",
            "pickup_city": "Dallas",
            "pickup_state": "TX",
            "delivery_city": "Denver",
            "delivery_state": "CO",
            "rfd_date": date(2024, 3, 1),
            "cubic_feet": 1000.0,
            "weight_lbs": 7000.0,
            "rate_per_unit": 2.5,
            "rate_type": "per_cuft",
            "total_rate": 2500.0,
            "is_open_to_counter": False,
        }
        fields.update(overrides)
        load = Load(**fields)
        db_session.add(load)
        await db_session.commit()
        return load

    return _factory


@pytest.fixture
def make_driver(db_session):
    async def _factory(owner_id: str, **overrides) -> Driver:
        fields = {
            "id": str(uuid.uuid4()),
            "owner_id": owner_id,
            "first_name": "Dana",
            "last_name": "Reyes",
            "phone": "+15550001111",
            "pay_mode": "per_mile",
            "rate_per_mile": 0.6,
        }
        fields.update(overrides)
        driver = Driver(**fields)
        db_session.add(driver)
        await db_session.commit()
        return driver

    return _factory


@pytest.fixture
def make_truck(db_session):
    async def _factory(owner_id: str, vehicle_type: str = "tractor") -> Truck:
        truck = Truck(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            unit_number=f"T-{uuid.uuid4().hex[:4].upper()}",
            vehicle_type=vehicle_type,
        )
        db_session.add(truck)
        await db_session.commit()
        return truck

    return _factory


@pytest.fixture
def make_trailer(db_session):
    async def _factory(owner_id: str) -> Trailer:
        trailer = Trailer(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            unit_number=f"TR-{uuid.uuid4().hex[:4].upper()}",
        )
        db_session.add(trailer)
        await db_session.commit()
        return trailer

    return _factory


@pytest.fixture
def make_trip(db_session):
    """Factory that creates a Trip row directly, bypassing number allocation."""
    async def _factory(owner_id: str, trip_number: str | None = None, **overrides) -> Trip:
        fields = {
            "id": str(uuid.uuid4()),
            "owner_id": owner_id,
            "trip_number": trip_number or f"X-{uuid.uuid4().hex[:6]}",
            "status": "planned",
        }
        fields.update(overrides)
        trip = Trip(**fields)
        db_session.add(trip)
        await db_session.commit()
        return trip

    return _factory


# ---------------------------------------------------------------------------
# Scenario
# ---------------------------------------------------------------------------

@pytest.fixture
async def marketplace(make_company, make_load):
    """A shipper with one posted fixed-rate load and two carrier companies."""
    shipper = await make_company("Atlas Movers")
    carrier_a = await make_company("Blue Line Hauling")
    carrier_b = await make_company("Crest Van Lines")
    load = await make_load(shipper)
    return SimpleNamespace(
        shipper=shipper,
        carrier_a=carrier_a,
        carrier_b=carrier_b,
        load=load,
        load_id=load.id,
        shipper_actor=actor_for(shipper),
        a_actor=actor_for(carrier_a),
        b_actor=actor_for(carrier_b),
    )
