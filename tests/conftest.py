import os

# app.core.db builds its engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from app.core.db import build_session_factory, init_database
from app.models.load import LoadStatus
from app.services.event_dispatcher import EventBus
from app.services.load_events import LoadEventsProducer
from app.services.load_status import LoadLifecycleService
from app.services.load_store import LoadRecordStore
from app.services.status_history import StatusHistoryLedger

TOPIC = "load-events"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'loads.db'}")
    await init_database(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def published(bus):
    envelopes = []
    bus.subscribe(TOPIC, envelopes.append)
    return envelopes


@pytest.fixture
def producer(bus):
    return LoadEventsProducer(bus, topic=TOPIC, producer="load-service-test")


@pytest.fixture
def service(db, producer):
    return LoadLifecycleService(db, producer=producer)


@pytest.fixture
def seed_load(db):
    """Insert a load sitting in an arbitrary status, with a matching history record."""

    async def _seed(status=LoadStatus.CREATED, **attributes):
        store = LoadRecordStore(db)
        ledger = StatusHistoryLedger(db)
        load = await store.insert(attributes)
        await ledger.append(load.id, LoadStatus.CREATED, "seed")
        if status != LoadStatus.CREATED:
            await store.patch_status(load, status)
            await ledger.append(load.id, status, "seed", previous_status=LoadStatus.CREATED)
        await db.commit()
        return load

    return _seed
