import logging
from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import InvalidTransitionError, LoadNotFoundError, PersistenceError
from app.models.load import LoadStatus
from app.models.load_status_history import LoadStatusHistory
from app.services.event_dispatcher import EventBus
from app.services.load_events import LoadEventsProducer
from app.services.load_status import LoadLifecycleService
from app.services.status_history import StatusHistoryLedger
from app.services.transition_rules import DEFAULT_RULE_TABLE

S = LoadStatus


async def test_scenario_created_through_reserved(service):
    load = await service.create_load({"shipper_id": "SHP-1"}, actor="dispatcher-1")
    load_id = load.id
    assert load.status == "created"

    load = await service.update_status(load_id, S.PENDING, actor="dispatcher-1")
    assert load.status == "pending"
    history = await service.get_status_history(load_id)
    assert [record.status for record in history] == ["created", "pending"]
    assert await service.get_current_status(load_id) == "pending"

    with pytest.raises(InvalidTransitionError) as exc_info:
        await service.update_status(load_id, S.ASSIGNED, actor="dispatcher-1")
    assert exc_info.value.from_status == "pending"
    assert exc_info.value.to_status == "assigned"

    await service.update_status(load_id, S.AVAILABLE, actor="dispatcher-1")
    load = await service.update_status(load_id, S.RESERVED, actor="carrier-7")
    assert load.status == "reserved"

    counts = await service.get_status_counts()
    assert set(counts) == {status.value for status in LoadStatus}
    assert counts["reserved"] == 1
    assert sum(counts.values()) == 1


async def test_current_status_matches_latest_history_record_after_every_update(service):
    load = await service.create_load({}, actor="system")
    load_id = load.id
    path = [S.PENDING, S.OPTIMIZING, S.AVAILABLE, S.RESERVED, S.ASSIGNED, S.IN_TRANSIT,
            S.DELAYED, S.IN_TRANSIT, S.AT_PICKUP, S.EXCEPTION, S.RESOLVED, S.AT_DROPOFF,
            S.DELIVERED, S.COMPLETED]

    for status in path:
        load = await service.update_status(load_id, status, actor="driver-3")
        history = await service.get_status_history(load_id)
        assert await service.get_current_status(load_id) == history[-1].status == status.value
        assert load.status == status.value

    history = await service.get_status_history(load_id)
    assert [record.sequence for record in history] == list(range(1, len(path) + 2))
    assert [record.previous_status for record in history[1:]] == [r.status for r in history[:-1]]
    timestamps = [record.created_at for record in history]
    assert timestamps == sorted(timestamps)


@pytest.mark.parametrize("source", list(LoadStatus))
async def test_update_succeeds_iff_rule_allows_or_status_is_unchanged(service, seed_load, source):
    for target in LoadStatus:
        load = await seed_load(source)
        load_id = load.id
        expected = target == source or DEFAULT_RULE_TABLE.allowed(source, target)
        if expected:
            updated = await service.update_status(load_id, target, actor="tester")
            assert updated.status == target.value
        else:
            with pytest.raises(InvalidTransitionError):
                await service.update_status(load_id, target, actor="tester")
            assert await service.get_current_status(load_id) == source.value


async def test_same_status_is_an_idempotent_reconfirmation(service, seed_load, published):
    load = await seed_load(S.AVAILABLE)
    load_id = load.id
    before = await service.get_status_history(load_id)

    updated = await service.update_status(load_id, S.AVAILABLE, {"message": "still open"}, actor="broker-2")

    after = await service.get_status_history(load_id)
    assert updated.status == "available"
    assert len(after) == len(before) + 1
    assert after[-1].status == after[-1].previous_status == "available"
    assert after[-1].details == {"message": "still open"}
    assert published[-1].payload["previous_status"] == published[-1].payload["new_status"] == "available"


@pytest.mark.parametrize("terminal", [S.COMPLETED, S.CANCELLED])
async def test_terminal_statuses_are_final(service, seed_load, terminal):
    for target in LoadStatus:
        if target == terminal:
            continue
        load = await seed_load(terminal)
        load_id = load.id
        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.update_status(load_id, target, actor="tester")
        assert exc_info.value.from_status == terminal.value
        assert exc_info.value.to_status == target.value


async def test_unknown_load_raises_not_found(service):
    with pytest.raises(LoadNotFoundError) as exc_info:
        await service.update_status("missing", S.PENDING, actor="tester")
    assert exc_info.value.load_id == "missing"

    with pytest.raises(LoadNotFoundError):
        await service.get_current_status("missing")

    assert await service.get_status_history("missing") == []


async def test_unknown_status_is_rejected_as_invalid_transition(service, seed_load):
    load = await seed_load(S.PENDING)
    load_id = load.id
    with pytest.raises(InvalidTransitionError) as exc_info:
        await service.update_status(load_id, "teleported", actor="tester")
    assert exc_info.value.from_status == "pending"
    assert exc_info.value.to_status == "teleported"


async def test_history_record_captures_actor_details_and_location(service, seed_load):
    load = await seed_load(S.IN_TRANSIT)
    load_id = load.id

    await service.update_status(
        load_id,
        S.AT_PICKUP,
        {"reason": "arrived", "message": "At dock 4"},
        actor="driver-9",
        latitude=41.8781,
        longitude=-87.6298,
    )

    record = (await service.get_status_history(load_id))[-1]
    assert record.actor == "driver-9"
    assert record.previous_status == "in_transit"
    assert record.details == {"reason": "arrived", "message": "At dock 4"}
    assert record.location == {"latitude": 41.8781, "longitude": -87.6298}


async def test_failed_history_append_leaves_status_unchanged(service, seed_load, published, monkeypatch):
    load = await seed_load(S.AVAILABLE)
    load_id = load.id
    history_before = len(await service.get_status_history(load_id))
    events_before = len(published)
    monkeypatch.setattr(service.ledger, "append", AsyncMock(side_effect=SQLAlchemyError("disk full")))

    with pytest.raises(PersistenceError) as exc_info:
        await service.update_status(load_id, S.RESERVED, actor="carrier-1")

    assert exc_info.value.load_id == load_id
    assert isinstance(exc_info.value.__cause__, SQLAlchemyError)
    monkeypatch.undo()
    assert (await service.store.get(load_id)).status == "available"
    assert await service.get_current_status(load_id) == "available"
    assert len(await service.get_status_history(load_id)) == history_before
    assert len(published) == events_before


async def test_failed_status_patch_appends_no_history(service, seed_load, monkeypatch):
    load = await seed_load(S.ASSIGNED)
    load_id = load.id
    history_before = len(await service.get_status_history(load_id))
    monkeypatch.setattr(service.store, "patch_status", AsyncMock(side_effect=SQLAlchemyError("conflict")))

    with pytest.raises(PersistenceError):
        await service.update_status(load_id, S.IN_TRANSIT, actor="driver-1")

    monkeypatch.undo()
    assert len(await service.get_status_history(load_id)) == history_before
    assert await service.get_current_status(load_id) == "assigned"


async def test_publish_failure_does_not_undo_committed_update(db, seed_load, caplog):
    bus = EventBus()

    def broken_consumer(envelope):
        raise RuntimeError("billing unavailable")

    bus.subscribe("load-events", broken_consumer)
    service = LoadLifecycleService(db, producer=LoadEventsProducer(bus))
    load = await seed_load(S.DELIVERED)
    load_id = load.id

    with caplog.at_level(logging.ERROR, logger="app.services.load_status"):
        updated = await service.update_status(load_id, S.COMPLETED, actor="billing")

    assert updated.status == "completed"
    assert await service.get_current_status(load_id) == "completed"
    assert "LOAD_COMPLETED" in caplog.text
    assert "already committed" in caplog.text


async def test_publisher_exception_is_logged_not_raised(db, seed_load, caplog):
    publisher = AsyncMock()
    publisher.publish.side_effect = ConnectionError("broker down")
    service = LoadLifecycleService(db, producer=LoadEventsProducer(publisher))
    load = await seed_load(S.PENDING)

    with caplog.at_level(logging.ERROR):
        updated = await service.update_status(load.id, S.AVAILABLE, actor="system")

    assert updated.status == "available"
    publisher.publish.assert_awaited_once()
    assert "broker down" in caplog.text


async def test_status_change_event_is_published_after_commit(service, seed_load, published):
    load = await seed_load(S.RESERVED)
    load_id = load.id

    await service.update_status(
        load_id, S.ASSIGNED, {"driver_id": "DRV-1"}, actor="dispatcher-4", correlation_id="req-123"
    )

    envelope = published[-1]
    assert envelope.event_type == "LOAD_STATUS_CHANGED"
    assert envelope.correlation_id == "req-123"
    assert envelope.producer == "load-service-test"
    assert envelope.category == "LOAD"
    assert envelope.payload["load_id"] == load_id
    assert envelope.payload["previous_status"] == "reserved"
    assert envelope.payload["new_status"] == "assigned"
    assert envelope.payload["actor_id"] == "dispatcher-4"
    assert envelope.payload["status_details"] == {"driver_id": "DRV-1"}
    assert envelope.payload["location"] is None


@pytest.mark.parametrize(
    "source, target, event_type",
    [
        (S.DELIVERED, S.COMPLETED, "LOAD_COMPLETED"),
        (S.AVAILABLE, S.CANCELLED, "LOAD_CANCELLED"),
        (S.AVAILABLE, S.EXPIRED, "LOAD_STATUS_CHANGED"),
    ],
)
async def test_event_type_follows_new_status(service, seed_load, published, source, target, event_type):
    load = await seed_load(source)
    await service.update_status(load.id, target, actor="tester")
    assert published[-1].event_type == event_type


async def test_rejected_transition_publishes_nothing(service, seed_load, published):
    load = await seed_load(S.CREATED)
    events_before = len(published)
    with pytest.raises(InvalidTransitionError):
        await service.update_status(load.id, S.DELIVERED, actor="tester")
    assert len(published) == events_before


async def test_create_load_records_initial_history_and_event(service, published):
    load = await service.create_load(
        {"shipper_id": "SHP-9", "commodity": "Auto Parts", "weight": 42000, "equipment_type": "dry_van"},
        actor="shipper-9",
    )

    history = await service.get_status_history(load.id)
    assert len(history) == 1
    assert history[0].status == "created"
    assert history[0].previous_status is None
    assert history[0].actor == "shipper-9"
    assert load.commodity == "Auto Parts"
    assert published[-1].event_type == "LOAD_CREATED"
    assert published[-1].payload["shipper_id"] == "SHP-9"


async def test_delete_load_purges_history(service, seed_load, published):
    load = await seed_load(S.CANCELLED, shipper_id="SHP-3")
    load_id = load.id

    assert await service.delete_load(load_id, actor="admin", reason="duplicate") is True

    assert await service.get_status_history(load_id) == []
    with pytest.raises(LoadNotFoundError):
        await service.get_current_status(load_id)
    assert published[-1].event_type == "LOAD_DELETED"
    assert published[-1].payload["reason"] == "duplicate"
    assert await service.delete_load(load_id, actor="admin") is False


async def test_status_counts_zero_fill_and_filter(service, seed_load):
    await seed_load(S.AVAILABLE, shipper_id="SHP-1", company_id="CO-1")
    await seed_load(S.AVAILABLE, shipper_id="SHP-1", company_id="CO-1")
    await seed_load(S.IN_TRANSIT, shipper_id="SHP-2", company_id="CO-1")

    counts = await service.get_status_counts()
    assert counts["available"] == 2
    assert counts["in_transit"] == 1
    assert counts["completed"] == 0
    assert len(counts) == len(LoadStatus)

    shipper_counts = await service.get_status_counts(shipper_id="SHP-1")
    assert shipper_counts["available"] == 2
    assert shipper_counts["in_transit"] == 0

    company_counts = await service.get_status_counts(company_id="CO-2")
    assert sum(company_counts.values()) == 0


async def test_timeline_projects_history(service, seed_load):
    load = await seed_load(S.AT_DROPOFF)
    await service.update_status(load.id, S.DELIVERED, actor="driver-5", latitude=29.76, longitude=-95.36)

    timeline = await service.get_status_timeline(load.id)
    assert [entry["status"] for entry in timeline] == ["created", "at_dropoff", "delivered"]
    assert timeline[-1]["previous_status"] == "at_dropoff"
    assert timeline[-1]["actor"] == "driver-5"
    assert timeline[-1]["location"] == {"latitude": 29.76, "longitude": -95.36}


def test_transition_rules_are_exposed(service):
    rules = service.get_transition_rules()
    assert rules["delivered"] == ["completed", "exception"]
    assert rules["expired"] == ["available"]


async def test_status_cannot_be_assigned_directly(service):
    load = await service.create_load({}, actor="system")
    with pytest.raises(AttributeError):
        load.status = "completed"
    assert load.status == "created"


async def test_history_timestamps_never_go_backwards(service, seed_load, monkeypatch):
    load = await seed_load(S.AVAILABLE)
    load_id = load.id
    before = (await service.get_status_history(load_id))[-1]
    monkeypatch.setattr("app.services.load_status.utcnow", lambda: datetime(2000, 1, 1))

    await service.update_status(load_id, S.RESERVED, actor="carrier-1")

    history = await service.get_status_history(load_id)
    assert history[-1].created_at == before.created_at
    assert [r.sequence for r in history] == [1, 2, 3]
    assert [r.status for r in history] == ["created", "available", "reserved"]


async def test_history_records_cannot_be_modified(db, session_factory, seed_load):
    load = await seed_load(S.PENDING)
    load_id = load.id
    record = (await StatusHistoryLedger(db).list_by_load(load_id))[-1]
    record_id = record.id

    record.status = "completed"
    with pytest.raises(ValueError, match="immutable"):
        await db.flush()
    await db.rollback()

    async with session_factory() as session:
        stored = await session.get(LoadStatusHistory, record_id)
        assert stored.status == "pending"
