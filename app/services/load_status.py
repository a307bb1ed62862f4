from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    InvalidTransitionError,
    LoadNotFoundError,
    PersistenceError,
    PublishError,
)
from app.models.load import Load, LoadStatus
from app.models.load_status_history import LoadStatusHistory
from app.services.load_events import LoadEventsProducer
from app.services.load_store import LoadRecordStore
from app.services.status_history import StatusHistoryLedger
from app.services.transition_rules import (
    INITIAL_STATUS,
    StatusLike,
    TransitionRuleTable,
    get_rule_table,
    parse_status,
)
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


class LoadLifecycleService:
    """
    The only caller-facing path that changes a load's status.

    Each write reads the load with a row lock, validates the requested
    transition, patches the load and appends its history record in one
    transaction, commits, and only then publishes the lifecycle event.
    A failed publish is logged; it never undoes a committed write.
    Nothing here retries: NotFound and InvalidTransition are final, and
    PersistenceError is left to the caller to retry.
    """

    def __init__(
        self,
        db: AsyncSession,
        producer: Optional[LoadEventsProducer] = None,
        rules: Optional[TransitionRuleTable] = None,
    ) -> None:
        self.db = db
        self.store = LoadRecordStore(db)
        self.ledger = StatusHistoryLedger(db)
        self.rules = rules or get_rule_table()
        self.producer = producer

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def update_status(
        self,
        load_id: str,
        status: StatusLike,
        details: Optional[Dict[str, Any]] = None,
        *,
        actor: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        correlation_id: Optional[str] = None,
    ) -> Load:
        """
        Move a load to ``status``.

        Requesting the status the load is already in is accepted as a
        re-confirmation: a history record is still appended and the event
        still published, so retried requests from drivers and integrations
        succeed instead of being rejected.
        """
        try:
            load = await self.store.get_for_update(load_id)
            previous_status = load.status
            requested = parse_status(status)

            if requested is None:
                raise InvalidTransitionError(load_id, previous_status, str(status))
            if requested.value != previous_status and not self.rules.allowed(previous_status, requested):
                raise InvalidTransitionError(load_id, previous_status, requested.value)

            now = utcnow()
            await self.store.patch_status(load, requested, now)
            record = await self.ledger.append(
                load_id,
                requested,
                actor,
                previous_status=previous_status,
                details=details,
                latitude=latitude,
                longitude=longitude,
                when=now,
            )
            await self.db.commit()
        except LoadNotFoundError:
            await self.db.rollback()
            logger.warning(f"Load with ID {load_id} not found")
            raise
        except InvalidTransitionError as e:
            await self.db.rollback()
            logger.warning(f"Invalid status transition from {e.from_status} to {e.to_status} for load {load_id}")
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error updating status for load {load_id}: {type(e).__name__}: {e}")
            raise PersistenceError(f"Error updating status for load {load_id}", load_id=load_id) from e

        logger.info(f"Updated status of load {load_id} from {previous_status} to {requested.value}")
        await self._announce(self._publish_status_changed(load, previous_status, record, correlation_id))
        return load

    async def create_load(
        self,
        attributes: Dict[str, Any],
        *,
        actor: str,
        correlation_id: Optional[str] = None,
    ) -> Load:
        """Create a load in the initial status, with its first history record."""
        try:
            now = utcnow()
            load = await self.store.insert(attributes, when=now)
            await self.ledger.append(
                load.id,
                INITIAL_STATUS,
                actor,
                details={"message": "Load created"},
                when=now,
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error creating load: {type(e).__name__}: {e}")
            raise PersistenceError("Error creating load", load_id=attributes.get("id")) from e

        logger.info(f"Created load {load.id} in status {load.status}")
        if self.producer:
            await self._announce(self.producer.publish_created(load, actor, correlation_id))
        return load

    async def delete_load(
        self,
        load_id: str,
        *,
        actor: str,
        reason: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> bool:
        """Delete a load together with its whole status history."""
        try:
            load = await self.store.get_for_update(load_id)
            shipper_id = load.shipper_id
            await self.ledger.delete_by_load(load_id)
            await self.store.delete(load)
            await self.db.commit()
        except LoadNotFoundError:
            await self.db.rollback()
            logger.info(f"Load {load_id} not found, nothing to delete")
            return False
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error deleting load {load_id}: {type(e).__name__}: {e}")
            raise PersistenceError(f"Error deleting load {load_id}", load_id=load_id) from e

        logger.info(f"Deleted load {load_id}")
        if self.producer:
            await self._announce(
                self.producer.publish_deleted(load_id, shipper_id, actor, reason, correlation_id)
            )
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_status_history(self, load_id: str) -> List[LoadStatusHistory]:
        """All history records for a load, oldest first."""
        try:
            return await self.ledger.list_by_load(load_id)
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving status history for load {load_id}: {e}")
            raise PersistenceError(f"Error retrieving status history for load {load_id}", load_id=load_id) from e

    async def get_status_timeline(self, load_id: str) -> List[Dict[str, Any]]:
        """Compact chronological view of the history for timeline displays."""
        history = await self.get_status_history(load_id)
        return [
            {
                "status": record.status,
                "previous_status": record.previous_status,
                "actor": record.actor,
                "created_at": record.created_at,
                "location": record.location,
            }
            for record in history
        ]

    async def get_current_status(self, load_id: str) -> str:
        """
        The load's current status as recorded by its most recent history entry.

        Falls back to the load row for loads that predate the ledger.
        """
        try:
            load = await self.store.find(load_id)
            if not load:
                raise LoadNotFoundError(load_id)
            current = await self.ledger.current_status(load_id)
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving current status for load {load_id}: {e}")
            raise PersistenceError(f"Error retrieving current status for load {load_id}", load_id=load_id) from e
        return current or load.status

    async def get_status_counts(
        self,
        shipper_id: Optional[str] = None,
        company_id: Optional[str] = None,
    ) -> Dict[str, int]:
        """Number of loads per status; every known status is present, zero if unused."""
        try:
            rows = await self.store.count_by_status(shipper_id=shipper_id, company_id=company_id)
        except SQLAlchemyError as e:
            logger.error(f"Error getting load status counts: {e}")
            raise PersistenceError("Error getting load status counts") from e

        counts = {status.value: 0 for status in LoadStatus}
        for status, count in rows.items():
            if status in counts:
                counts[status] = count
            else:
                logger.warning(f"Ignoring {count} loads with unknown status {status!r}")
        return counts

    def get_transition_rules(self) -> Dict[str, List[str]]:
        return self.rules.as_dict()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _publish_status_changed(
        self,
        load: Load,
        previous_status: str,
        record: LoadStatusHistory,
        correlation_id: Optional[str],
    ) -> None:
        if self.producer:
            await self.producer.publish_status_changed(load, previous_status, record, correlation_id)

    async def _announce(self, publication) -> None:
        # Runs after commit; the write stands whether or not this succeeds
        try:
            await publication
        except PublishError as e:
            logger.error(f"{e} (state change already committed)")
