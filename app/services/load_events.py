from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from app.core.config import Settings, get_settings
from app.core.errors import PublishError
from app.models.load import Load, LoadStatus
from app.models.load_status_history import LoadStatusHistory
from app.services.event_dispatcher import EventEnvelope, EventPublisher, get_event_bus
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


class LoadEventType(str, Enum):
    """Event types published on the load events topic."""
    LOAD_CREATED = "LOAD_CREATED"
    LOAD_STATUS_CHANGED = "LOAD_STATUS_CHANGED"
    LOAD_COMPLETED = "LOAD_COMPLETED"
    LOAD_CANCELLED = "LOAD_CANCELLED"
    LOAD_DELETED = "LOAD_DELETED"


def status_event_type(new_status: str) -> LoadEventType:
    if new_status == LoadStatus.COMPLETED.value:
        return LoadEventType.LOAD_COMPLETED
    if new_status == LoadStatus.CANCELLED.value:
        return LoadEventType.LOAD_CANCELLED
    return LoadEventType.LOAD_STATUS_CHANGED


class LoadEventsProducer:
    """
    Builds load event envelopes and hands them to an EventPublisher.

    Every failure to publish is raised as PublishError; deciding whether that
    matters is left to the caller.
    """

    def __init__(
        self,
        publisher: EventPublisher,
        topic: str = "load-events",
        producer: str = "load-service",
        event_version: str = "1.0",
    ) -> None:
        self.publisher = publisher
        self.topic = topic
        self.producer = producer
        self.event_version = event_version

    @classmethod
    def from_settings(cls, publisher: EventPublisher, settings: Optional[Settings] = None) -> "LoadEventsProducer":
        settings = settings or get_settings()
        return cls(
            publisher,
            topic=settings.load_events_topic,
            producer=settings.event_producer_name,
            event_version=settings.event_version,
        )

    def build_envelope(
        self,
        event_type: LoadEventType,
        payload: Dict[str, Any],
        correlation_id: Optional[str] = None,
    ) -> EventEnvelope:
        return EventEnvelope(
            event_id=str(uuid.uuid4()),
            event_type=event_type.value,
            event_version=self.event_version,
            event_time=utcnow().isoformat() + "Z",
            producer=self.producer,
            correlation_id=correlation_id or str(uuid.uuid4()),
            payload=payload,
        )

    async def _publish(self, envelope: EventEnvelope) -> None:
        load_id = envelope.payload.get("load_id")
        try:
            await self.publisher.publish(self.topic, envelope)
        except PublishError:
            raise
        except Exception as e:
            raise PublishError(envelope.event_type, load_id, reason=str(e)) from e
        logger.info(f"Published {envelope.event_type} event for load {load_id} to topic {self.topic}")

    async def publish_status_changed(
        self,
        load: Load,
        previous_status: str,
        record: LoadStatusHistory,
        correlation_id: Optional[str] = None,
    ) -> EventEnvelope:
        envelope = self.build_envelope(
            status_event_type(load.status),
            {
                "load_id": load.id,
                "previous_status": previous_status,
                "new_status": load.status,
                "timestamp": record.created_at.isoformat() + "Z",
                "actor_id": record.actor,
                "location": record.location,
                "status_details": record.details or {},
            },
            correlation_id,
        )
        await self._publish(envelope)
        return envelope

    async def publish_created(
        self,
        load: Load,
        actor: str,
        correlation_id: Optional[str] = None,
    ) -> EventEnvelope:
        envelope = self.build_envelope(
            LoadEventType.LOAD_CREATED,
            {
                "load_id": load.id,
                "shipper_id": load.shipper_id,
                "status": load.status,
                "created_by": actor,
                "created_at": load.created_at.isoformat() + "Z",
            },
            correlation_id,
        )
        await self._publish(envelope)
        return envelope

    async def publish_deleted(
        self,
        load_id: str,
        shipper_id: Optional[str],
        actor: str,
        reason: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> EventEnvelope:
        envelope = self.build_envelope(
            LoadEventType.LOAD_DELETED,
            {
                "load_id": load_id,
                "shipper_id": shipper_id,
                "deleted_at": utcnow().isoformat() + "Z",
                "deleted_by": actor,
                "reason": reason,
            },
            correlation_id,
        )
        await self._publish(envelope)
        return envelope


def get_load_events_producer() -> LoadEventsProducer:
    """Producer bound to the global event bus and the configured topic."""
    return LoadEventsProducer.from_settings(get_event_bus())
