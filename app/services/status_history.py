from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.load import LoadStatus
from app.models.load_status_history import LoadStatusHistory
from app.services.transition_rules import StatusLike
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


def _value(status: StatusLike) -> str:
    return status.value if isinstance(status, LoadStatus) else status


class StatusHistoryLedger:
    """
    Append-only store of load status transitions.

    ``append`` must run in the same transaction as the load's status patch.
    Records come back oldest first, ordered by their per-load sequence, so
    insertion order wins over clock order when timestamps tie.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _latest(self, load_id: str) -> Optional[LoadStatusHistory]:
        result = await self.db.execute(
            select(LoadStatusHistory)
            .where(LoadStatusHistory.load_id == load_id)
            .order_by(LoadStatusHistory.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def append(
        self,
        load_id: str,
        status: StatusLike,
        actor: str,
        previous_status: Optional[StatusLike] = None,
        details: Optional[Dict[str, Any]] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        when: Optional[datetime] = None,
    ) -> LoadStatusHistory:
        latest = await self._latest(load_id)
        sequence = latest.sequence + 1 if latest else 1
        created_at = when or utcnow()
        # created_at never goes backwards for a load, even if the clock does
        if latest and latest.created_at > created_at:
            created_at = latest.created_at

        record = LoadStatusHistory(
            id=str(uuid.uuid4()),
            load_id=load_id,
            sequence=sequence,
            status=_value(status),
            previous_status=_value(previous_status) if previous_status else None,
            details=details or {},
            actor=actor,
            latitude=latitude,
            longitude=longitude,
            created_at=created_at,
        )
        self.db.add(record)
        await self.db.flush()
        return record

    async def list_by_load(self, load_id: str) -> List[LoadStatusHistory]:
        result = await self.db.execute(
            select(LoadStatusHistory)
            .where(LoadStatusHistory.load_id == load_id)
            .order_by(LoadStatusHistory.sequence.asc())
        )
        return list(result.scalars().all())

    async def current_status(self, load_id: str) -> Optional[str]:
        latest = await self._latest(load_id)
        return latest.status if latest else None

    async def delete_by_load(self, load_id: str) -> int:
        """Purge a load's history. Only called while deleting the load itself."""
        result = await self.db.execute(
            delete(LoadStatusHistory).where(LoadStatusHistory.load_id == load_id)
        )
        deleted = result.rowcount or 0
        logger.info(f"Purged {deleted} status history records for load {load_id}")
        return deleted
