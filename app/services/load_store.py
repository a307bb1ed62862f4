from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import LoadNotFoundError
from app.models.load import Load, LoadStatus
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


class LoadRecordStore:
    """
    Persistence boundary for the Load entity.

    All methods run inside whatever transaction the session currently holds;
    committing and rolling back is the caller's job. ``get_for_update``
    locks the row (``SELECT ... FOR UPDATE``) and refreshes any identity-map
    copy, so the read and the following ``patch_status`` see the same state.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find(self, load_id: str) -> Optional[Load]:
        result = await self.db.execute(select(Load).where(Load.id == load_id))
        return result.scalar_one_or_none()

    async def get(self, load_id: str) -> Load:
        load = await self.find(load_id)
        if not load:
            raise LoadNotFoundError(load_id)
        return load

    async def get_for_update(self, load_id: str) -> Load:
        result = await self.db.execute(
            select(Load)
            .where(Load.id == load_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        load = result.scalar_one_or_none()
        if not load:
            raise LoadNotFoundError(load_id)
        return load

    async def insert(self, attributes: Dict[str, Any], when: Optional[datetime] = None) -> Load:
        """Create a load in the initial status."""
        when = when or utcnow()
        load = Load(
            id=attributes.get("id") or str(uuid.uuid4()),
            company_id=attributes.get("company_id"),
            shipper_id=attributes.get("shipper_id"),
            reference_number=attributes.get("reference_number"),
            commodity=attributes.get("commodity"),
            weight=attributes.get("weight"),
            equipment_type=attributes.get("equipment_type"),
            base_rate=attributes.get("base_rate"),
            notes=attributes.get("notes"),
            metadata_json=attributes.get("metadata"),
            _status=LoadStatus.CREATED.value,
            created_at=when,
            updated_at=when,
        )
        self.db.add(load)
        await self.db.flush()
        return load

    async def patch_status(self, load: Load, new_status: LoadStatus, when: Optional[datetime] = None) -> Load:
        """
        Write the new status to a row previously read with ``get_for_update``.

        The flush is guarded by the row's version; a concurrent commit
        surfaces here as ``StaleDataError``.
        """
        load._status = new_status.value
        load.updated_at = when or utcnow()
        await self.db.flush()
        return load

    async def delete(self, load: Load) -> None:
        await self.db.delete(load)
        await self.db.flush()

    async def count_by_status(
        self,
        shipper_id: Optional[str] = None,
        company_id: Optional[str] = None,
    ) -> Dict[str, int]:
        query = select(Load.status, func.count(Load.id)).group_by(Load.status)
        if shipper_id:
            query = query.where(Load.shipper_id == shipper_id)
        if company_id:
            query = query.where(Load.company_id == company_id)

        result = await self.db.execute(query)
        return {status: int(count) for status, count in result.all()}
