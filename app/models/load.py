import enum

from sqlalchemy import Column, DateTime, Float, Integer, JSON, Numeric, String, func
from sqlalchemy.ext.hybrid import hybrid_property

from app.models.base import Base


class LoadStatus(str, enum.Enum):
    """Closed set of lifecycle states a load moves through."""

    CREATED = "created"
    PENDING = "pending"
    OPTIMIZING = "optimizing"
    AVAILABLE = "available"
    RESERVED = "reserved"
    ASSIGNED = "assigned"
    IN_TRANSIT = "in_transit"
    AT_PICKUP = "at_pickup"
    LOADED = "loaded"
    DELAYED = "delayed"
    EXCEPTION = "exception"
    RESOLVED = "resolved"
    AT_DROPOFF = "at_dropoff"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Load(Base):
    """
    One shipment unit.

    The status column is mapped under ``_status`` and exposed read-only as
    ``status``. Only LoadRecordStore writes it, on behalf of the lifecycle
    service, so the entity and its history ledger cannot drift apart.
    """

    __tablename__ = "freight_load"

    id = Column(String, primary_key=True)
    company_id = Column(String, nullable=True, index=True)
    shipper_id = Column(String, nullable=True, index=True)

    reference_number = Column(String, nullable=True)
    commodity = Column(String, nullable=True)
    weight = Column(Float, nullable=True)  # pounds
    equipment_type = Column(String, nullable=True)
    base_rate = Column(Numeric(12, 2), nullable=True)
    notes = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)

    _status = Column("status", String, nullable=False, default=LoadStatus.CREATED.value, index=True)

    # Optimistic lock: every UPDATE is guarded by the version it was read at
    version_id = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    __mapper_args__ = {"version_id_col": version_id}

    @hybrid_property
    def status(self) -> str:
        return self._status

    def __repr__(self) -> str:
        return f"<Load {self.id} status={self._status}>"
