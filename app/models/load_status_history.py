"""
Load status history ledger.

One row per accepted status transition. Rows are append-only: they are
inserted by StatusHistoryLedger and only ever removed together with their
load (cascading purge).
"""

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    event,
)

from app.models.base import Base


class LoadStatusHistory(Base):
    """
    Immutable audit entry for a single status transition.

    - Who performed it (actor)
    - What changed (previous_status -> status)
    - When it happened (created_at, ordered by sequence)
    - Where the load was (optional latitude/longitude)
    - Why (details: reason, message, ...)
    """
    __tablename__ = "load_status_history"

    id = Column(String, primary_key=True)
    load_id = Column(
        String,
        ForeignKey("freight_load.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Per-load insertion order, 1-based. Unique per load so two writers
    # appending after the same predecessor cannot both commit.
    sequence = Column(Integer, nullable=False)

    status = Column(String, nullable=False)
    previous_status = Column(String, nullable=True)  # Null for the initial record
    details = Column(JSON, nullable=True)
    actor = Column(String, nullable=False)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("load_id", "sequence", name="uq_load_status_history_load_sequence"),
        Index("idx_load_status_history_load_created", "load_id", "created_at"),
    )

    @property
    def location(self) -> dict | None:
        if self.latitude is None or self.longitude is None:
            return None
        return {"latitude": self.latitude, "longitude": self.longitude}

    def __repr__(self) -> str:
        return f"<LoadStatusHistory {self.load_id}#{self.sequence} {self.previous_status}->{self.status}>"


@event.listens_for(LoadStatusHistory, "before_update")
def _reject_history_update(mapper, connection, target) -> None:
    raise ValueError(
        f"Status history record {target.id} is immutable and cannot be updated"
    )
