"""Load lifecycle tables

Revision ID: 20261016_000001
Revises: 
Create Date: 2026-10-16 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261016_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "freight_load",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("company_id", sa.String(), nullable=True),
        sa.Column("shipper_id", sa.String(), nullable=True),
        sa.Column("reference_number", sa.String(), nullable=True),
        sa.Column("commodity", sa.String(), nullable=True),
        sa.Column("weight", sa.Float(), nullable=True),
        sa.Column("equipment_type", sa.String(), nullable=True),
        sa.Column("base_rate", sa.Numeric(12, 2), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="created"),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_freight_load"),
    )
    op.create_index("ix_freight_load_company_id", "freight_load", ["company_id"])
    op.create_index("ix_freight_load_shipper_id", "freight_load", ["shipper_id"])
    op.create_index("ix_freight_load_status", "freight_load", ["status"])

    op.create_table(
        "load_status_history",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("load_id", sa.String(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("previous_status", sa.String(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("actor", sa.String(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_load_status_history"),
        sa.ForeignKeyConstraint(
            ["load_id"],
            ["freight_load.id"],
            name="fk_load_status_history_load_id_freight_load",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("load_id", "sequence", name="uq_load_status_history_load_sequence"),
    )
    op.create_index("ix_load_status_history_load_id", "load_status_history", ["load_id"])
    op.create_index(
        "idx_load_status_history_load_created",
        "load_status_history",
        ["load_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_load_status_history_load_created", table_name="load_status_history")
    op.drop_index("ix_load_status_history_load_id", table_name="load_status_history")
    op.drop_table("load_status_history")
    op.drop_index("ix_freight_load_status", table_name="freight_load")
    op.drop_index("ix_freight_load_shipper_id", table_name="freight_load")
    op.drop_index("ix_freight_load_company_id", table_name="freight_load")
    op.drop_table("freight_load")
