"""Create store_objects and store_states

Revision ID: 3e5c0b7a91d2
Revises:
Create Date: 2026-10-16 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3e5c0b7a91d2"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "store_objects",
        sa.Column("id", sa.String(512), primary_key=True),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("common", JSONType, nullable=True),
        sa.Column("native", JSONType, nullable=True),
        sa.Column("custom", JSONType, nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
    )
    op.create_table(
        "store_states",
        sa.Column("id", sa.String(512), primary_key=True),
        sa.Column("val", JSONType, nullable=True),
        sa.Column("ack", sa.Boolean(), nullable=True),
        sa.Column("ts", sa.BigInteger(), nullable=False),
        sa.Column("lc", sa.BigInteger(), nullable=False),
    )
    # Subtree scans filter on "<prefix>.%"
    op.execute(
        "CREATE INDEX ix_store_objects_id_pattern ON store_objects (id varchar_pattern_ops)"
    )
    op.execute(
        "CREATE INDEX ix_store_states_id_pattern ON store_states (id varchar_pattern_ops)"
    )


def downgrade() -> None:
    op.drop_index("ix_store_states_id_pattern", table_name="store_states")
    op.drop_index("ix_store_objects_id_pattern", table_name="store_objects")
    op.drop_table("store_states")
    op.drop_table("store_objects")
