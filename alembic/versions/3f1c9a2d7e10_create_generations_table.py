"""create_generations_table

Revision ID: 3f1c9a2d7e10
Revises:
Create Date: 2026-10-19 10:12:41.208311

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c9a2d7e10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

generation_type = sa.Enum("TRY_ON", "COMPOSITE", name="generationtype")
generation_status = sa.Enum("PENDING", "PROCESSING", "COMPLETED", "FAILED", name="generationstatus")


def upgrade() -> None:
    """Create generations table."""
    op.create_table(
        "generations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("type", generation_type, nullable=False),
        sa.Column("status", generation_status, nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("storage_path", sa.String(length=1024), nullable=True),
        sa.Column("progress", sa.Integer(), nullable=False),
        sa.Column("error", sa.String(), nullable=True),
        # Audit-only request metadata (input ids, prompt)
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("source_generation_id", sa.Uuid(), nullable=True),
        # Compare-and-swap counter for status transitions
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["source_generation_id"], ["generations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generations_type", "generations", ["type"], unique=False)
    op.create_index("ix_generations_status", "generations", ["status"], unique=False)
    # Sweeper scans processing generations least recently updated first
    op.create_index(
        "ix_generations_status_updated_at", "generations", ["status", "updated_at"], unique=False
    )


def downgrade() -> None:
    """Drop generations table."""
    op.drop_index("ix_generations_status_updated_at", table_name="generations")
    op.drop_index("ix_generations_status", table_name="generations")
    op.drop_index("ix_generations_type", table_name="generations")
    op.drop_table("generations")
    generation_status.drop(op.get_bind(), checkfirst=True)
    generation_type.drop(op.get_bind(), checkfirst=True)
