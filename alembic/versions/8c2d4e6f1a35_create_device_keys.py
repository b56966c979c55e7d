"""create device keys

Revision ID: 8c2d4e6f1a35
Revises: 3f9a1c7d2e10
Create Date: 2026-10-19 00:00:01.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8c2d4e6f1a35"
down_revision: Union[str, Sequence[str], None] = "3f9a1c7d2e10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "device_keys",
        sa.Column("key_id", sa.Text(), primary_key=True),
        sa.Column("platform", sa.Text(), nullable=False),
        # NULL for Android, Play Integrity issues no device key
        sa.Column("public_key", sa.Text(), nullable=True),
        sa.Column("bound_identifier", sa.Text(), nullable=False),
        sa.Column("counter", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("device_keys")
