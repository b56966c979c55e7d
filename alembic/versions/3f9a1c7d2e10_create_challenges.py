"""create challenges

Revision ID: 3f9a1c7d2e10
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9a1c7d2e10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "challenges",
        sa.Column("identifier", sa.Text(), primary_key=True),
        sa.Column("challenge", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )
    op.execute("""
        CREATE INDEX idx_challenges_created_at ON challenges(created_at);
    """)


def downgrade() -> None:
    op.execute("""
        DROP INDEX IF EXISTS idx_challenges_created_at;
    """)
    op.drop_table("challenges")
