"""create credentials table

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "credentials",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("contact", sa.String(), nullable=True),
        sa.Column("provider_key", sa.String(), nullable=False),
        sa.Column("provider_key_id", sa.String(), nullable=False),
        sa.Column("total_credits", sa.Numeric(precision=12, scale=6), nullable=False),
        sa.Column("remaining_credits", sa.Numeric(precision=12, scale=6), nullable=False),
        sa.Column("daily_usage_cap", sa.Numeric(precision=12, scale=6), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("remaining_credits <= total_credits", name="ck_credentials_remaining_within_total"),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index(op.f("ix_credentials_provider_key_id"), "credentials", ["provider_key_id"], unique=False)
    op.create_index(op.f("ix_credentials_created_at"), "credentials", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_credentials_created_at"), table_name="credentials")
    op.drop_index(op.f("ix_credentials_provider_key_id"), table_name="credentials")
    op.drop_table("credentials")
