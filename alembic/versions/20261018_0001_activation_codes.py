"""create activation codes

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261018_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "activation_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("subscription_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="unused"),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("customer_email", sa.String(length=320), nullable=True),
        sa.Column("order_id", sa.String(length=64), nullable=True),
        sa.Column("activate_url", sa.Text(), nullable=True),
        sa.Column("qr_url", sa.Text(), nullable=True),
        sa.Column("paused", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.CheckConstraint("status in ('unused', 'used')", name="ck_activation_codes_status"),
        sa.CheckConstraint(
            "(status = 'used') = (used_at is not null)", name="ck_activation_codes_used_at"
        ),
    )
    op.create_index("ix_activation_codes_id", "activation_codes", ["id"], unique=False)
    op.create_index("ix_activation_codes_code", "activation_codes", ["code"], unique=True)
    op.create_index("ix_activation_codes_subscription_id", "activation_codes", ["subscription_id"], unique=False)
    op.create_index("ix_activation_codes_issued_at", "activation_codes", ["issued_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_activation_codes_issued_at", table_name="activation_codes")
    op.drop_index("ix_activation_codes_subscription_id", table_name="activation_codes")
    op.drop_index("ix_activation_codes_code", table_name="activation_codes")
    op.drop_index("ix_activation_codes_id", table_name="activation_codes")
    op.drop_table("activation_codes")
