"""Gift voucher table.

Revision ID: 20261016_02
Revises: 20261016_01
Create Date: 2026-10-16
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261016_02"
down_revision: Union[str, None] = "20261016_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


voucher_status = sa.Enum("pending", "claimed", "expired", "cancelled", name="point_voucher_status")


def upgrade() -> None:
    op.create_table(
        "point_vouchers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("token", sa.String(), nullable=False, unique=True),
        sa.Column("merchant_id", sa.Integer(), sa.ForeignKey("merchants.id"), nullable=False),
        sa.Column(
            "sender_mc_id",
            sa.Integer(),
            sa.ForeignKey("merchant_clients.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("sender_eu_id", sa.Integer(), sa.ForeignKey("end_users.id"), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("status", voucher_status, nullable=False, server_default="pending"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "claimer_mc_id",
            sa.Integer(),
            sa.ForeignKey("merchant_clients.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("claimer_eu_id", sa.Integer(), sa.ForeignKey("end_users.id"), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_point_vouchers_merchant_id", "point_vouchers", ["merchant_id"])
    op.create_index("ix_point_vouchers_sender_mc_id", "point_vouchers", ["sender_mc_id"])
    op.create_index("ix_point_vouchers_status", "point_vouchers", ["status"])
    op.create_index("ix_point_vouchers_expires_at", "point_vouchers", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_point_vouchers_expires_at", table_name="point_vouchers")
    op.drop_index("ix_point_vouchers_status", table_name="point_vouchers")
    op.drop_index("ix_point_vouchers_sender_mc_id", table_name="point_vouchers")
    op.drop_index("ix_point_vouchers_merchant_id", table_name="point_vouchers")
    op.drop_table("point_vouchers")
    voucher_status.drop(op.get_bind(), checkfirst=True)
