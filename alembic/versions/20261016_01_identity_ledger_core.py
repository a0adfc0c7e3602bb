"""Identity, merchant client and ledger tables.

Revision ID: 20261016_01
Revises: 
Create Date: 2026-10-16
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261016_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


merchant_status = sa.Enum("pending", "active", "suspended", "rejected", "cancelled", name="merchant_status")
alias_type = sa.Enum("email", "phone", name="end_user_alias_type")
ledger_entry_type = sa.Enum(
    "credit",
    "reward",
    "merge",
    "adjustment",
    "gift_out",
    "gift_in",
    "gift_refund",
    name="ledger_entry_type",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "merchants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("business_name", sa.String(), nullable=False),
        sa.Column("address", sa.String(), nullable=True),
        sa.Column("vat_number", sa.String(), nullable=True, unique=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("status", merchant_status, nullable=False, server_default="pending"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("points_per_euro", sa.Numeric(10, 4), nullable=False, server_default="1.0"),
        sa.Column("points_for_reward", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("reward_description", sa.String(), nullable=False),
        sa.Column("allow_gifts", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "end_users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("email_lower", sa.String(), nullable=True, unique=True),
        sa.Column("email_canonical", sa.String(), nullable=True),
        sa.Column("phone_e164", sa.String(), nullable=True, unique=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("email_validated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("validation_token", sa.String(), nullable=True),
        sa.Column("qr_token", sa.String(), nullable=True, unique=True),
        sa.Column("pin_hash", sa.String(), nullable=True),
        sa.Column("consent_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consent_method", sa.String(), nullable=True),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "email_lower IS NOT NULL OR phone_e164 IS NOT NULL OR deleted_at IS NOT NULL",
            name="ck_end_users_identifier_present",
        ),
    )
    op.create_index("ix_end_users_email_canonical", "end_users", ["email_canonical"])

    op.create_table(
        "end_user_aliases",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("end_user_id", sa.Integer(), sa.ForeignKey("end_users.id"), nullable=False),
        sa.Column("alias_type", alias_type, nullable=False),
        sa.Column("alias_value", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("alias_type", "alias_value", name="uq_end_user_aliases_type_value"),
    )
    op.create_index("ix_end_user_aliases_end_user_id", "end_user_aliases", ["end_user_id"])

    op.create_table(
        "end_user_merges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_user_id", sa.Integer(), nullable=False),
        sa.Column("target_user_id", sa.Integer(), sa.ForeignKey("end_users.id"), nullable=False),
        sa.Column("merchant_id", sa.Integer(), sa.ForeignKey("merchants.id"), nullable=True),
        sa.Column("merged_by", sa.Integer(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_end_user_merges_source_user_id", "end_user_merges", ["source_user_id"])
    op.create_index("ix_end_user_merges_target_user_id", "end_user_merges", ["target_user_id"])

    op.create_table(
        "merchant_clients",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("merchant_id", sa.Integer(), sa.ForeignKey("merchants.id"), nullable=False),
        sa.Column("end_user_id", sa.Integer(), sa.ForeignKey("end_users.id"), nullable=False),
        sa.Column("points_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_spent", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("visit_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("first_visit", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_visit", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("custom_reward", sa.String(), nullable=True),
        sa.Column("notes_private", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("merchant_id", "end_user_id", name="uq_merchant_clients_merchant_end_user"),
    )
    op.create_index("ix_merchant_clients_merchant_id", "merchant_clients", ["merchant_id"])
    op.create_index("ix_merchant_clients_end_user_id", "merchant_clients", ["end_user_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("merchant_id", sa.Integer(), sa.ForeignKey("merchants.id"), nullable=False),
        sa.Column("merchant_client_id", sa.Integer(), sa.ForeignKey("merchant_clients.id"), nullable=False),
        sa.Column("staff_id", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("points_delta", sa.Integer(), nullable=False),
        sa.Column("transaction_type", ledger_entry_type, nullable=False),
        sa.Column("idempotency_key", sa.String(), nullable=True),
        sa.Column("source", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("merchant_id", "idempotency_key", name="uq_transactions_merchant_idempotency_key"),
    )
    op.create_index("ix_transactions_merchant_id", "transactions", ["merchant_id"])
    op.create_index("ix_transactions_merchant_client_id", "transactions", ["merchant_client_id"])


def downgrade() -> None:
    op.drop_index("ix_transactions_merchant_client_id", table_name="transactions")
    op.drop_index("ix_transactions_merchant_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_merchant_clients_end_user_id", table_name="merchant_clients")
    op.drop_index("ix_merchant_clients_merchant_id", table_name="merchant_clients")
    op.drop_table("merchant_clients")
    op.drop_index("ix_end_user_merges_target_user_id", table_name="end_user_merges")
    op.drop_index("ix_end_user_merges_source_user_id", table_name="end_user_merges")
    op.drop_table("end_user_merges")
    op.drop_index("ix_end_user_aliases_end_user_id", table_name="end_user_aliases")
    op.drop_table("end_user_aliases")
    op.drop_index("ix_end_users_email_canonical", table_name="end_users")
    op.drop_table("end_users")
    op.drop_table("merchants")

    bind = op.get_bind()
    ledger_entry_type.drop(bind, checkfirst=True)
    alias_type.drop(bind, checkfirst=True)
    merchant_status.drop(bind, checkfirst=True)
