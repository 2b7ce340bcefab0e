"""Issuance core tables.

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUM_NAMES = (
    "subscription_status_enum",
    "skip_source_enum",
    "service_exception_kind_enum",
    "service_recurrence_enum",
)


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("telegram_user_id", sa.BigInteger(), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_customers_email", "customers", ["email"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "customer_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("customers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("external_subscription_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "TRIALING", "PAST_DUE", "UNPAID", "CANCELED", name="subscription_status_enum"),
            nullable=False,
        ),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_subscriptions_customer_id", "subscriptions", ["customer_id"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])

    op.create_table(
        "skips",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "customer_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("customers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("skip_date", sa.Date(), nullable=False),
        sa.Column("source", sa.Enum("TELEGRAM", "ADMIN", name="skip_source_enum"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("customer_id", "skip_date", name="uq_skips_customer_date"),
    )

    op.create_table(
        "service_patterns",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("service_days", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.execute("INSERT INTO service_patterns (id, service_days) VALUES (1, '[1, 2, 3, 4, 5]')")

    op.create_table(
        "service_exceptions",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("kind", sa.Enum("HOLIDAY", "SPECIAL_EVENT", name="service_exception_kind_enum"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_service_day", sa.Boolean(), nullable=False),
        sa.Column(
            "recurrence",
            sa.Enum("one-time", "annual", "floating", name="service_recurrence_enum"),
            nullable=False,
            server_default="one-time",
        ),
        sa.Column("recurrence_rule", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("date", "kind", name="uq_service_exceptions_date_kind"),
    )
    op.create_index("ix_service_exceptions_date", "service_exceptions", ["date"])

    op.create_table(
        "entitlements",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "customer_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("customers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("service_date", sa.Date(), nullable=False),
        sa.Column("meals_allowed", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("meals_redeemed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("customer_id", "service_date", name="uq_entitlements_customer_date"),
    )
    op.create_index("ix_entitlements_service_date", "entitlements", ["service_date"])

    op.create_table(
        "credentials",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "customer_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("customers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("service_date", sa.Date(), nullable=False),
        sa.Column("token_id", sa.String(length=64), nullable=False),
        sa.Column("short_code", sa.String(length=16), nullable=True),
        sa.Column("signed_token", sa.Text(), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("customer_id", "service_date", name="uq_credentials_customer_date"),
        sa.UniqueConstraint("token_id", name="credentials_token_id_key"),
        sa.UniqueConstraint("short_code", name="credentials_short_code_key"),
    )
    op.create_index("ix_credentials_expires_at", "credentials", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_credentials_expires_at", table_name="credentials")
    op.drop_table("credentials")
    op.drop_index("ix_entitlements_service_date", table_name="entitlements")
    op.drop_table("entitlements")
    op.drop_index("ix_service_exceptions_date", table_name="service_exceptions")
    op.drop_table("service_exceptions")
    op.drop_table("service_patterns")
    op.drop_table("skips")
    op.drop_index("ix_subscriptions_status", table_name="subscriptions")
    op.drop_index("ix_subscriptions_customer_id", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("ix_customers_email", table_name="customers")
    op.drop_table("customers")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum_name in ENUM_NAMES:
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")
