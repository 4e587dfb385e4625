"""back office schema

Revision ID: 20250301120000
Revises:
Create Date: 2025-03-01 12:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20250301120000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PAYMENT_STATUSES = ("CREATING", "SHARED", "APPROVED", "PENDING", "DECLINED", "ON_HOLD", "PAID")


def upgrade() -> None:
    """Create services, payments, payment links and the audit trail."""
    payment_status = postgresql.ENUM(*PAYMENT_STATUSES, name="payment_status", create_type=False)
    op.execute(
        """
        DO $$ BEGIN
            CREATE TYPE payment_status AS ENUM
                ('CREATING', 'SHARED', 'APPROVED', 'PENDING', 'DECLINED', 'ON_HOLD', 'PAID');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
        """
    )

    op.create_table(
        "services",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("partner_id", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("partner_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("service_date", sa.Date(), nullable=False),
        sa.Column("service_time", sa.Integer(), nullable=True),
        sa.Column("first_name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("client_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("park", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("location", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("guests", sa.Integer(), nullable=True),
        sa.Column("hopper", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("team", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("service_type_id", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("service_type_name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("final_value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("override_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("observations", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="recorded"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_services")),
    )
    op.create_index(op.f("ix_services_tenant_id"), "services", ["tenant_id"])
    op.create_index(
        "ix_services_partner_date", "services", ["tenant_id", "partner_id", "service_date"]
    )
    op.create_index(
        "ix_services_type_date", "services", ["tenant_id", "service_type_id", "service_date"]
    )

    op.create_table(
        "payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("partner_id", sa.String(length=64), nullable=False),
        sa.Column("partner_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("period_from", sa.Date(), nullable=True),
        sa.Column("period_to", sa.Date(), nullable=True),
        sa.Column("week_key", sa.String(length=16), nullable=True),
        sa.Column("week_start", sa.Date(), nullable=True),
        sa.Column("week_end", sa.Date(), nullable=True),
        sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", payment_status, nullable=False, server_default="PENDING"),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("notes_log", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_payments")),
    )
    op.create_index(op.f("ix_payments_tenant_id"), "payments", ["tenant_id"])
    op.create_index(op.f("ix_payments_week_key"), "payments", ["week_key"])
    op.create_index(
        "ix_payments_partner_status", "payments", ["tenant_id", "partner_id", "status"]
    )
    op.create_index("ix_payments_created_at", "payments", ["created_at"])

    op.create_table(
        "payment_service_links",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("payment_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("service_ref", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["payment_id"],
            ["payments.id"],
            name=op.f("fk_payment_service_links_payment_id_payments"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_payment_service_links")),
        sa.UniqueConstraint(
            "payment_id", "service_ref", name="uq_payment_service_links_payment_ref"
        ),
    )
    op.create_index(
        op.f("ix_payment_service_links_payment_id"), "payment_service_links", ["payment_id"]
    )
    # Lock lookups go from a service id to the payments referencing it
    op.create_index(
        op.f("ix_payment_service_links_service_ref"), "payment_service_links", ["service_ref"]
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("actor_role", sa.String(length=32), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("before_json", sa.JSON(), nullable=True),
        sa.Column("after_json", sa.JSON(), nullable=True),
        sa.Column("occurred_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_audit_logs")),
    )
    op.create_index(op.f("ix_audit_logs_tenant_id"), "audit_logs", ["tenant_id"])


def downgrade() -> None:
    """Drop back office tables."""
    op.drop_index(op.f("ix_audit_logs_tenant_id"), table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index(op.f("ix_payment_service_links_service_ref"), table_name="payment_service_links")
    op.drop_index(op.f("ix_payment_service_links_payment_id"), table_name="payment_service_links")
    op.drop_table("payment_service_links")

    op.drop_index("ix_payments_created_at", table_name="payments")
    op.drop_index("ix_payments_partner_status", table_name="payments")
    op.drop_index(op.f("ix_payments_week_key"), table_name="payments")
    op.drop_index(op.f("ix_payments_tenant_id"), table_name="payments")
    op.drop_table("payments")

    op.drop_index("ix_services_type_date", table_name="services")
    op.drop_index("ix_services_partner_date", table_name="services")
    op.drop_index(op.f("ix_services_tenant_id"), table_name="services")
    op.drop_table("services")

    op.execute("DROP TYPE IF EXISTS payment_status")
