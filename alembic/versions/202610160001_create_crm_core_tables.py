"""create crm core tables

Revision ID: 202610160001
Revises:
Create Date: 2026-10-16 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "202610160001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), nullable=False)


def _document() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _tracking_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("updated_by", sa.String(length=255), nullable=False),
    ]


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "companies",
        _id_column(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", _document(), nullable=True),
        sa.Column("custom_fields", _document(), server_default=sa.text("'{}'"), nullable=False),
        *_tracking_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_companies_name", "companies", ["name"], unique=False)
    op.create_index("ix_companies_created_at", "companies", ["created_at"], unique=False)

    op.create_table(
        "contacts",
        _id_column(),
        sa.Column("first_name", sa.String(length=255), nullable=False),
        sa.Column("last_name", sa.String(length=255), nullable=False),
        sa.Column("emails", _document(), server_default=sa.text("'[]'"), nullable=False),
        sa.Column("phones", _document(), server_default=sa.text("'[]'"), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=True),
        sa.Column("custom_fields", _document(), server_default=sa.text("'{}'"), nullable=False),
        *_tracking_columns(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contacts_company_id", "contacts", ["company_id"], unique=False)
    op.create_index("ix_contacts_created_at", "contacts", ["created_at"], unique=False)

    op.create_table(
        "deals",
        _id_column(),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("contact_id", sa.Uuid(), nullable=True),
        sa.Column("value", sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column("currency", sa.String(length=3), server_default="USD", nullable=False),
        sa.Column("stage", sa.String(length=100), nullable=False),
        sa.Column("probability", sa.Integer(), nullable=False),
        sa.Column("close_date", sa.Date(), nullable=True),
        sa.Column("custom_fields", _document(), server_default=sa.text("'{}'"), nullable=False),
        *_tracking_columns(),
        sa.CheckConstraint("probability >= 0 AND probability <= 100", name="ck_deals_probability_range"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_deals_company_id", "deals", ["company_id"], unique=False)
    op.create_index("ix_deals_contact_id", "deals", ["contact_id"], unique=False)
    op.create_index("ix_deals_stage", "deals", ["stage"], unique=False)
    op.create_index("ix_deals_close_date", "deals", ["close_date"], unique=False)
    op.create_index("ix_deals_created_at", "deals", ["created_at"], unique=False)

    op.create_table(
        "tasks",
        _id_column(),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("assigned_to", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), server_default="open", nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        *_tracking_columns(),
        sa.CheckConstraint("status IN ('open', 'closed')", name="ck_tasks_status"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tasks_entity", "tasks", ["entity_type", "entity_id"], unique=False)
    op.create_index("ix_tasks_assigned_to", "tasks", ["assigned_to"], unique=False)
    op.create_index("ix_tasks_due_date", "tasks", ["due_date"], unique=False)
    op.create_index("ix_tasks_status", "tasks", ["status"], unique=False)
    op.create_index("ix_tasks_created_at", "tasks", ["created_at"], unique=False)

    op.create_table(
        "notes",
        _id_column(),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        *_tracking_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notes_entity", "notes", ["entity_type", "entity_id"], unique=False)
    op.create_index("ix_notes_created_at", "notes", ["created_at"], unique=False)

    op.create_table(
        "custom_field_definitions",
        _id_column(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("field_type", sa.String(length=20), nullable=False),
        sa.Column("enum_values", _document(), nullable=True),
        sa.Column("required", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.CheckConstraint(
            "field_type IN ('text', 'number', 'date', 'enum', 'boolean')",
            name="ck_custom_field_definitions_field_type",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_type", "name", name="uq_custom_field_definitions_entity_name"),
    )
    op.create_index(
        "ix_custom_field_definitions_entity_type",
        "custom_field_definitions",
        ["entity_type"],
        unique=False,
    )
    op.create_index(
        "ix_custom_field_definitions_created_at",
        "custom_field_definitions",
        ["created_at"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        _id_column(),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("changes", _document(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("action IN ('create', 'update', 'delete')", name="ck_audit_logs_action"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"], unique=False)
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"], unique=False)
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_timestamp", table_name="audit_logs")
    op.drop_index("ix_audit_logs_user_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_custom_field_definitions_created_at", table_name="custom_field_definitions")
    op.drop_index("ix_custom_field_definitions_entity_type", table_name="custom_field_definitions")
    op.drop_table("custom_field_definitions")

    op.drop_index("ix_notes_created_at", table_name="notes")
    op.drop_index("ix_notes_entity", table_name="notes")
    op.drop_table("notes")

    op.drop_index("ix_tasks_created_at", table_name="tasks")
    op.drop_index("ix_tasks_status", table_name="tasks")
    op.drop_index("ix_tasks_due_date", table_name="tasks")
    op.drop_index("ix_tasks_assigned_to", table_name="tasks")
    op.drop_index("ix_tasks_entity", table_name="tasks")
    op.drop_table("tasks")

    op.drop_index("ix_deals_created_at", table_name="deals")
    op.drop_index("ix_deals_close_date", table_name="deals")
    op.drop_index("ix_deals_stage", table_name="deals")
    op.drop_index("ix_deals_contact_id", table_name="deals")
    op.drop_index("ix_deals_company_id", table_name="deals")
    op.drop_table("deals")

    op.drop_index("ix_contacts_created_at", table_name="contacts")
    op.drop_index("ix_contacts_company_id", table_name="contacts")
    op.drop_table("contacts")

    op.drop_index("ix_companies_created_at", table_name="companies")
    op.drop_index("ix_companies_name", table_name="companies")
    op.drop_table("companies")
