from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_core.core.database import Base, JSONDocument


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CRMCompany(Base):
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    custom_fields: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)

    contacts: Mapped[list[CRMContact]] = relationship(
        "CRMContact",
        back_populates="company",
        passive_deletes=True,
    )
    deals: Mapped[list[CRMDeal]] = relationship(
        "CRMDeal",
        back_populates="company",
        passive_deletes=True,
    )


class CRMContact(Base):
    __tablename__ = "contacts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[str] = mapped_column(String(255), nullable=False)
    emails: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    phones: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    company_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
    )
    custom_fields: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)

    company: Mapped[CRMCompany | None] = relationship("CRMCompany", back_populates="contacts")


class CRMDeal(Base):
    __tablename__ = "deals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("contacts.id", ondelete="SET NULL"),
        nullable=True,
    )
    value: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD", server_default="USD")
    stage: Mapped[str] = mapped_column(String(100), nullable=False)
    probability: Mapped[int] = mapped_column(Integer, nullable=False)
    close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    custom_fields: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)

    company: Mapped[CRMCompany] = relationship("CRMCompany", back_populates="deals")

    __table_args__ = (
        CheckConstraint("probability >= 0 AND probability <= 100", name="ck_deals_probability_range"),
    )


class CRMTask(Base):
    __tablename__ = "tasks"

    # entity_type/entity_id is an advisory reference without a foreign key.
    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    assigned_to: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open", server_default="open")
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('open', 'closed')", name="ck_tasks_status"),
    )


class CRMNote(Base):
    __tablename__ = "notes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)


class CRMCustomFieldDefinition(Base):
    __tablename__ = "custom_field_definitions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    field_type: Mapped[str] = mapped_column(String(20), nullable=False)
    enum_values: Mapped[list[str] | None] = mapped_column(JSONDocument, nullable=True)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("entity_type", "name", name="uq_custom_field_definitions_entity_name"),
        CheckConstraint(
            "field_type IN ('text', 'number', 'date', 'enum', 'boolean')",
            name="ck_custom_field_definitions_field_type",
        ),
    )


Index("ix_companies_name", CRMCompany.name)
Index("ix_companies_created_at", CRMCompany.created_at)
Index("ix_contacts_company_id", CRMContact.company_id)
Index("ix_contacts_created_at", CRMContact.created_at)
Index("ix_deals_company_id", CRMDeal.company_id)
Index("ix_deals_contact_id", CRMDeal.contact_id)
Index("ix_deals_stage", CRMDeal.stage)
Index("ix_deals_close_date", CRMDeal.close_date)
Index("ix_deals_created_at", CRMDeal.created_at)
Index("ix_tasks_entity", CRMTask.entity_type, CRMTask.entity_id)
Index("ix_tasks_assigned_to", CRMTask.assigned_to)
Index("ix_tasks_due_date", CRMTask.due_date)
Index("ix_tasks_status", CRMTask.status)
Index("ix_tasks_created_at", CRMTask.created_at)
Index("ix_notes_entity", CRMNote.entity_type, CRMNote.entity_id)
Index("ix_notes_created_at", CRMNote.created_at)
Index("ix_custom_field_definitions_entity_type", CRMCustomFieldDefinition.entity_type)
Index("ix_custom_field_definitions_created_at", CRMCustomFieldDefinition.created_at)
