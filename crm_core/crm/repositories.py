from __future__ import annotations

import uuid
from collections.abc import Mapping
from functools import partial
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_core.core.database import Database
from crm_core.crm.models import CRMCompany, CRMContact, CRMCustomFieldDefinition, CRMDeal, CRMNote, CRMTask
from crm_core.crm.schemas import CompanyRead, ContactRead, CustomFieldDefinitionRead, DealRead, NoteRead, TaskRead
from crm_core.platform.repository import EntityTable, FilterSpec, Pagination, coerce_uuid


class CompanyRepository:
    entity_type = "company"

    def __init__(self, database: Database) -> None:
        self.table: EntityTable[CompanyRead] = EntityTable(
            database,
            CRMCompany,
            CompanyRead,
            "Company",
            filters={"name": FilterSpec(CRMCompany.name, match="icontains")},
            defaults={"custom_fields": dict},
        )

    def create(self, data: Mapping[str, Any], user_id: str, *, session: Session | None = None) -> CompanyRead:
        return self.table.insert(data, user_id, session=session)

    def find_by_id(self, entity_id: uuid.UUID | str, *, session: Session | None = None) -> CompanyRead | None:
        return self.table.get(entity_id, session=session)

    def find_all(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[CompanyRead]:
        return self.table.select_many(filters, pagination, session=session)

    def update(
        self,
        entity_id: uuid.UUID | str,
        data: Mapping[str, Any],
        user_id: str,
        *,
        session: Session | None = None,
    ) -> CompanyRead:
        return self.table.apply_update(entity_id, data, user_id, session=session)

    def delete(self, entity_id: uuid.UUID | str, user_id: str, *, session: Session | None = None) -> None:
        # deals cascade, contacts.company_id is nulled by the store
        self.table.remove(entity_id, session=session)

    def strip_custom_field(self, field_name: str, *, session: Session | None = None) -> int:
        return self.table.strip_custom_field(field_name, session=session)


class ContactRepository:
    entity_type = "contact"

    def __init__(self, database: Database) -> None:
        self.table: EntityTable[ContactRead] = EntityTable(
            database,
            CRMContact,
            ContactRead,
            "Contact",
            filters={
                "company_id": FilterSpec(
                    CRMContact.company_id,
                    nullable=True,
                    coerce=partial(coerce_uuid, field_name="company_id"),
                ),
            },
            defaults={"emails": list, "phones": list, "custom_fields": dict},
        )

    def create(self, data: Mapping[str, Any], user_id: str, *, session: Session | None = None) -> ContactRead:
        return self.table.insert(data, user_id, session=session)

    def find_by_id(self, entity_id: uuid.UUID | str, *, session: Session | None = None) -> ContactRead | None:
        return self.table.get(entity_id, session=session)

    def find_all(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[ContactRead]:
        return self.table.select_many(filters, pagination, session=session)

    def find_by_company(self, company_id: uuid.UUID | str, *, session: Session | None = None) -> list[ContactRead]:
        return self.find_all({"company_id": company_id}, session=session)

    def update(
        self,
        entity_id: uuid.UUID | str,
        data: Mapping[str, Any],
        user_id: str,
        *,
        session: Session | None = None,
    ) -> ContactRead:
        return self.table.apply_update(entity_id, data, user_id, session=session)

    def delete(self, entity_id: uuid.UUID | str, user_id: str, *, session: Session | None = None) -> None:
        self.table.remove(entity_id, session=session)

    def strip_custom_field(self, field_name: str, *, session: Session | None = None) -> int:
        return self.table.strip_custom_field(field_name, session=session)


class DealRepository:
    entity_type = "deal"

    def __init__(self, database: Database) -> None:
        self.table: EntityTable[DealRead] = EntityTable(
            database,
            CRMDeal,
            DealRead,
            "Deal",
            filters={
                "company_id": FilterSpec(CRMDeal.company_id, coerce=partial(coerce_uuid, field_name="company_id")),
                "contact_id": FilterSpec(
                    CRMDeal.contact_id,
                    nullable=True,
                    coerce=partial(coerce_uuid, field_name="contact_id"),
                ),
                "stage": FilterSpec(CRMDeal.stage),
            },
            defaults={"custom_fields": dict},
        )

    def create(self, data: Mapping[str, Any], user_id: str, *, session: Session | None = None) -> DealRead:
        return self.table.insert(data, user_id, session=session)

    def find_by_id(self, entity_id: uuid.UUID | str, *, session: Session | None = None) -> DealRead | None:
        return self.table.get(entity_id, session=session)

    def find_all(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[DealRead]:
        return self.table.select_many(filters, pagination, session=session)

    def find_by_company(self, company_id: uuid.UUID | str, *, session: Session | None = None) -> list[DealRead]:
        return self.find_all({"company_id": company_id}, session=session)

    def update(
        self,
        entity_id: uuid.UUID | str,
        data: Mapping[str, Any],
        user_id: str,
        *,
        session: Session | None = None,
    ) -> DealRead:
        return self.table.apply_update(entity_id, data, user_id, session=session)

    def delete(self, entity_id: uuid.UUID | str, user_id: str, *, session: Session | None = None) -> None:
        self.table.remove(entity_id, session=session)

    def strip_custom_field(self, field_name: str, *, session: Session | None = None) -> int:
        return self.table.strip_custom_field(field_name, session=session)


def _attachment_filters(model: type[CRMTask] | type[CRMNote]) -> dict[str, FilterSpec]:
    return {
        "entity_type": FilterSpec(model.entity_type),
        "entity_id": FilterSpec(model.entity_id, coerce=partial(coerce_uuid, field_name="entity_id")),
    }


class TaskRepository:
    entity_type = "task"

    def __init__(self, database: Database) -> None:
        self.table: EntityTable[TaskRead] = EntityTable(
            database,
            CRMTask,
            TaskRead,
            "Task",
            filters={
                **_attachment_filters(CRMTask),
                "assigned_to": FilterSpec(CRMTask.assigned_to, nullable=True),
                "status": FilterSpec(CRMTask.status),
            },
        )

    def create(self, data: Mapping[str, Any], user_id: str, *, session: Session | None = None) -> TaskRead:
        return self.table.insert(data, user_id, session=session)

    def find_by_id(self, entity_id: uuid.UUID | str, *, session: Session | None = None) -> TaskRead | None:
        return self.table.get(entity_id, session=session)

    def find_all(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[TaskRead]:
        return self.table.select_many(filters, pagination, session=session)

    def find_by_entity(
        self,
        entity_type: str,
        entity_id: uuid.UUID | str,
        *,
        session: Session | None = None,
    ) -> list[TaskRead]:
        return self.find_all({"entity_type": entity_type, "entity_id": entity_id}, session=session)

    def update(
        self,
        entity_id: uuid.UUID | str,
        data: Mapping[str, Any],
        user_id: str,
        *,
        session: Session | None = None,
    ) -> TaskRead:
        return self.table.apply_update(entity_id, data, user_id, session=session)

    def delete(self, entity_id: uuid.UUID | str, user_id: str, *, session: Session | None = None) -> None:
        self.table.remove(entity_id, session=session)


class NoteRepository:
    entity_type = "note"

    def __init__(self, database: Database) -> None:
        self.table: EntityTable[NoteRead] = EntityTable(
            database,
            CRMNote,
            NoteRead,
            "Note",
            filters=_attachment_filters(CRMNote),
        )

    def create(self, data: Mapping[str, Any], user_id: str, *, session: Session | None = None) -> NoteRead:
        return self.table.insert(data, user_id, session=session)

    def find_by_id(self, entity_id: uuid.UUID | str, *, session: Session | None = None) -> NoteRead | None:
        return self.table.get(entity_id, session=session)

    def find_all(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[NoteRead]:
        return self.table.select_many(filters, pagination, session=session)

    def find_by_entity(
        self,
        entity_type: str,
        entity_id: uuid.UUID | str,
        *,
        session: Session | None = None,
    ) -> list[NoteRead]:
        return self.find_all({"entity_type": entity_type, "entity_id": entity_id}, session=session)

    def update(
        self,
        entity_id: uuid.UUID | str,
        data: Mapping[str, Any],
        user_id: str,
        *,
        session: Session | None = None,
    ) -> NoteRead:
        return self.table.apply_update(entity_id, data, user_id, session=session)

    def delete(self, entity_id: uuid.UUID | str, user_id: str, *, session: Session | None = None) -> None:
        self.table.remove(entity_id, session=session)


class CustomFieldDefinitionRepository:
    """Definitions carry no modification metadata; only label and required change."""

    entity_type = "custom_field_definition"
    updatable_fields = frozenset({"label", "required"})

    def __init__(self, database: Database) -> None:
        self.table: EntityTable[CustomFieldDefinitionRead] = EntityTable(
            database,
            CRMCustomFieldDefinition,
            CustomFieldDefinitionRead,
            "CustomFieldDefinition",
            filters={"entity_type": FilterSpec(CRMCustomFieldDefinition.entity_type)},
            tracks_updates=False,
            unique_message="Custom field with this name already exists for the entity type",
        )

    def create(
        self,
        data: Mapping[str, Any],
        user_id: str,
        *,
        session: Session | None = None,
    ) -> CustomFieldDefinitionRead:
        return self.table.insert(data, user_id, session=session)

    def find_by_id(
        self,
        entity_id: uuid.UUID | str,
        *,
        session: Session | None = None,
    ) -> CustomFieldDefinitionRead | None:
        return self.table.get(entity_id, session=session)

    def find_all(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[CustomFieldDefinitionRead]:
        return self.table.select_many(filters, pagination, session=session)

    def find_by_entity_type(
        self,
        entity_type: str,
        *,
        session: Session | None = None,
    ) -> list[CustomFieldDefinitionRead]:
        stmt = (
            select(CRMCustomFieldDefinition)
            .where(CRMCustomFieldDefinition.entity_type == entity_type)
            .order_by(CRMCustomFieldDefinition.name.asc())
        )
        with self.table.session_scope(session) as db:
            return [self.table.to_read(row) for row in db.scalars(stmt).all()]

    def update(
        self,
        entity_id: uuid.UUID | str,
        data: Mapping[str, Any],
        user_id: str,
        *,
        session: Session | None = None,
    ) -> CustomFieldDefinitionRead:
        changes = {key: value for key, value in data.items() if key in self.updatable_fields}
        return self.table.apply_update(entity_id, changes, user_id, session=session)

    def delete(self, entity_id: uuid.UUID | str, user_id: str, *, session: Session | None = None) -> None:
        self.table.remove(entity_id, session=session)
