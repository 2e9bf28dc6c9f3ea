from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from pydantic_core import to_jsonable_python
from sqlalchemy.orm import Session

from crm_core.context import actor_context
from crm_core.core.errors import CRMValidationError, NotFoundError
from crm_core.core.transaction import TransactionManager
from crm_core.crm.custom_fields import check_custom_fields
from crm_core.crm.repositories import (
    CompanyRepository,
    ContactRepository,
    CustomFieldDefinitionRepository,
    DealRepository,
    NoteRepository,
    TaskRepository,
)
from crm_core.crm.schemas import (
    CORE_ENTITY_TYPES,
    CompanyCreate,
    CompanyRead,
    CompanyUpdate,
    ContactCreate,
    ContactRead,
    ContactUpdate,
    CustomFieldDefinitionCreate,
    CustomFieldDefinitionRead,
    CustomFieldDefinitionUpdate,
    DealCreate,
    DealRead,
    DealUpdate,
    NoteCreate,
    NoteRead,
    NoteUpdate,
    ReadModel,
    TaskCreate,
    TaskRead,
    TaskUpdate,
)
from crm_core.crm.validation import parse_input
from crm_core.metrics import observe_custom_field_violation, observe_entity_mutation
from crm_core.otel import get_tracer
from crm_core.platform.audit.service import AuditService
from crm_core.platform.repository import Pagination, Repository

logger = logging.getLogger(__name__)
tracer = get_tracer("crm_core.crm")

ReadT = TypeVar("ReadT", bound=ReadModel)


def _require_attachable(entity_type: str) -> None:
    if entity_type not in CORE_ENTITY_TYPES:
        raise CRMValidationError(
            "Validation failed",
            {"entity_type": [f"Input should be {', '.join(repr(item) for item in CORE_ENTITY_TYPES)}"]},
        )


def effective_delta(current: BaseModel, delta: Mapping[str, Any]) -> dict[str, Any]:
    """Drop the keys of ``delta`` whose value already matches ``current``."""
    snapshot = current.model_dump(mode="json")
    return {
        key: value
        for key, value in delta.items()
        if key not in snapshot or to_jsonable_python(value) != snapshot[key]
    }


class EntityService(Generic[ReadT]):
    """validate -> existence check -> repository call -> audit record.

    Every method takes an optional ``session``; passing the session of a
    ``TransactionManager.transaction()`` makes the mutation and its audit
    record commit or roll back together. Without it the audit record is a
    separate write issued after the mutation has committed.
    """

    entity_type = ""
    entity_label = ""
    create_schema: type[BaseModel]
    update_schema: type[BaseModel]
    supports_custom_fields = False

    def __init__(
        self,
        repository: Repository[ReadT],
        audit: AuditService,
        definitions: CustomFieldDefinitionRepository | None = None,
    ) -> None:
        self.repository = repository
        self.audit = audit
        self.definitions = definitions

    def create(self, data: Mapping[str, Any] | BaseModel, actor_user_id: str, *, session: Session | None = None) -> ReadT:
        dto = parse_input(self.create_schema, data)
        values = dto.model_dump()
        with actor_context(actor_user_id), tracer.start_as_current_span(f"crm.{self.entity_type}.create") as span:
            if self.supports_custom_fields:
                values["custom_fields"] = self._check_custom_fields(values.get("custom_fields") or {}, session)

            entity = self.repository.create(values, actor_user_id, session=session)
            span.set_attribute("entity_id", str(entity.id))
            self.audit.log_create(
                self.entity_type,
                entity.id,
                actor_user_id,
                entity.model_dump(mode="json"),
                session=session,
            )
            self._log_mutation("crm.entity.created", "create", entity.id, actor_user_id)
        return entity

    def get(self, entity_id: uuid.UUID | str, *, session: Session | None = None) -> ReadT:
        entity = self.repository.find_by_id(entity_id, session=session)
        if entity is None:
            raise NotFoundError(self.entity_label, entity_id)
        return entity

    def list_all(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[ReadT]:
        return self.repository.find_all(filters, pagination, session=session)

    def update(
        self,
        entity_id: uuid.UUID | str,
        data: Mapping[str, Any] | BaseModel,
        actor_user_id: str,
        *,
        session: Session | None = None,
    ) -> ReadT:
        dto = parse_input(self.update_schema, data)
        delta = dto.model_dump(exclude_unset=True)
        existing = self.get(entity_id, session=session)

        with actor_context(actor_user_id), tracer.start_as_current_span(f"crm.{self.entity_type}.update") as span:
            span.set_attribute("entity_id", str(entity_id))
            if self.supports_custom_fields and "custom_fields" in delta:
                delta["custom_fields"] = self._check_custom_fields(delta["custom_fields"] or {}, session)

            delta = effective_delta(existing, delta)
            updated = self.repository.update(entity_id, delta, actor_user_id, session=session)
            record = self.audit.log_update(
                self.entity_type,
                updated.id,
                actor_user_id,
                existing.model_dump(mode="json"),
                updated.model_dump(mode="json"),
                session=session,
            )
            if record is not None:
                self._log_mutation("crm.entity.updated", "update", updated.id, actor_user_id)
        return updated

    def delete(self, entity_id: uuid.UUID | str, actor_user_id: str, *, session: Session | None = None) -> None:
        existing = self.get(entity_id, session=session)
        existing_id = existing.id
        with actor_context(actor_user_id), tracer.start_as_current_span(f"crm.{self.entity_type}.delete") as span:
            span.set_attribute("entity_id", str(existing_id))
            self.repository.delete(existing_id, actor_user_id, session=session)
            self.audit.log_delete(
                self.entity_type,
                existing_id,
                actor_user_id,
                existing.model_dump(mode="json"),
                session=session,
            )
            self._log_mutation("crm.entity.deleted", "delete", existing_id, actor_user_id)

    def _check_custom_fields(self, candidate: Mapping[str, Any], session: Session | None) -> dict[str, Any]:
        if self.definitions is None:
            raise RuntimeError(f"{type(self).__name__} requires a custom field definition repository")
        definitions = self.definitions.find_by_entity_type(self.entity_type, session=session)
        try:
            return check_custom_fields(definitions, candidate)
        except CRMValidationError:
            observe_custom_field_violation(self.entity_type)
            raise

    def _log_mutation(self, event: str, action: str, entity_id: uuid.UUID, actor_user_id: str) -> None:
        observe_entity_mutation(self.entity_type, action)
        logger.info(
            event,
            extra={
                "entity_type": self.entity_type,
                "entity_id": str(entity_id),
                "action": action,
                "user_id": actor_user_id,
            },
        )


class CompanyService(EntityService[CompanyRead]):
    entity_type = "company"
    entity_label = "Company"
    create_schema = CompanyCreate
    update_schema = CompanyUpdate
    supports_custom_fields = True


class ContactService(EntityService[ContactRead]):
    entity_type = "contact"
    entity_label = "Contact"
    create_schema = ContactCreate
    update_schema = ContactUpdate
    supports_custom_fields = True

    repository: ContactRepository

    def list_by_company(self, company_id: uuid.UUID | str, *, session: Session | None = None) -> list[ContactRead]:
        return self.repository.find_by_company(company_id, session=session)


class DealService(EntityService[DealRead]):
    entity_type = "deal"
    entity_label = "Deal"
    create_schema = DealCreate
    update_schema = DealUpdate
    supports_custom_fields = True

    repository: DealRepository

    def list_by_company(self, company_id: uuid.UUID | str, *, session: Session | None = None) -> list[DealRead]:
        return self.repository.find_by_company(company_id, session=session)


class TaskService(EntityService[TaskRead]):
    entity_type = "task"
    entity_label = "Task"
    create_schema = TaskCreate
    update_schema = TaskUpdate

    repository: TaskRepository

    def list_for_entity(
        self,
        entity_type: str,
        entity_id: uuid.UUID | str,
        *,
        session: Session | None = None,
    ) -> list[TaskRead]:
        _require_attachable(entity_type)
        return self.repository.find_by_entity(entity_type, entity_id, session=session)


class NoteService(EntityService[NoteRead]):
    entity_type = "note"
    entity_label = "Note"
    create_schema = NoteCreate
    update_schema = NoteUpdate

    repository: NoteRepository

    def list_for_entity(
        self,
        entity_type: str,
        entity_id: uuid.UUID | str,
        *,
        session: Session | None = None,
    ) -> list[NoteRead]:
        _require_attachable(entity_type)
        return self.repository.find_by_entity(entity_type, entity_id, session=session)


IMMUTABLE_DEFINITION_FIELDS = ("name", "entity_type", "field_type", "enum_values")


class CustomFieldService:
    """Administration of custom field definitions.

    Deleting a definition strips its key from every entity of the target type
    in the same transaction when ``cascade_on_delete`` is set.
    """

    entity_type = "custom_field_definition"

    def __init__(
        self,
        repository: CustomFieldDefinitionRepository,
        audit: AuditService,
        transactions: TransactionManager,
        entity_repositories: Mapping[str, CompanyRepository | ContactRepository | DealRepository],
        *,
        cascade_on_delete: bool = True,
    ) -> None:
        self.repository = repository
        self.audit = audit
        self.transactions = transactions
        self.entity_repositories = dict(entity_repositories)
        self.cascade_on_delete = cascade_on_delete

    def create_definition(
        self,
        data: Mapping[str, Any] | BaseModel,
        actor_user_id: str,
        *,
        session: Session | None = None,
    ) -> CustomFieldDefinitionRead:
        dto = parse_input(CustomFieldDefinitionCreate, data)
        values = dto.model_dump()
        values["label"] = values["label"].strip()
        with actor_context(actor_user_id):
            definition = self.repository.create(values, actor_user_id, session=session)
            self.audit.log_create(
                self.entity_type,
                definition.id,
                actor_user_id,
                definition.model_dump(mode="json"),
                session=session,
            )
            logger.info(
                "crm.custom_field.created",
                extra={
                    "entity_type": definition.entity_type,
                    "field_name": definition.name,
                    "user_id": actor_user_id,
                },
            )
        return definition

    def get_definition(
        self,
        definition_id: uuid.UUID | str,
        *,
        session: Session | None = None,
    ) -> CustomFieldDefinitionRead:
        definition = self.repository.find_by_id(definition_id, session=session)
        if definition is None:
            raise NotFoundError("CustomFieldDefinition", definition_id)
        return definition

    def list_definitions(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[CustomFieldDefinitionRead]:
        return self.repository.find_all(filters, pagination, session=session)

    def list_for_entity_type(
        self,
        entity_type: str,
        *,
        session: Session | None = None,
    ) -> list[CustomFieldDefinitionRead]:
        _require_attachable(entity_type)
        return self.repository.find_by_entity_type(entity_type, session=session)

    def update_definition(
        self,
        definition_id: uuid.UUID | str,
        data: Mapping[str, Any] | BaseModel,
        actor_user_id: str,
        *,
        session: Session | None = None,
    ) -> CustomFieldDefinitionRead:
        if isinstance(data, Mapping):
            immutable = [key for key in IMMUTABLE_DEFINITION_FIELDS if key in data]
            if immutable:
                raise CRMValidationError(
                    "Validation failed",
                    {key: ["Field cannot be changed after creation"] for key in immutable},
                )
        dto = parse_input(CustomFieldDefinitionUpdate, data)
        existing = self.get_definition(definition_id, session=session)

        delta = effective_delta(existing, dto.model_dump(exclude_unset=True))
        if "label" in delta:
            delta["label"] = delta["label"].strip()
        with actor_context(actor_user_id):
            updated = self.repository.update(existing.id, delta, actor_user_id, session=session)
            self.audit.log_update(
                self.entity_type,
                updated.id,
                actor_user_id,
                existing.model_dump(mode="json"),
                updated.model_dump(mode="json"),
                session=session,
            )
        return updated

    def delete_definition(
        self,
        definition_id: uuid.UUID | str,
        actor_user_id: str,
        *,
        session: Session | None = None,
    ) -> None:
        with actor_context(actor_user_id):
            if session is not None:
                self._delete_definition(definition_id, actor_user_id, session)
                return
            with self.transactions.transaction() as tx_session:
                self._delete_definition(definition_id, actor_user_id, tx_session)

    def _delete_definition(self, definition_id: uuid.UUID | str, actor_user_id: str, session: Session) -> None:
        existing = self.get_definition(definition_id, session=session)
        self.repository.delete(existing.id, actor_user_id, session=session)

        affected_rows = 0
        if self.cascade_on_delete:
            entity_repository = self.entity_repositories.get(existing.entity_type)
            if entity_repository is not None:
                affected_rows = entity_repository.strip_custom_field(existing.name, session=session)

        self.audit.log_delete(
            self.entity_type,
            existing.id,
            actor_user_id,
            existing.model_dump(mode="json"),
            session=session,
        )
        logger.info(
            "crm.custom_field.deleted",
            extra={
                "entity_type": existing.entity_type,
                "field_name": existing.name,
                "affected_rows": affected_rows,
                "user_id": actor_user_id,
            },
        )
