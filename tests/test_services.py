from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal

import pytest

from crm_core.container import Container, build_container
from crm_core.core.config import Settings
from crm_core.core.errors import ConstraintViolationError, CRMValidationError, NotFoundError
from crm_core.crm.schemas import CompanyCreate


@pytest.fixture()
def container() -> Generator[Container, None, None]:
    settings = Settings(database_url="sqlite+pysqlite:///:memory:")
    container = build_container(settings, configure_observability=False)
    container.database.create_all()
    try:
        yield container
    finally:
        container.database.drop_all()
        container.close()


def _industry_definition(container: Container, *, required: bool = True) -> None:
    container.custom_fields.create_definition(
        {
            "name": "industry",
            "label": "Industry",
            "entity_type": "company",
            "field_type": "enum",
            "enum_values": ["Technology", "Finance"],
            "required": required,
        },
        "admin",
    )


def test_company_contact_lifecycle(container: Container) -> None:
    acme = container.companies.create({"name": "Acme"}, "user-1")
    john = container.contacts.create(
        {"first_name": "John", "last_name": "Doe", "emails": ["john@acme.example.com"], "company_id": str(acme.id)},
        "user-1",
    )

    assert container.contacts.list_all({"company_id": acme.id}) == [john]
    assert container.contacts.list_by_company(acme.id) == [john]

    container.companies.delete(acme.id, "user-1")

    assert container.contacts.get(john.id).company_id is None
    with pytest.raises(NotFoundError):
        container.companies.get(acme.id)


def test_required_enum_custom_field_is_enforced_on_create(container: Container) -> None:
    _industry_definition(container)

    with pytest.raises(CRMValidationError) as exc_info:
        container.companies.create({"name": "Acme"}, "user-1")
    assert "industry" in exc_info.value.fields
    assert container.companies.list_all() == []

    with pytest.raises(CRMValidationError) as exc_info:
        container.companies.create({"name": "Acme", "custom_fields": {"industry": "Retail"}}, "user-1")
    assert exc_info.value.fields["industry"] == ["Field 'Industry' must be one of: Technology, Finance"]

    acme = container.companies.create(
        CompanyCreate(name="Acme", custom_fields={"industry": "Technology"}),
        "user-1",
    )
    assert container.companies.get(acme.id).custom_fields == {"industry": "Technology"}


def test_custom_field_updates_replace_the_mapping_and_are_revalidated(container: Container) -> None:
    _industry_definition(container)
    container.custom_fields.create_definition(
        {"name": "employees", "label": "Employees", "entity_type": "company", "field_type": "number"},
        "admin",
    )
    acme = container.companies.create(
        {"name": "Acme", "custom_fields": {"industry": "Technology", "employees": 40}},
        "user-1",
    )

    with pytest.raises(CRMValidationError) as exc_info:
        container.companies.update(acme.id, {"custom_fields": {"employees": 50}}, "user-1")
    assert exc_info.value.fields == {"industry": ["Required field 'Industry' is missing"]}

    updated = container.companies.update(acme.id, {"custom_fields": {"industry": "Finance"}}, "user-1")
    assert updated.custom_fields == {"industry": "Finance"}


def test_custom_fields_are_rejected_when_no_definition_exists(container: Container) -> None:
    with pytest.raises(CRMValidationError) as exc_info:
        container.contacts.create(
            {"first_name": "John", "last_name": "Doe", "custom_fields": {"nickname": "JD"}},
            "user-1",
        )

    assert exc_info.value.fields == {"nickname": ["Unknown custom field: nickname"]}


def test_audit_trail_records_create_update_and_delete(container: Container) -> None:
    acme = container.companies.create({"name": "Acme"}, "user-1")
    container.companies.update(acme.id, {"name": "Acme Corp"}, "user-2")
    container.companies.delete(acme.id, "user-3")

    records = {record.action: record for record in container.audit.list_for_entity("company", acme.id)}

    assert set(records) == {"create", "update", "delete"}
    assert records["create"].user_id == "user-1"
    assert records["create"].changes is not None
    assert records["create"].changes["created"]["name"] == "Acme"
    assert records["update"].user_id == "user-2"
    assert records["update"].changes == {"name": {"before": "Acme", "after": "Acme Corp"}}
    assert records["delete"].user_id == "user-3"
    assert records["delete"].changes is not None
    assert records["delete"].changes["deleted"]["name"] == "Acme Corp"


def test_unchanged_update_writes_no_audit_record_and_keeps_timestamps(container: Container) -> None:
    acme = container.companies.create({"name": "Acme"}, "user-1")

    same = container.companies.update(acme.id, {"name": "Acme"}, "user-2")

    assert same.updated_at == acme.updated_at
    assert same.updated_by == "user-1"
    assert [record.action for record in container.audit.list_for_entity("company", acme.id)] == ["create"]


def test_update_tracks_who_changed_what(container: Container) -> None:
    acme = container.companies.create({"name": "Acme"}, "user-1")
    deal = container.deals.create(
        {"title": "Rollout", "company_id": acme.id, "value": "1000", "stage": "prospecting", "probability": 10},
        "user-1",
    )

    updated = container.deals.update(deal.id, {"stage": "negotiation", "probability": 60, "value": "1000.00"}, "user-2")

    assert updated.stage == "negotiation"
    assert updated.probability == 60
    assert updated.value == Decimal("1000.00")
    assert updated.updated_by == "user-2"
    assert updated.updated_at > deal.updated_at
    audit = [record for record in container.audit.list_for_entity("deal", deal.id) if record.action == "update"]
    assert len(audit) == 1
    assert audit[0].changes == {
        "probability": {"before": 10, "after": 60},
        "stage": {"before": "prospecting", "after": "negotiation"},
    }


def test_update_and_delete_of_missing_entities_raise_not_found(container: Container) -> None:
    missing = uuid.uuid4()

    with pytest.raises(NotFoundError) as exc_info:
        container.contacts.update(missing, {"first_name": "Ghost"}, "user-1")
    assert exc_info.value.to_dict()["error"] == "NOT_FOUND"

    with pytest.raises(NotFoundError):
        container.notes.delete(missing, "user-1")
    assert container.audit.list_logs() == []


def test_invalid_updates_are_rejected_before_touching_the_store(container: Container) -> None:
    acme = container.companies.create({"name": "Acme"}, "user-1")

    with pytest.raises(CRMValidationError) as exc_info:
        container.companies.update(acme.id, {"name": None}, "user-2")
    assert exc_info.value.fields == {"name": ["Field cannot be null"]}

    with pytest.raises(CRMValidationError):
        container.companies.update(acme.id, {"name": ""}, "user-2")
    assert container.companies.get(acme.id).name == "Acme"


def test_deal_for_missing_company_is_a_constraint_violation(container: Container) -> None:
    with pytest.raises(ConstraintViolationError):
        container.deals.create(
            {"title": "Orphan", "company_id": uuid.uuid4(), "value": 10, "stage": "lead", "probability": 5},
            "user-1",
        )

    assert container.audit.list_logs() == []


def test_contact_can_be_detached_from_its_company(container: Container) -> None:
    acme = container.companies.create({"name": "Acme"}, "user-1")
    john = container.contacts.create({"first_name": "John", "last_name": "Doe", "company_id": acme.id}, "user-1")

    detached = container.contacts.update(john.id, {"company_id": None}, "user-1")

    assert detached.company_id is None
    assert container.contacts.list_all({"company_id": None}) == [detached]


def test_tasks_and_notes_attach_to_core_entities(container: Container) -> None:
    acme = container.companies.create({"name": "Acme"}, "user-1")
    task = container.tasks.create(
        {"description": "Send contract", "entity_type": "company", "entity_id": acme.id, "due_date": "2026-11-01"},
        "user-1",
    )
    note = container.notes.create({"content": "Prefers email", "entity_type": "company", "entity_id": acme.id}, "user-1")

    assert container.tasks.list_for_entity("company", acme.id) == [task]
    assert container.notes.list_for_entity("company", acme.id) == [note]

    closed = container.tasks.update(task.id, {"status": "closed"}, "user-2")
    assert closed.status == "closed"

    with pytest.raises(CRMValidationError) as exc_info:
        container.tasks.update(task.id, {"status": "pending"}, "user-2")
    assert "status" in exc_info.value.fields

    with pytest.raises(CRMValidationError) as exc_info:
        container.notes.list_for_entity("invoice", acme.id)
    assert "entity_type" in exc_info.value.fields

    with pytest.raises(CRMValidationError):
        container.tasks.create({"description": "Nope", "entity_type": "task", "entity_id": task.id}, "user-1")


def test_entity_activity_is_listed_newest_first_without_other_entities(container: Container) -> None:
    acme = container.companies.create({"name": "Acme"}, "user-1")
    globex = container.companies.create({"name": "Globex"}, "user-1")
    john = container.contacts.create({"first_name": "John", "last_name": "Doe", "company_id": acme.id}, "user-1")

    tasks = []
    notes = []
    for index in range(3):
        tasks.append(
            container.tasks.create(
                {"description": f"Follow-up {index}", "entity_type": "company", "entity_id": acme.id},
                "user-1",
            )
        )
        notes.append(
            container.notes.create(
                {"content": f"Call log {index}", "entity_type": "company", "entity_id": acme.id},
                "user-1",
            )
        )
        container.tasks.create({"description": "Elsewhere", "entity_type": "company", "entity_id": globex.id}, "user-1")
        container.notes.create({"content": "Elsewhere", "entity_type": "contact", "entity_id": john.id}, "user-1")

    assert container.tasks.list_for_entity("company", acme.id) == tasks[::-1]
    assert container.notes.list_for_entity("company", acme.id) == notes[::-1]


def test_definition_schema_fields_are_immutable(container: Container) -> None:
    _industry_definition(container, required=False)
    definition = container.custom_fields.list_for_entity_type("company")[0]

    with pytest.raises(CRMValidationError) as exc_info:
        container.custom_fields.update_definition(definition.id, {"field_type": "text"}, "admin")
    assert exc_info.value.fields == {"field_type": ["Field cannot be changed after creation"]}

    updated = container.custom_fields.update_definition(
        definition.id,
        {"label": "  Sector ", "required": True},
        "admin",
    )
    assert updated.label == "Sector"
    assert updated.required is True
    assert updated.name == "industry"

    records = container.audit.list_for_entity("custom_field_definition", definition.id)
    assert {record.action for record in records} == {"create", "update"}


def test_duplicate_definition_is_a_constraint_violation(container: Container) -> None:
    _industry_definition(container)

    with pytest.raises(ConstraintViolationError) as exc_info:
        _industry_definition(container)

    assert exc_info.value.message == "Custom field with this name already exists for the entity type"
    assert len(container.custom_fields.list_definitions({"entity_type": "company"})) == 1


def test_deleting_a_definition_strips_stored_values(container: Container) -> None:
    _industry_definition(container, required=False)
    container.custom_fields.create_definition(
        {"name": "tier", "label": "Tier", "entity_type": "company", "field_type": "text"},
        "admin",
    )
    acme = container.companies.create(
        {"name": "Acme", "custom_fields": {"industry": "Technology", "tier": "gold"}},
        "user-1",
    )
    industry = next(
        item for item in container.custom_fields.list_for_entity_type("company") if item.name == "industry"
    )

    container.custom_fields.delete_definition(industry.id, "admin")

    assert container.companies.get(acme.id).custom_fields == {"tier": "gold"}
    with pytest.raises(NotFoundError):
        container.custom_fields.get_definition(industry.id)
    deleted = container.audit.list_for_entity("custom_field_definition", industry.id)
    assert [record.action for record in deleted if record.action == "delete"] == ["delete"]

    with pytest.raises(CRMValidationError) as exc_info:
        container.companies.create({"name": "Globex", "custom_fields": {"industry": "Finance"}}, "user-1")
    assert exc_info.value.fields == {"industry": ["Unknown custom field: industry"]}


def test_definition_delete_can_leave_stored_values_in_place(container: Container) -> None:
    _industry_definition(container, required=False)
    acme = container.companies.create({"name": "Acme", "custom_fields": {"industry": "Finance"}}, "user-1")
    industry = container.custom_fields.list_for_entity_type("company")[0]
    container.custom_fields.cascade_on_delete = False

    container.custom_fields.delete_definition(industry.id, "admin")

    assert container.companies.get(acme.id).custom_fields == {"industry": "Finance"}
