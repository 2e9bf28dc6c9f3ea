from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from crm_core.core.errors import CRMValidationError
from crm_core.crm.schemas import (
    CompanyUpdate,
    ContactCreate,
    CustomFieldDefinitionCreate,
    CustomFieldDefinitionUpdate,
    DealCreate,
    TaskCreate,
)
from crm_core.crm.validation import parse_input


def test_enum_definition_requires_enum_values() -> None:
    with pytest.raises(CRMValidationError) as exc_info:
        parse_input(
            CustomFieldDefinitionCreate,
            {"name": "industry", "label": "Industry", "entity_type": "company", "field_type": "enum"},
        )

    assert exc_info.value.fields == {"_schema": ["enum_values must be provided for enum field type"]}


def test_non_enum_definition_rejects_enum_values() -> None:
    with pytest.raises(CRMValidationError) as exc_info:
        parse_input(
            CustomFieldDefinitionCreate,
            {
                "name": "website",
                "label": "Website",
                "entity_type": "company",
                "field_type": "text",
                "enum_values": ["a"],
            },
        )

    assert exc_info.value.fields == {"_schema": ["enum_values are only supported for enum field type"]}


def test_definition_name_must_be_an_identifier() -> None:
    with pytest.raises(CRMValidationError) as exc_info:
        parse_input(
            CustomFieldDefinitionCreate,
            {"name": "annual revenue", "label": "Revenue", "entity_type": "deal", "field_type": "number"},
        )

    assert "name" in exc_info.value.fields


def test_definition_name_with_surrounding_whitespace_is_rejected() -> None:
    with pytest.raises(CRMValidationError) as exc_info:
        parse_input(
            CustomFieldDefinitionCreate,
            {"name": " industry ", "label": "Industry", "entity_type": "company", "field_type": "text"},
        )

    assert set(exc_info.value.fields) == {"name"}


def test_definition_entity_type_is_limited_to_core_entities() -> None:
    with pytest.raises(CRMValidationError) as exc_info:
        parse_input(
            CustomFieldDefinitionCreate,
            {"name": "priority", "label": "Priority", "entity_type": "task", "field_type": "text"},
        )

    assert "entity_type" in exc_info.value.fields


def test_definition_update_forbids_unknown_keys() -> None:
    with pytest.raises(CRMValidationError) as exc_info:
        parse_input(CustomFieldDefinitionUpdate, {"label": "Sector", "colour": "red"})

    assert "colour" in exc_info.value.fields


def test_update_schemas_reject_explicit_null_for_required_columns() -> None:
    with pytest.raises(CRMValidationError) as exc_info:
        parse_input(CompanyUpdate, {"name": None})

    assert exc_info.value.fields == {"name": ["Field cannot be null"]}


def test_update_schemas_track_which_keys_were_sent() -> None:
    dto = parse_input(CompanyUpdate, {"name": "Acme Corp"})

    assert dto.model_dump(exclude_unset=True) == {"name": "Acme Corp"}


def test_contact_emails_are_validated_per_item() -> None:
    with pytest.raises(CRMValidationError) as exc_info:
        parse_input(ContactCreate, {"first_name": "John", "last_name": "Doe", "emails": ["john@example.com", "nope"]})

    assert list(exc_info.value.fields) == ["emails.1"]


def test_deal_value_is_quantized_to_cents_and_probability_is_bounded() -> None:
    company_id = uuid.uuid4()
    dto = parse_input(
        DealCreate,
        {"title": "Big deal", "company_id": company_id, "value": "50000", "stage": "prospecting", "probability": 25},
    )
    assert dto.value == Decimal("50000.00")
    assert str(dto.value) == "50000.00"
    assert dto.currency == "USD"

    with pytest.raises(CRMValidationError) as exc_info:
        parse_input(
            DealCreate,
            {"title": "Big deal", "company_id": company_id, "value": 1, "stage": "prospecting", "probability": 150},
        )
    assert list(exc_info.value.fields) == ["probability"]


def test_task_defaults_to_open_and_only_attaches_to_core_entities() -> None:
    entity_id = uuid.uuid4()
    dto = parse_input(TaskCreate, {"description": "Call back", "entity_type": "contact", "entity_id": entity_id})
    assert dto.status == "open"

    with pytest.raises(CRMValidationError) as exc_info:
        parse_input(TaskCreate, {"description": "Call back", "entity_type": "invoice", "entity_id": entity_id})
    assert list(exc_info.value.fields) == ["entity_type"]


def test_parse_input_accepts_an_instance_of_the_schema() -> None:
    dto = CompanyUpdate(name="Acme")

    assert parse_input(CompanyUpdate, dto) is dto
