from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


CoreEntityType = Literal["contact", "company", "deal"]
AttachableEntityType = CoreEntityType
CustomFieldType = Literal["text", "number", "date", "enum", "boolean"]
TaskStatus = Literal["open", "closed"]
AuditAction = Literal["create", "update", "delete"]

CORE_ENTITY_TYPES: tuple[str, ...] = ("contact", "company", "deal")
FIELD_NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"


def _reject_null(value: Any) -> Any:
    if value is None:
        raise ValueError("Field cannot be null")
    return value


class ReadModel(BaseModel):
    """Common base of the read models; rows map onto them by attribute."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID


# Custom field values


class TextValue(BaseModel):
    kind: Literal["text"] = "text"
    value: str


class NumberValue(BaseModel):
    kind: Literal["number"] = "number"
    value: int | float


class DateValue(BaseModel):
    kind: Literal["date"] = "date"
    value: date


class BooleanValue(BaseModel):
    kind: Literal["boolean"] = "boolean"
    value: bool


class EnumValue(BaseModel):
    kind: Literal["enum"] = "enum"
    value: str


CustomFieldValue = Annotated[
    TextValue | NumberValue | DateValue | BooleanValue | EnumValue,
    Field(discriminator="kind"),
]


# Custom field definitions


class CustomFieldDefinitionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100, pattern=FIELD_NAME_PATTERN)
    label: str = Field(min_length=1, max_length=255)
    entity_type: CoreEntityType
    field_type: CustomFieldType
    enum_values: list[str] | None = None
    required: bool = False

    @field_validator("enum_values")
    @classmethod
    def validate_enum_items(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        if any(not item.strip() for item in value):
            raise ValueError("enum_values must be non-empty strings")
        if len(set(value)) != len(value):
            raise ValueError("enum_values must be unique")
        return value

    @model_validator(mode="after")
    def validate_enum_values(self) -> "CustomFieldDefinitionCreate":
        if self.field_type == "enum" and not self.enum_values:
            raise ValueError("enum_values must be provided for enum field type")
        if self.field_type != "enum" and self.enum_values:
            raise ValueError("enum_values are only supported for enum field type")
        return self


class CustomFieldDefinitionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    label: str | None = Field(default=None, min_length=1, max_length=255)
    required: bool | None = None

    @field_validator("label", "required", mode="before")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        return _reject_null(value)


class CustomFieldDefinitionRead(ReadModel):
    name: str
    label: str
    entity_type: str
    field_type: CustomFieldType
    enum_values: list[str] | None
    required: bool
    created_at: datetime
    created_by: str


# Companies


class Address(BaseModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class CompanyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    address: Address | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class CompanyUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    address: Address | None = None
    custom_fields: dict[str, Any] | None = None

    @field_validator("name", "custom_fields", mode="before")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        return _reject_null(value)


class CompanyRead(ReadModel):
    name: str
    address: dict[str, Any] | None
    custom_fields: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    created_by: str
    updated_by: str


# Contacts


class ContactCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(min_length=1, max_length=255)
    emails: list[EmailStr] = Field(default_factory=list)
    phones: list[str] = Field(default_factory=list)
    company_id: UUID | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class ContactUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=255)
    last_name: str | None = Field(default=None, min_length=1, max_length=255)
    emails: list[EmailStr] | None = None
    phones: list[str] | None = None
    company_id: UUID | None = None
    custom_fields: dict[str, Any] | None = None

    @field_validator("first_name", "last_name", "emails", "phones", "custom_fields", mode="before")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        return _reject_null(value)


class ContactRead(ReadModel):
    first_name: str
    last_name: str
    emails: list[str]
    phones: list[str]
    company_id: UUID | None
    custom_fields: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    created_by: str
    updated_by: str


# Deals


def _quantize_money(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    return value.quantize(Decimal("0.01"))


class DealCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    company_id: UUID
    contact_id: UUID | None = None
    value: Decimal = Field(ge=0, max_digits=15, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    stage: str = Field(min_length=1, max_length=100)
    probability: int = Field(ge=0, le=100)
    close_date: date | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)

    @field_validator("value")
    @classmethod
    def quantize_value(cls, value: Decimal | None) -> Decimal | None:
        return _quantize_money(value)


class DealUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    company_id: UUID | None = None
    contact_id: UUID | None = None
    value: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    stage: str | None = Field(default=None, min_length=1, max_length=100)
    probability: int | None = Field(default=None, ge=0, le=100)
    close_date: date | None = None
    custom_fields: dict[str, Any] | None = None

    @field_validator(
        "title", "company_id", "value", "currency", "stage", "probability", "custom_fields", mode="before"
    )
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        return _reject_null(value)

    @field_validator("value")
    @classmethod
    def quantize_value(cls, value: Decimal | None) -> Decimal | None:
        return _quantize_money(value)


class DealRead(ReadModel):
    title: str
    company_id: UUID
    contact_id: UUID | None
    value: Decimal
    currency: str
    stage: str
    probability: int
    close_date: date | None
    custom_fields: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    created_by: str
    updated_by: str


# Tasks and notes attach to any core entity through (entity_type, entity_id).


class TaskCreate(BaseModel):
    description: str = Field(min_length=1)
    due_date: date | None = None
    assigned_to: str | None = Field(default=None, max_length=255)
    status: TaskStatus = "open"
    entity_type: AttachableEntityType
    entity_id: UUID


class TaskUpdate(BaseModel):
    description: str | None = Field(default=None, min_length=1)
    due_date: date | None = None
    assigned_to: str | None = Field(default=None, max_length=255)
    status: TaskStatus | None = None
    entity_type: AttachableEntityType | None = None
    entity_id: UUID | None = None

    @field_validator("description", "status", "entity_type", "entity_id", mode="before")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        return _reject_null(value)


class TaskRead(ReadModel):
    description: str
    due_date: date | None
    assigned_to: str | None
    status: TaskStatus
    entity_type: str
    entity_id: UUID
    created_at: datetime
    updated_at: datetime
    created_by: str
    updated_by: str


class NoteCreate(BaseModel):
    content: str = Field(min_length=1)
    entity_type: AttachableEntityType
    entity_id: UUID


class NoteUpdate(BaseModel):
    content: str | None = Field(default=None, min_length=1)
    entity_type: AttachableEntityType | None = None
    entity_id: UUID | None = None

    @field_validator("content", "entity_type", "entity_id", mode="before")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        return _reject_null(value)


class NoteRead(ReadModel):
    content: str
    entity_type: str
    entity_id: UUID
    created_at: datetime
    updated_at: datetime
    created_by: str
    updated_by: str
