"""Validation of custom field values against administrator-defined definitions.

``validate_custom_fields`` turns untyped input into the tagged
``CustomFieldValue`` union and reports every problem in one pass;
``clean_custom_fields`` converts the typed values into what is stored in the
JSON ``custom_fields`` column.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from crm_core.core.errors import CRMValidationError
from crm_core.crm.schemas import (
    BooleanValue,
    CustomFieldDefinitionRead,
    CustomFieldValue,
    DateValue,
    EnumValue,
    NumberValue,
    TextValue,
)


class _InvalidValue(ValueError):
    pass


def _as_text(definition: CustomFieldDefinitionRead, value: Any) -> TextValue:
    if not isinstance(value, str):
        raise _InvalidValue(f"Field '{definition.label}' must be a string")
    return TextValue(value=value)


def _as_number(definition: CustomFieldDefinitionRead, value: Any) -> NumberValue:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise _InvalidValue(f"Field '{definition.label}' must be a number")
    try:
        finite = Decimal(str(value)).is_finite()
    except InvalidOperation:
        finite = False
    if not finite:
        raise _InvalidValue(f"Field '{definition.label}' must be a number")
    if isinstance(value, Decimal):
        value = int(value) if value == value.to_integral_value() else float(value)
    return NumberValue(value=value)


def _utc_date(value: datetime) -> date:
    # naive timestamps are taken as UTC
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date()


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return _utc_date(value)
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
        try:
            return _utc_date(datetime.fromisoformat(value))
        except ValueError:
            return None
    return None


def _as_date(definition: CustomFieldDefinitionRead, value: Any) -> DateValue:
    parsed = _parse_date(value)
    if parsed is None:
        raise _InvalidValue(f"Field '{definition.label}' must be a valid date")
    return DateValue(value=parsed)


def _as_boolean(definition: CustomFieldDefinitionRead, value: Any) -> BooleanValue:
    if not isinstance(value, bool):
        raise _InvalidValue(f"Field '{definition.label}' must be a boolean")
    return BooleanValue(value=value)


def _as_enum(definition: CustomFieldDefinitionRead, value: Any) -> EnumValue:
    allowed = definition.enum_values or []
    if not isinstance(value, str) or value not in allowed:
        raise _InvalidValue(f"Field '{definition.label}' must be one of: {', '.join(allowed)}")
    return EnumValue(value=value)


_CONVERTERS = {
    "text": _as_text,
    "number": _as_number,
    "date": _as_date,
    "boolean": _as_boolean,
    "enum": _as_enum,
}


def validate_custom_field_value(definition: CustomFieldDefinitionRead, value: Any) -> CustomFieldValue:
    converter = _CONVERTERS.get(definition.field_type)
    if converter is None:
        raise _InvalidValue(f"Unknown field type: {definition.field_type}")
    return converter(definition, value)


def validate_custom_fields(
    definitions: Iterable[CustomFieldDefinitionRead],
    candidate: Mapping[str, Any],
) -> dict[str, CustomFieldValue]:
    """Check ``candidate`` against ``definitions`` and return typed values.

    Unknown keys are rejected, not dropped. A ``None`` value counts as absent.
    Raises ``CRMValidationError`` carrying every violation, keyed by field name.
    """
    by_name = {definition.name: definition for definition in definitions}
    errors: dict[str, list[str]] = {}
    values: dict[str, CustomFieldValue] = {}

    for field_name, value in candidate.items():
        definition = by_name.get(field_name)
        if definition is None:
            errors.setdefault(field_name, []).append(f"Unknown custom field: {field_name}")
            continue
        if value is None:
            if definition.required:
                errors.setdefault(field_name, []).append(f"Field '{definition.label}' is required")
            continue
        try:
            values[field_name] = validate_custom_field_value(definition, value)
        except _InvalidValue as exc:
            errors.setdefault(field_name, []).append(str(exc))

    for definition in by_name.values():
        if definition.required and definition.name not in candidate:
            errors.setdefault(definition.name, []).append(f"Required field '{definition.label}' is missing")

    if errors:
        raise CRMValidationError("Custom field validation failed", errors)
    return values


def clean_custom_field_value(value: CustomFieldValue) -> Any:
    if isinstance(value, DateValue):
        return value.value.isoformat()
    if isinstance(value, NumberValue):
        return value.value
    if isinstance(value, BooleanValue):
        return bool(value.value)
    return str(value.value)


def clean_custom_fields(values: Mapping[str, CustomFieldValue]) -> dict[str, Any]:
    return {name: clean_custom_field_value(value) for name, value in values.items()}


def check_custom_fields(
    definitions: Iterable[CustomFieldDefinitionRead],
    candidate: Mapping[str, Any],
) -> dict[str, Any]:
    return clean_custom_fields(validate_custom_fields(definitions, candidate))
