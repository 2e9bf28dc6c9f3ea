from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from crm_core.core.errors import CRMValidationError

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def errors_by_field(exc: ValidationError) -> dict[str, list[str]]:
    """Group pydantic errors by dotted field path; model-level errors go under ``_schema``."""
    fields: dict[str, list[str]] = {}
    for error in exc.errors():
        path = ".".join(str(part) for part in error["loc"]) or "_schema"
        message = str(error["msg"])
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        fields.setdefault(path, []).append(message)
    return fields


def parse_input(schema: type[SchemaT], data: Mapping[str, Any] | BaseModel) -> SchemaT:
    if isinstance(data, schema):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise CRMValidationError("Validation failed", errors_by_field(exc)) from exc
