from __future__ import annotations

import re
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import DBAPIError, SQLAlchemyError


class CRMError(Exception):
    """Base class for every error raised by the data-access layer."""

    code = "CRM_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def details(self) -> dict[str, Any] | None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details()}


class CRMValidationError(CRMError):
    """Input failed schema or custom field validation."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, fields: dict[str, list[str]] | None = None) -> None:
        self.fields = {key: list(messages) for key, messages in (fields or {}).items()}
        super().__init__(message)

    def details(self) -> dict[str, Any] | None:
        return {"fields": self.fields}


class NotFoundError(CRMError):
    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: uuid.UUID | str) -> None:
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} with id {entity_id} not found")

    def details(self) -> dict[str, Any] | None:
        return {"entity_type": self.entity_type, "entity_id": self.entity_id}


class ConstraintViolationError(CRMError):
    code = "CONSTRAINT_VIOLATION"

    def __init__(self, message: str, constraint: str | None = None) -> None:
        self.constraint = constraint
        super().__init__(message)

    def details(self) -> dict[str, Any] | None:
        return {"constraint": self.constraint}


class DatabaseError(CRMError):
    """Any store failure that has no more specific meaning."""

    code = "DATABASE_ERROR"

    def __init__(self, message: str, original: BaseException | None = None) -> None:
        self.original = original
        super().__init__(message)


FOREIGN_KEY_VIOLATION = "23503"
UNIQUE_VIOLATION = "23505"
CHECK_VIOLATION = "23514"
NOT_NULL_VIOLATION = "23502"
INVALID_TEXT_REPRESENTATION = "22P02"

_SQLITE_PATTERNS = (
    (re.compile(r"FOREIGN KEY constraint failed"), FOREIGN_KEY_VIOLATION),
    (re.compile(r"UNIQUE constraint failed: (?P<target>.+)"), UNIQUE_VIOLATION),
    (re.compile(r"CHECK constraint failed: (?P<target>.+)"), CHECK_VIOLATION),
    (re.compile(r"NOT NULL constraint failed: (?P<target>.+)"), NOT_NULL_VIOLATION),
)


@dataclass(frozen=True)
class _Violation:
    sqlstate: str | None
    constraint: str | None = None
    column: str | None = None
    detail: str = ""

    @property
    def text(self) -> str:
        return " ".join(part for part in (self.constraint, self.column, self.detail) if part)


def _inspect(orig: BaseException | None) -> _Violation:
    if orig is None:
        return _Violation(sqlstate=None)

    # psycopg exposes sqlstate, psycopg2 pgcode
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        diag = getattr(orig, "diag", None)
        return _Violation(
            sqlstate=sqlstate,
            constraint=getattr(diag, "constraint_name", None),
            column=getattr(diag, "column_name", None),
            detail=getattr(diag, "message_detail", None) or str(orig),
        )

    message = str(orig)
    for pattern, code in _SQLITE_PATTERNS:
        match = pattern.search(message)
        if match is None:
            continue
        target = match.groupdict().get("target") or ""
        if code == CHECK_VIOLATION:
            return _Violation(sqlstate=code, constraint=target.strip(), detail=message)
        columns = [item.strip().split(".")[-1] for item in target.split(",") if item.strip()]
        return _Violation(sqlstate=code, column=", ".join(columns) or None, detail=message)
    return _Violation(sqlstate=None, detail=message)


def _foreign_key_error(violation: _Violation) -> ConstraintViolationError:
    constraint = violation.constraint or "foreign_key"
    if "company_id" in violation.text:
        return ConstraintViolationError("Referenced company does not exist", constraint)
    if "contact_id" in violation.text:
        return ConstraintViolationError("Referenced contact does not exist", constraint)
    return ConstraintViolationError("Foreign key constraint violation", constraint)


def _unique_error(violation: _Violation, unique_message: str | None) -> ConstraintViolationError:
    constraint = violation.constraint or "unique"
    if unique_message is not None:
        return ConstraintViolationError(unique_message, constraint)
    if "email" in violation.text:
        return ConstraintViolationError("Email address already exists", constraint)
    if "name" in violation.text:
        return ConstraintViolationError("Name already exists", constraint)
    return ConstraintViolationError("Unique constraint violation", constraint)


def _check_error(violation: _Violation) -> ConstraintViolationError:
    constraint = violation.constraint or "check"
    if "probability" in violation.text:
        return ConstraintViolationError("Probability must be between 0 and 100", constraint)
    if "status" in violation.text:
        return ConstraintViolationError("Invalid status value", constraint)
    if "field_type" in violation.text:
        return ConstraintViolationError("Invalid field type", constraint)
    return ConstraintViolationError("Check constraint violation", constraint)


def translate_db_error(exc: SQLAlchemyError, *, unique_message: str | None = None) -> CRMError:
    """Map a SQLAlchemy failure onto the domain error taxonomy.

    Postgres errors are classified by SQLSTATE, SQLite errors by their message
    text. ``unique_message`` replaces the generic wording for unique violations
    when the caller knows which business key collided.
    """
    orig = exc.orig if isinstance(exc, DBAPIError) else None
    violation = _inspect(orig)

    if violation.sqlstate == FOREIGN_KEY_VIOLATION:
        return _foreign_key_error(violation)
    if violation.sqlstate == UNIQUE_VIOLATION:
        return _unique_error(violation, unique_message)
    if violation.sqlstate == CHECK_VIOLATION:
        return _check_error(violation)
    if violation.sqlstate == NOT_NULL_VIOLATION:
        column = violation.column or "unknown"
        return ConstraintViolationError(f"Required field '{column}' cannot be null", "not_null")
    if violation.sqlstate == INVALID_TEXT_REPRESENTATION:
        return CRMValidationError("Invalid data format", {"format": ["Invalid UUID or data type format"]})
    return DatabaseError("Database operation failed", exc)


@contextmanager
def translate_errors(*, unique_message: str | None = None) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise translate_db_error(exc, unique_message=unique_message) from exc


def error_response(exc: BaseException) -> dict[str, Any]:
    if isinstance(exc, CRMError):
        return exc.to_dict()
    return {"error": "INTERNAL_ERROR", "message": "An unexpected error occurred", "details": None}
