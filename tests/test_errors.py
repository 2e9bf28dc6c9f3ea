from __future__ import annotations

import sqlite3
import uuid
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from crm_core.core.errors import (
    ConstraintViolationError,
    CRMValidationError,
    DatabaseError,
    NotFoundError,
    error_response,
    translate_db_error,
    translate_errors,
)


class _PgError(Exception):
    def __init__(self, sqlstate: str, constraint_name: str | None = None, detail: str = "") -> None:
        super().__init__(detail or sqlstate)
        self.sqlstate = sqlstate
        self.diag = SimpleNamespace(constraint_name=constraint_name, column_name=None, message_detail=detail)


def _integrity(orig: BaseException) -> IntegrityError:
    return IntegrityError("INSERT INTO deals ...", {}, orig)


def test_postgres_foreign_key_violation_names_the_missing_parent() -> None:
    error = translate_db_error(_integrity(_PgError("23503", "deals_company_id_fkey")))

    assert isinstance(error, ConstraintViolationError)
    assert error.message == "Referenced company does not exist"
    assert error.constraint == "deals_company_id_fkey"


def test_postgres_unique_violation_uses_caller_message() -> None:
    error = translate_db_error(
        _integrity(_PgError("23505", "uq_custom_field_definitions_entity_name")),
        unique_message="Custom field with this name already exists for the entity type",
    )

    assert isinstance(error, ConstraintViolationError)
    assert error.message == "Custom field with this name already exists for the entity type"


def test_postgres_check_and_format_violations() -> None:
    check = translate_db_error(_integrity(_PgError("23514", "ck_deals_probability_range")))
    invalid = translate_db_error(_integrity(_PgError("22P02", detail="invalid input syntax for type uuid")))

    assert check.message == "Probability must be between 0 and 100"
    assert isinstance(invalid, CRMValidationError)
    assert invalid.fields == {"format": ["Invalid UUID or data type format"]}


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("FOREIGN KEY constraint failed", "Foreign key constraint violation"),
        ("UNIQUE constraint failed: companies.name", "Name already exists"),
        ("CHECK constraint failed: ck_tasks_status", "Invalid status value"),
        ("NOT NULL constraint failed: contacts.first_name", "Required field 'first_name' cannot be null"),
    ],
)
def test_sqlite_messages_are_classified(message: str, expected: str) -> None:
    error = translate_db_error(_integrity(sqlite3.IntegrityError(message)))

    assert isinstance(error, ConstraintViolationError)
    assert error.message == expected


def test_unclassified_failures_become_database_errors() -> None:
    exc = OperationalError("SELECT 1", {}, sqlite3.OperationalError("database is locked"))

    error = translate_db_error(exc)

    assert isinstance(error, DatabaseError)
    assert error.original is exc
    assert error.to_dict() == {"error": "DATABASE_ERROR", "message": "Database operation failed", "details": None}


def test_translate_errors_context_chains_the_original() -> None:
    original = _integrity(sqlite3.IntegrityError("FOREIGN KEY constraint failed"))

    with pytest.raises(ConstraintViolationError) as exc_info:
        with translate_errors():
            raise original

    assert exc_info.value.__cause__ is original


def test_error_response_shapes() -> None:
    entity_id = uuid.uuid4()

    assert error_response(NotFoundError("Deal", entity_id)) == {
        "error": "NOT_FOUND",
        "message": f"Deal with id {entity_id} not found",
        "details": {"entity_type": "Deal", "entity_id": str(entity_id)},
    }
    assert error_response(CRMValidationError("Validation failed", {"name": ["Field cannot be null"]})) == {
        "error": "VALIDATION_ERROR",
        "message": "Validation failed",
        "details": {"fields": {"name": ["Field cannot be null"]}},
    }
    assert error_response(ValueError("secret internals")) == {
        "error": "INTERNAL_ERROR",
        "message": "An unexpected error occurred",
        "details": None,
    }
