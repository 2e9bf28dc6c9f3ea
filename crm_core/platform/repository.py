from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, Literal, Protocol, TypeVar

from pydantic import BaseModel, Field
from sqlalchemy import delete, inspect, select, update
from sqlalchemy.orm import InstrumentedAttribute, Session

from crm_core.core.database import Base, Database
from crm_core.core.errors import CRMValidationError, NotFoundError, translate_errors

ReadT = TypeVar("ReadT", bound=BaseModel)
ReadT_co = TypeVar("ReadT_co", bound=BaseModel, covariant=True)

_MANAGED_COLUMNS = frozenset({"id", "created_at", "updated_at", "created_by", "updated_by"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Pagination(BaseModel):
    limit: int = Field(default=50, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class Repository(Protocol[ReadT_co]):
    """Capability every entity repository offers to the service layer."""

    def create(self, data: Mapping[str, Any], user_id: str, *, session: Session | None = None) -> ReadT_co: ...

    def find_by_id(self, entity_id: uuid.UUID | str, *, session: Session | None = None) -> ReadT_co | None: ...

    def find_all(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[ReadT_co]: ...

    def update(
        self,
        entity_id: uuid.UUID | str,
        data: Mapping[str, Any],
        user_id: str,
        *,
        session: Session | None = None,
    ) -> ReadT_co: ...

    def delete(self, entity_id: uuid.UUID | str, user_id: str, *, session: Session | None = None) -> None: ...


def coerce_uuid(value: uuid.UUID | str, field_name: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as exc:
        raise CRMValidationError("Invalid data format", {field_name: ["Invalid UUID format"]}) from exc


@dataclass(frozen=True)
class FilterSpec:
    """How one ``find_all`` filter key maps onto a column.

    ``nullable`` filters translate an explicit ``None`` into ``IS NULL``;
    on other filters ``None`` means no constraint.
    """

    column: InstrumentedAttribute[Any]
    match: Literal["exact", "icontains"] = "exact"
    nullable: bool = False
    coerce: Callable[[Any], Any] | None = None


@dataclass
class EntityTable(Generic[ReadT]):
    """Row mapping and statement building shared by the entity repositories.

    Every public method takes an optional ``session``. When given, statements
    run on it and are only flushed, so the caller owns the transaction;
    otherwise a session is checked out of the pool for the single call and
    committed before it is returned.
    """

    database: Database
    model: type[Base]
    read_model: type[ReadT]
    entity_name: str
    filters: Mapping[str, FilterSpec] = field(default_factory=dict)
    defaults: Mapping[str, Callable[[], Any]] = field(default_factory=dict)
    order_column: str = "created_at"
    tracks_updates: bool = True
    unique_message: str | None = None

    def __post_init__(self) -> None:
        column_names = set(inspect(self.model).columns.keys())
        self.writable_columns = frozenset(column_names - _MANAGED_COLUMNS)

    @contextmanager
    def session_scope(self, session: Session | None) -> Iterator[Session]:
        with translate_errors(unique_message=self.unique_message):
            if session is not None:
                yield session
                return
            with self.database.session() as own_session:
                yield own_session

    def to_read(self, row: Any) -> ReadT:
        return self.read_model.model_validate(row)

    def pick(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return {key: value for key, value in data.items() if key in self.writable_columns}

    def insert(self, data: Mapping[str, Any], user_id: str, *, session: Session | None = None) -> ReadT:
        values = self.pick(data)
        for key, factory in self.defaults.items():
            if values.get(key) is None:
                values[key] = factory()
        values["created_by"] = user_id
        if self.tracks_updates:
            values["updated_by"] = user_id

        with self.session_scope(session) as db:
            row = self.model(**values)
            db.add(row)
            db.flush()
            db.refresh(row)
            return self.to_read(row)

    def get(self, entity_id: uuid.UUID | str, *, session: Session | None = None) -> ReadT | None:
        row_id = coerce_uuid(entity_id)
        with self.session_scope(session) as db:
            row = db.scalar(
                select(self.model)
                .where(self.model.id == row_id)
                .execution_options(populate_existing=True)
            )
            return self.to_read(row) if row is not None else None

    def select_many(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[ReadT]:
        stmt = select(self.model)
        for key, value in (filters or {}).items():
            spec = self.filters.get(key)
            if spec is None:
                continue
            if value is None:
                if spec.nullable:
                    stmt = stmt.where(spec.column.is_(None))
                continue
            if spec.coerce is not None:
                value = spec.coerce(value)
            if spec.match == "icontains":
                stmt = stmt.where(spec.column.icontains(str(value), autoescape=True))
            else:
                stmt = stmt.where(spec.column == value)

        order_column = getattr(self.model, self.order_column)
        stmt = stmt.order_by(order_column.desc()).execution_options(populate_existing=True)
        if pagination is not None:
            stmt = stmt.offset(pagination.offset).limit(pagination.limit)
        with self.session_scope(session) as db:
            return [self.to_read(row) for row in db.scalars(stmt).all()]

    def apply_update(
        self,
        entity_id: uuid.UUID | str,
        data: Mapping[str, Any],
        user_id: str,
        *,
        session: Session | None = None,
    ) -> ReadT:
        row_id = coerce_uuid(entity_id)
        changes = self.pick(data)

        with self.session_scope(session) as db:
            if not changes:
                current = self.get(row_id, session=db)
                if current is None:
                    raise NotFoundError(self.entity_name, row_id)
                return current

            if self.tracks_updates:
                changes["updated_at"] = utcnow()
                changes["updated_by"] = user_id
            result = db.execute(update(self.model).where(self.model.id == row_id).values(**changes))
            if result.rowcount == 0:
                raise NotFoundError(self.entity_name, row_id)
            db.flush()
            updated = self.get(row_id, session=db)
            if updated is None:
                raise NotFoundError(self.entity_name, row_id)
            return updated

    def remove(self, entity_id: uuid.UUID | str, *, session: Session | None = None) -> None:
        row_id = coerce_uuid(entity_id)
        with self.session_scope(session) as db:
            result = db.execute(delete(self.model).where(self.model.id == row_id))
            if result.rowcount == 0:
                raise NotFoundError(self.entity_name, row_id)
            db.flush()

    def strip_custom_field(self, field_name: str, *, session: Session | None = None) -> int:
        """Remove ``field_name`` from the custom fields of every row; returns rows touched."""
        affected = 0
        with self.session_scope(session) as db:
            rows = db.scalars(select(self.model).execution_options(populate_existing=True)).all()
            for row in rows:
                current = row.custom_fields or {}
                if field_name not in current:
                    continue
                row.custom_fields = {key: value for key, value in current.items() if key != field_name}
                affected += 1
            db.flush()
        return affected
