from __future__ import annotations

import uuid
from collections.abc import Mapping
from functools import partial
from typing import Any

from sqlalchemy.orm import Session

from crm_core.core.database import Database
from crm_core.platform.audit.models import AuditLog
from crm_core.platform.audit.schemas import AuditLogRead
from crm_core.platform.repository import EntityTable, FilterSpec, Pagination, coerce_uuid


class AuditLogRepository:
    """Append-only access to ``audit_logs``: there is no update or delete."""

    def __init__(self, database: Database) -> None:
        self.table: EntityTable[AuditLogRead] = EntityTable(
            database,
            AuditLog,
            AuditLogRead,
            "AuditLog",
            filters={
                "entity_type": FilterSpec(AuditLog.entity_type),
                "entity_id": FilterSpec(AuditLog.entity_id, coerce=partial(coerce_uuid, field_name="entity_id")),
                "action": FilterSpec(AuditLog.action),
                "user_id": FilterSpec(AuditLog.user_id),
            },
            order_column="timestamp",
            tracks_updates=False,
        )

    def create_audit_log(
        self,
        entity_type: str,
        entity_id: uuid.UUID | str,
        action: str,
        user_id: str,
        changes: dict[str, Any] | None = None,
        *,
        session: Session | None = None,
    ) -> AuditLogRead:
        with self.table.session_scope(session) as db:
            row = AuditLog(
                entity_type=entity_type,
                entity_id=coerce_uuid(entity_id, "entity_id"),
                action=action,
                user_id=user_id,
                changes=changes,
            )
            db.add(row)
            db.flush()
            db.refresh(row)
            return self.table.to_read(row)

    def find_by_id(self, audit_id: uuid.UUID | str, *, session: Session | None = None) -> AuditLogRead | None:
        return self.table.get(audit_id, session=session)

    def find_all(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[AuditLogRead]:
        return self.table.select_many(filters, pagination, session=session)

    def find_by_entity(
        self,
        entity_type: str,
        entity_id: uuid.UUID | str,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[AuditLogRead]:
        return self.find_all({"entity_type": entity_type, "entity_id": entity_id}, pagination, session=session)

    def find_by_user(
        self,
        user_id: str,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[AuditLogRead]:
        return self.find_all({"user_id": user_id}, pagination, session=session)
