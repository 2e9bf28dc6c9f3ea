from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from crm_core.core.errors import CRMError
from crm_core.metrics import observe_audit_record, observe_audit_write_failure
from crm_core.platform.audit.repository import AuditLogRepository
from crm_core.platform.audit.schemas import AuditLogRead
from crm_core.platform.repository import Pagination

logger = logging.getLogger(__name__)

METADATA_FIELDS = frozenset({"id", "created_at", "created_by", "updated_at", "updated_by"})


def _serialized(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def compute_changes(before: Mapping[str, Any], after: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Field-level diff of two flat snapshots, ignoring id and ownership/timekeeping fields."""
    changes: dict[str, dict[str, Any]] = {}
    for key in sorted(set(before) | set(after)):
        if key in METADATA_FIELDS:
            continue
        before_value = before.get(key)
        after_value = after.get(key)
        if _serialized(before_value) != _serialized(after_value):
            changes[key] = {"before": before_value, "after": after_value}
    return changes


class AuditService:
    """Writes one audit record per service-layer mutation.

    Snapshots are JSON-mode dumps of the read models. Create and delete keep
    the full snapshot, update keeps only the diff and is skipped when the diff
    is empty.
    """

    def __init__(self, repository: AuditLogRepository) -> None:
        self.repository = repository

    def log_create(
        self,
        entity_type: str,
        entity_id: uuid.UUID | str,
        user_id: str,
        snapshot: dict[str, Any],
        *,
        session: Session | None = None,
    ) -> AuditLogRead:
        return self._write(entity_type, entity_id, "create", user_id, {"created": snapshot}, session)

    def log_update(
        self,
        entity_type: str,
        entity_id: uuid.UUID | str,
        user_id: str,
        before: dict[str, Any],
        after: dict[str, Any],
        *,
        session: Session | None = None,
    ) -> AuditLogRead | None:
        changes = compute_changes(before, after)
        if not changes:
            return None
        return self._write(entity_type, entity_id, "update", user_id, changes, session)

    def log_delete(
        self,
        entity_type: str,
        entity_id: uuid.UUID | str,
        user_id: str,
        snapshot: dict[str, Any],
        *,
        session: Session | None = None,
    ) -> AuditLogRead:
        return self._write(entity_type, entity_id, "delete", user_id, {"deleted": snapshot}, session)

    def list_for_entity(
        self,
        entity_type: str,
        entity_id: uuid.UUID | str,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[AuditLogRead]:
        return self.repository.find_by_entity(entity_type, entity_id, pagination, session=session)

    def list_for_user(
        self,
        user_id: str,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[AuditLogRead]:
        return self.repository.find_by_user(user_id, pagination, session=session)

    def list_logs(
        self,
        filters: Mapping[str, Any] | None = None,
        pagination: Pagination | None = None,
        *,
        session: Session | None = None,
    ) -> list[AuditLogRead]:
        return self.repository.find_all(filters, pagination, session=session)

    def _write(
        self,
        entity_type: str,
        entity_id: uuid.UUID | str,
        action: str,
        user_id: str,
        changes: dict[str, Any],
        session: Session | None,
    ) -> AuditLogRead:
        try:
            record = self.repository.create_audit_log(
                entity_type,
                entity_id,
                action,
                user_id,
                changes,
                session=session,
            )
        except CRMError as exc:
            observe_audit_write_failure(entity_type, action)
            logger.error(
                "crm.audit.write_failed",
                extra={
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "action": action,
                    "user_id": user_id,
                    "error": exc.message,
                },
            )
            raise
        observe_audit_record(entity_type, action)
        return record
