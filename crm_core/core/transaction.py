from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from opentelemetry.trace import Status, StatusCode
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_core.core.database import Database
from crm_core.core.errors import translate_db_error
from crm_core.metrics import observe_transaction
from crm_core.otel import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer("crm_core.transaction")

T = TypeVar("T")


class TransactionManager:
    """Runs a unit of work on one connection inside BEGIN/COMMIT.

    The session handed to the unit of work is bound to a single pooled
    connection for its whole lifetime. Any exception rolls the transaction
    back; the connection goes back to the pool exactly once either way.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        session = self.database.session_factory()
        started = time.perf_counter()
        with tracer.start_as_current_span("db.transaction") as span:
            try:
                session.begin()
                session.connection()
                yield session
                session.commit()
            except Exception as exc:
                session.rollback()
                duration = time.perf_counter() - started
                observe_transaction("rolled_back", duration)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                logger.warning(
                    "db.transaction.rolled_back",
                    extra={
                        "duration_ms": round(duration * 1000, 2),
                        "error": str(exc),
                    },
                )
                if isinstance(exc, SQLAlchemyError):
                    raise translate_db_error(exc) from exc
                raise
            else:
                observe_transaction("committed", time.perf_counter() - started)
            finally:
                session.close()

    def run(self, work: Callable[[Session], T]) -> T:
        with self.transaction() as session:
            return work(session)
