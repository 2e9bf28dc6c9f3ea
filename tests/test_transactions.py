from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.orm import Session

from crm_core.container import Container, build_container
from crm_core.core.config import Settings
from crm_core.core.errors import ConstraintViolationError, CRMValidationError


@pytest.fixture()
def container() -> Generator[Container, None, None]:
    settings = Settings(database_url="sqlite+pysqlite:///:memory:")
    container = build_container(settings, configure_observability=False)
    container.database.create_all()
    try:
        yield container
    finally:
        container.database.drop_all()
        container.close()


def _transactions_observed(outcome: str) -> float:
    return REGISTRY.get_sample_value("db_transactions_total", {"outcome": outcome}) or 0.0


def test_work_and_audit_commit_together(container: Container) -> None:
    committed_before = _transactions_observed("committed")

    with container.transactions.transaction() as session:
        acme = container.companies.create({"name": "Acme"}, "user-1", session=session)
        john = container.contacts.create(
            {"first_name": "John", "last_name": "Doe", "company_id": acme.id},
            "user-1",
            session=session,
        )

    assert container.companies.get(acme.id) == acme
    assert container.contacts.get(john.id).company_id == acme.id
    assert {record.entity_type for record in container.audit.list_logs()} == {"company", "contact"}
    assert _transactions_observed("committed") == committed_before + 1


def test_exception_rolls_back_every_write(container: Container) -> None:
    rolled_back_before = _transactions_observed("rolled_back")

    with pytest.raises(RuntimeError, match="boom"):
        with container.transactions.transaction() as session:
            container.companies.create({"name": "Acme"}, "user-1", session=session)
            raise RuntimeError("boom")

    assert container.companies.list_all() == []
    assert container.audit.list_logs() == []
    assert _transactions_observed("rolled_back") == rolled_back_before + 1


def test_domain_error_in_a_later_step_undoes_earlier_steps(container: Container) -> None:
    with pytest.raises(CRMValidationError):
        with container.transactions.transaction() as session:
            acme = container.companies.create({"name": "Acme"}, "user-1", session=session)
            container.deals.create(
                {"title": "Rollout", "company_id": acme.id, "value": 10, "stage": "lead", "probability": 150},
                "user-1",
                session=session,
            )

    assert container.companies.list_all() == []


def test_store_constraint_failure_rolls_back_the_unit_of_work(container: Container) -> None:
    with pytest.raises(ConstraintViolationError):
        with container.transactions.transaction() as session:
            container.companies.create({"name": "Acme"}, "user-1", session=session)
            container.deals.create(
                {"title": "Orphan", "company_id": uuid.uuid4(), "value": 10, "stage": "lead", "probability": 5},
                "user-1",
                session=session,
            )

    assert container.companies.list_all() == []
    assert container.audit.list_logs() == []


def test_run_returns_the_result_of_the_work(container: Container) -> None:
    def work(session: Session) -> uuid.UUID:
        return container.companies.create({"name": "Acme"}, "user-1", session=session).id

    company_id = container.transactions.run(work)

    assert container.companies.get(company_id).name == "Acme"


def test_reads_inside_a_transaction_see_uncommitted_writes(container: Container) -> None:
    with container.transactions.transaction() as session:
        acme = container.companies.create({"name": "Acme"}, "user-1", session=session)
        renamed = container.companies.update(acme.id, {"name": "Acme Corp"}, "user-2", session=session)

        assert container.companies.get(acme.id, session=session) == renamed
        assert [company.name for company in container.companies.list_all(session=session)] == ["Acme Corp"]

    assert container.companies.get(acme.id).name == "Acme Corp"


def test_definition_delete_joins_a_caller_transaction(container: Container) -> None:
    definition = container.custom_fields.create_definition(
        {"name": "tier", "label": "Tier", "entity_type": "contact", "field_type": "text"},
        "admin",
    )
    john = container.contacts.create(
        {"first_name": "John", "last_name": "Doe", "custom_fields": {"tier": "gold"}},
        "user-1",
    )

    with pytest.raises(RuntimeError):
        with container.transactions.transaction() as session:
            container.custom_fields.delete_definition(definition.id, "admin", session=session)
            raise RuntimeError("abort")

    assert container.custom_fields.get_definition(definition.id) == definition
    assert container.contacts.get(john.id).custom_fields == {"tier": "gold"}
