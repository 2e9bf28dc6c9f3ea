from __future__ import annotations

from dataclasses import dataclass

from crm_core.core.config import Settings, get_settings
from crm_core.core.database import Database
from crm_core.core.transaction import TransactionManager
from crm_core.crm.repositories import (
    CompanyRepository,
    ContactRepository,
    CustomFieldDefinitionRepository,
    DealRepository,
    NoteRepository,
    TaskRepository,
)
from crm_core.crm.service import (
    CompanyService,
    ContactService,
    CustomFieldService,
    DealService,
    NoteService,
    TaskService,
)
from crm_core.logging import configure_logging
from crm_core.otel import setup_otel
from crm_core.platform.audit.repository import AuditLogRepository
from crm_core.platform.audit.service import AuditService


@dataclass
class Container:
    settings: Settings
    database: Database
    transactions: TransactionManager
    audit: AuditService
    companies: CompanyService
    contacts: ContactService
    deals: DealService
    tasks: TaskService
    notes: NoteService
    custom_fields: CustomFieldService

    def close(self) -> None:
        self.database.dispose()


def build_container(
    settings: Settings | None = None,
    database: Database | None = None,
    *,
    configure_observability: bool = True,
) -> Container:
    """Wire one database handle into every repository and service."""
    settings = settings or get_settings()
    if configure_observability:
        configure_logging(settings.log_level)
        setup_otel(settings.app_name, settings.otel_enabled)

    database = database or Database.from_settings(settings)
    transactions = TransactionManager(database)
    audit = AuditService(AuditLogRepository(database))
    definitions = CustomFieldDefinitionRepository(database)

    company_repository = CompanyRepository(database)
    contact_repository = ContactRepository(database)
    deal_repository = DealRepository(database)

    return Container(
        settings=settings,
        database=database,
        transactions=transactions,
        audit=audit,
        companies=CompanyService(company_repository, audit, definitions),
        contacts=ContactService(contact_repository, audit, definitions),
        deals=DealService(deal_repository, audit, definitions),
        tasks=TaskService(TaskRepository(database), audit),
        notes=NoteService(NoteRepository(database), audit),
        custom_fields=CustomFieldService(
            definitions,
            audit,
            transactions,
            {
                CompanyRepository.entity_type: company_repository,
                ContactRepository.entity_type: contact_repository,
                DealRepository.entity_type: deal_repository,
            },
            cascade_on_delete=settings.custom_field_cascade_on_delete,
        ),
    )
