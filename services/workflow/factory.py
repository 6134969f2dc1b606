"""Wiring of the invoice workflow and its collaborators.

The API process and the queue worker build the same object graph from
settings; this module is the single place that knows how.
"""

import logging
from dataclasses import dataclass

from services.documents.service import PDFTextService
from services.extraction.base import ExtractionProvider
from services.extraction.factory import create_extraction_service
from services.inventory.service import InventoryService
from services.notifications.dispatcher import NotificationDispatcher
from services.notifications.mailer import create_mailer
from services.shared.config import Settings
from services.storage.mongo import MongoDatabase
from services.workflow.service import InvoiceWorkflow

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived service objects shared by request handlers or jobs."""

    database: MongoDatabase
    pdf_service: PDFTextService
    extractor: ExtractionProvider
    dispatcher: NotificationDispatcher
    workflow: InvoiceWorkflow
    inventory: InventoryService

    async def aclose(self) -> None:
        await self.pdf_service.aclose()
        await self.extractor.aclose()
        self.database.close()


def create_services(settings: Settings) -> Services:
    """Build the workflow object graph from settings.

    Args:
        settings: Application settings

    Returns:
        Wired services (no network connection is opened until first use)
    """
    database = MongoDatabase(settings)
    pdf_service = PDFTextService(settings)
    extractor = create_extraction_service(settings)
    dispatcher = NotificationDispatcher(settings, create_mailer(settings))
    workflow = InvoiceWorkflow(
        settings=settings,
        pdf_service=pdf_service,
        extractor=extractor,
        invoices=database.invoices,
        inventory=database.inventory,
        users=database.users,
        dispatcher=dispatcher,
    )
    inventory = InventoryService(database.inventory, database.users, dispatcher)
    logger.info(
        f"Services wired: database={settings.mongo_database} "
        f"extraction={settings.extraction_provider} email={settings.email_provider}"
    )
    return Services(
        database=database,
        pdf_service=pdf_service,
        extractor=extractor,
        dispatcher=dispatcher,
        workflow=workflow,
        inventory=inventory,
    )
