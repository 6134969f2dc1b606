"""Async task definitions for invoice processing.

Uses arq (async Redis queue) for background task processing.
Runs the automatic invoice workflow as a background job and keeps the job
status in Redis for 24 hours so the API can report it.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import logging
from datetime import UTC, datetime
from typing import Any

from arq.connections import RedisSettings
from pydantic import BaseModel
from pymongo.errors import PyMongoError

from services.shared.config import get_settings
from services.shared.errors import InvoiceAutomationError
from services.workflow.factory import create_services
from services.workflow.service import InvoiceWorkflow

logger = logging.getLogger(__name__)

JOB_TTL_SECONDS = 86400


def job_key(job_id: str) -> str:
    return f"job:{job_id}"


class JobResult(BaseModel):
    """Result of a background invoice job.

    Attributes:
        job_id: Unique job identifier
        status: Job status (pending, processing, completed, failed)
        pdf_url: Invoice PDF being processed
        user_id: Owner of the invoice
        invoice_id: Persisted invoice id (if completed)
        invoice_number: Extracted invoice number (if completed)
        invoice_status: Workflow status decided for the invoice (if completed)
        error: Error message (if failed)
        error_status_code: HTTP status matching the failure (if failed)
        created_at: Job creation timestamp
        completed_at: Job completion timestamp
    """

    job_id: str
    status: str
    pdf_url: str
    user_id: str
    invoice_id: str | None = None
    invoice_number: str | None = None
    invoice_status: str | None = None
    error: str | None = None
    error_status_code: int | None = None
    created_at: str
    completed_at: str | None = None


async def process_invoice_job(
    ctx: dict[str, Any],
    job_id: str,
    pdf_url: str,
    user_id: str,
    email_record_id: str | None = None,
) -> dict[str, Any]:
    """Process an invoice PDF through the automatic workflow.

    Args:
        ctx: arq context (contains redis connection and the workflow)
        job_id: Unique job identifier
        pdf_url: Location of the invoice PDF
        user_id: Owner of the invoice
        email_record_id: Inbound mail record the PDF came from

    Returns:
        JobResult as dict
    """
    logger.info(f"Processing invoice job {job_id} for user {user_id}")

    workflow: InvoiceWorkflow = ctx["workflow"]
    redis = ctx["redis"]

    result = JobResult(
        job_id=job_id,
        status="processing",
        pdf_url=pdf_url,
        user_id=user_id,
        created_at=datetime.now(UTC).isoformat(),
    )
    await redis.set(job_key(job_id), result.model_dump_json(), ex=JOB_TTL_SECONDS)

    try:
        outcome = await workflow.process_invoice(pdf_url, user_id, email_record_id)
        result.status = "completed"
        result.invoice_id = outcome.invoice.id
        result.invoice_number = outcome.invoice.invoice_number
        result.invoice_status = outcome.invoice.invoice_status.value
    except InvoiceAutomationError as e:
        logger.warning(f"Job {job_id} failed: {e.message}")
        result.status = "failed"
        result.error = e.message
        result.error_status_code = e.status_code
    except Exception as e:
        logger.exception(f"Job {job_id} failed with error: {e}")
        result.status = "failed"
        result.error = str(e)
        result.error_status_code = 500

    result.completed_at = datetime.now(UTC).isoformat()
    await redis.set(job_key(job_id), result.model_dump_json(), ex=JOB_TTL_SECONDS)
    logger.info(f"Job {job_id} completed with status: {result.status}")

    return result.model_dump()


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - initialize services.

    Called once when worker starts so jobs share one database client,
    HTTP client and extraction provider.
    """
    logger.info("Initializing worker services...")
    settings = get_settings()
    services = create_services(settings)
    try:
        await services.database.create_indexes()
    except PyMongoError as e:
        logger.warning(f"Could not ensure MongoDB indexes at startup: {e}")
    ctx["settings"] = settings
    ctx["services"] = services
    ctx["workflow"] = services.workflow
    logger.info("Worker services initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cleanup resources."""
    logger.info("Worker shutting down...")
    services = ctx.get("services")
    if services is not None:
        await services.aclose()


class WorkerSettings:
    """arq worker settings.

    Defines the worker configuration including:
    - Task functions to register
    - Redis connection settings
    - Job timeout settings
    """

    functions = [process_invoice_job]
    on_startup = startup
    on_shutdown = shutdown

    # These will be set from environment
    redis_settings: RedisSettings | None = None
    max_jobs = 10
    job_timeout = 300

    @classmethod
    def get_redis_settings(cls) -> RedisSettings:
        """Get Redis settings from configuration."""
        return RedisSettings.from_dsn(get_settings().redis_url)
