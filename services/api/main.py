"""FastAPI application for invoice automation.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Invoice processing from PDF URLs (inline or via the background queue)
- Manual approval and rejection, statistics and gap analysis
- Inventory management and supplier purchase orders
- Structured error responses mapped from domain exceptions
- Prometheus metrics for monitoring

The owning user is identified by the X-User-Id header.

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from arq import ArqRedis, create_pool
from arq.connections import RedisSettings
from fastapi import FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pymongo.errors import PyMongoError

from services.api import metrics
from services.inventory.models import (
    InventoryItem,
    InventoryItemCreate,
    InventoryItemUpdate,
    SupplierOrderRequest,
)
from services.notifications.dispatcher import NotificationReport
from services.queue.tasks import JOB_TTL_SECONDS, JobResult, job_key
from services.shared.config import get_settings
from services.shared.errors import InvoiceAutomationError
from services.workflow.factory import create_services
from services.workflow.models import (
    GapAnalysis,
    Invoice,
    InvoiceStatus,
    MonthlyInvoiceStats,
    ProcessingOutcome,
    StatusChangeOutcome,
)

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

services = create_services(settings)
database = services.database
workflow = services.workflow
inventory_service = services.inventory

_arq_pool: ArqRedis | None = None


async def get_arq_pool() -> ArqRedis:
    """Get or lazily create the arq Redis pool."""
    global _arq_pool
    if _arq_pool is None:
        _arq_pool = await create_pool(RedisSettings.from_dsn(settings.redis_url))
    return _arq_pool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    try:
        await database.create_indexes()
    except PyMongoError as e:
        logger.warning(f"Could not ensure MongoDB indexes at startup: {e}")
    yield
    if _arq_pool is not None:
        await _arq_pool.close()
    await services.aclose()


app = FastAPI(
    title="Invoice Automation",
    description="Invoice extraction, inventory reconciliation and approval workflow API",
    version=settings.service_version,
    lifespan=lifespan,
)


@app.exception_handler(InvoiceAutomationError)
async def invoice_automation_error_handler(
    request: Request, exc: InvoiceAutomationError
) -> JSONResponse:
    """Map domain exceptions to their HTTP status and an error body."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, route template, and status
    - Request duration by method and route template
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Route templates keep invoice and item ids out of the label set
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class ProcessInvoiceRequest(BaseModel):
    """Invoice PDF to process."""

    model_config = ConfigDict(populate_by_name=True)

    pdf_url: str = Field(..., min_length=1, alias="pdfUrl")
    email_record_id: str | None = Field(None, alias="emailRecordId")


class StatusUpdateRequest(BaseModel):
    """Manual status change."""

    status: InvoiceStatus


class JobAcceptedResponse(BaseModel):
    """Background processing accepted."""

    job_id: str
    status: str


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
async def readiness_check(response: Response) -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Ready once MongoDB answers a ping and the extraction provider is usable
    (for Ollama: the server is up and the model is pulled).
    """
    ready = await database.health_check() and await workflow.extractor.health_check()
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(ready=ready)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post(
    "/api/v1/invoices/process",
    response_model=ProcessingOutcome | JobAcceptedResponse,
    tags=["Invoices"],
)
async def process_invoice(
    request: ProcessInvoiceRequest,
    response: Response,
    background: bool = Query(False, description="Queue the invoice for a background worker"),
    user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> ProcessingOutcome | JobAcceptedResponse:
    """Extract, reconcile and route an invoice PDF.

    ## Usage Examples

    **Process inline:**
    ```bash
    curl -X POST "http://localhost:8000/api/v1/invoices/process" \\
      -H "X-User-Id: 64b7..." -H "Content-Type: application/json" \\
      -d '{"pdfUrl": "https://files.example.com/invoice.pdf"}'
    ```

    **Queue for a background worker:**
    ```bash
    curl -X POST "http://localhost:8000/api/v1/invoices/process?background=true" ...
    ```

    ## Error Handling

    - 502 if the PDF cannot be fetched or the LLM call fails
    - 422 if the PDF is unreadable or no invoice number was extracted
    - 409 if the invoice number already exists
    - 503 if background processing is requested but the queue is disabled

    Insufficient stock and unknown SKUs are not errors: the invoice is
    stored as Flagged and the verdict is returned.
    """
    if not background:
        return await workflow.process_invoice(request.pdf_url, user_id, request.email_record_id)

    if not settings.queue_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Background processing is not enabled. Set APP_QUEUE_ENABLED=true.",
        )

    pool = await get_arq_pool()
    job_id = str(uuid.uuid4())
    pending = JobResult(
        job_id=job_id,
        status="pending",
        pdf_url=request.pdf_url,
        user_id=user_id,
        created_at=datetime.now(UTC).isoformat(),
    )
    await pool.set(job_key(job_id), pending.model_dump_json(), ex=JOB_TTL_SECONDS)
    await pool.enqueue_job(
        "process_invoice_job",
        job_id,
        request.pdf_url,
        user_id,
        request.email_record_id,
        _job_id=job_id,
    )
    metrics.invoice_jobs_enqueued_total.inc()
    logger.info(f"Queued invoice job {job_id} for user {user_id}")

    response.status_code = status.HTTP_202_ACCEPTED
    return JobAcceptedResponse(job_id=job_id, status="pending")


@app.get("/api/v1/invoices", response_model=list[Invoice], tags=["Invoices"])
async def list_invoices(
    invoice_status: InvoiceStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    skip: int = Query(0, ge=0),
    user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> list[Invoice]:
    """List the user's invoices, newest first, optionally filtered by status."""
    return await workflow.list_invoices(user_id, invoice_status, limit=limit, skip=skip)


@app.get(
    "/api/v1/invoices/stats/monthly", response_model=MonthlyInvoiceStats, tags=["Invoices"]
)
async def monthly_stats(
    user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> MonthlyInvoiceStats:
    """Invoice counts and percentages by status over the last 30 days."""
    return await workflow.monthly_stats(user_id)


@app.get("/api/v1/invoices/{invoice_id}", response_model=Invoice, tags=["Invoices"])
async def get_invoice(
    invoice_id: str,
    user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> Invoice:
    return await workflow.get_invoice(invoice_id, user_id)


@app.patch(
    "/api/v1/invoices/{invoice_id}/status",
    response_model=StatusChangeOutcome,
    tags=["Invoices"],
)
async def update_invoice_status(
    invoice_id: str,
    request: StatusUpdateRequest,
    user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> StatusChangeOutcome:
    """Manually approve or reject an invoice.

    Approval consumes stock and fails with 400 when inventory does not cover
    the invoice. Setting the status an invoice already has is a no-op.
    """
    return await workflow.manually_update_invoice_status(invoice_id, user_id, request.status)


@app.get(
    "/api/v1/invoices/{invoice_id}/gap-analysis",
    response_model=GapAnalysis,
    tags=["Invoices"],
)
async def gap_analysis(
    invoice_id: str,
    user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> GapAnalysis:
    """Recorded shortages for a flagged invoice (404 unless the invoice is Flagged)."""
    return await workflow.gap_analysis(invoice_id, user_id)


@app.get("/api/v1/jobs/{job_id}", response_model=JobResult, tags=["Jobs"])
async def get_job_status(job_id: str) -> JobResult:
    """Status of a background invoice job."""
    if not settings.queue_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Background processing is not enabled. Set APP_QUEUE_ENABLED=true.",
        )

    pool = await get_arq_pool()
    raw = await pool.get(job_key(job_id))
    if raw is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Job {job_id} not found"
        )
    return JobResult.model_validate_json(raw)


@app.post(
    "/api/v1/inventory",
    response_model=InventoryItem,
    status_code=status.HTTP_201_CREATED,
    tags=["Inventory"],
)
async def create_inventory_item(
    payload: InventoryItemCreate,
    user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> InventoryItem:
    return await inventory_service.create_item(user_id, payload)


@app.get("/api/v1/inventory", response_model=list[InventoryItem], tags=["Inventory"])
async def list_inventory(
    user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> list[InventoryItem]:
    return await inventory_service.list_items(user_id)


@app.get("/api/v1/inventory/shortages", response_model=list[InventoryItem], tags=["Inventory"])
async def list_shortages(
    user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> list[InventoryItem]:
    """Inventory items with a recorded shortage."""
    return await inventory_service.list_shortages(user_id)


@app.post(
    "/api/v1/inventory/supplier-order",
    response_model=NotificationReport,
    tags=["Inventory"],
)
async def send_supplier_order(
    order: SupplierOrderRequest,
    user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> NotificationReport:
    """Email a purchase order for the listed SKUs to a supplier."""
    return await inventory_service.send_supplier_order(user_id, order)


@app.get("/api/v1/inventory/{item_id}", response_model=InventoryItem, tags=["Inventory"])
async def get_inventory_item(
    item_id: str,
    user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> InventoryItem:
    return await inventory_service.get_item(item_id, user_id)


@app.put("/api/v1/inventory/{item_id}", response_model=InventoryItem, tags=["Inventory"])
async def update_inventory_item(
    item_id: str,
    payload: InventoryItemUpdate,
    user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> InventoryItem:
    """Partially update an item (restock, rename, change supplier)."""
    return await inventory_service.update_item(item_id, user_id, payload)


@app.delete(
    "/api/v1/inventory/{item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Inventory"],
)
async def delete_inventory_item(
    item_id: str,
    user_id: str = Header(..., alias="X-User-Id", min_length=1),
) -> None:
    await inventory_service.delete_item(item_id, user_id)
