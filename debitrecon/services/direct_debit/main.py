"""HTTP surface for direct-debit presentment, response import and batch history."""

import asyncio
from contextlib import asynccontextmanager
from datetime import date
from time import perf_counter
from urllib.parse import quote
from uuid import uuid4

from fastapi import FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response

from debitrecon.common.config import settings
from debitrecon.common.db import SessionLocal
from debitrecon.common.logging import configure_logging, logger, trace_id_ctx
from debitrecon.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from debitrecon.common.startup import log_startup_config
from debitrecon.common.tracing import instrument_app, setup_tracing
from debitrecon.services.direct_debit.errors import BatchFileMissingError, BatchNotFoundError
from debitrecon.services.direct_debit.schemas import UploadedFile
from debitrecon.services.direct_debit.service import DirectDebitService
from debitrecon.services.direct_debit.storage import ObjectNotFoundError, ObjectStorageError

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    [
        "postgres_dsn",
        "kafka_bootstrap_servers",
        "pd_adapter",
        "pd_channel",
        "pd_require_active_mandate",
        "billing_batches_bucket",
        "s3_secret_key",
        "fiscal_issuer_mode",
    ]
)
service = DirectDebitService(SessionLocal)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the outbox publisher for the app lifetime."""

    publisher_task = asyncio.create_task(service.outbox.run_forever())
    yield
    publisher_task.cancel()
    await service.outbox.close()


app = FastAPI(title="Direct Debit Engine", lifespan=lifespan)
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency for every HTTP call."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(service=settings.service_name, route=route, method=method).observe(
            elapsed
        )
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


def enforce_api_key(x_api_key: str | None) -> None:
    """Reject requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


def _bind_trace(x_trace_id: str | None) -> str:
    trace_id = x_trace_id or str(uuid4())
    trace_id_ctx.set(trace_id)
    return trace_id


def _download_url(batch_id: int) -> str:
    return f"/direct-debit/batches/{batch_id}/download"


@app.post("/direct-debit/batches")
def create_batch(
    business_date: date | None = Query(default=None, alias="date"),
    x_api_key: str | None = Header(default=None),
    x_trace_id: str | None = Header(default=None),
    x_actor_user_id: int | None = Header(default=None),
):
    """Build and upload the presentment file for one business day."""

    enforce_api_key(x_api_key)
    _bind_trace(x_trace_id)
    try:
        result = service.create_presentment_batch(business_date, x_actor_user_id)
    except ObjectStorageError as exc:
        raise HTTPException(status_code=502, detail=f"batch storage failed: {exc}") from exc
    return {
        "batch": result.batch.model_dump(mode="json"),
        "download_file_name": result.download_file_name,
        "download_url": _download_url(result.batch.id_batch) if result.download_file_name else None,
    }


@app.get("/direct-debit/batches")
def list_batches(
    date_from: date | None = Query(default=None, alias="from"),
    date_to: date | None = Query(default=None, alias="to"),
    x_api_key: str | None = Header(default=None),
    x_trace_id: str | None = Header(default=None),
):
    """Outbound and inbound batches of the configured channel, newest first."""

    enforce_api_key(x_api_key)
    _bind_trace(x_trace_id)
    range_from, range_to, items = service.list_batches(date_from, date_to)
    return {
        "range": {"from": range_from.isoformat(), "to": range_to.isoformat()},
        "items": [item.model_dump(mode="json") for item in items],
    }


@app.get("/direct-debit/batches/{batch_id}/download")
def download_batch(
    batch_id: int,
    x_api_key: str | None = Header(default=None),
    x_trace_id: str | None = Header(default=None),
):
    """Stream back the exact bytes stored for a batch."""

    enforce_api_key(x_api_key)
    _bind_trace(x_trace_id)
    try:
        batch_file = service.download_batch_file(batch_id)
    except (BatchNotFoundError, BatchFileMissingError, ObjectNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ObjectStorageError as exc:
        raise HTTPException(status_code=502, detail=f"batch storage failed: {exc}") from exc
    return Response(
        content=batch_file.data,
        media_type=batch_file.content_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(batch_file.file_name)}"},
    )


@app.post("/direct-debit/batches/{batch_id}/import-response")
def import_response(
    batch_id: int,
    file: UploadFile = File(...),
    x_api_key: str | None = Header(default=None),
    x_trace_id: str | None = Header(default=None),
    x_actor_user_id: int | None = Header(default=None),
):
    """Apply a bank response file to the outbound batch it answers."""

    enforce_api_key(x_api_key)
    _bind_trace(x_trace_id)
    data = file.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="empty response file")
    uploaded = UploadedFile(
        file_name=file.filename or f"response-{batch_id}.csv",
        data=data,
        content_type=file.content_type,
    )
    try:
        result = service.import_response_batch(batch_id, uploaded, x_actor_user_id)
    except BatchNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ObjectStorageError as exc:
        logger.error("response_import_storage_failed batch_id=%s error=%s", batch_id, exc)
        raise HTTPException(status_code=502, detail=f"batch storage failed: {exc}") from exc
    return result.model_dump(mode="json")


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
