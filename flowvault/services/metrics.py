"""
Prometheus metrics for the ingestion service
"""

import os
import time

from fastapi import Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQUESTS_TOTAL = Counter(
    "flowvault_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "flowvault_http_request_seconds",
    "Request duration in seconds",
    ["method", "path"],
)

ITEMS_TOTAL = Counter(
    "flowvault_ingested_items_total",
    "Ingested image URLs by outcome",
    ["status"],
)

DUPLICATES_DETECTED = Counter(
    "flowvault_duplicates_detected_total",
    "Images already present in the store",
)

BATCHES_REJECTED = Counter(
    "flowvault_batches_rejected_total",
    "Ingestion batches rejected before processing",
    ["reason"],
)

ROWS_RECONCILED = Counter(
    "flowvault_rows_reconciled_total",
    "Catalog rows inserted by reconciliation",
)


def enabled() -> bool:
    return os.getenv("METRICS_ENABLED") == "1"


async def metrics_endpoint():
    """Prometheus metrics endpoint"""
    if not enabled():
        return Response(b"metrics disabled", media_type="text/plain")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def metrics_middleware(app):
    """Add metrics middleware to FastAPI app"""
    if not enabled():
        return

    @app.middleware("http")
    async def _metrics(request: Request, call_next):
        start = time.time()
        response = await call_next(request)

        path = request.url.path
        REQUESTS_TOTAL.labels(
            method=request.method,
            path=path,
            status=str(response.status_code),
        ).inc()
        REQUEST_DURATION.labels(method=request.method, path=path).observe(time.time() - start)
        return response


def record_item(status: str):
    ITEMS_TOTAL.labels(status=status).inc()


def record_duplicate():
    DUPLICATES_DETECTED.inc()


def record_rejected_batch(reason: str):
    BATCHES_REJECTED.labels(reason=reason).inc()


def record_reconciled(count: int):
    if count:
        ROWS_RECONCILED.inc(count)
