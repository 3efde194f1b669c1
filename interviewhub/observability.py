# interviewhub/observability.py
from __future__ import annotations

import json
import logging
from collections.abc import Callable

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

from interviewhub.utils import new_request_id, stopwatch

# ---- Prometheus metrics (low-cardinality labels) ----
REQUEST_COUNT = Counter(
    "ih_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_LATENCY = Histogram(
    "ih_http_request_duration_seconds",
    "HTTP request latency (seconds)",
    buckets=(0.005, 0.01, 0.02, 0.05, 0.1, 0.2, 0.5, 1.0, 2.5, 5.0),
)

# result: hit (fresh), stale (served + revalidating), miss (absent/expired)
CACHE_LOOKUPS = Counter(
    "ih_cache_lookups_total",
    "Stale-while-revalidate cache lookups",
    ["resource", "result"],
)

REMOTE_CALLS = Counter(
    "ih_remote_calls_total",
    "Calls to the hosted data service",
    ["op", "outcome"],
)


def metrics_endpoint():
    """Return Prometheus exposition format."""
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


# ---- Per-request timing + JSON request log ----
async def timing_middleware(request: Request, call_next: Callable):
    request_id = new_request_id(request.headers.get("x-request-id"))
    with stopwatch() as took:
        response = await call_next(request)
    elapsed = took()
    response.headers["x-request-id"] = request_id

    # route template keeps label cardinality low (/experiences/{experience_id})
    route = request.scope.get("route")
    path = getattr(route, "path", None) or request.url.path
    status = str(response.status_code)

    REQUEST_COUNT.labels(method=request.method, path=path, status=status).inc()
    REQUEST_LATENCY.observe(elapsed)

    logging.getLogger("request").info(
        json.dumps(
            {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "duration_s": round(elapsed, 6),
                "client": request.client.host if request.client else None,
            }
        )
    )
    return response
