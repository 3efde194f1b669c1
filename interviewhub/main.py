# interviewhub/main.py
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Literal

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from interviewhub.cache import AppCache
from interviewhub.config import Settings, load_settings
from interviewhub.errors import envelope_from_http_exception
from interviewhub.logging_conf import setup_logging

# --- Observability ---
from interviewhub.observability import metrics_endpoint, timing_middleware
from interviewhub.remote import RemoteDataService, SupabaseRemote

# --- Routers ---
from interviewhub.routers import experiences, profiles
from interviewhub.version import SERVICE_VERSION, service_version_payload

log = logging.getLogger("interviewhub.main")


# --- Schemas for utility endpoints ---
class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    as_of: str
    service: Literal["interviewhub"] = "interviewhub"
    cache_entries: int


class VersionResponse(BaseModel):
    service_version: str
    schema_version: str | None = None


def create_app(
    settings: Settings | None = None,
    remote: RemoteDataService | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """
    Composition root: one cache and one backend client per process.
    Tests pass their own remote (and clock) instead of the Supabase client.
    """
    settings = settings or load_settings()
    setup_logging(settings.log_level)

    if remote is None:
        remote = SupabaseRemote(
            settings.supabase_url,
            settings.supabase_anon_key,
            timeout=settings.remote_timeout_sec,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("interviewhub starting, backend=%s", settings.supabase_url)
        yield
        aclose = getattr(app.state.remote, "aclose", None)
        if aclose is not None:
            await aclose()

    app = FastAPI(title="InterviewHub", version=SERVICE_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.remote = remote
    app.state.cache = AppCache(
        default_ttl=settings.cache_ttl_sec, stale_window=settings.stale_sec, clock=clock
    )

    # --- Include routers ---
    app.include_router(experiences.router)
    app.include_router(profiles.router)

    # --- Observability ---
    app.middleware("http")(timing_middleware)

    @app.exception_handler(HTTPException)
    async def error_envelope(request: Request, exc: HTTPException):
        body = envelope_from_http_exception(exc)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))

    # --- Utility endpoints ---
    @app.get("/health", response_model=HealthResponse)
    def health(request: Request):
        return {
            "status": "ok",
            "as_of": datetime.now(UTC).isoformat(),
            "service": "interviewhub",
            "cache_entries": len(request.app.state.cache),
        }

    @app.get("/version", response_model=VersionResponse)
    def version():
        p = service_version_payload()
        return VersionResponse(
            service_version=p.get("service_version") or "unknown",
            schema_version=p.get("schema_version"),
        )

    @app.get("/metrics")
    def metrics():
        return metrics_endpoint()

    return app
