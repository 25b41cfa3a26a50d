from __future__ import annotations

import logging
import os
from uuid import uuid4

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from trackledger.core.errors import (
    Conflict,
    Forbidden,
    InvalidPayload,
    NotFound,
    StoreCorrupt,
    StoreUnavailable,
    TrackLedgerError,
)
from trackledger.core.logging import configure_logging, log_event
from trackledger.core.logging.context import log_context

from .auth import is_auth_enabled, is_request_authenticated
from .deps import get_record_store, get_scheduler_service
from .responses import error_body
from .routes_ops import router as ops_router
from .routes_tasks import router as tasks_router
from .routes_tt import router as tt_router
from .routes_users import router as users_router

logger = logging.getLogger("trackledger.api")

_ERROR_STATUS: tuple[tuple[type[TrackLedgerError], int], ...] = (
    (Forbidden, 403),
    (NotFound, 404),
    (InvalidPayload, 400),
    (Conflict, 409),
    (StoreUnavailable, 503),
    (StoreCorrupt, 500),
)

_OPEN_PATHS = ("/healthz", "/health")


def _is_on(name: str, default: str = "off") -> bool:
    return os.getenv(name, default).strip().casefold() == "on"


def status_for(exc: TrackLedgerError) -> int:
    for kind, status in _ERROR_STATUS:
        if isinstance(exc, kind):
            return status
    return 500


app = FastAPI(title="TrackLedger API")

# /tasks/tt must be matched before /tasks/{task_id}.
app.include_router(tt_router, prefix="/tasks/tt", tags=["tt-tasks"])
app.include_router(tasks_router, prefix="/tasks", tags=["tasks"])
app.include_router(users_router, prefix="/admin/users", tags=["users"])
app.include_router(ops_router, prefix="/ops", tags=["ops"])


@app.middleware("http")
async def auth_middleware(request: Request, call_next):
    if request.url.path in _OPEN_PATHS or not is_auth_enabled():
        return await call_next(request)
    if not is_request_authenticated(request):
        return JSONResponse(status_code=401, content=error_body("unauthorized", "unauthorized"))
    return await call_next(request)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid4())
    with log_context(correlation_id=correlation_id):
        response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


@app.exception_handler(TrackLedgerError)
async def ledger_error_handler(request: Request, exc: TrackLedgerError) -> JSONResponse:
    status = status_for(exc)
    log_event(
        logger,
        "request_failed",
        level=logging.ERROR if status >= 500 else logging.WARNING,
        method=request.method,
        path=request.url.path,
        status=status,
        error=exc.kind,
        detail=str(exc),
    )
    return JSONResponse(status_code=status, content=error_body(exc.kind, str(exc)))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ())) or "body"
    detail = f"{location}: {first.get('msg', 'invalid request')}"
    return JSONResponse(status_code=400, content=error_body(InvalidPayload.kind, detail))


@app.on_event("startup")
def startup() -> None:
    store = get_record_store()
    configure_logging(store.state_dir)
    app.state.record_store = store
    app.state.scheduler_service = get_scheduler_service()
    app.state.scheduler_service.start()

    if _is_on("TRACKLEDGER_INTEGRITY_CHECK"):
        every_minutes = int(os.getenv("TRACKLEDGER_INTEGRITY_EVERY_MINUTES", "60"))
        app.state.scheduler_service.schedule_integrity_check(every_minutes)


@app.on_event("shutdown")
def shutdown() -> None:
    get_scheduler_service().shutdown()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/healthz")
def healthz() -> dict[str, bool]:
    return {"ok": True}


def run() -> None:
    uvicorn.run("trackledger.apps.api.main:app", host="127.0.0.1", port=8000)
