from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import uuid
from datetime import datetime, timezone
from .config import settings
from .db import close_pools
from .deps import get_store
from .logs import json_log
from .security import pin_attempt_tracker
from .store import RowStore
from .routers.auth import router as auth_router
from .routers.branches import router as branches_router
from .routers.staff import router as staff_router
from .routers.members import router as members_router
from .routers.packages import router as packages_router
from .routers.renewals import router as renewals_router
from .routers.analytics import router as analytics_router
from .routers.action_logs import router as action_logs_router

API_PREFIX = "/api"

app = FastAPI(title="FitGym Membership API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)

_STATUS_ERRORS = {
    400: "Bad request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not found",
    405: "Method not allowed",
    409: "Conflict",
    429: "Too many requests",
    500: "Internal server error",
    503: "Service unavailable",
}


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def error_envelope(status_code: int, message, error: str = None, **extra) -> JSONResponse:
    content = {
        "status": "error",
        "error": error or _STATUS_ERRORS.get(status_code, "Error"),
        "message": message,
        **extra,
    }
    return JSONResponse(status_code=status_code, content=content)


def _db_error(status_code: int, message: str, exc: Exception) -> JSONResponse:
    extra = {"detail": str(exc)} if settings.is_dev else {}
    return error_envelope(status_code, message, **extra)


@app.exception_handler(StarletteHTTPException)
def _http_exception(_req: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if isinstance(detail, dict):
        # Structured detail: {"error", "message", ...extra fields such as attemptsRemaining}.
        detail = dict(detail)
        error = detail.pop("error", None)
        message = detail.pop("message", error)
        resp = error_envelope(exc.status_code, message, error=error, **detail)
    else:
        resp = error_envelope(exc.status_code, detail)
    for k, v in (getattr(exc, "headers", None) or {}).items():
        resp.headers[k] = v
    return resp


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header")]
        details.append({"field": ".".join(loc) or "request", "message": err.get("msg", "invalid value")})
    return error_envelope(400, "Request validation failed", error="Validation failed", details=details)


# Map common DB constraint/cast errors to 4xx so clients get actionable responses
# instead of generic 500s.
@app.exception_handler(pg_errors.UniqueViolation)
def _unique_violation(_req: Request, exc: Exception):
    return _db_error(409, "A record with these values already exists", exc)


@app.exception_handler(pg_errors.ForeignKeyViolation)
def _foreign_key_violation(_req: Request, exc: Exception):
    return _db_error(400, "Invalid reference", exc)


@app.exception_handler(pg_errors.CheckViolation)
def _check_violation(_req: Request, exc: Exception):
    return _db_error(400, "Constraint violation", exc)


@app.exception_handler(pg_errors.InvalidTextRepresentation)
def _invalid_text_representation(_req: Request, exc: Exception):
    return _db_error(400, "Invalid value", exc)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    extra = {"request_id": rid}
    if settings.is_dev:
        extra["detail"] = str(exc)
    return error_envelope(500, "An unexpected error occurred", **extra)


# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if path != f"{API_PREFIX}/health":
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=dur_ms,
        )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for _router in (
    auth_router,
    branches_router,
    staff_router,
    members_router,
    packages_router,
    renewals_router,
    analytics_router,
    action_logs_router,
):
    app.include_router(_router, prefix=API_PREFIX)


@app.on_event("startup")
def _startup():
    settings.validate()
    pin_attempt_tracker.start_purge_timer(settings.pin_purge_interval_minutes * 60)
    json_log("info", "startup", env=settings.env, version=settings.api_version)


@app.on_event("shutdown")
def _shutdown():
    pin_attempt_tracker.stop_purge_timer()
    close_pools()


@app.get(f"{API_PREFIX}/health")
def health(req: Request, store: RowStore = Depends(get_store)):
    request_id = _current_request_id(req)
    content = {
        "status": "ok",
        "env": settings.env,
        "service": "fitgym-backend",
        "version": settings.api_version,
        "api_base_url": settings.api_base_url,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": request_id,
    }
    try:
        store.select_one("branches", "id")
        content["db"] = "ok"
    except Exception as exc:
        content.update({"status": "degraded", "db": "down"})
        if settings.is_dev:
            content["error"] = str(exc)
        return JSONResponse(status_code=503, content=content)
    return content


@app.get(f"{API_PREFIX}/config")
def public_config():
    # Only values that are safe to hand to a browser.
    return {
        "status": "success",
        "data": {
            "apiBaseUrl": settings.api_base_url,
            "anonKey": settings.anon_key,
            "version": settings.api_version,
            "env": settings.env,
        },
    }
