# backend/portal/main.py

import logging
import time
import uuid
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from portal.core.config import settings
from portal.core.errors import PortalError, install_request_id_logging
from portal.core.rate_limit import client_ip
from portal.core.request_context import RequestScope, begin_request, current_scope, end_request

# Third-party loggers never see RequestIdFilter, so default the attribute on
# every record or the shared format string below would fail for them.
_base_record_factory = logging.getLogRecordFactory()


def _portal_record_factory(*args, **kwargs):
    record = _base_record_factory(*args, **kwargs)
    record.request_id = getattr(record, "request_id", "-")
    return record


logging.setLogRecordFactory(_portal_record_factory)
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s %(name)s request_id=%(request_id)s %(message)s",
)
install_request_id_logging()

logger = logging.getLogger("portal")

SLOW_REQUEST_MS = 1500.0
SLOW_REQUEST_DB_MS = 800.0

logger.info(
    "Startup: environment=%s enable_docs=%s db_backend=%s",
    settings.environment,
    settings.enable_docs,
    # Scheme only, the URL can hold credentials
    (settings.database_url or "sqlite").split(":", 1)[0],
)

app = FastAPI(
    title="Client Portal API",
    version=settings.version,
    openapi_url="/api/v1/openapi.json" if settings.enable_docs else None,
    docs_url="/api/v1/docs" if settings.enable_docs else None,
    redoc_url=None,
)


# --- Error contract ---
#
# Every error body carries code, message and request_id at the top level, and
# mirrors code/message under `detail` for clients written against FastAPI's
# default {"detail": ...} shape.

def _request_id_for(request: Request) -> str:
    scope = current_scope()
    if scope is not None:
        return scope.request_id
    rid = getattr(request.state, "request_id", None)
    return rid if isinstance(rid, str) and rid else uuid.uuid4().hex


def _error_body(code: str, message: str, request_id: str, **extra: Any) -> dict:
    body: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": request_id,
        "detail": {"code": code, "message": message},
    }
    body.update(extra)
    return body


def _error_response(status_code: int, body: dict, headers: Optional[dict] = None) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=body, headers=headers)
    resp.headers["X-Request-ID"] = body["request_id"]
    return resp


def _http_error_body(exc: StarletteHTTPException, request_id: str) -> dict:
    code = f"HTTP_{exc.status_code}"
    detail = exc.detail

    if isinstance(detail, dict):
        # Structured details such as {"code": "NOT_A_MEMBER", ...} stay under `detail`
        message = detail.get("message")
        if not isinstance(message, str) or not message.strip():
            message = "Request failed."
        return _error_body(code, message, request_id, detail={"code": code, "message": message, **detail})

    return _error_body(code, detail if isinstance(detail, str) else "Request failed.", request_id)


def _validation_errors(exc: RequestValidationError) -> list:
    # pydantic v2 puts raw exception objects in `ctx`, which JSON can't carry
    errors = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {key: str(value) for key, value in err["ctx"].items()}
        errors.append(err)
    return errors


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    body = _http_error_body(exc, _request_id_for(request))
    # Location carries active-project redirects, WWW-Authenticate the 401 challenge
    return _error_response(exc.status_code, body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    body = _error_body(
        "VALIDATION_ERROR",
        "Validation error. Check request body/query parameters.",
        _request_id_for(request),
        errors=_validation_errors(exc),
    )
    return _error_response(422, body)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "portal_error code=%s kind=%s status=%s path=%s",
        exc.code.value,
        type(exc).__name__,
        exc.status_code,
        request.url.path,
    )
    return _error_response(exc.status_code, _error_body(exc.code.value, exc.message, _request_id_for(request)))


# --- Request scope middleware ---

def _incoming_request_id(request: Request) -> str:
    for header in ("x-request-id", "x-correlation-id"):
        value = (request.headers.get(header) or "").strip()
        if value:
            return value[:128]
    return uuid.uuid4().hex


def _log_request(request: Request, scope: RequestScope, status_code: int, elapsed_ms: float) -> None:
    q = scope.queries
    log = logger.warning if elapsed_ms >= SLOW_REQUEST_MS else logger.info
    log(
        "req method=%s path=%s status=%s duration_ms=%.2f db_q=%s db_total_ms=%.2f db_slowest_ms=%.2f ip=%s",
        request.method,
        request.url.path,
        status_code,
        elapsed_ms,
        q.count,
        q.total_ms,
        q.slowest_ms,
        client_ip(request),
    )
    if q.total_ms >= SLOW_REQUEST_DB_MS:
        logger.warning("slow_db_total path=%s db_q=%s db_total_ms=%.2f", request.url.path, q.count, q.total_ms)


@app.middleware("http")
async def request_scope_middleware(request: Request, call_next):
    scope = begin_request(_incoming_request_id(request))
    request.state.request_id = scope.request_id
    started = time.perf_counter()
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-ID"] = scope.request_id
        return response
    except Exception as exc:
        # HTTP and portal errors are rendered by the handlers above; this is everything else
        logger.exception("Unhandled error method=%s path=%s", request.method, request.url.path)
        extra = {} if settings.is_prod else {"error": str(exc)}
        return _error_response(500, _error_body("INTERNAL_ERROR", "Internal Server Error", scope.request_id, **extra))
    finally:
        _log_request(request, scope, status_code, (time.perf_counter() - started) * 1000.0)
        end_request()


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins_list(),
    # Session, pending-join and active-project cookies ride on credentialed requests
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from portal.api.v1 import auth, client_codes, health, join, projects, setup  # noqa: E402

for _module in (health, auth, join, projects, client_codes, setup):
    app.include_router(_module.router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
def root():
    if settings.enable_docs:
        return RedirectResponse(url="/api/v1/docs")
    return {"status": "Client portal API is running. See /api/v1/health."}
