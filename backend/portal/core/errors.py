# backend/portal/core/errors.py

from __future__ import annotations

from enum import Enum
import logging
from typing import Any, Optional

from portal.core.request_context import get_request_id

logger = logging.getLogger("portal")

INVALID_CLIENT_CODE_MESSAGE = "Invalid client code"


class PortalErrorCode(str, Enum):
    INVALID_CLIENT_CODE = "INVALID_CLIENT_CODE"
    CODE_SPACE_EXHAUSTED = "CODE_SPACE_EXHAUSTED"
    NOT_FOUND = "NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"


class PortalError(Exception):
    """
    Base class for domain errors raised by the services layer.

    The API layer renders these with the standard error contract
    (see portal.main.portal_error_handler), so services never import FastAPI.
    """

    code: PortalErrorCode = PortalErrorCode.NOT_FOUND
    status_code: int = 400
    default_message: str = "Request failed."

    def __init__(self, message: Optional[str] = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class InvalidFormat(PortalError):
    # Same public code and message as InvalidCode: callers must not learn why a code failed
    code = PortalErrorCode.INVALID_CLIENT_CODE
    status_code = 400
    default_message = INVALID_CLIENT_CODE_MESSAGE


class InvalidCode(PortalError):
    code = PortalErrorCode.INVALID_CLIENT_CODE
    status_code = 400
    default_message = INVALID_CLIENT_CODE_MESSAGE


class CodeSpaceExhausted(PortalError):
    code = PortalErrorCode.CODE_SPACE_EXHAUSTED
    status_code = 503
    default_message = "Could not generate a unique client code. Try again."


class NotFound(PortalError):
    code = PortalErrorCode.NOT_FOUND
    status_code = 404
    default_message = "Not found."


class PermissionDenied(PortalError):
    code = PortalErrorCode.PERMISSION_DENIED
    status_code = 403
    default_message = "Permission denied."


class RequestIdFilter(logging.Filter):
    """Stamps `record.request_id` from the active request scope ("-" outside requests)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


def install_request_id_logging(*logger_names: str) -> None:
    """
    Attach RequestIdFilter to the root logger and the `portal` logger (plus any
    extra names given) so formatters can use %(request_id)s.
    Call once at startup, after logging.basicConfig().
    """
    request_filter = RequestIdFilter()
    for name in ("", "portal", *logger_names):
        logging.getLogger(name).addFilter(request_filter)


def log_exception_with_context(message: str, **fields: Any) -> None:
    """logger.exception with key=value fields; request_id comes from the filter."""
    logger.exception("%s %s", message, " ".join(f"{k}={v}" for k, v in fields.items()))
