"""Error envelope, structured logging and correlation ids for ReportStream.

Failures detected before a stream starts (bad payload, bad token, unknown
model, missing provider key) are answered here with the JSON `ErrorResponse`
envelope. Once the first SSE byte is out, failures travel as an `error` event
on the stream instead and never reach these handlers.
"""

import logging
import sys
import traceback
import uuid
from collections.abc import Mapping
from contextvars import ContextVar
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pythonjsonlogger.json import JsonFormatter
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from core.config import get_settings
from core.exceptions import (
    ConfigurationError,
    MissingCredentialError,
    UnknownModelError,
)
from core.security_config import allowed_error_fields, redact_fields, scrub_secrets
from schemas.api import ErrorResponse


_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

CONFIGURATION_MESSAGES: dict[type[ConfigurationError], str] = {
    UnknownModelError: "The requested model is not supported",
    MissingCredentialError: "No API key is configured for the requested provider",
}
DEFAULT_CONFIGURATION_MESSAGE = "The request could not be configured"

HTTP_ERROR_TYPES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}

# Vendor SDK and server loggers that are chatty at INFO.
NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "anthropic", "openai", "groq")


def get_correlation_id() -> str:
    """Get or create a correlation ID for request tracing."""
    correlation_id = _correlation_id_var.get()
    if not correlation_id:
        correlation_id = str(uuid.uuid4())
        _correlation_id_var.set(correlation_id)
    return correlation_id


def set_correlation_id(correlation_id: str | None) -> None:
    _correlation_id_var.set(correlation_id)


class StructuredLogger:
    """Logger whose records carry the correlation id and redacted fields.

    Keyword fields are attached to the record as `structured_data`. Secret
    field names are masked and provider keys inside string values are
    scrubbed before anything reaches a handler.

    Usage:
        logger = StructuredLogger(__name__)
        logger.info("Report stream complete", model=model, deltas=12)
    """

    def __init__(self, logger_name: str):
        self.logger = logging.getLogger(logger_name)

    def _log(
        self,
        level: int,
        message: str,
        fields: Mapping[str, Any],
        *,
        exc_info: bool = False,
    ) -> None:
        if not self.logger.isEnabledFor(level):
            return
        correlation_id = get_correlation_id()
        structured = {
            "correlation_id": correlation_id,
            "message": message,
            **redact_fields(fields),
        }
        # JSON lines carry the id inside structured_data
        text = (
            message
            if get_settings().ENVIRONMENT == "production"
            else f"[{correlation_id}] {message}"
        )
        self.logger.log(
            level, text, extra={"structured_data": structured}, exc_info=exc_info
        )

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, fields)

    def exception(self, message: str, **fields: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, message, fields, exc_info=True)


structured_logger = StructuredLogger(__name__)


class ExceptionNormalizationMiddleware(BaseHTTPMiddleware):
    """Last-resort net turning any escaped exception into the envelope."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:  # noqa: BLE001
            return await global_exception_handler(request, exc)


def _envelope(
    *,
    status_code: int,
    error_type: str,
    message: str,
    environment: str,
    headers: Mapping[str, str] | None = None,
    **diagnostics: Any,
) -> JSONResponse:
    """Build the error response, dropping fields the environment hides."""
    allowed = allowed_error_fields(environment)
    error: dict[str, Any] = {
        "correlation_id": get_correlation_id(),
        "type": error_type,
    }
    error.update(
        (name, value)
        for name, value in diagnostics.items()
        if name in allowed and value is not None
    )
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, error=error).model_dump(),
        headers=dict(headers) if headers else None,
    )


def _validation_summary(exc: ValidationError | RequestValidationError) -> list[dict]:
    """Location, message and type of each problem; never the submitted input."""
    return [
        {
            "loc": list(err.get("loc", ())),
            "msg": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Answer any pre-stream failure with the sanitized JSON envelope.

    Development and test environments add details, tracebacks and validation
    summaries; production exposes only the error type and correlation id.
    """
    environment = get_settings().ENVIRONMENT

    if isinstance(exc, StarletteHTTPException):
        return _envelope(
            status_code=exc.status_code,
            error_type=HTTP_ERROR_TYPES.get(exc.status_code, "http_error"),
            message="An HTTP error occurred",
            environment=environment,
            headers=exc.headers,
            details={"detail": exc.detail},
            exception_type=exc.__class__.__name__,
        )

    if isinstance(exc, ValidationError | RequestValidationError):
        summary = _validation_summary(exc)
        structured_logger.warning(
            "Request validation failed",
            locations=[".".join(str(part) for part in err["loc"]) for err in summary],
        )
        return _envelope(
            status_code=422,
            error_type="validation_error",
            message="Invalid request data provided",
            environment=environment,
            validation_errors=summary,
        )

    if isinstance(exc, ConfigurationError):
        structured_logger.warning(
            "Stream request could not be configured",
            error_type=exc.__class__.__name__,
            error_code=exc.error_code,
        )
        return _envelope(
            status_code=exc.status_code,
            error_type="configuration_error",
            message=CONFIGURATION_MESSAGES.get(
                type(exc), DEFAULT_CONFIGURATION_MESSAGE
            ),
            environment=environment,
            details={"detail": exc.message, "error_code": exc.error_code},
        )

    structured_logger.exception(
        "Unhandled exception",
        exception_type=exc.__class__.__name__,
        error=scrub_secrets(str(exc)),
    )
    trace = scrub_secrets("".join(traceback.format_exception(exc)).strip())
    return _envelope(
        status_code=500,
        error_type="internal_server_error",
        message="An internal error occurred",
        environment=environment,
        traceback=trace,
        exception_type=exc.__class__.__name__,
    )


def setup_logging() -> None:
    """Install one stdout handler on the root logger; JSON lines in production."""
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    environment = get_settings().ENVIRONMENT
    log_level = logging.DEBUG if environment == "development" else logging.INFO

    formatter: logging.Formatter
    if environment == "production":
        formatter = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.setLevel(log_level)
    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    if environment == "production":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
