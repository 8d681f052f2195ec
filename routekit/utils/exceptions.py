"""
Exception hierarchy and Flask error handler registration.

Every error that can reach a response envelope belongs to a closed set of
variants, each carrying an ``ErrorKind`` classification tag. The error
classifier dispatches on that tag instead of sniffing messages, so collaborators
(validators, storage adapters, filter compilation) raise one of these types.

Key Features:
- ``ApiError`` base class with status code, error type, meta and data payloads
- Client/server split mirroring the 4xx/5xx status ranges
- Conflict, field validation, request validation and filter variants
- Serialization failures for representations that cannot encode an envelope
- Flask ``@errorhandler`` registration rendering negotiated error envelopes
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import structlog
from flask import Flask
from werkzeug.exceptions import HTTPException

logger = structlog.get_logger(__name__)


class ErrorKind(Enum):
    """Classification tags carried by every ``ApiError``."""

    GENERIC = "generic"
    CONFLICT = "conflict"
    FIELD_VALIDATION = "field_validation"
    REQUEST_VALIDATION = "request_validation"
    SERIALIZATION = "serialization"


class ApiError(Exception):
    """
    Base exception for errors surfaced through the response envelope.

    Attributes:
        message: Human-readable error message
        status_code: HTTP status code reported to the client
        error_type: Explicit error type, or None to use the status table
        meta: Extra metadata merged into the envelope ``meta`` block
        data: Payload placed in the envelope ``data`` block
    """

    kind = ErrorKind.GENERIC
    default_status = 500

    def __init__(
        self,
        message: str = "",
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        data: Any = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status
        self.error_type = error_type
        self.meta = meta or {}
        self.data = data if data is not None else {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, status_code={self.status_code})"


class ClientError(ApiError):
    """Errors caused by the request (400-499)."""

    default_status = 400


class ServerError(ApiError):
    """Internal or unexpected failures (500-599)."""

    default_status = 500


class SerializationError(ServerError):
    """An envelope could not be represented in the negotiated format."""

    kind = ErrorKind.SERIALIZATION


class ConflictError(ClientError):
    """Storage-layer uniqueness violation."""

    kind = ErrorKind.CONFLICT
    default_status = 409

    def __init__(self, message: str = "Duplicate key", **kwargs):
        super().__init__(message, **kwargs)


class FieldValidationError(ClientError):
    """
    Structured validation failure exposing per-field errors.

    ``field_errors`` maps a field name to its list of messages, the same
    shape marshmallow produces in ``ValidationError.messages``.
    """

    kind = ErrorKind.FIELD_VALIDATION

    def __init__(
        self,
        message: str = "Validation failed",
        field_errors: Optional[Mapping[str, Any]] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.field_errors = dict(field_errors or {})


class RequestValidationError(ClientError):
    """Validation directives of a route rejected the request."""

    kind = ErrorKind.REQUEST_VALIDATION

    def __init__(
        self,
        message: str = "Validation Error.",
        validation_errors: Optional[List[Dict[str, Any]]] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.validation_errors = list(validation_errors or [])


class InvalidFilterError(ClientError):
    """The query string describes a filter that cannot be compiled."""

    def __init__(self, message: str = "Invalid filter", **kwargs):
        kwargs.setdefault("error_type", "INVALID_FILTER")
        super().__init__(message, **kwargs)


def register_error_handlers(app: Flask) -> None:
    """
    Register Flask error handlers rendering negotiated error envelopes.

    Unmatched routes (404), unsupported methods (405) and any exception that
    escapes a routekit pipeline are classified and sent through the content
    negotiator, so clients always receive the same envelope format.

    Args:
        app: Flask application instance
    """
    # Imported here, the envelope and negotiation modules depend on this one
    from routekit.pipeline.envelope import classify
    from routekit.pipeline.negotiation import negotiate

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        envelope = classify(error)
        logger.info(
            "HTTP exception rendered as envelope",
            status_code=envelope.status_code,
            error_type=envelope.error_type
        )
        return negotiate(envelope)

    @app.errorhandler(Exception)
    def handle_unexpected_exception(error: Exception):
        logger.exception(
            "Unhandled exception escaped the request pipeline",
            exception_type=type(error).__name__
        )
        return negotiate(classify(error))


__all__ = [
    'ErrorKind',
    'ApiError',
    'ClientError',
    'ServerError',
    'SerializationError',
    'ConflictError',
    'FieldValidationError',
    'RequestValidationError',
    'InvalidFilterError',
    'register_error_handlers',
]
