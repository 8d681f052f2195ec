"""
Response envelope construction and error classification.

Every response leaving a routekit pipeline is one of two immutable envelopes:

- ``SuccessEnvelope``: status code, data, extra meta and optional paging
- ``ErrorEnvelope``: status code, error type, message, optional call-site
  line, extra meta and data

``classify`` maps any exception onto an ``ErrorEnvelope``. It never raises;
anything it cannot make sense of becomes a 500 ``INTERNAL_SERVER_ERROR``.

Classification precedence (first match wins):

1. storage uniqueness violation -> 409
2. structured field validation failure -> 400, per-field messages joined
3. request validation errors collected by the pipeline -> 400,
   ``[field -> message]`` tokens joined
4. the error's own declared status when it is a 4xx/5xx code, else 500
"""

import traceback
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence

import structlog
from marshmallow import ValidationError as MarshmallowValidationError
from pymongo.errors import DuplicateKeyError
from werkzeug.exceptions import HTTPException

from routekit.monitoring.metrics import ENVELOPES_BUILT
from routekit.utils.exceptions import ApiError, ErrorKind

logger = structlog.get_logger(__name__)

DUPLICATE_KEY_MARKER = "E11000"
DEFAULT_ERROR_MESSAGE = "Internal Server Error"
VALIDATION_ERROR_TYPE = "VALIDATION_ERROR"

ERROR_TYPES: Mapping[int, str] = MappingProxyType({
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    402: "FORBIDDEN",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    406: "NOT_ACCEPTABLE",
    409: "CONFLICT",
    410: "GONE",
    500: "INTERNAL_SERVER_ERROR",
    501: "NOT_IMPLEMENTED",
})


def error_type_for(status_code: int) -> str:
    """Canonical error type for a status code, bucketed for unlisted codes."""
    if status_code in ERROR_TYPES:
        return ERROR_TYPES[status_code]
    if 400 <= status_code < 500:
        return "UNKNOWN_CLIENT_ERROR"
    if 500 <= status_code < 600:
        return "UNKNOWN_SERVER_ERROR"
    return ERROR_TYPES[500]


@dataclass(frozen=True)
class SuccessEnvelope:
    status_code: int = 200
    data: Any = None
    meta: Mapping[str, Any] = field(default_factory=dict)
    paging: Optional[Mapping[str, Any]] = None

    @property
    def has_body(self) -> bool:
        return self.status_code != 204

    def to_dict(self) -> Optional[Dict[str, Any]]:
        """Wire representation; None for 204 No Content."""
        if not self.has_body:
            return None
        meta = dict(self.meta)
        meta["statusCode"] = self.status_code
        if self.paging is not None:
            meta["paging"] = dict(self.paging)
        return {"meta": meta, "data": self.data if self.data is not None else {}}


@dataclass(frozen=True)
class ErrorEnvelope:
    status_code: int
    error_type: str
    error_message: str
    error_line: Optional[str] = None
    meta: Mapping[str, Any] = field(default_factory=dict)
    data: Any = None

    has_body = True

    def to_dict(self) -> Dict[str, Any]:
        meta = dict(self.meta)
        meta.update(
            statusCode=self.status_code,
            errorType=self.error_type,
            errorMessage=self.error_message,
        )
        if self.error_line:
            meta["errorLine"] = self.error_line
        return {"meta": meta, "data": self.data if self.data is not None else {}}


def build_success(status_code: int = 200, data: Any = None,
                  meta: Optional[Mapping[str, Any]] = None,
                  paging: Optional[Mapping[str, Any]] = None) -> SuccessEnvelope:
    """Wrap handler output; a 204 envelope never carries data."""
    envelope = SuccessEnvelope(
        status_code=status_code,
        data=None if status_code == 204 else data,
        meta=MappingProxyType(dict(meta or {})),
        paging=MappingProxyType(dict(paging)) if isinstance(paging, Mapping) else None,
    )
    ENVELOPES_BUILT.labels(kind="success", error_type="", status_code=str(status_code)).inc()
    return envelope


def extract_error_line(error: BaseException) -> Optional[str]:
    """First call-site of a raised error, for diagnostics only."""
    try:
        frames = traceback.extract_tb(error.__traceback__)
        if not frames:
            return None
        frame = frames[-1]
        return f"{frame.name} ({frame.filename}:{frame.lineno})"
    except Exception:
        return None


def _declared_status(error: BaseException) -> int:
    if isinstance(error, HTTPException):
        raw = error.code
    else:
        raw = getattr(error, "status_code", None)
    try:
        status = int(raw)
    except (TypeError, ValueError):
        return 500
    return status if 400 <= status < 600 else 500


def _is_duplicate_key(error: BaseException) -> bool:
    if isinstance(error, DuplicateKeyError):
        return True
    if isinstance(error, ApiError):
        return error.kind is ErrorKind.CONFLICT
    return DUPLICATE_KEY_MARKER in str(error)


def _field_errors(error: BaseException) -> Optional[Mapping[str, Any]]:
    if isinstance(error, ApiError) and error.kind is ErrorKind.FIELD_VALIDATION:
        return error.field_errors
    if isinstance(error, MarshmallowValidationError):
        messages = error.messages
        return messages if isinstance(messages, Mapping) else {"_schema": messages}
    return None


def _flatten_messages(messages: Any) -> List[str]:
    if isinstance(messages, str):
        return [messages]
    if isinstance(messages, Mapping):
        flat = []
        for value in messages.values():
            flat.extend(_flatten_messages(value))
        return flat
    if isinstance(messages, (list, tuple)):
        flat = []
        for value in messages:
            flat.extend(_flatten_messages(value))
        return flat
    return [str(messages)]


def _request_validation_errors(
    error: BaseException,
    validation_errors: Optional[Sequence[Mapping[str, Any]]]
) -> List[Mapping[str, Any]]:
    if validation_errors:
        return list(validation_errors)
    if isinstance(error, ApiError) and error.kind is ErrorKind.REQUEST_VALIDATION:
        return error.validation_errors
    return []


def _message_of(error: BaseException) -> str:
    if isinstance(error, HTTPException):
        return error.description or error.name
    message = getattr(error, "message", None)
    if not isinstance(message, str):
        message = str(error)
    return message or DEFAULT_ERROR_MESSAGE


def _classify(error: BaseException,
              validation_errors: Optional[Sequence[Mapping[str, Any]]]) -> ErrorEnvelope:
    declared_type = getattr(error, "error_type", None) if isinstance(error, ApiError) else None
    meta: Dict[str, Any] = dict(getattr(error, "meta", None) or {}) if isinstance(error, ApiError) else {}
    data = getattr(error, "data", None) if isinstance(error, ApiError) else None
    message = _message_of(error)

    field_errors = _field_errors(error)
    request_errors = _request_validation_errors(error, validation_errors)

    if _is_duplicate_key(error):
        status_code = 409
    elif field_errors is not None:
        status_code = 400
        message = ", ".join(_flatten_messages(field_errors)) or message
        meta.setdefault("fieldErrors", dict(field_errors))
        declared_type = declared_type or VALIDATION_ERROR_TYPE
    elif request_errors:
        status_code = 400
        message = ", ".join(
            f"[{item.get('param')} -> {item.get('msg')}]" for item in request_errors
        )
        meta.setdefault("validationErrors", [dict(item) for item in request_errors])
        declared_type = declared_type or VALIDATION_ERROR_TYPE
    else:
        status_code = _declared_status(error)

    return ErrorEnvelope(
        status_code=status_code,
        error_type=declared_type or error_type_for(status_code),
        error_message=message,
        error_line=extract_error_line(error),
        meta=MappingProxyType(meta),
        data=data if data is not None else {},
    )


def classify(error: BaseException,
             validation_errors: Optional[Sequence[Mapping[str, Any]]] = None) -> ErrorEnvelope:
    """
    Classify an exception into an ``ErrorEnvelope``.

    Args:
        error: The raised exception
        validation_errors: Validation errors collected by the request pipeline

    Returns:
        ErrorEnvelope; never raises
    """
    try:
        envelope = _classify(error, validation_errors)
    except Exception:
        logger.exception("Error classification failed", error_class=type(error).__name__)
        envelope = ErrorEnvelope(
            status_code=500,
            error_type=ERROR_TYPES[500],
            error_message=DEFAULT_ERROR_MESSAGE,
            data={},
        )

    ENVELOPES_BUILT.labels(
        kind="error",
        error_type=envelope.error_type,
        status_code=str(envelope.status_code)
    ).inc()
    return envelope
