"""
routekit: request-handling toolkit for Flask.

Composes controller and route middleware into ordered request pipelines,
compiles query strings into typed filter expressions and normalizes every
response into a single content-negotiated envelope.
"""

from routekit.pipeline import (
    Controller,
    RequestContext,
    RouteSpec,
    Router,
    classify,
    compile_filter,
    error_stage,
    negotiate,
    resolve_ordering,
    resolve_paging,
)
from routekit.utils.exceptions import (
    ApiError,
    ClientError,
    ConflictError,
    FieldValidationError,
    InvalidFilterError,
    RequestValidationError,
    SerializationError,
    ServerError,
    register_error_handlers,
)
from routekit.app import create_app

__version__ = '1.0.0'

__all__ = [
    'Controller',
    'RequestContext',
    'RouteSpec',
    'Router',
    'classify',
    'compile_filter',
    'error_stage',
    'negotiate',
    'resolve_ordering',
    'resolve_paging',
    'ApiError',
    'ClientError',
    'ConflictError',
    'FieldValidationError',
    'InvalidFilterError',
    'RequestValidationError',
    'SerializationError',
    'ServerError',
    'register_error_handlers',
    'create_app',
]
