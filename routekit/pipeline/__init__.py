"""
Request pipeline: filter compilation, paging, envelopes, content negotiation,
controllers and the router that composes them.
"""

from routekit.pipeline.filters import (
    EMPTY_FILTER,
    EmptyFilter,
    Equality,
    LikePattern,
    LogicalGroup,
    LogicalOperator,
    Or,
    ParamSchema,
    ParamType,
    compile_filter,
)
from routekit.pipeline.paging import (
    Direction,
    OrderSpec,
    PageSpec,
    parse_fields,
    resolve_ordering,
    resolve_paging,
)
from routekit.pipeline.envelope import (
    ERROR_TYPES,
    ErrorEnvelope,
    SuccessEnvelope,
    build_success,
    classify,
    error_type_for,
)
from routekit.pipeline.negotiation import build_xml, negotiate, select_representation
from routekit.pipeline.routes import HttpMethod, RouteSpec
from routekit.pipeline.context import RequestContext, Stage, error_stage, run_pipeline
from routekit.pipeline.controller import Controller
from routekit.pipeline.router import Router

__all__ = [
    'EMPTY_FILTER',
    'EmptyFilter',
    'Equality',
    'LikePattern',
    'LogicalGroup',
    'LogicalOperator',
    'Or',
    'ParamSchema',
    'ParamType',
    'compile_filter',
    'Direction',
    'OrderSpec',
    'PageSpec',
    'parse_fields',
    'resolve_ordering',
    'resolve_paging',
    'ERROR_TYPES',
    'ErrorEnvelope',
    'SuccessEnvelope',
    'build_success',
    'classify',
    'error_type_for',
    'build_xml',
    'negotiate',
    'select_representation',
    'HttpMethod',
    'RouteSpec',
    'RequestContext',
    'Stage',
    'error_stage',
    'run_pipeline',
    'Controller',
    'Router',
]
