"""
Controller base class.

Subclasses declare their routes, query parameter schema and controller-scoped
middleware; the router composes them into request pipelines::

    class UserController(Controller):
        query_params = {'name': 'like', 'active': 'bool', 'age': 'integer'}

        def __init__(self, **kwargs):
            super().__init__(**kwargs)
            self.pre = [self.require_token]
            self.add_routes([
                {'method': 'GET', 'path': '/users', 'action': self.find_users},
                {'method': 'POST', 'path': '/users', 'action': self.create_user,
                 'sanitizer': {'email': {'trim': True, 'normalize_email': True}},
                 'validator': {'email': {'is_email': True}}},
            ])

        def find_users(self, ctx):
            ctx.data = list(self.db.users.find(ctx.filter.to_query()).skip(ctx.paging.offset))

Every pipeline begins with the field, paging, ordering and filter parsers
and ends with success normalization, error normalization and the
content-negotiated send.
"""

from typing import Any, Iterable, List, Mapping, Optional, Union

import structlog
from flask import current_app

from routekit.pipeline.context import RequestContext, error_stage
from routekit.pipeline.envelope import build_success, classify
from routekit.pipeline.filters import ParamSchema, compile_filter
from routekit.pipeline.negotiation import negotiate
from routekit.pipeline.paging import page_meta, parse_fields, resolve_ordering, resolve_paging
from routekit.pipeline.routes import RouteSpec
from routekit.utils.exceptions import ApiError

logger = structlog.get_logger(__name__)


class Controller:
    """
    Base class for route-declaring controllers.

    Attributes:
        query_params: Declared filterable query parameters (name -> type tag)
        routes: Routes connected by the router, in declaration order
        pre: Stages run before route middleware
        before: Stages run after route middleware, before the handler
        after: Stages run after the handler
    """

    query_params: Mapping[str, Any] = {}

    def __init__(self, app: Any = None, db: Any = None, **collaborators: Any):
        self.app = app
        self.db = db
        self.collaborators = collaborators

        self.routes: List[RouteSpec] = []

        self.pre: List = []
        self.before: List = []
        self.after: List = []

        self.param_schema = ParamSchema(self.query_params)

        self.begin: List = [
            self.parse_fields,
            self.parse_paging,
            self.parse_ordering,
            self.parse_query_params,
        ]
        self.end: List = [
            self.success_response,
            self.error_response,
            self.final_response,
        ]

    @property
    def name(self) -> str:
        return type(self).__name__

    def throw_error(self, message: str, status_code: int = 500) -> None:
        raise ApiError(message, status_code=status_code)

    def add_routes(self, routes: Iterable[Union[RouteSpec, Mapping[str, Any]]]) -> None:
        """
        Declare routes; string actions name a method of this controller.

        Invalid routes are kept here and skipped by the router with a warning.
        """
        for route in routes:
            if not isinstance(route, RouteSpec):
                declared = dict(route)
                action = declared.get('action')
                if isinstance(action, str) and callable(getattr(self, action, None)):
                    declared['action'] = getattr(self, action)
                route = RouteSpec.from_mapping(declared)
            self.routes.append(route)

    # Begin stage

    def parse_fields(self, ctx: RequestContext) -> None:
        ctx.fields = parse_fields(ctx.query)

    def parse_paging(self, ctx: RequestContext) -> None:
        config = current_app.config
        ctx.paging = resolve_paging(
            ctx.query,
            default_offset=config.get('ROUTEKIT_DEFAULT_OFFSET', 0),
            default_limit=config.get('ROUTEKIT_DEFAULT_LIMIT', 0),
        )

    def parse_ordering(self, ctx: RequestContext) -> None:
        ctx.ordering = resolve_ordering(ctx.query, mode=current_app.config.get('ROUTEKIT_ORDER_MODE', 'pipe'))

    def parse_query_params(self, ctx: RequestContext) -> None:
        # The logical operator is validated even when no parameters are declared
        config = current_app.config
        ctx.filter = compile_filter(
            self.param_schema,
            ctx.query,
            match_all=config.get('ROUTEKIT_MATCH_ALL', '*'),
            strict_logical=config.get('ROUTEKIT_STRICT_LOGICAL', True),
        )

    # Handler helpers

    def paginate(self, ctx: RequestContext, total: Optional[int] = None) -> None:
        """Attach the ``paging`` block for the current page to the envelope."""
        ctx.page_meta = page_meta(ctx.paging, total)

    # End stage

    def success_response(self, ctx: RequestContext) -> None:
        ctx.envelope = build_success(ctx.status_code, ctx.data, ctx.meta, ctx.page_meta)

    @error_stage
    def error_response(self, error: Exception, ctx: RequestContext) -> None:
        envelope = classify(error, ctx.validation_errors())
        ctx.error = error
        ctx.status_code = envelope.status_code
        ctx.envelope = envelope

        log = logger.error if envelope.status_code >= 500 else logger.info
        log(
            "Request failed",
            controller=self.name,
            status_code=envelope.status_code,
            error_type=envelope.error_type,
            error_message=envelope.error_message
        )

    def final_response(self, ctx: RequestContext):
        if ctx.headers_sent:
            return None
        return negotiate(ctx.envelope, ctx)
