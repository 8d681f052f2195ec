"""
Router: composes controller routes into Flask request pipelines.

For every declared route the router builds one ordered stage chain::

    begin -> controller.pre -> route.before -> controller.before
          -> handler -> controller.after -> route.after -> end

and connects it to a Flask ``Blueprint``. Routes are processed in controller
registration order and the first ``(method, path)`` pair wins; later
duplicates are skipped with a warning. ``ALL`` counts as each of its
concrete methods, so an ``ALL`` declared after a narrower route on the same
path connects only the methods still free.

Router options:

- ``db``: storage handle attached to every request context
- ``request_id``: assign a UUID4 to every request (echoed as ``X-Request-ID``)
- ``ip``: resolve the client IPv4 address, unwrapping IPv4-mapped IPv6
- ``response_time``: ``X-Response-Time`` header in milliseconds
- ``security_headers``: Flask-Talisman options applied to the application
- ``log_requests`` / ``log_responses``: request and response log lines
- ``log_errors``: log the traceback of errors rendered as envelopes
"""

import ipaddress
import re
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional, Set, Tuple, Union

import structlog
from flask import Blueprint, Flask, current_app, g, request
from flask_talisman import Talisman

from routekit.monitoring.logging import bind_request_context, clear_request_context
from routekit.monitoring.metrics import PIPELINE_DURATION, ROUTES_REGISTERED, ROUTES_SKIPPED
from routekit.pipeline.context import RequestContext, Stage, as_stage, run_pipeline
from routekit.pipeline.controller import Controller
from routekit.pipeline.routes import RouteSpec
from routekit.utils.exceptions import RequestValidationError

logger = structlog.get_logger(__name__)

_ENDPOINT_NOISE = re.compile(r'\W+')

FORMAT_SUFFIXES = ('.json', '.xml')


class ConnectedRoute(NamedTuple):
    method: str
    path: str
    endpoint: str


def resolve_ipv4(address: Optional[str]) -> Optional[str]:
    """IPv4 form of a client address; None for real IPv6 or invalid input."""
    if not address:
        return None
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return None
    if ip.version == 4:
        return str(ip)
    if ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return None


def _omit(container: Mapping[str, Any], names: Iterable[str]) -> Dict[str, Any]:
    names = set(names)
    return {key: value for key, value in container.items() if key not in names}


def _pick(container: Mapping[str, Any], names: Iterable[str]) -> Dict[str, Any]:
    names = set(names)
    return {key: value for key, value in container.items() if key in names}


class Router:
    """
    Connects controller routes to a Flask blueprint.

    Args:
        controllers: Controller instances, as a sequence or a name -> controller mapping
        options: Router options (see module documentation)
        name: Blueprint name
        url_prefix: Blueprint URL prefix
    """

    def __init__(
        self,
        controllers: Union[Iterable[Controller], Mapping[str, Controller], None] = None,
        options: Optional[Mapping[str, Any]] = None,
        name: str = 'api',
        url_prefix: Optional[str] = None
    ):
        if isinstance(controllers, Mapping):
            controllers = controllers.values()
        self.controllers: List[Controller] = list(controllers or [])
        self._explicit_options = dict(options or {})
        self.options: Dict[str, Any] = dict(self._explicit_options)
        self.name = name

        self.blueprint = Blueprint(name, __name__, url_prefix=url_prefix)
        self.routes: List[ConnectedRoute] = []
        self._connected: Set[Tuple[str, str]] = set()
        self._routes_added = False

        self._install_hooks()

    def add_controller(self, controller: Controller) -> None:
        self.controllers.append(controller)

    # Composition

    def add_controller_routes(self) -> List[ConnectedRoute]:
        """Connect the routes of every controller, first registration wins."""
        for controller in self.controllers:
            for route in controller.routes:
                self.add_route(controller, route)
        self._routes_added = True

        logger.info("Controller routes connected", router=self.name, routes=len(self.routes))
        return self.routes

    def add_route(self, controller: Controller, route: Union[RouteSpec, Mapping[str, Any]]) -> bool:
        """Connect one route; returns False when it was skipped."""
        if not isinstance(route, RouteSpec):
            route = RouteSpec.from_mapping(route)

        if not route.is_valid:
            logger.warning(
                "Skipping invalid route",
                controller=controller.name,
                path=route.path,
                method=route.method.value if route.method else None
            )
            ROUTES_SKIPPED.labels(router=self.name, reason='invalid').inc()
            return False

        # An ALL route declared after a narrower one keeps only the methods still free
        methods = [method for method in route.method.flask_methods if (method, route.path) not in self._connected]
        if not methods:
            logger.warning(
                "Skipping duplicate route",
                controller=controller.name,
                method=route.method.value,
                path=route.path
            )
            ROUTES_SKIPPED.labels(router=self.name, reason='duplicate').inc()
            return False
        if len(methods) < len(route.method.flask_methods):
            logger.warning(
                "Route methods already connected",
                controller=controller.name,
                method=route.method.value,
                path=route.path,
                skipped=[method for method in route.method.flask_methods if method not in methods]
            )

        stages = self.compose(controller, route)
        endpoint = self._endpoint_name(controller, route)
        view = self._make_view(controller, route, stages, endpoint)
        # '.json' and '.xml' suffixes select the representation
        for rule in (route.rule, *('/' + route.rule.strip('/') + suffix for suffix in FORMAT_SUFFIXES)):
            self.blueprint.add_url_rule(
                rule,
                endpoint=endpoint,
                view_func=view,
                methods=methods,
                strict_slashes=False,
            )

        self._connected.update((method, route.path) for method in methods)
        self.routes.append(ConnectedRoute(route.method.value, route.path, endpoint))
        ROUTES_REGISTERED.labels(router=self.name, method=route.method.value).inc()
        return True

    def compose(self, controller: Controller, route: RouteSpec) -> List[Stage]:
        """Ordered stage chain of a route."""
        chain = [
            *controller.begin,
            *controller.pre,
            *route.before,
            *controller.before,
            self.build_handler(controller, route),
            *controller.after,
            *route.after,
            *controller.end,
        ]
        return [as_stage(stage) for stage in chain]

    def build_handler(self, controller: Controller, route: RouteSpec) -> Stage:
        """
        Core handler stage of a route.

        Applies sanitizer directives, then validator directives (aborting with
        ``RequestValidationError`` on any error), then the blacklist and the
        whitelist, and finally calls the route action.
        """
        action = route.action

        def handler(ctx: RequestContext):
            if route.sanitizer:
                ctx.sanitizer.apply(route.sanitizer)

            if route.validator:
                errors = ctx.validator.check(route.validator)
                if errors:
                    raise RequestValidationError(validation_errors=errors)

            ctx.blacklist = sorted(route.blacklist)
            if route.blacklist:
                ctx.params = _omit(ctx.params, route.blacklist)
                ctx.query = _omit(ctx.query, route.blacklist)
                ctx.body = _omit(ctx.body, route.blacklist)

            ctx.whitelist = sorted(route.whitelist)
            if route.whitelist:
                ctx.params = _pick(ctx.params, route.whitelist)
                ctx.query = _pick(ctx.query, route.whitelist)
                ctx.body = _pick(ctx.body, route.whitelist)

            return current_app.ensure_sync(action)(ctx)

        action_name = getattr(action, '__name__', type(action).__name__)
        return Stage(handler, name=f"{controller.name}.{action_name}")

    def _endpoint_name(self, controller: Controller, route: RouteSpec) -> str:
        raw = f"{controller.name}_{route.method.value}_{route.path}"
        return f"{_ENDPOINT_NOISE.sub('_', raw).strip('_').lower()}_{len(self.routes)}"

    def _make_view(self, controller: Controller, route: RouteSpec, stages: List[Stage],
                   endpoint: str) -> Callable:
        def view(**view_args):
            ctx = RequestContext.from_request(request, view_args, controller=controller, route=route)
            ctx.db = self.options.get('db', controller.db)
            ctx.request_id = g.get('request_id')
            ctx.ipv4 = g.get('ipv4')
            g.routekit = ctx

            with PIPELINE_DURATION.labels(method=request.method, rule=route.rule).time():
                return run_pipeline(stages, ctx)

        view.__name__ = endpoint
        return view

    # Router-level hooks

    def _install_hooks(self) -> None:
        self.blueprint.before_request(self._before_request)
        self.blueprint.after_request(self._after_request)
        self.blueprint.teardown_request(self._teardown_request)

    def _before_request(self) -> None:
        g.routekit_started = time.perf_counter()

        if self.options.get('request_id'):
            g.request_id = str(uuid.uuid4())
        if self.options.get('ip'):
            g.ipv4 = resolve_ipv4(request.remote_addr)

        bind_request_context(
            request_id=g.get('request_id'),
            ip=g.get('ipv4'),
            method=request.method.upper(),
            path=request.path
        )

        if self.options.get('log_requests'):
            logger.info(
                "[req]",
                id=g.get('request_id'),
                ip=g.get('ipv4'),
                method=request.method.upper(),
                path=request.path
            )

    def _after_request(self, response):
        elapsed_ms = (time.perf_counter() - g.get('routekit_started', time.perf_counter())) * 1000
        response_time = f"{elapsed_ms:.3f}ms"

        if self.options.get('response_time'):
            response.headers['X-Response-Time'] = response_time
        if self.options.get('request_id') and g.get('request_id'):
            response.headers['X-Request-ID'] = g.request_id

        ctx: Optional[RequestContext] = g.get('routekit')
        if self.options.get('log_responses') and not (ctx is not None and ctx.silent):
            logger.info(
                "[res]",
                id=g.get('request_id'),
                ip=g.get('ipv4'),
                method=request.method.upper(),
                path=request.path,
                status=response.status_code,
                time=response_time
            )

        if self.options.get('log_errors') and ctx is not None and ctx.error is not None:
            logger.error(
                "Request error",
                status=response.status_code,
                exc_info=(type(ctx.error), ctx.error, ctx.error.__traceback__)
            )

        return response

    def _teardown_request(self, exc: Optional[BaseException]) -> None:
        clear_request_context()

    # Application binding

    def init_app(self, app: Flask) -> None:
        """Register the blueprint and apply application-level options."""
        self.options = {**app.config.get('ROUTEKIT_ROUTER_OPTIONS', {}), **self._explicit_options}

        if not self._routes_added:
            self.add_controller_routes()

        security_headers = self.options.get('security_headers', app.config.get('ROUTEKIT_SECURITY_HEADERS'))
        if security_headers:
            Talisman(app, **security_headers)

        app.register_blueprint(self.blueprint)
        app.extensions.setdefault('routekit', []).append(self)

        logger.info(
            "Router registered",
            router=self.name,
            routes=len(self.routes),
            url_prefix=self.blueprint.url_prefix
        )
