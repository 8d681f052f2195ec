"""
Request-scoped pipeline state and the stage runner.

A ``RequestContext`` is created for every request that enters a routekit
route and is threaded explicitly through every stage. Parse results (fields,
paging, ordering, filter), handler output and the final envelope all live
here, never on the long-lived controller.
"""

import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from flask import Request, current_app
from werkzeug.wrappers import Response

from routekit.pipeline.filters import EMPTY_FILTER, FilterExpression
from routekit.pipeline.paging import OrderSpec, PageSpec
from routekit.utils.sanitizers import FieldSanitizer, RequestSanitizer
from routekit.utils.validators import RequestValidator


def query_to_dict(request: Request) -> Dict[str, Any]:
    """Query arguments as a plain dict; repeated keys keep every value in a list."""
    return {
        key: values[0] if len(values) == 1 else list(values)
        for key, values in request.args.lists()
    }


def body_to_dict(request: Request) -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return dict(payload)
    if payload is not None:
        return {}
    return request.form.to_dict(flat=True)


class RequestContext:
    """
    Mutable per-request state shared by the stages of one pipeline run.

    Handlers set ``data``, ``status_code``, ``meta`` and ``page_meta``; the
    end stage turns them (or ``error``) into ``envelope`` and ``response``.
    """

    def __init__(
        self,
        request: Request,
        params: Optional[Mapping[str, Any]] = None,
        query: Optional[Mapping[str, Any]] = None,
        body: Optional[Mapping[str, Any]] = None,
        controller: Any = None,
        route: Any = None
    ):
        self.request = request
        self.controller = controller
        self.route = route

        self.params: Dict[str, Any] = dict(params or {})
        self.query: Dict[str, Any] = dict(query if query is not None else query_to_dict(request))
        self.body: Dict[str, Any] = dict(body if body is not None else body_to_dict(request))

        self.fields: List[str] = []
        self.paging: PageSpec = PageSpec()
        self.ordering: OrderSpec = OrderSpec()
        self.filter: FilterExpression = EMPTY_FILTER

        self.status_code: int = 200
        self.data: Any = None
        self.meta: Dict[str, Any] = {}
        self.page_meta: Optional[Dict[str, Any]] = None

        self.error: Optional[BaseException] = None
        self.envelope = None
        self.response: Optional[Response] = None
        self.headers_sent = False
        self.silent = False

        self.blacklist: List[str] = []
        self.whitelist: List[str] = []

        self.db: Any = None
        self.request_id: Optional[str] = None
        self.ipv4: Optional[str] = None
        self.started_at = time.perf_counter()

        self.sanitizer = RequestSanitizer(self)
        self.validator = RequestValidator(self)

    @classmethod
    def from_request(cls, request: Request, view_args: Optional[Mapping[str, Any]] = None,
                     **kwargs) -> "RequestContext":
        return cls(request, params=view_args or {}, **kwargs)

    @property
    def method(self) -> str:
        return self.request.method

    @property
    def path(self) -> str:
        return self.request.path

    def sanitize(self, field: str) -> FieldSanitizer:
        return self.sanitizer(field)

    def validation_errors(self) -> List[Dict[str, Any]]:
        return self.validator.validation_errors()

    def send(self, response: Response) -> Response:
        """Record the response written for this request; later writes are skipped."""
        if not self.headers_sent:
            self.response = response
            self.headers_sent = True
        return self.response

    def __repr__(self) -> str:
        return f"<RequestContext {self.method} {self.path} status={self.status_code}>"


class Stage:
    """
    One callable step of a pipeline.

    Normal stages are called as ``func(ctx)``. Error stages are called as
    ``func(error, ctx)`` and run only while an error is propagating; returning
    normally clears the error.
    """

    def __init__(self, func: Callable, handles_errors: bool = False, name: Optional[str] = None):
        self.func = func
        self.handles_errors = handles_errors
        self.name = name or getattr(func, '__qualname__', None) or repr(func)

    def __call__(self, *args):
        return current_app.ensure_sync(self.func)(*args)

    def __repr__(self) -> str:
        kind = 'error-stage' if self.handles_errors else 'stage'
        return f"<{kind} {self.name}>"


def error_stage(func: Callable) -> Callable:
    """Mark a function or method as an error-handling stage."""
    func.handles_errors = True
    return func


def as_stage(func: Any) -> Stage:
    if isinstance(func, Stage):
        return func
    return Stage(func, handles_errors=getattr(func, 'handles_errors', False))


def run_pipeline(stages: Sequence[Stage], ctx: RequestContext) -> Optional[Response]:
    """
    Run stages in order, routing raised exceptions to the error stages.

    A normal stage that returns a ``Response`` sends it and ends the chain.
    An error stage that returns normally clears the error; ``ctx.error`` keeps
    it only when the stage records it again, as the envelope error stage does.
    If an error is still propagating after the last stage it is re-raised to
    the host framework.
    """
    error: Optional[BaseException] = None

    for stage in stages:
        if error is None and not stage.handles_errors:
            args = (ctx,)
        elif error is not None and stage.handles_errors:
            args = (error, ctx)
        else:
            continue

        if stage.handles_errors:
            ctx.error = None

        try:
            result = stage(*args)
        except Exception as exc:
            error = exc
            ctx.error = exc
            continue

        if stage.handles_errors:
            error = None
        elif isinstance(result, Response):
            return ctx.send(result)

    if error is not None:
        raise error
    return ctx.response
