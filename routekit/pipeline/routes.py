"""Route declarations."""

import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, FrozenSet, List, Mapping, Optional, Tuple

_EXPRESS_PARAM = re.compile(r':(\w+)')


class HttpMethod(Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    ALL = "ALL"

    @classmethod
    def parse(cls, raw: Any) -> Optional["HttpMethod"]:
        if raw is None:
            return cls.GET
        if isinstance(raw, HttpMethod):
            return raw
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            return None

    @property
    def flask_methods(self) -> List[str]:
        if self is HttpMethod.ALL:
            return [method.value for method in HttpMethod if method is not HttpMethod.ALL]
        return [self.value]


def to_flask_rule(path: str) -> str:
    """Convert ``/users/:id`` style paths to Flask rules (``/users/<id>``)."""
    rule = _EXPRESS_PARAM.sub(r'<\1>', path)
    if not rule.startswith('/'):
        rule = '/' + rule
    return rule


def _as_tuple(value: Any) -> Tuple[Any, ...]:
    if value is None:
        return ()
    if callable(value):
        return (value,)
    return tuple(value)


@dataclass(frozen=True)
class RouteSpec:
    """
    One declared route of a controller.

    ``before`` runs after the controller's ``pre`` stages and ``after`` runs
    after the controller's ``after`` stages. ``path`` is lowercased. A missing
    method means GET; an unknown one leaves ``method`` as None and the route
    invalid.
    """

    path: Any
    action: Any
    method: Optional[HttpMethod] = HttpMethod.GET
    sanitizer: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    validator: Any = None
    blacklist: FrozenSet[str] = frozenset()
    whitelist: FrozenSet[str] = frozenset()
    before: Tuple[Callable, ...] = ()
    after: Tuple[Callable, ...] = ()

    def __post_init__(self):
        if isinstance(self.path, str):
            object.__setattr__(self, 'path', self.path.lower())
        if not isinstance(self.method, HttpMethod):
            object.__setattr__(self, 'method', HttpMethod.parse(self.method))
        object.__setattr__(self, 'sanitizer', MappingProxyType(dict(self.sanitizer or {})))
        object.__setattr__(self, 'blacklist', frozenset(self.blacklist or ()))
        object.__setattr__(self, 'whitelist', frozenset(self.whitelist or ()))
        object.__setattr__(self, 'before', _as_tuple(self.before))
        object.__setattr__(self, 'after', _as_tuple(self.after))

    @classmethod
    def from_mapping(cls, declared: Mapping[str, Any]) -> "RouteSpec":
        """Build a route from a plain mapping; ``middleware`` is an alias of ``before``."""
        return cls(
            path=declared.get('path'),
            action=declared.get('action'),
            method=declared.get('method'),
            sanitizer=declared.get('sanitizer') or {},
            validator=declared.get('validator'),
            blacklist=declared.get('blacklist') or (),
            whitelist=declared.get('whitelist') or (),
            before=declared.get('before', declared.get('middleware')),
            after=declared.get('after'),
        )

    @property
    def is_valid(self) -> bool:
        return isinstance(self.path, str) and callable(self.action) and self.method is not None

    @property
    def key(self) -> Tuple[Optional[HttpMethod], Any]:
        return (self.method, self.path)

    @property
    def rule(self) -> str:
        return to_flask_rule(self.path)
