"""
Field-scoped request sanitizers.

``RequestSanitizer`` is the sanitizer capability attached to every request
context. ``ctx.sanitize('name')`` returns a ``FieldSanitizer`` whose operations
rewrite the named field in place wherever it appears (route params, query
string, body). Operations are chainable::

    ctx.sanitize('email').trim().normalize_email()

Routes may declare sanitizer directives instead of calling them directly::

    sanitizer={'email': {'trim': True, 'normalize_email': True},
               'count': {'to_int': {'radix': 10}}}

HTML escaping and tag stripping use bleach; e-mail normalisation uses
email-validator.
"""

import math
from typing import Any, Callable, Iterator, List, Mapping, MutableMapping

import bleach
import structlog
from email_validator import EmailNotValidError, validate_email

from routekit.pipeline.filters import parse_float, parse_int

logger = structlog.get_logger(__name__)

LOCATIONS = ('params', 'query', 'body')

_FALSY_STRINGS = frozenset(('0', 'false', ''))


class SanitizationError(ValueError):
    """An unknown sanitizer operation was requested."""


class FieldSanitizer:
    """Sanitizer operations bound to one request field."""

    def __init__(self, context: Any, field: str):
        self.context = context
        self.field = field

    def _containers(self) -> Iterator[MutableMapping[str, Any]]:
        for location in LOCATIONS:
            container = getattr(self.context, location, None)
            if isinstance(container, MutableMapping) and self.field in container:
                yield container

    def _apply(self, transform: Callable[[str], Any]) -> "FieldSanitizer":
        for container in self._containers():
            value = container[self.field]
            if isinstance(value, list):
                container[self.field] = [
                    transform(item) if isinstance(item, str) else item for item in value
                ]
            elif isinstance(value, str):
                container[self.field] = transform(value)
        return self

    def trim(self, chars: str = None) -> "FieldSanitizer":
        return self._apply(lambda value: value.strip(chars))

    def ltrim(self, chars: str = None) -> "FieldSanitizer":
        return self._apply(lambda value: value.lstrip(chars))

    def rtrim(self, chars: str = None) -> "FieldSanitizer":
        return self._apply(lambda value: value.rstrip(chars))

    def escape(self) -> "FieldSanitizer":
        """Escape HTML markup; tags are kept as text."""
        return self._apply(lambda value: bleach.clean(value, tags=set(), strip=False))

    def strip_tags(self) -> "FieldSanitizer":
        return self._apply(lambda value: bleach.clean(value, tags=set(), strip=True))

    def to_int(self, radix: int = 10) -> "FieldSanitizer":
        def convert(value: str) -> Any:
            if radix == 10:
                return parse_int(value)
            try:
                return int(value.strip(), radix)
            except ValueError:
                return math.nan
        return self._apply(convert)

    def to_float(self) -> "FieldSanitizer":
        return self._apply(parse_float)

    def to_boolean(self, strict: bool = False) -> "FieldSanitizer":
        if strict:
            return self._apply(lambda value: value in ('1', 'true'))
        return self._apply(lambda value: value.strip().lower() not in _FALSY_STRINGS)

    def to_lower(self) -> "FieldSanitizer":
        return self._apply(str.lower)

    def to_upper(self) -> "FieldSanitizer":
        return self._apply(str.upper)

    def normalize_email(self) -> "FieldSanitizer":
        """Normalize valid addresses; invalid ones are left for validators to reject."""
        def normalize(value: str) -> str:
            try:
                return validate_email(value.strip(), check_deliverability=False).normalized.lower()
            except EmailNotValidError:
                return value
        return self._apply(normalize)

    def blacklist(self, chars: str) -> "FieldSanitizer":
        removed = set(chars)
        return self._apply(lambda value: ''.join(c for c in value if c not in removed))

    def whitelist(self, chars: str) -> "FieldSanitizer":
        kept = set(chars)
        return self._apply(lambda value: ''.join(c for c in value if c in kept))


OPERATIONS = frozenset(
    name for name, member in vars(FieldSanitizer).items()
    if callable(member) and not name.startswith('_')
)


class RequestSanitizer:
    """Sanitizer capability of a request context."""

    def __init__(self, context: Any):
        self.context = context

    def __call__(self, field: str) -> FieldSanitizer:
        return FieldSanitizer(self.context, field)

    def apply(self, directives: Mapping[str, Mapping[str, Any]]) -> None:
        """
        Apply declarative sanitizer directives.

        ``directives`` maps a field to ``{operation: argument}``. ``True`` calls
        the operation without arguments, a mapping passes keyword arguments and
        a list or tuple passes positional arguments. Other values are skipped.

        Raises:
            SanitizationError: An operation name is unknown
        """
        for field, operations in directives.items():
            sanitizer = self(field)
            for name, argument in operations.items():
                if name not in OPERATIONS:
                    raise SanitizationError(f"Unknown sanitizer '{name}' for field '{field}'")
                operation = getattr(sanitizer, name)
                if argument is True:
                    operation()
                elif isinstance(argument, Mapping):
                    operation(**argument)
                elif isinstance(argument, (list, tuple)):
                    operation(*argument)
                else:
                    logger.debug("Skipping sanitizer directive", field=field, sanitizer=name)


def available_operations() -> List[str]:
    return sorted(OPERATIONS)
