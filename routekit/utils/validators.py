"""
Request validator capability.

``RequestValidator`` collects validation errors for the fields of a request
context. Rules are either a marshmallow ``Schema`` (class or instance), loaded
against the merged params, query and body, or a mapping of declarative checks::

    validator={
        'id': {'in': 'params', 'is_object_id': True},
        'email': {'is_email': {'error_message': 'Not an e-mail address'}},
        'limit': {'in': 'query', 'is_int': {'min': 1, 'max': 100}},
    }

Every failing check appends ``{param, msg, value, location}`` to the ordered
list returned by ``validation_errors()``.
"""

import re
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import structlog
from bson import ObjectId
from email_validator import EmailNotValidError, validate_email
from marshmallow import Schema
from marshmallow import ValidationError as MarshmallowValidationError

from routekit.pipeline.filters import stringify

logger = structlog.get_logger(__name__)

LOCATIONS = ('params', 'query', 'body')
DEFAULT_MESSAGE = 'Invalid value'

_INT_PATTERN = re.compile(r'^[+-]?\d+$')
_FLOAT_PATTERN = re.compile(r'^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$')
_BOOLEAN_TOKENS = frozenset(('true', 'false', '1', '0'))


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (str, list, dict)) and len(value) == 0)


def _check_not_empty(value: Any) -> bool:
    return not _is_empty(value) and not (isinstance(value, str) and not value.strip())


def _check_is_int(value: Any, min: Optional[int] = None, max: Optional[int] = None) -> bool:
    if isinstance(value, bool):
        return False
    if not isinstance(value, int):
        text = stringify(value)
        if not _INT_PATTERN.match(text):
            return False
        value = int(text)
    return (min is None or value >= min) and (max is None or value <= max)


def _check_is_float(value: Any, min: Optional[float] = None, max: Optional[float] = None) -> bool:
    if isinstance(value, bool):
        return False
    if not isinstance(value, (int, float)):
        text = stringify(value)
        if not _FLOAT_PATTERN.match(text):
            return False
        value = float(text)
    return (min is None or value >= min) and (max is None or value <= max)


def _check_is_boolean(value: Any) -> bool:
    return isinstance(value, bool) or stringify(value).lower() in _BOOLEAN_TOKENS


def _check_is_email(value: Any) -> bool:
    try:
        validate_email(stringify(value), check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _check_is_uuid(value: Any, version: Optional[int] = None) -> bool:
    try:
        parsed = uuid.UUID(stringify(value))
    except ValueError:
        return False
    return version is None or parsed.version == version


def _check_is_in(value: Any, values: Tuple[Any, ...] = ()) -> bool:
    return value in values or stringify(value) in [stringify(option) for option in values]


def _check_is_length(value: Any, min: int = 0, max: Optional[int] = None) -> bool:
    length = len(value) if isinstance(value, (list, dict)) else len(stringify(value))
    return length >= min and (max is None or length <= max)


def _check_matches(value: Any, pattern: str = '', flags: int = 0) -> bool:
    return re.search(pattern, stringify(value), flags) is not None


def _check_is_object_id(value: Any) -> bool:
    return ObjectId.is_valid(stringify(value))


CHECKS: Dict[str, Callable[..., bool]] = {
    'not_empty': _check_not_empty,
    'is_int': _check_is_int,
    'is_float': _check_is_float,
    'is_boolean': _check_is_boolean,
    'is_email': _check_is_email,
    'is_uuid': _check_is_uuid,
    'is_in': _check_is_in,
    'is_length': _check_is_length,
    'matches': _check_matches,
    'is_object_id': _check_is_object_id,
}

# Keys of a field rule that configure the rule rather than name a check
_RULE_OPTIONS = frozenset(('in', 'error_message', 'optional'))


class ValidatorConfigurationError(ValueError):
    """A rule names a check that does not exist."""


class RequestValidator:
    """Validator capability of a request context."""

    def __init__(self, context: Any):
        self.context = context
        self._errors: List[Dict[str, Any]] = []

    def validation_errors(self) -> List[Dict[str, Any]]:
        return list(self._errors)

    def add_error(self, param: str, msg: str, value: Any = None,
                  location: Optional[str] = None) -> None:
        self._errors.append({'param': param, 'msg': msg, 'value': value, 'location': location})

    def _locate(self, field: str, locations: Tuple[str, ...]) -> Tuple[Optional[str], Any]:
        for location in locations:
            container = getattr(self.context, location, None)
            if isinstance(container, Mapping) and field in container:
                return location, container[field]
        return None, None

    def check(self, rules: Any) -> List[Dict[str, Any]]:
        """
        Run validation rules and collect their errors.

        Args:
            rules: marshmallow ``Schema`` class/instance or a field rule mapping

        Returns:
            The accumulated validation errors

        Raises:
            ValidatorConfigurationError: A rule names an unknown check
        """
        if isinstance(rules, type) and issubclass(rules, Schema):
            rules = rules()
        if isinstance(rules, Schema):
            self._check_schema(rules)
        else:
            for field, rule in rules.items():
                self._check_field(field, rule)
        return self.validation_errors()

    def _check_schema(self, schema: Schema) -> None:
        merged: Dict[str, Any] = {}
        for location in LOCATIONS:
            container = getattr(self.context, location, None)
            if isinstance(container, Mapping):
                merged.update(container)
        try:
            schema.load(merged, partial=False, unknown='exclude')
        except MarshmallowValidationError as error:
            for field, messages in error.normalized_messages().items():
                if isinstance(messages, list):
                    messages = '; '.join(stringify(message) for message in messages)
                location, value = self._locate(field, LOCATIONS)
                self.add_error(field, stringify(messages), value, location)

    def _check_field(self, field: str, rule: Mapping[str, Any]) -> None:
        requested = rule.get('in', LOCATIONS)
        locations = (requested,) if isinstance(requested, str) else tuple(requested)
        location, value = self._locate(field, locations)

        if rule.get('optional') and _is_empty(value):
            return

        for name, options in rule.items():
            if name in _RULE_OPTIONS:
                continue
            check = CHECKS.get(name)
            if check is None:
                raise ValidatorConfigurationError(f"Unknown validator '{name}' for field '{field}'")
            if options is False or options is None:
                continue

            kwargs = dict(options) if isinstance(options, Mapping) else {}
            message = kwargs.pop('error_message', None) or rule.get('error_message') or DEFAULT_MESSAGE
            if isinstance(options, (list, tuple)):
                kwargs = {'values': tuple(options)} if name == 'is_in' else {}

            if value is None and name != 'not_empty':
                passed = False
            else:
                passed = check(value, **kwargs)
            if not passed:
                self.add_error(field, message, value, location)
