"""
Query-string filter compilation.

Turns a controller's declared parameter schema and the raw query map of a
request into an immutable ``FilterExpression``:

- ``Equality(field, value)`` for a single accepted value
- ``Or((Equality, ...))`` when a parameter lists several comma-separated values
- ``LogicalGroup(operator, clauses)`` combining several parameters under the
  ``logical`` query parameter (``and`` by default, also ``or`` and ``nor``)

Expressions render to a MongoDB-style query document with ``to_query()`` and
can be evaluated against plain mappings with ``matches()``.
"""

import math
import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple, Union

import structlog

from routekit.utils.exceptions import InvalidFilterError

logger = structlog.get_logger(__name__)

MATCH_ALL = "*"
EMPTY_ARRAY_LITERAL = "[]"

TRUTHY_TOKENS = frozenset(("true", "yes", "1"))

_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_OPERATOR_NOISE = re.compile(r"[@\s]")


class ParamType(Enum):
    """Value types a query parameter can be declared with."""

    BOOL = "bool"
    STRING = "string"
    LIKE = "like"
    INTEGER = "integer"
    FLOAT = "float"

    @classmethod
    def from_tag(cls, tag: Any) -> Optional["ParamType"]:
        """Resolve a declared type tag, returning None for unknown tags."""
        if isinstance(tag, ParamType):
            return tag
        if not isinstance(tag, str):
            return None
        return _TYPE_ALIASES.get(tag.strip().lower())


_TYPE_ALIASES = {
    "bool": ParamType.BOOL,
    "boolean": ParamType.BOOL,
    "string": ParamType.STRING,
    "like": ParamType.LIKE,
    "regex": ParamType.LIKE,
    "integer": ParamType.INTEGER,
    "float": ParamType.FLOAT,
}


class LogicalOperator(Enum):
    AND = "and"
    OR = "or"
    NOR = "nor"

    @property
    def query_key(self) -> str:
        return f"${self.value}"


class ParamSchema(Mapping):
    """
    Immutable mapping of query parameter name to ``ParamType``.

    Parameters declared with an unknown type tag are kept as ``None`` so that
    the compiler can drop them; they never raise.
    """

    def __init__(self, declared: Optional[Mapping[str, Any]] = None):
        types: Dict[str, Optional[ParamType]] = {}
        for name, tag in (declared or {}).items():
            param_type = ParamType.from_tag(tag)
            if param_type is None:
                logger.warning("Unknown query parameter type", param=name, type_tag=tag)
            types[name] = param_type
        self._types = MappingProxyType(types)

    def __getitem__(self, name: str) -> Optional[ParamType]:
        return self._types[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def __repr__(self) -> str:
        declared = {name: t.value if t else None for name, t in self._types.items()}
        return f"ParamSchema({declared!r})"


@dataclass(frozen=True)
class LikePattern:
    """Case-insensitive substring match with regex metacharacters escaped."""

    pattern: str

    @classmethod
    def from_token(cls, token: str) -> "LikePattern":
        return cls(re.escape(token))

    @property
    def regex(self) -> "re.Pattern":
        return re.compile(self.pattern, re.IGNORECASE)

    def to_query(self) -> Dict[str, str]:
        return {"$regex": self.pattern, "$options": "i"}


def _render_value(value: Any) -> Any:
    if isinstance(value, LikePattern):
        return value.to_query()
    if isinstance(value, tuple):
        return list(value)
    return value


def _value_matches(expected: Any, actual: Any) -> bool:
    if isinstance(expected, LikePattern):
        if isinstance(actual, (list, tuple)):
            return any(_value_matches(expected, item) for item in actual)
        return isinstance(actual, str) and expected.regex.search(actual) is not None
    if expected == ():
        return isinstance(actual, (list, tuple)) and len(actual) == 0
    if isinstance(expected, float) and math.isnan(expected):
        return False
    if isinstance(actual, (list, tuple)):
        return expected in actual
    return actual == expected


@dataclass(frozen=True)
class Equality:
    """``field`` equals ``value``; an empty tuple means an empty collection."""

    field: str
    value: Any

    def to_query(self) -> Dict[str, Any]:
        return {self.field: _render_value(self.value)}

    def matches(self, document: Mapping[str, Any]) -> bool:
        return self.field in document and _value_matches(self.value, document[self.field])


@dataclass(frozen=True)
class Or:
    """Any of several values for a single field."""

    clauses: Tuple[Equality, ...]

    def to_query(self) -> Dict[str, Any]:
        return {"$or": [clause.to_query() for clause in self.clauses]}

    def matches(self, document: Mapping[str, Any]) -> bool:
        return any(clause.matches(document) for clause in self.clauses)


@dataclass(frozen=True)
class LogicalGroup:
    """Per-parameter clauses combined with ``and``, ``or`` or ``nor``."""

    operator: LogicalOperator
    clauses: Tuple["FilterExpression", ...]

    def to_query(self) -> Dict[str, Any]:
        return {self.operator.query_key: [clause.to_query() for clause in self.clauses]}

    def matches(self, document: Mapping[str, Any]) -> bool:
        results = [clause.matches(document) for clause in self.clauses]
        if self.operator is LogicalOperator.AND:
            return all(results)
        if self.operator is LogicalOperator.OR:
            return any(results)
        return not any(results)


@dataclass(frozen=True)
class EmptyFilter:
    """No constraints; matches every document."""

    def to_query(self) -> Dict[str, Any]:
        return {}

    def matches(self, document: Mapping[str, Any]) -> bool:
        return True

    def __bool__(self) -> bool:
        return False


EMPTY_FILTER = EmptyFilter()

FilterExpression = Union[Equality, Or, LogicalGroup, EmptyFilter]


def parse_int(token: str) -> Union[int, float]:
    """Parse a leading integer, truncating the rest; NaN when there is none."""
    match = _INT_PREFIX.match(token)
    return int(match.group(1)) if match else math.nan


def parse_float(token: str) -> float:
    """Parse a leading float; NaN when there is none."""
    match = _FLOAT_PREFIX.match(token)
    return float(match.group(1)) if match else math.nan


def parse_bool(token: str) -> bool:
    return token in TRUTHY_TOKENS


_TRANSFORMS: Dict[ParamType, Callable[[str], Any]] = {
    ParamType.BOOL: parse_bool,
    ParamType.STRING: lambda token: token,
    ParamType.LIKE: LikePattern.from_token,
    ParamType.INTEGER: parse_int,
    ParamType.FLOAT: parse_float,
}


def stringify(value: Any) -> str:
    """Stable string conversion applied to non-string query values."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(stringify(item) for item in value)
    if value is None:
        return ""
    return str(value)


def parse_logical_operator(raw: Any, strict: bool = True) -> LogicalOperator:
    """
    Normalize the ``logical`` query parameter.

    The value is lowercased and stripped of ``@``, whitespace and a leading
    ``$``. Unknown operators raise ``InvalidFilterError`` when ``strict`` is
    set, otherwise they fall back to ``and``.
    """
    token = _OPERATOR_NOISE.sub("", stringify(raw) if raw is not None else "and").lower()
    token = token.lstrip("$") or "and"
    try:
        return LogicalOperator(token)
    except ValueError:
        if strict:
            raise InvalidFilterError(
                f"Unsupported logical operator: {raw}",
                meta={"logical": stringify(raw), "allowed": [op.value for op in LogicalOperator]}
            )
        logger.warning("Unsupported logical operator, using 'and'", logical=raw)
        return LogicalOperator.AND


def compile_clause(field: str, param_type: ParamType, raw_value: Any,
                   match_all: str = MATCH_ALL) -> Optional[FilterExpression]:
    """Compile one query parameter into a clause, or None when it is ignored."""
    value = stringify(raw_value)
    if value == match_all:
        return None

    tokens = value.split(",")
    if not tokens:
        return None

    values = [_TRANSFORMS[param_type](token) for token in tokens]

    if len(values) == 1:
        single = values[0]
        if single == EMPTY_ARRAY_LITERAL:
            single = ()
        return Equality(field, single)

    return Or(tuple(Equality(field, item) for item in values))


def compile_filter(
    schema: Mapping[str, Any],
    raw_query: Mapping[str, Any],
    match_all: str = MATCH_ALL,
    strict_logical: bool = True
) -> FilterExpression:
    """
    Compile a raw query map into a ``FilterExpression``.

    Only keys declared in ``schema`` take part, in the order they appear in
    ``raw_query``. Undeclared keys and keys declared with an unknown type are
    ignored.

    Args:
        schema: ``ParamSchema`` or a plain mapping of name to type tag
        raw_query: Query parameters of the request
        match_all: Sentinel value that removes a parameter from the filter
        strict_logical: Reject unsupported ``logical`` operators

    Returns:
        The compiled expression; ``EMPTY_FILTER`` when nothing applies

    Raises:
        InvalidFilterError: The ``logical`` operator is not supported
    """
    if not isinstance(schema, ParamSchema):
        schema = ParamSchema(schema)

    operator = parse_logical_operator(raw_query.get("logical"), strict=strict_logical)

    clauses: List[FilterExpression] = []
    for field, raw_value in raw_query.items():
        if field not in schema:
            continue
        param_type = schema[field]
        if param_type is None:
            continue
        clause = compile_clause(field, param_type, raw_value, match_all=match_all)
        if clause is not None:
            clauses.append(clause)

    if not clauses:
        return EMPTY_FILTER
    if len(clauses) == 1:
        return clauses[0]
    return LogicalGroup(operator, tuple(clauses))
