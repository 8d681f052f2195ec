"""
Pagination, ordering and field selection resolved from the query string.

All results are plain immutable values built per request, never stored on a
controller instance.
"""

import math
import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from routekit.pipeline.filters import parse_int, stringify

_WHITESPACE = re.compile(r"\s+")


class Direction(Enum):
    ASC = "ASC"
    DESC = "DESC"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.ASC else -1


_DIRECTION_TOKENS = {
    "1": Direction.ASC,
    "asc": Direction.ASC,
    "-1": Direction.DESC,
    "desc": Direction.DESC,
}


@dataclass(frozen=True)
class PageSpec:
    page: int = 1
    offset: int = 0
    limit: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class OrderSpec:
    """Sort keys in significance order; the first pair is the primary key."""

    keys: Tuple[Tuple[str, Direction], ...] = ()

    def __bool__(self) -> bool:
        return bool(self.keys)

    def __iter__(self):
        return iter(self.keys)

    def __len__(self) -> int:
        return len(self.keys)

    def to_list(self) -> List[List[str]]:
        return [[field, direction.value] for field, direction in self.keys]

    def to_sort(self) -> List[Tuple[str, int]]:
        """Render as a pymongo ``sort`` argument."""
        return [(field, direction.sign) for field, direction in self.keys]


def _first_int(raw_query: Mapping[str, Any], *names: str, default: int = 0) -> int:
    """Emulates ``parseInt(a || b) || default`` over the named parameters."""
    for name in names:
        raw = raw_query.get(name)
        if raw is None or raw == "":
            continue
        value = parse_int(stringify(raw))
        if isinstance(value, float) or value == 0:
            return default
        return value
    return default


def resolve_paging(raw_query: Mapping[str, Any], default_offset: int = 0,
                   default_limit: int = 0) -> PageSpec:
    """
    Resolve ``PageSpec`` from ``limit``/``count``, ``offset``/``skip`` and ``page``.

    Precedence, evaluated in order:

    1. ``limit == 0``: a single conceptual page, ``page`` is 1.
    2. ``page > 0``: ``offset`` becomes ``(page - 1) * limit``.
    3. ``limit > 0``: ``page`` becomes ``ceil((offset + 1) / limit)``.
    4. otherwise ``page`` is 1.

    Negative values are clamped to 0.
    """
    offset = max(_first_int(raw_query, "offset", "skip", default=default_offset), 0)
    limit = max(_first_int(raw_query, "limit", "count", default=default_limit), 0)
    page = max(_first_int(raw_query, "page"), 0)

    if limit == 0:
        page = 1
    elif page > 0:
        offset = (page - 1) * limit
    elif limit > 0:
        page = math.ceil((offset + 1) / limit)
    else:
        page = 1

    return PageSpec(page=page, offset=offset, limit=limit)


def parse_direction(token: Any) -> Direction:
    return _DIRECTION_TOKENS.get(stringify(token).strip().lower(), Direction.ASC)


def resolve_ordering(raw_query: Mapping[str, Any], mode: str = "pipe") -> OrderSpec:
    """
    Resolve ``OrderSpec`` from the ``order`` parameter.

    In ``pipe`` mode ``order`` is a comma-separated list of ``field|direction``
    pairs with an optional direction. In ``direction`` mode ``order`` names a
    single field and ``direction`` must be ``asc`` or ``desc``; anything else
    yields an empty ordering.
    """
    raw_order = raw_query.get("order")
    if raw_order is None or raw_order == "":
        return OrderSpec()

    if mode == "direction":
        raw_direction = stringify(raw_query.get("direction")).strip().upper()
        if raw_direction not in (Direction.ASC.value, Direction.DESC.value):
            return OrderSpec()
        return OrderSpec(((stringify(raw_order).strip(), Direction(raw_direction)),))

    keys = []
    for pair in stringify(raw_order).split(","):
        field, _, direction = pair.partition("|")
        field = field.strip()
        if not field:
            continue
        keys.append((field, parse_direction(direction) if direction else Direction.ASC))
    return OrderSpec(tuple(keys))


def parse_fields(raw_query: Mapping[str, Any]) -> List[str]:
    """Selected fields from ``fields`` or ``attributes``, whitespace removed."""
    raw = raw_query.get("fields") or raw_query.get("attributes")
    if not isinstance(raw, str):
        return []
    return [field for field in _WHITESPACE.sub("", raw).split(",") if field]


def page_meta(paging: PageSpec, total: Optional[int] = None) -> Dict[str, Any]:
    """Build the ``paging`` block of a success envelope."""
    meta: Dict[str, Any] = paging.to_dict()
    if total is not None:
        meta["total"] = total
        if paging.limit:
            meta["pages"] = math.ceil(total / paging.limit) if total else 0
            meta["hasMore"] = paging.offset + paging.limit < total
    return meta
