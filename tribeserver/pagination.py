"""Query-string pagination and small request-body builders."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

_INT_RE = re.compile(r"[+-]?[0-9]+")
_MEMO_TEXT = "memotext added for notification"


@dataclass(frozen=True)
class PaginationParams:
    """Offset, page size, sort order and search term for a list query."""

    offset: int
    limit: int
    sort_by: str
    direction: str
    search: str


def _lookup(query: Any, name: str) -> str:
    query_param = getattr(query, "query_param", None)
    if callable(query_param):
        return query_param(name)
    value = query.get(name, "") if isinstance(query, Mapping) else ""
    if isinstance(value, (list, tuple)):
        return value[0] if value else ""
    return value


def _to_int(text: str) -> int:
    return int(text) if _INT_RE.fullmatch(text) else 0


def get_pagination_params(query: Any) -> PaginationParams:
    """Read page, limit, sortBy, direction and search from a query.

    The query may be a mapping, an object with ``query_param`` or None.
    """
    if query is None:
        return PaginationParams(0, 1, "updated", "asc", "")

    page = _to_int(_lookup(query, "page")) or 1
    limit = _to_int(_lookup(query, "limit")) or 1
    sort_by = _lookup(query, "sortBy") or "created"
    direction = _lookup(query, "direction") or "desc"
    search = _lookup(query, "search")

    offset = (page - 1) * limit if limit > 0 and page > 0 else 0
    return PaginationParams(offset, limit, sort_by, direction, search)


def build_search_query(key: str, term: str) -> tuple[str, str]:
    """A LIKE clause for key and the wildcard argument for term."""
    return f"{key} LIKE ?", f"%{term}%"


def build_keysend_body_data(amount: int, receiver_pubkey: str, route_hint: str) -> str:
    """The JSON body for a keysend payment, with a route hint when given."""
    if route_hint:
        return (
            f'{{"amount": {amount}, "destination_key": "{receiver_pubkey}", '
            f'"route_hint": "{route_hint}", "text": "{_MEMO_TEXT}"}}'
        )
    return f'{{"amount": {amount}, "destination_key": "{receiver_pubkey}", "text": "{_MEMO_TEXT}"}}'