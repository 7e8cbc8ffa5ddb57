"""Parameterized WHERE / ORDER BY / LIMIT builder for the listing endpoints.

Every value ends up in a positional parameter list and is referenced from the
SQL text as ``$n``. Numbers are handed out by a single ``Placeholders``
counter, so the clause text and the parameter list stay aligned no matter
which filters a request activates.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

EQUALS = "eq"
MATCH = "match"
MIN = "min"
MAX = "max"
FLAG = "flag"
SINCE = "since"
UNTIL = "until"

_COMPARATORS = {
    EQUALS: "=",
    FLAG: "=",
    MIN: ">=",
    SINCE: ">=",
    MAX: "<=",
    UNTIL: "<=",
}

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
TEXT_SEARCH_CONFIG = "english"


class Placeholders:
    """Hands out ``$1, $2, ...`` and records the bound values in order."""

    def __init__(self) -> None:
        self.params: list[object] = []

    def bind(self, value: object) -> str:
        self.params.append(value)
        return f"${len(self.params)}"

    @property
    def count(self) -> int:
        return len(self.params)


@dataclass(frozen=True)
class FilterField:
    name: str
    column: str
    op: str = EQUALS
    # Sort term placed ahead of the defaults whenever this filter is active.
    sort: str | None = None

    def __post_init__(self) -> None:
        if self.op != MATCH and self.op not in _COMPARATORS:
            raise ValueError(f"Unknown filter operator: {self.op}")


def _is_active(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _tsvector(document: str) -> str:
    return f"to_tsvector('{TEXT_SEARCH_CONFIG}', {document})"


def _tsquery(placeholder: str) -> str:
    return f"plainto_tsquery('{TEXT_SEARCH_CONFIG}', {placeholder})"


def clamp_page(page: object) -> int:
    try:
        value = int(page)
    except (TypeError, ValueError):
        return 1
    return max(1, value)


def clamp_limit(limit: object, *, default: int = DEFAULT_PAGE_SIZE, maximum: int = MAX_PAGE_SIZE) -> int:
    if limit is None:
        return min(default, maximum)
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return min(default, maximum)
    return min(max(1, value), maximum)


def pagination_metadata(*, total: int, page: int, limit: int) -> dict[str, int]:
    total_pages = (total + limit - 1) // limit if limit > 0 else 0
    return {"page": page, "limit": limit, "total": total, "totalPages": total_pages}


@dataclass(frozen=True)
class ListingQuery:
    where: str
    where_params: tuple
    order_by: str
    order_params: tuple
    page: int
    limit: int
    offset: int

    def count_statement(self, from_clause: str) -> tuple[str, tuple]:
        sql = f"SELECT COUNT(*) AS total FROM {from_clause}"
        if self.where:
            sql = f"{sql} {self.where}"
        return sql, self.where_params

    def page_statement(self, select_list: str, from_clause: str) -> tuple[str, tuple]:
        params = self.where_params + self.order_params
        limit_ph = f"${len(params) + 1}"
        offset_ph = f"${len(params) + 2}"
        parts = [f"SELECT {select_list} FROM {from_clause}"]
        if self.where:
            parts.append(self.where)
        parts.append(self.order_by)
        parts.append(f"LIMIT {limit_ph} OFFSET {offset_ph}")
        return " ".join(parts), params + (self.limit, self.offset)


@dataclass(frozen=True)
class QueryFilterBuilder:
    fields: Sequence[FilterField]
    default_order: Sequence[str] = ("created_at DESC",)
    max_limit: int = MAX_PAGE_SIZE
    default_limit: int = DEFAULT_PAGE_SIZE
    rank_by_relevance: bool = True

    def __post_init__(self) -> None:
        names = [f.name for f in self.fields]
        if len(set(names)) != len(names):
            raise ValueError("Filter names must be unique.")

    def build(
        self,
        filters: Mapping[str, object],
        *,
        page: object = 1,
        limit: object = None,
    ) -> ListingQuery:
        placeholders = Placeholders()
        clauses: list[str] = []
        promoted: list[str] = []
        matched: list[tuple[FilterField, object]] = []

        for spec in self.fields:
            value = filters.get(spec.name)
            if not _is_active(value):
                continue
            if spec.op == MATCH:
                clauses.append(f"{_tsvector(spec.column)} @@ {_tsquery(placeholders.bind(value))}")
                matched.append((spec, value))
            else:
                if spec.op == FLAG:
                    value = bool(value)
                clauses.append(f"{spec.column} {_COMPARATORS[spec.op]} {placeholders.bind(value)}")
            if spec.sort:
                promoted.append(spec.sort)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        where_params = tuple(placeholders.params)

        order_terms = list(promoted)
        if self.rank_by_relevance:
            for spec, value in matched:
                rank = f"ts_rank({_tsvector(spec.column)}, {_tsquery(placeholders.bind(value))})"
                order_terms.append(f"{rank} DESC")
        order_terms.extend(self.default_order)
        order_params = tuple(placeholders.params[len(where_params):])

        page_num = clamp_page(page)
        page_size = clamp_limit(limit, default=self.default_limit, maximum=self.max_limit)
        return ListingQuery(
            where=where,
            where_params=where_params,
            order_by=f"ORDER BY {', '.join(order_terms)}",
            order_params=order_params,
            page=page_num,
            limit=page_size,
            offset=(page_num - 1) * page_size,
        )


def build_assignments(
    assignments: Sequence[tuple[str, object]], placeholders: Placeholders
) -> str:
    """Render ``col = $n`` pairs for an UPDATE, skipping ``None`` values."""
    rendered = []
    for column, value in assignments:
        if value is None:
            continue
        rendered.append(f"{column} = {placeholders.bind(value)}")
    return ", ".join(rendered)
