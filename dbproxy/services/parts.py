from __future__ import annotations

from typing import Mapping

from dbproxy.errors import NotFoundError
from dbproxy.services.datastore import Datastore
from dbproxy.services.query_builder import (
    EQUALS,
    FLAG,
    MATCH,
    MAX,
    MIN,
    FilterField,
    QueryFilterBuilder,
    clamp_limit,
    pagination_metadata,
)

FEATURED_DEFAULT_LIMIT = 10

SEARCH_DOCUMENT = (
    "COALESCE(name, '') || ' ' || COALESCE(description, '') || ' ' || "
    "COALESCE(manufacturer, '') || ' ' || COALESCE(category, '')"
)

_PART_COLUMNS = (
    "id, sku, name, description, category, manufacturer, specifications, image_urls, "
    "base_price, currency, availability_status, stock_quantity, featured, featured_date, "
    "tags, created_at, updated_at"
)

_FEATURED_COLUMNS = (
    "id, sku, name, description, category, manufacturer, specifications, image_urls, "
    "base_price, currency, availability_status, featured_date"
)

PARTS_FILTERS = QueryFilterBuilder(
    fields=(
        FilterField("search", SEARCH_DOCUMENT, MATCH),
        FilterField("category", "category", EQUALS),
        FilterField("manufacturer", "manufacturer", EQUALS),
        FilterField("minPrice", "base_price", MIN),
        FilterField("maxPrice", "base_price", MAX),
        FilterField("availability", "availability_status", EQUALS),
        FilterField("featured", "featured", FLAG, sort="featured DESC"),
    ),
)

_FACETS = {
    "categories": "category",
    "manufacturers": "manufacturer",
}


class PartsCatalog:
    def __init__(self, datastore: Datastore) -> None:
        self.datastore = datastore

    def search(
        self, filters: Mapping[str, object], *, page: object = 1, limit: object = None
    ) -> tuple[list[dict], dict[str, int]]:
        query = PARTS_FILTERS.build(filters, page=page, limit=limit)
        count_sql, count_params = query.count_statement("parts")
        count_row = self.datastore.fetch_one(count_sql, count_params)
        total = int(count_row["total"]) if count_row else 0
        page_sql, page_params = query.page_statement(_PART_COLUMNS, "parts")
        rows = self.datastore.fetch_all(page_sql, page_params)
        return rows, pagination_metadata(total=total, page=query.page, limit=query.limit)

    def featured(self, limit: object = None) -> list[dict]:
        size = clamp_limit(limit, default=FEATURED_DEFAULT_LIMIT)
        return self.datastore.fetch_all(
            f"SELECT {_FEATURED_COLUMNS} FROM parts WHERE featured = $1 "
            "ORDER BY featured_date DESC NULLS LAST, created_at DESC LIMIT $2",
            (True, size),
        )

    def get(self, identifier: str) -> dict:
        if identifier.isascii() and identifier.isdigit():
            column, value = "id", int(identifier)
        else:
            column, value = "sku", identifier
        row = self.datastore.fetch_one(
            f"SELECT {_PART_COLUMNS} FROM parts WHERE {column} = $1", (value,)
        )
        if row is None:
            raise NotFoundError("Part not found")
        return row

    def facet_counts(self, facet: str) -> list[dict]:
        column = _FACETS[facet]
        return self.datastore.fetch_all(
            f"SELECT {column}, COUNT(*) AS count FROM parts "
            f"WHERE {column} IS NOT NULL GROUP BY {column} ORDER BY {column}"
        )
