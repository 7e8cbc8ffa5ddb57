"""Quote, suggestion and contact-support submissions.

A submission upserts the submitter's ``users`` row by email and inserts the
child record in the same transaction, so a failed insert never leaves a new
user behind.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping

from sqlalchemy.exc import DBAPIError, IntegrityError

from dbproxy.errors import NotFoundError, TransactionError
from dbproxy.services.datastore import Datastore
from dbproxy.services.query_builder import (
    EQUALS,
    SINCE,
    UNTIL,
    FilterField,
    Placeholders,
    QueryFilterBuilder,
    build_assignments,
    pagination_metadata,
)

MAX_REFERENCE_ATTEMPTS = 3

_USER_COLUMNS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "company": "company",
    "phone": "phone",
}


@dataclass(frozen=True)
class SubmissionKind:
    name: str
    label: str
    prefix: str
    table: str
    alias: str
    statuses: tuple[str, ...]
    # payload key -> column, in insert order
    record_fields: tuple[tuple[str, str], ...]
    # user columns this kind carries besides the names
    user_fields: tuple[str, ...]
    list_columns: tuple[str, ...]
    detail_columns: tuple[str, ...]
    update_fields: tuple[tuple[str, str], ...]
    filters: QueryFilterBuilder
    resolved_status: str | None = None

    @property
    def initial_status(self) -> str:
        return self.statuses[0]

    @property
    def from_clause(self) -> str:
        return f"{self.table} {self.alias} JOIN users u ON {self.alias}.user_id = u.id"

    def select_list(self, columns: tuple[str, ...]) -> str:
        qualified = [f"{self.alias}.{column}" for column in columns]
        qualified.extend(("u.email", "u.first_name", "u.last_name", "u.company", "u.phone"))
        return ", ".join(qualified)


def _date_filters(alias: str) -> tuple[FilterField, FilterField]:
    return (
        FilterField("startDate", f"{alias}.created_at", SINCE),
        FilterField("endDate", f"{alias}.created_at", UNTIL),
    )


QUOTE = SubmissionKind(
    name="quote",
    label="Quote request",
    prefix="QR",
    table="quote_requests",
    alias="qr",
    statuses=("submitted", "reviewing", "quoted", "accepted", "rejected", "expired"),
    record_fields=(
        ("partType", "part_type"),
        ("partNumber", "part_number"),
        ("manufacturer", "manufacturer"),
        ("quantity", "quantity"),
        ("description", "description"),
        ("urgency", "urgency"),
        ("budget", "budget_range"),
        ("additionalNotes", "additional_notes"),
        ("emailUpdates", "email_updates"),
        ("newsletter", "newsletter"),
        ("source", "source"),
        ("userAgent", "user_agent"),
        ("ipAddress", "ip_address"),
    ),
    user_fields=("company", "phone"),
    list_columns=(
        "id", "reference_id", "part_type", "part_number", "manufacturer", "quantity",
        "description", "urgency", "budget_range", "additional_notes", "email_updates",
        "newsletter", "status", "quoted_price", "quote_valid_until", "admin_notes",
        "source", "created_at", "updated_at",
    ),
    detail_columns=(
        "id", "reference_id", "part_type", "part_number", "manufacturer", "quantity",
        "description", "urgency", "budget_range", "additional_notes", "email_updates",
        "newsletter", "status", "quoted_price", "quote_valid_until", "admin_notes",
        "source", "user_agent", "ip_address", "created_at", "updated_at",
    ),
    update_fields=(
        ("quotedPrice", "quoted_price"),
        ("quoteValidUntil", "quote_valid_until"),
        ("adminNotes", "admin_notes"),
    ),
    filters=QueryFilterBuilder(
        fields=(
            FilterField("status", "qr.status", EQUALS),
            FilterField("urgency", "qr.urgency", EQUALS),
            *_date_filters("qr"),
        ),
        default_order=("qr.created_at DESC",),
    ),
)

SUGGESTION = SubmissionKind(
    name="suggestion",
    label="Part suggestion",
    prefix="PS",
    table="part_suggestions",
    alias="ps",
    statuses=("submitted", "reviewing", "approved", "rejected", "implemented"),
    record_fields=(
        ("partName", "part_name"),
        ("partNumber", "part_number"),
        ("manufacturer", "manufacturer"),
        ("category", "category"),
        ("description", "description"),
        ("whyImportant", "why_important"),
        ("availabilityInfo", "availability_info"),
        ("additionalNotes", "additional_notes"),
        ("source", "source"),
        ("userAgent", "user_agent"),
        ("ipAddress", "ip_address"),
    ),
    user_fields=("company",),
    list_columns=(
        "id", "reference_id", "part_name", "part_number", "manufacturer", "category",
        "description", "why_important", "availability_info", "additional_notes",
        "status", "admin_notes", "source", "created_at", "updated_at",
    ),
    detail_columns=(
        "id", "reference_id", "part_name", "part_number", "manufacturer", "category",
        "description", "why_important", "availability_info", "additional_notes",
        "status", "admin_notes", "source", "user_agent", "ip_address",
        "created_at", "updated_at",
    ),
    update_fields=(("adminNotes", "admin_notes"),),
    filters=QueryFilterBuilder(
        fields=(
            FilterField("status", "ps.status", EQUALS),
            FilterField("category", "ps.category", EQUALS),
            *_date_filters("ps"),
        ),
        default_order=("ps.created_at DESC",),
    ),
)

CONTACT = SubmissionKind(
    name="contact",
    label="Support request",
    prefix="CS",
    table="contact_support_requests",
    alias="cs",
    statuses=("open", "in_progress", "resolved", "closed"),
    record_fields=(
        ("subject", "subject"),
        ("message", "message"),
        ("category", "category"),
        ("priority", "priority"),
        ("partId", "part_id"),
        ("partName", "part_name"),
        ("source", "source"),
        ("userAgent", "user_agent"),
        ("ipAddress", "ip_address"),
    ),
    user_fields=("company", "phone"),
    list_columns=(
        "id", "reference_id", "subject", "message", "category", "priority", "status",
        "assigned_to", "response_message", "resolved_at", "part_id", "part_name",
        "source", "created_at", "updated_at",
    ),
    detail_columns=(
        "id", "reference_id", "subject", "message", "category", "priority", "status",
        "assigned_to", "response_message", "resolved_at", "part_id", "part_name",
        "source", "user_agent", "ip_address", "created_at", "updated_at",
    ),
    update_fields=(
        ("assignedTo", "assigned_to"),
        ("responseMessage", "response_message"),
    ),
    filters=QueryFilterBuilder(
        fields=(
            FilterField("status", "cs.status", EQUALS),
            FilterField("priority", "cs.priority", EQUALS),
            FilterField("category", "cs.category", EQUALS),
            FilterField("assignedTo", "cs.assigned_to", EQUALS),
            *_date_filters("cs"),
        ),
        default_order=("cs.created_at DESC",),
    ),
    resolved_status="resolved",
)

KINDS = {kind.name: kind for kind in (QUOTE, SUGGESTION, CONTACT)}


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_reference_id(prefix: str, now_ms: int) -> str:
    return f"{prefix}-{now_ms}"


def _is_reference_collision(exc: IntegrityError) -> bool:
    return "reference_id" in str(exc.orig if exc.orig is not None else exc)


def _upsert_user_statement(kind: SubmissionKind, payload: Mapping[str, object]) -> tuple[str, list]:
    keys = ["firstName", "lastName", *kind.user_fields]
    columns = [_USER_COLUMNS[key] for key in keys]
    placeholders = Placeholders()
    values = [placeholders.bind(payload.get("email"))]
    values.extend(placeholders.bind(payload.get(key)) for key in keys)
    updates = ", ".join(f"{column} = EXCLUDED.{column}" for column in columns)
    sql = (
        f"INSERT INTO users (email, {', '.join(columns)}) "
        f"VALUES ({', '.join(values)}) "
        f"ON CONFLICT (email) DO UPDATE SET {updates}, updated_at = CURRENT_TIMESTAMP "
        "RETURNING id"
    )
    return sql, placeholders.params


def _insert_record_statement(
    kind: SubmissionKind, payload: Mapping[str, object], *, user_id: int, reference_id: str
) -> tuple[str, list]:
    placeholders = Placeholders()
    columns = ["user_id", "reference_id", "status"]
    values = [
        placeholders.bind(user_id),
        placeholders.bind(reference_id),
        placeholders.bind(kind.initial_status),
    ]
    for key, column in kind.record_fields:
        columns.append(column)
        values.append(placeholders.bind(payload.get(key)))
    sql = (
        f"INSERT INTO {kind.table} ({', '.join(columns)}) "
        f"VALUES ({', '.join(values)}) "
        "RETURNING id, reference_id, status, created_at"
    )
    return sql, placeholders.params


class SubmissionService:
    def __init__(
        self,
        datastore: Datastore,
        *,
        logger: logging.Logger | None = None,
        clock: Callable[[], int] = _now_ms,
        max_attempts: int = MAX_REFERENCE_ATTEMPTS,
    ) -> None:
        self.datastore = datastore
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._max_attempts = max_attempts

    def submit(self, kind: SubmissionKind, payload: Mapping[str, object]) -> dict:
        """Upsert the submitter and insert the record; returns the inserted row.

        A reference id collision rolls the whole attempt back and retries with
        a later millisecond, up to ``max_attempts`` times.
        """
        last_ms: int | None = None
        for attempt in range(1, self._max_attempts + 1):
            now_ms = self._clock()
            if last_ms is not None and now_ms <= last_ms:
                now_ms = last_ms + 1
            last_ms = now_ms
            reference_id = generate_reference_id(kind.prefix, now_ms)
            try:
                with self.datastore.transaction() as tx:
                    sql, params = _upsert_user_statement(kind, payload)
                    user = tx.fetch_one(sql, params)
                    sql, params = _insert_record_statement(
                        kind, payload, user_id=user["id"], reference_id=reference_id
                    )
                    record = tx.fetch_one(sql, params)
            except IntegrityError as exc:
                if _is_reference_collision(exc):
                    self._logger.warning(
                        "%s reference %s already taken (attempt %d/%d).",
                        kind.label,
                        reference_id,
                        attempt,
                        self._max_attempts,
                    )
                    continue
                raise TransactionError(f"Failed to create {kind.label.lower()}.") from exc
            except DBAPIError as exc:
                raise TransactionError(f"Failed to create {kind.label.lower()}.") from exc

            self._logger.info("%s %s created.", kind.label, record["reference_id"])
            return record

        raise TransactionError(
            f"Failed to create {kind.label.lower()}: no free reference id."
        )

    def list_records(
        self,
        kind: SubmissionKind,
        filters: Mapping[str, object],
        *,
        page: object = 1,
        limit: object = None,
    ) -> tuple[list[dict], dict[str, int]]:
        query = kind.filters.build(filters, page=page, limit=limit)
        count_sql, count_params = query.count_statement(kind.from_clause)
        count_row = self.datastore.fetch_one(count_sql, count_params)
        total = int(count_row["total"]) if count_row else 0
        page_sql, page_params = query.page_statement(
            kind.select_list(kind.list_columns), kind.from_clause
        )
        rows = self.datastore.fetch_all(page_sql, page_params)
        return rows, pagination_metadata(total=total, page=query.page, limit=query.limit)

    def get_by_reference(self, kind: SubmissionKind, reference_id: str) -> dict:
        sql = (
            f"SELECT {kind.select_list(kind.detail_columns)} FROM {kind.from_clause} "
            f"WHERE {kind.alias}.reference_id = $1"
        )
        row = self.datastore.fetch_one(sql, (reference_id,))
        if row is None:
            raise NotFoundError(f"{kind.label} not found")
        return row

    def update_status(
        self, kind: SubmissionKind, reference_id: str, changes: Mapping[str, object]
    ) -> dict:
        placeholders = Placeholders()
        assignments = [("status", changes.get("status"))]
        assignments.extend((column, changes.get(key)) for key, column in kind.update_fields)
        set_clause = build_assignments(assignments, placeholders)
        set_clause = f"{set_clause}, updated_at = CURRENT_TIMESTAMP"
        if kind.resolved_status is not None and changes.get("status") == kind.resolved_status:
            set_clause = f"{set_clause}, resolved_at = CURRENT_TIMESTAMP"
        sql = (
            f"UPDATE {kind.table} SET {set_clause} "
            f"WHERE reference_id = {placeholders.bind(reference_id)} "
            "RETURNING id, reference_id, status, updated_at"
        )
        with self.datastore.transaction() as tx:
            row = tx.fetch_one(sql, placeholders.params)
        if row is None:
            raise NotFoundError(f"{kind.label} not found")
        self._logger.info(
            "%s %s moved to %s.", kind.label, reference_id, row["status"]
        )
        return row
