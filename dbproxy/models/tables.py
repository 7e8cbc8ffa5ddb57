from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    text,
)

metadata = MetaData()

_NOW = text("CURRENT_TIMESTAMP")


def _timestamps() -> tuple[Column, Column]:
    return (
        Column("created_at", DateTime(timezone=True), nullable=False, server_default=_NOW),
        Column("updated_at", DateTime(timezone=True), nullable=False, server_default=_NOW),
    )


def _request_metadata() -> tuple[Column, Column, Column]:
    return (
        Column("source", String(50), nullable=True),
        Column("user_agent", Text, nullable=True),
        Column("ip_address", String(45), nullable=True),
    )


users_table = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("first_name", String(100), nullable=True),
    Column("last_name", String(100), nullable=True),
    Column("company", String(255), nullable=True),
    Column("phone", String(50), nullable=True),
    *_timestamps(),
)

quote_requests_table = Table(
    "quote_requests",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("reference_id", String(50), unique=True, nullable=False),
    Column("part_type", String(100), nullable=True),
    Column("part_number", String(100), nullable=True),
    Column("manufacturer", String(255), nullable=True),
    Column("quantity", Integer, nullable=False),
    Column("description", Text, nullable=True),
    Column("urgency", String(50), nullable=True),
    Column("budget_range", String(100), nullable=True),
    Column("additional_notes", Text, nullable=True),
    Column("status", String(50), nullable=False, server_default="submitted"),
    Column("quoted_price", Numeric(10, 2), nullable=True),
    Column("quote_valid_until", Date, nullable=True),
    Column("admin_notes", Text, nullable=True),
    Column("email_updates", Boolean, nullable=False, server_default=text("true")),
    Column("newsletter", Boolean, nullable=False, server_default=text("false")),
    *_request_metadata(),
    *_timestamps(),
    Index("idx_quote_requests_status", "status"),
)

part_suggestions_table = Table(
    "part_suggestions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("reference_id", String(50), unique=True, nullable=False),
    Column("part_name", String(255), nullable=False),
    Column("part_number", String(100), nullable=True),
    Column("manufacturer", String(255), nullable=True),
    Column("category", String(100), nullable=True),
    Column("description", Text, nullable=True),
    Column("why_important", Text, nullable=True),
    Column("availability_info", Text, nullable=True),
    Column("additional_notes", Text, nullable=True),
    Column("status", String(50), nullable=False, server_default="submitted"),
    Column("admin_notes", Text, nullable=True),
    *_request_metadata(),
    *_timestamps(),
    Index("idx_part_suggestions_status", "status"),
)

contact_support_requests_table = Table(
    "contact_support_requests",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("reference_id", String(50), unique=True, nullable=False),
    Column("subject", String(255), nullable=False),
    Column("message", Text, nullable=False),
    Column("category", String(50), nullable=False, server_default="general"),
    Column("priority", String(20), nullable=False, server_default="normal"),
    Column("status", String(50), nullable=False, server_default="open"),
    Column("assigned_to", String(100), nullable=True),
    Column("response_message", Text, nullable=True),
    Column("resolved_at", DateTime(timezone=True), nullable=True),
    Column("part_id", String(50), nullable=True),
    Column("part_name", String(255), nullable=True),
    *_request_metadata(),
    *_timestamps(),
    Index("idx_contact_support_status", "status"),
    Index("idx_contact_support_priority", "priority"),
)

admin_users_table = Table(
    "admin_users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("password_hash", String(255), nullable=False),
    Column("role", String(50), nullable=False, server_default="admin"),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    Column("last_login", DateTime(timezone=True), nullable=True),
    *_timestamps(),
)

# specifications is JSONB and image_urls/tags are TEXT[] in the managed
# database; JSON keeps `init-db` usable against SQLite in tests.
parts_table = Table(
    "parts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("sku", String(100), unique=True, nullable=False),
    Column("name", String(255), nullable=False),
    Column("description", Text, nullable=True),
    Column("category", String(100), nullable=True),
    Column("manufacturer", String(255), nullable=True),
    Column("specifications", JSON, nullable=True),
    Column("image_urls", JSON, nullable=True),
    Column("base_price", Numeric(10, 2), nullable=True),
    Column("currency", String(3), nullable=False, server_default="USD"),
    Column("availability_status", String(50), nullable=False, server_default="available"),
    Column("stock_quantity", Integer, nullable=False, server_default="0"),
    Column("featured", Boolean, nullable=False, server_default=text("false")),
    Column("featured_date", Date, nullable=True),
    Column("tags", JSON, nullable=True),
    *_timestamps(),
    Index("idx_parts_category", "category"),
    Index("idx_parts_manufacturer", "manufacturer"),
)

CORE_TABLES = (
    "users",
    "quote_requests",
    "part_suggestions",
    "contact_support_requests",
    "admin_users",
    "parts",
)
