from dbproxy.models.tables import (
    CORE_TABLES,
    admin_users_table,
    contact_support_requests_table,
    metadata,
    part_suggestions_table,
    parts_table,
    quote_requests_table,
    users_table,
)

__all__ = [
    "CORE_TABLES",
    "admin_users_table",
    "contact_support_requests_table",
    "metadata",
    "part_suggestions_table",
    "parts_table",
    "quote_requests_table",
    "users_table",
]
