from __future__ import annotations

from werkzeug.exceptions import HTTPException


class ApiError(HTTPException):
    """HTTP error with a stable, machine-readable ``error`` kind."""

    code = 500
    error = "internal_error"
    description = "Unexpected server error."

    def __init__(self, description: str | None = None, *, error: str | None = None, **extra):
        super().__init__(description=description)
        if error is not None:
            self.error = error
        self.extra = extra

    def payload(self) -> dict[str, object]:
        body: dict[str, object] = {
            "success": False,
            "error": self.error,
            "message": self.description,
        }
        body.update(self.extra)
        return body


class ValidationError(ApiError):
    code = 400
    error = "validation_error"
    description = "Validation error"

    def __init__(self, errors: list[dict[str, str]], description: str | None = None):
        super().__init__(description, errors=errors)


class AuthenticationError(ApiError):
    code = 401
    error = "unauthorized"
    description = "Authentication failed."


class RateLimitError(ApiError):
    code = 429
    error = "rate_limited"
    description = "Too many requests. Please retry shortly."

    def __init__(self, retry_after: int, description: str | None = None):
        super().__init__(description, retryAfter=retry_after)
        self.retry_after = retry_after


class NotFoundError(ApiError):
    code = 404
    error = "not_found"
    description = "Resource not found."


class TransactionError(ApiError):
    code = 500
    error = "transaction_failed"
    description = "The request could not be saved."


class DependencyError(ApiError):
    code = 500
    error = "database_unavailable"
    description = "Database is unavailable right now."


class ConfigurationError(ApiError):
    code = 500
    error = "not_configured"
    description = "Service is not configured."


def flatten_messages(messages: object, prefix: str = "") -> list[dict[str, str]]:
    """Turn marshmallow's nested message dicts into ``[{field, message}]``."""
    flat: list[dict[str, str]] = []
    if isinstance(messages, dict):
        for key, value in messages.items():
            if isinstance(key, int):
                field = f"{prefix}[{key}]" if prefix else str(key)
            else:
                field = f"{prefix}.{key}" if prefix else str(key)
            flat.extend(flatten_messages(value, field))
    elif isinstance(messages, (list, tuple)):
        for item in messages:
            if isinstance(item, (dict, list, tuple)):
                flat.extend(flatten_messages(item, prefix))
            else:
                flat.append({"field": prefix, "message": str(item)})
    elif messages is not None:
        flat.append({"field": prefix, "message": str(messages)})
    return flat
