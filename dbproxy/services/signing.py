from __future__ import annotations

import hashlib
import hmac
import json
import re
import time
from dataclasses import dataclass
from typing import Callable

from dbproxy.errors import AuthenticationError

API_KEY_HEADER = "x-api-key"
TIMESTAMP_HEADER = "x-timestamp"
SIGNATURE_HEADER = "x-signature"

DEFAULT_MAX_SKEW_MS = 300_000
_LONE_SURROGATE = re.compile(r"[\ud800-\udfff]")

MISSING_CREDENTIALS = "missing_credentials"
INVALID_API_KEY = "invalid_api_key"
INVALID_TIMESTAMP = "invalid_timestamp"
STALE_TIMESTAMP = "stale_timestamp"
INVALID_SIGNATURE = "invalid_signature"

_REASONS = {
    MISSING_CREDENTIALS: "Missing authentication headers",
    INVALID_API_KEY: "Invalid API key",
    INVALID_TIMESTAMP: "Request timestamp is not a valid integer",
    STALE_TIMESTAMP: "Request timestamp too old or invalid",
    INVALID_SIGNATURE: "Invalid signature",
}


class CredentialError(AuthenticationError):
    def __init__(self, kind: str, **extra):
        super().__init__(_REASONS[kind], error=kind, **extra)
        self.kind = kind


def _now_ms() -> int:
    return int(time.time() * 1000)


def canonical_body(body: object) -> str:
    """Serialize a parsed JSON body the way ``JSON.stringify`` does.

    Compact separators, insertion-ordered keys, non-ASCII left as-is. Unpaired
    surrogates are written as lowercase ``\\udxxx`` escapes. A missing body is
    signed as ``{}``.
    """
    if body is None:
        body = {}
    rendered = json.dumps(body, separators=(",", ":"), ensure_ascii=False)
    return _LONE_SURROGATE.sub(lambda m: f"\\u{ord(m.group()):04x}", rendered)


def compute_signature(secret_key: str, body: object, timestamp: str) -> str:
    payload = canonical_body(body) + timestamp
    return hmac.new(
        secret_key.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def generate_auth_headers(
    body: object, api_key: str, secret_key: str, *, now_ms: int | None = None
) -> dict[str, str]:
    timestamp = str(now_ms if now_ms is not None else _now_ms())
    return {
        API_KEY_HEADER: api_key,
        SIGNATURE_HEADER: compute_signature(secret_key, body, timestamp),
        TIMESTAMP_HEADER: timestamp,
        "content-type": "application/json",
    }


def redact(value: str | None, keep: int = 8) -> str:
    if not value:
        return ""
    return f"{value[:keep]}..."


@dataclass(frozen=True)
class CredentialVerifier:
    api_key: str
    secret_key: str
    client_id: str = "partaday-vercel"
    max_skew_ms: int = DEFAULT_MAX_SKEW_MS
    clock: Callable[[], int] = _now_ms

    def verify(
        self,
        *,
        api_key: str | None,
        timestamp: str | None,
        signature: str | None,
        body: object,
    ) -> str:
        """Return the client identity label or raise ``CredentialError``."""
        if not api_key or not signature or not timestamp:
            raise CredentialError(
                MISSING_CREDENTIALS,
                required=[API_KEY_HEADER, SIGNATURE_HEADER, TIMESTAMP_HEADER],
            )

        if api_key != self.api_key:
            raise CredentialError(INVALID_API_KEY)

        digits = timestamp.strip()
        if not digits.isascii() or not digits.isdigit():
            raise CredentialError(INVALID_TIMESTAMP)
        request_ms = int(digits)

        if abs(self.clock() - request_ms) > self.max_skew_ms:
            raise CredentialError(STALE_TIMESTAMP)

        expected = compute_signature(self.secret_key, body, timestamp)
        candidate = signature.strip().lower().encode("ascii", "replace")
        if not hmac.compare_digest(candidate, expected.encode("ascii")):
            raise CredentialError(INVALID_SIGNATURE)

        return self.client_id
