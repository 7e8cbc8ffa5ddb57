from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

import jwt
from jwt.exceptions import InvalidTokenError
from werkzeug.security import check_password_hash, generate_password_hash

from dbproxy.errors import AuthenticationError, ConfigurationError
from dbproxy.services.datastore import Datastore

_JWT_ALGORITHM = "HS256"
_DUMMY_ADMIN_PASSWORD_HASH = generate_password_hash("dbproxy_dummy_admin_password")

INVALID_CREDENTIALS = "invalid_credentials"
ACCOUNT_DISABLED = "account_disabled"
INVALID_TOKEN = "invalid_token"


@dataclass(frozen=True)
class AdminIdentity:
    id: int
    email: str
    role: str


def bearer_token(header_value: str | None) -> str | None:
    if not isinstance(header_value, str) or not header_value.startswith("Bearer "):
        return None
    token = header_value.removeprefix("Bearer ").strip()
    return token or None


class AdminAuthenticator:
    def __init__(
        self,
        datastore: Datastore,
        *,
        jwt_secret: str | None,
        token_ttl_hours: float = 24,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.datastore = datastore
        self._jwt_secret = jwt_secret
        self._token_ttl_seconds = int(token_ttl_hours * 3600)
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock

    def _require_secret(self) -> str:
        if not self._jwt_secret:
            raise ConfigurationError(
                "Admin authentication is not configured.", error="admin_auth_not_configured"
            )
        return self._jwt_secret

    def issue_token(self, admin: AdminIdentity) -> str:
        now = int(self._clock())
        claims = {
            "id": admin.id,
            "email": admin.email,
            "role": admin.role,
            "iat": now,
            "exp": now + self._token_ttl_seconds,
        }
        return jwt.encode(claims, self._require_secret(), algorithm=_JWT_ALGORITHM)

    def decode_token(self, token: str | None) -> dict:
        secret = self._require_secret()
        if not token:
            raise AuthenticationError("No token provided", error=INVALID_TOKEN)
        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[_JWT_ALGORITHM],
                options={"require": ["exp", "iat"]},
            )
        except InvalidTokenError as exc:
            raise AuthenticationError("Invalid token", error=INVALID_TOKEN) from exc
        if not isinstance(claims.get("id"), int) or not isinstance(claims.get("email"), str):
            raise AuthenticationError("Invalid token", error=INVALID_TOKEN)
        return claims

    def login(self, email: str, password: str) -> tuple[str, AdminIdentity]:
        self._require_secret()
        row = self.datastore.fetch_one(
            "SELECT id, email, password_hash, role, is_active FROM admin_users WHERE email = $1",
            (email.strip().lower(),),
        )
        if row is None:
            # Equalize timing with the known-email path.
            check_password_hash(_DUMMY_ADMIN_PASSWORD_HASH, password)
            self._logger.warning("Admin login failed for unknown email.")
            raise AuthenticationError("Invalid credentials", error=INVALID_CREDENTIALS)

        if not row["is_active"]:
            self._logger.warning("Admin login refused for disabled account %s.", row["id"])
            raise AuthenticationError("Account is disabled", error=ACCOUNT_DISABLED)

        if not check_password_hash(row["password_hash"], password):
            self._logger.warning("Admin login failed for account %s.", row["id"])
            raise AuthenticationError("Invalid credentials", error=INVALID_CREDENTIALS)

        self.datastore.execute(
            "UPDATE admin_users SET last_login = CURRENT_TIMESTAMP WHERE id = $1",
            (row["id"],),
        )
        admin = AdminIdentity(id=row["id"], email=row["email"], role=row["role"] or "admin")
        self._logger.info("Admin %s logged in.", admin.id)
        return self.issue_token(admin), admin

    def verify(self, token: str | None) -> AdminIdentity:
        claims = self.decode_token(token)
        row = self.datastore.fetch_one(
            "SELECT id, email, role, is_active FROM admin_users WHERE id = $1",
            (claims["id"],),
        )
        if row is None or not row["is_active"]:
            raise AuthenticationError("Invalid or inactive admin", error=INVALID_TOKEN)
        return AdminIdentity(id=row["id"], email=row["email"], role=row["role"] or "admin")

    def logout(self, token: str | None) -> None:
        if not token or not self._jwt_secret:
            return
        try:
            claims = self.decode_token(token)
        except AuthenticationError:
            self._logger.info("Admin logout with an invalid token.")
            return
        self._logger.info("Admin %s logged out.", claims["id"])

    def create_admin(self, email: str, password: str, *, role: str = "admin") -> dict:
        email = email.strip().lower()
        if len(password) < 8:
            raise ValueError("Password must be at least 8 characters.")
        existing = self.datastore.fetch_one(
            "SELECT id FROM admin_users WHERE email = $1", (email,)
        )
        if existing is not None:
            raise ValueError(f"Admin {email} already exists.")
        with self.datastore.transaction() as tx:
            row = tx.fetch_one(
                "INSERT INTO admin_users (email, password_hash, role, is_active) "
                "VALUES ($1, $2, $3, $4) RETURNING id, email, created_at",
                (email, generate_password_hash(password), role, True),
            )
        self._logger.info("Admin %s created.", row["id"])
        return row
