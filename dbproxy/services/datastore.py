from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from typing import Iterator, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError

from dbproxy.errors import DependencyError

_PLACEHOLDER_RE = re.compile(r"\$(\d+)\b")


def normalize_database_url(url: str) -> str:
    normalized = url.strip()
    if normalized.startswith("postgres://"):
        normalized = f"postgresql://{normalized[len('postgres://'):]}"
    if normalized.startswith("postgresql://") and "connect_timeout=" not in normalized:
        joiner = "&" if "?" in normalized else "?"
        normalized = f"{normalized}{joiner}connect_timeout=5"
    return normalized


def bind_positional(sql: str, params: Sequence[object] = ()) -> tuple[str, dict[str, object]]:
    """Rewrite ``$n`` placeholders into ``:pn`` binds for ``sqlalchemy.text``."""
    used: set[int] = set()

    def _replace(match: re.Match) -> str:
        index = int(match.group(1))
        if index < 1 or index > len(params):
            raise ValueError(
                f"Placeholder ${index} has no parameter ({len(params)} supplied)."
            )
        used.add(index)
        return f":p{index}"

    rendered = _PLACEHOLDER_RE.sub(_replace, sql)
    return rendered, {f"p{index}": params[index - 1] for index in used}


def _preview(sql: str) -> str:
    flat = " ".join(sql.split())
    return flat if len(flat) <= 100 else f"{flat[:100]}..."


class _Executor:
    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _run(self, conn: Connection, sql: str, params: Sequence[object]):
        rendered, binds = bind_positional(sql, params)
        started = time.perf_counter()
        try:
            result = conn.execute(text(rendered), binds)
        except DBAPIError as exc:
            self._logger.error(
                "Query failed after %dms: %s",
                int((time.perf_counter() - started) * 1000),
                exc.orig if exc.orig is not None else exc,
            )
            raise
        self._logger.debug(
            "Query executed in %dms, %s rows: %s",
            int((time.perf_counter() - started) * 1000),
            result.rowcount,
            _preview(sql),
        )
        return result


class Transaction(_Executor):
    """Statements issued through one pooled connection inside ``BEGIN``."""

    def __init__(self, conn: Connection, logger: logging.Logger) -> None:
        super().__init__(logger)
        self._conn = conn

    def fetch_all(self, sql: str, params: Sequence[object] = ()) -> list[dict]:
        return [dict(row) for row in self._run(self._conn, sql, params).mappings()]

    def fetch_one(self, sql: str, params: Sequence[object] = ()) -> dict | None:
        row = self._run(self._conn, sql, params).mappings().first()
        return dict(row) if row is not None else None

    def execute(self, sql: str, params: Sequence[object] = ()) -> int:
        return self._run(self._conn, sql, params).rowcount


class Datastore(_Executor):
    """Explicit handle on the pooled database engine.

    Built once per application and passed to whatever needs it; nothing in the
    package reaches for a module-level connection.
    """

    def __init__(self, engine: Engine, *, logger: logging.Logger | None = None) -> None:
        super().__init__(logger or logging.getLogger(__name__))
        self.engine = engine

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 15,
        pool_timeout: float = 10.0,
        pool_recycle: int = 1800,
        ca_cert_file: str | None = None,
        logger: logging.Logger | None = None,
    ) -> "Datastore":
        url = normalize_database_url(url)
        engine_kwargs: dict[str, object] = {"pool_pre_ping": True}
        if make_url(url).get_backend_name() == "postgresql":
            engine_kwargs.update(
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
            )
            if ca_cert_file:
                engine_kwargs["connect_args"] = {"sslrootcert": ca_cert_file}
        return cls(create_engine(url, **engine_kwargs), logger=logger)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        try:
            conn = self.engine.connect()
        except PoolTimeoutError as exc:
            raise DependencyError("Timed out waiting for a database connection.") from exc
        except OperationalError as exc:
            raise DependencyError() from exc
        with conn:
            yield conn

    def fetch_all(self, sql: str, params: Sequence[object] = ()) -> list[dict]:
        with self._connect() as conn:
            return [dict(row) for row in self._run(conn, sql, params).mappings()]

    def fetch_one(self, sql: str, params: Sequence[object] = ()) -> dict | None:
        with self._connect() as conn:
            row = self._run(conn, sql, params).mappings().first()
            return dict(row) if row is not None else None

    def execute(self, sql: str, params: Sequence[object] = ()) -> int:
        with self._connect() as conn:
            result = self._run(conn, sql, params)
            conn.commit()
            return result.rowcount

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Commit when the block exits cleanly, roll back on any exception."""
        with self._connect() as conn:
            with conn.begin():
                yield Transaction(conn, self._logger)

    def pool_stats(self) -> dict[str, int]:
        pool = self.engine.pool
        stats: dict[str, int] = {}
        for key, attr in (("size", "size"), ("checkedOut", "checkedout"), ("overflow", "overflow")):
            getter = getattr(pool, attr, None)
            if callable(getter):
                stats[key] = int(getter())
        return stats

    def health_check(self) -> dict[str, object]:
        started = time.perf_counter()
        try:
            self.fetch_one("SELECT 1 AS health_check")
            status = "healthy"
        except Exception as exc:  # noqa: BLE001 - reported, not raised
            self._logger.error("Database health check failed: %s", exc)
            status = "unhealthy"
        return {
            "status": status,
            "latency": int((time.perf_counter() - started) * 1000),
            "poolStats": self.pool_stats(),
        }

    def dispose(self) -> None:
        self.engine.dispose()
