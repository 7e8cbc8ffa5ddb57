from __future__ import annotations

import os
import platform
import resource
import sys
import time
from datetime import datetime, timezone

from flask import current_app
from flask.views import MethodView

from dbproxy.routes.base import Blueprint, datastore

SERVICE_VERSION = "1.0.0"
_MEMORY_WARNING_MB = 500
_REQUIRED_SETTINGS = ("DATABASE_URL", "PROXY_API_KEY", "PROXY_SECRET_KEY")
_STARTED_AT = time.monotonic()

health_blp = Blueprint(
    "health",
    "health",
    url_prefix="/health",
    description="Liveness, readiness and dependency checks",
)


def _uptime() -> float:
    return round(time.monotonic() - _STARTED_AT, 3)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _memory_mb() -> int:
    # ru_maxrss is KiB on Linux and bytes on macOS.
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    if sys.platform == "darwin":
        return round(peak / 1024 / 1024)
    return round(peak / 1024)


def _database_health() -> dict:
    try:
        return datastore().health_check()
    except Exception as exc:  # noqa: BLE001 - health reports, never raises
        current_app.logger.exception("Health check failed: %s", exc)
        return {"status": "unhealthy", "error": "Database connection failed"}


@health_blp.route("")
class HealthResource(MethodView):
    def get(self):
        started = time.perf_counter()
        db_health = _database_health()
        healthy = db_health["status"] == "healthy"
        database = {"status": db_health["status"]}
        if "latency" in db_health:
            database["latency"] = db_health["latency"]
            database["connections"] = db_health.get("poolStats", {})
        else:
            database["error"] = db_health.get("error")
        body = {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": _timestamp(),
            "uptime": _uptime(),
            "memory": {"used": _memory_mb()},
            "database": database,
            "environment": current_app.config["APP_ENV"],
            "version": SERVICE_VERSION,
            "responseTime": int((time.perf_counter() - started) * 1000),
        }
        return body, 200 if healthy else 503


@health_blp.route("/detailed")
class DetailedHealthResource(MethodView):
    def get(self):
        started = time.perf_counter()
        used_mb = _memory_mb()
        missing = [key for key in _REQUIRED_SETTINGS if not current_app.config.get(key)]
        checks = {
            "database": _database_health(),
            "memory": {
                "status": "healthy" if used_mb < _MEMORY_WARNING_MB else "warning",
                "used": used_mb,
            },
            "environment": {
                "status": "healthy" if not missing else "unhealthy",
                "missing": missing,
                "pythonVersion": platform.python_version(),
                "platform": sys.platform,
                "pid": os.getpid(),
            },
        }
        all_healthy = all(check["status"] == "healthy" for check in checks.values())
        body = {
            "status": "healthy" if all_healthy else "unhealthy",
            "timestamp": _timestamp(),
            "uptime": _uptime(),
            "checks": checks,
            "version": SERVICE_VERSION,
            "responseTime": int((time.perf_counter() - started) * 1000),
        }
        return body, 200 if all_healthy else 503


@health_blp.route("/ready")
class ReadinessResource(MethodView):
    def get(self):
        if _database_health()["status"] != "healthy":
            return {"status": "not ready"}, 503
        return {"status": "ready"}, 200


@health_blp.route("/live")
class LivenessResource(MethodView):
    def get(self):
        return {"status": "alive", "timestamp": _timestamp(), "uptime": _uptime()}, 200
