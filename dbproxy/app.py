import json
import os
import traceback
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import click
from dotenv import load_dotenv
from flask import Flask, Response, g, jsonify, request
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from flask_smorest import Api
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException

from dbproxy.errors import (
    ApiError,
    ConfigurationError,
    DependencyError,
    RateLimitError,
    ValidationError,
    flatten_messages,
)
from dbproxy.models import CORE_TABLES, metadata
from dbproxy.routes.admin import admin_blp
from dbproxy.routes.health import SERVICE_VERSION, health_blp
from dbproxy.routes.parts import parts_blp
from dbproxy.routes.submissions import SUBMISSION_ENDPOINTS, build_submission_blueprint
from dbproxy.services.admin_auth import AdminAuthenticator
from dbproxy.services.datastore import Datastore
from dbproxy.services.parts import PartsCatalog
from dbproxy.services.rate_limit import FixedWindowRateLimiter
from dbproxy.services.signing import (
    API_KEY_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    CredentialError,
    CredentialVerifier,
    generate_auth_headers,
    redact,
)
from dbproxy.services.submissions import SubmissionService

# Load env vars from `dbproxy/.env` regardless of the process working directory.
load_dotenv(dotenv_path=Path(__file__).with_name(".env"))
# Also allow a repo/root `.env` (or process env) to supply values without overriding.
load_dotenv()

_DEFAULT_ALLOWED_ORIGINS = ("https://partaday.com", "http://localhost:3000")

# API and health responses are JSON that is never framed or cached.
_JSON_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


def _allowed_origins(raw: str | None) -> list[str]:
    if not raw or not raw.strip():
        return list(_DEFAULT_ALLOWED_ORIGINS)
    origins = [o.strip().rstrip("/") for o in raw.split(",") if o.strip()]
    if "*" in origins:
        raise RuntimeError(
            "ALLOWED_ORIGINS cannot include '*' when supports_credentials=True. "
            "Specify explicit origins instead."
        )
    return origins or list(_DEFAULT_ALLOWED_ORIGINS)


def _env_config() -> dict:
    return {
        "DATABASE_URL": os.environ.get("DATABASE_URL"),
        "PROXY_API_KEY": os.environ.get("PROXY_API_KEY"),
        "PROXY_SECRET_KEY": os.environ.get("PROXY_SECRET_KEY"),
        "PROXY_CLIENT_ID": os.environ.get("PROXY_CLIENT_ID", "partaday-vercel"),
        "SIGNATURE_MAX_SKEW_MS": int(os.environ.get("SIGNATURE_MAX_SKEW_MS", "300000")),
        "API_KEY_RATE_LIMIT": int(os.environ.get("API_KEY_RATE_LIMIT", "20")),
        "API_KEY_RATE_LIMIT_WINDOW_SECONDS": int(
            os.environ.get("API_KEY_RATE_LIMIT_WINDOW_SECONDS", "60")
        ),
        "IP_RATE_LIMIT": int(os.environ.get("IP_RATE_LIMIT", "100")),
        "IP_RATE_LIMIT_WINDOW_SECONDS": int(os.environ.get("IP_RATE_LIMIT_WINDOW_SECONDS", "900")),
        "TRUST_PROXY_HEADERS": os.environ.get("TRUST_PROXY_HEADERS", "").strip() == "1",
        "JWT_SECRET": os.environ.get("JWT_SECRET"),
        "ADMIN_TOKEN_TTL_HOURS": float(os.environ.get("ADMIN_TOKEN_TTL_HOURS", "24")),
        "DB_POOL_SIZE": int(os.environ.get("DB_POOL_SIZE", "5")),
        "DB_MAX_OVERFLOW": int(os.environ.get("DB_MAX_OVERFLOW", "15")),
        "DB_POOL_TIMEOUT_SECONDS": int(os.environ.get("CONNECTION_TIMEOUT", "10000")) / 1000,
        "DB_POOL_RECYCLE_SECONDS": int(os.environ.get("DB_POOL_RECYCLE_SECONDS", "1800")),
        "DATABASE_CA_CERT_FILE": os.environ.get("DATABASE_CA_CERT_FILE"),
        "APP_ENV": (
            os.environ.get("APP_ENV") or os.environ.get("NODE_ENV") or "development"
        ).strip().lower(),
        "ALLOWED_ORIGINS": _allowed_origins(os.environ.get("ALLOWED_ORIGINS")),
        "LOG_LEVEL": os.environ.get("LOG_LEVEL", "INFO").strip().upper(),
    }


class ApiJSONProvider(DefaultJSONProvider):
    sort_keys = False

    @staticmethod
    def default(o):
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        if isinstance(o, Decimal):
            return float(o)
        return DefaultJSONProvider.default(o)


def _request_ip_address(trust_proxy_headers: bool) -> str | None:
    # X-Forwarded-For is client-controlled unless a known proxy sets it.
    if trust_proxy_headers:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if isinstance(forwarded_for, str) and forwarded_for.strip():
            first = forwarded_for.split(",", 1)[0].strip()
            if first:
                return first
    remote = request.remote_addr
    return remote.strip() if isinstance(remote, str) and remote.strip() else None


def _error_response(err: ApiError) -> Response:
    resp = jsonify(err.payload())
    resp.status_code = err.code
    if isinstance(err, RateLimitError):
        resp.headers["Retry-After"] = str(err.retry_after)
    return resp


def _validation_errors(messages: object) -> list[dict[str, str]]:
    # webargs nests messages under their location ("json", "query", ...).
    if isinstance(messages, dict):
        flat: list[dict[str, str]] = []
        for inner in messages.values():
            flat.extend(flatten_messages(inner))
        return flat
    return flatten_messages(messages)


def _build_datastore(app: Flask) -> Datastore:
    url = app.config.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set.")
    return Datastore.from_url(
        url,
        pool_size=app.config["DB_POOL_SIZE"],
        max_overflow=app.config["DB_MAX_OVERFLOW"],
        pool_timeout=app.config["DB_POOL_TIMEOUT_SECONDS"],
        pool_recycle=app.config["DB_POOL_RECYCLE_SECONDS"],
        ca_cert_file=app.config.get("DATABASE_CA_CERT_FILE"),
        logger=app.logger,
    )


def _build_verifier(app: Flask) -> CredentialVerifier | None:
    api_key = app.config.get("PROXY_API_KEY")
    secret_key = app.config.get("PROXY_SECRET_KEY")
    if not api_key or not secret_key:
        app.logger.warning("PROXY_API_KEY / PROXY_SECRET_KEY not set; /api routes will refuse requests.")
        return None
    return CredentialVerifier(
        api_key=api_key,
        secret_key=secret_key,
        client_id=app.config["PROXY_CLIENT_ID"],
        max_skew_ms=app.config["SIGNATURE_MAX_SKEW_MS"],
    )


def create_app(config_overrides: dict | None = None, *, datastore: Datastore | None = None) -> Flask:
    app = Flask(__name__)
    app.json = ApiJSONProvider(app)
    app.config.update(_env_config())

    # ── OpenAPI / Flask-Smorest configuration ─────────────────────────────
    app.config.update(
        {
            "API_TITLE": "PartADay Database Proxy",
            "API_VERSION": "v1",
            "OPENAPI_VERSION": "3.0.2",
            "OPENAPI_URL_PREFIX": "/",
            "OPENAPI_SWAGGER_UI_PATH": "/swagger-ui",
            "OPENAPI_SWAGGER_UI_URL": "https://cdn.jsdelivr.net/npm/swagger-ui-dist/",
        }
    )
    if config_overrides:
        app.config.update(config_overrides)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    api = Api(app)

    # ── CORS setup ────────────────────────────────────────────────────────
    cors_options = {"origins": app.config["ALLOWED_ORIGINS"]}
    CORS(
        app,
        resources={r"/api/*": cors_options, r"/health*": cors_options},
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            API_KEY_HEADER,
            SIGNATURE_HEADER,
            TIMESTAMP_HEADER,
        ],
        supports_credentials=True,
    )

    # ── Services ──────────────────────────────────────────────────────────
    if datastore is None:
        datastore = _build_datastore(app)
    app.extensions["datastore"] = datastore
    app.extensions["submissions"] = SubmissionService(datastore, logger=app.logger)
    app.extensions["parts_catalog"] = PartsCatalog(datastore)
    app.extensions["admin_auth"] = AdminAuthenticator(
        datastore,
        jwt_secret=app.config.get("JWT_SECRET"),
        token_ttl_hours=app.config["ADMIN_TOKEN_TTL_HOURS"],
        logger=app.logger,
    )
    credential_verifier = _build_verifier(app)
    ip_limiter = FixedWindowRateLimiter(
        max_requests=app.config["IP_RATE_LIMIT"],
        window_seconds=app.config["IP_RATE_LIMIT_WINDOW_SECONDS"],
    )
    api_key_limiter = FixedWindowRateLimiter(
        max_requests=app.config["API_KEY_RATE_LIMIT"],
        window_seconds=app.config["API_KEY_RATE_LIMIT_WINDOW_SECONDS"],
    )
    app.extensions["ip_rate_limiter"] = ip_limiter
    app.extensions["api_key_rate_limiter"] = api_key_limiter

    api.register_blueprint(health_blp)
    api.register_blueprint(admin_blp)
    for endpoints in SUBMISSION_ENDPOINTS:
        api.register_blueprint(build_submission_blueprint(endpoints))
    api.register_blueprint(parts_blp)

    # ── Request guards ────────────────────────────────────────────────────
    def _enforce_rate_limit(limiter: FixedWindowRateLimiter, key: str, message: str) -> None:
        decision = limiter.hit(key)
        if not decision.allowed:
            raise RateLimitError(decision.retry_after, message)

    def _verify_credentials() -> str:
        if credential_verifier is None:
            raise ConfigurationError(
                "API authentication is not configured.", error="auth_not_configured"
            )
        api_key = request.headers.get(API_KEY_HEADER)
        try:
            return credential_verifier.verify(
                api_key=api_key,
                timestamp=request.headers.get(TIMESTAMP_HEADER),
                signature=request.headers.get(SIGNATURE_HEADER),
                body=request.get_json(silent=True),
            )
        except CredentialError as err:
            app.logger.warning(
                "Rejected API request (%s): key=%s ip=%s %s %s",
                err.kind,
                redact(api_key),
                g.client_ip or "unknown",
                request.method,
                request.path,
            )
            raise

    @app.before_request
    def _access_guard():
        if request.method == "OPTIONS":
            return None
        g.client_ip = _request_ip_address(app.config["TRUST_PROXY_HEADERS"])
        _enforce_rate_limit(
            ip_limiter,
            f"ip:{g.client_ip or 'unknown'}",
            "Too many requests from this IP, please try again later.",
        )

        path = request.path
        if not path.startswith("/api/"):
            return None
        if not path.startswith("/api/admin/"):
            g.client_id = _verify_credentials()

        api_key = request.headers.get(API_KEY_HEADER)
        if api_key:
            _enforce_rate_limit(
                api_key_limiter,
                f"api_key:{api_key}",
                "Too many requests for this API key, please try again later.",
            )
        return None

    @app.after_request
    def _set_security_headers(response: Response):
        if request.path.startswith(("/api/", "/health")):
            for name, value in _JSON_SECURITY_HEADERS.items():
                response.headers.setdefault(name, value)
        else:
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
            response.headers.setdefault("X-Frame-Options", "DENY")
        if app.config["APP_ENV"] == "production":
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=15552000; includeSubDomains"
            )
        return response

    # ── JSON error responses ──────────────────────────────────────────────
    # Registered after Api(app) so these replace flask-smorest's handler.

    @app.errorhandler(HTTPException)
    def _handle_http_exception(err: HTTPException):
        if isinstance(err, ApiError):
            return _error_response(err)
        data = getattr(err, "data", None)
        if isinstance(data, dict) and "messages" in data:
            return _error_response(ValidationError(_validation_errors(data["messages"])))
        if err.code == 404:
            return (
                jsonify(
                    {
                        "success": False,
                        "error": "not_found",
                        "message": "Route not found",
                        "path": request.path,
                        "method": request.method,
                    }
                ),
                404,
            )
        resp = jsonify(
            {
                "success": False,
                "error": (err.name or "error").lower().replace(" ", "_"),
                "message": err.description,
            }
        )
        resp.status_code = err.code or 500
        return resp

    @app.errorhandler(OperationalError)
    def _handle_operational_error(err: OperationalError):
        app.logger.error("Database operation failed: %s", err.orig if err.orig is not None else err)
        return _error_response(DependencyError())

    @app.errorhandler(Exception)
    def _handle_unexpected_exception(err: Exception):
        app.logger.exception("Unhandled exception on %s %s", request.method, request.path)
        body: dict[str, object] = {
            "success": False,
            "error": "internal_error",
            "message": "Unexpected server error.",
        }
        if app.config["APP_ENV"] != "production":
            body["detail"] = str(err)
            body["stack"] = traceback.format_exception(type(err), err, err.__traceback__)
            body["request"] = {
                "method": request.method,
                "path": request.path,
                "body": request.get_json(silent=True),
            }
        return jsonify(body), 500

    @app.get("/")
    def service_index():
        return {
            "name": "PartADay Database Proxy",
            "version": SERVICE_VERSION,
            "status": "operational",
            "endpoints": {
                "health": "/health",
                "admin": "/api/admin",
                "quotes": "/api/quotes",
                "suggestions": "/api/suggestions",
                "contactSupport": "/api/contact-support",
                "parts": "/api/parts",
                "docs": "/swagger-ui",
            },
        }

    _register_commands(app, api)
    return app


def create_test_app(config_overrides: dict | None = None, *, datastore: Datastore | None = None) -> Flask:
    overrides = {"TESTING": True}
    if config_overrides:
        overrides.update(config_overrides)
    return create_app(overrides, datastore=datastore)


def _register_commands(app: Flask, api: Api) -> None:
    # ── CLI command for core table initialization ────────────────────────
    @app.cli.command("init-db")
    def init_db():
        """Create the proxy tables in the configured database."""
        engine = app.extensions["datastore"].engine
        metadata.create_all(engine)
        existing = set(inspect(engine).get_table_names())
        missing = sorted(set(CORE_TABLES) - existing)
        if missing:
            raise click.ClickException(
                f"Database initialization failed (missing tables: {', '.join(missing)})."
            )
        click.echo("Database initialized.")

    @app.cli.command("create-admin")
    @click.argument("email")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--role", type=click.Choice(["admin", "super_admin"]), default="admin")
    def create_admin(email, password, role):
        """Create an admin account that can log in to /api/admin."""
        try:
            row = app.extensions["admin_auth"].create_admin(email, password, role=role)
        except ValueError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"Created admin {row['email']} (id {row['id']}).")

    @app.cli.command("sign-request")
    @click.option("--body", default="{}", help="JSON request body to sign.")
    def sign_request(body):
        """Print signed authentication headers for a request body."""
        api_key = app.config.get("PROXY_API_KEY")
        secret_key = app.config.get("PROXY_SECRET_KEY")
        if not api_key or not secret_key:
            raise click.ClickException("PROXY_API_KEY and PROXY_SECRET_KEY must be set.")
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError as exc:
            raise click.ClickException(f"--body is not valid JSON: {exc}") from exc
        click.echo(json.dumps(generate_auth_headers(parsed, api_key, secret_key), indent=2))

    # ── CLI command for OpenAPI spec generation ──────────────────────────
    @app.cli.command("gen-openapi")
    def gen_openapi():
        """Generate an OpenAPI3 YAML spec for the proxy API."""
        with app.test_request_context():
            yaml_spec = api.spec.to_yaml()
            Path("openapi.yaml").write_text(yaml_spec)
            click.echo("Wrote openapi.yaml")
