import json
import logging
import os
import tempfile
import time
import unittest
import warnings

from sqlalchemy.exc import OperationalError


def _set_default_env() -> None:
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("LOG_LEVEL", "CRITICAL")
    os.environ.pop("DATABASE_URL", None)


_set_default_env()

from dbproxy.app import create_test_app  # noqa: E402
from dbproxy.models import metadata  # noqa: E402
from dbproxy.services.datastore import Datastore  # noqa: E402
from dbproxy.services.signing import generate_auth_headers  # noqa: E402

_API_KEY = "pk_test_0123456789"
_SECRET = "sk_test_secret"
_QUIET = logging.getLogger("dbproxy.tests.api")
_QUIET.addHandler(logging.NullHandler())
_QUIET.propagate = False

_QUOTE_BODY = {
    "email": "a@b.com",
    "firstName": "A",
    "lastName": "B",
    "partType": "bearing",
    "quantity": 5,
    "urgency": "flexible",
    "emailUpdates": True,
    "newsletter": False,
}


def _signed(body=None, *, age_ms: int = 0) -> dict:
    now_ms = int(time.time() * 1000) - age_ms
    return generate_auth_headers(body, _API_KEY, _SECRET, now_ms=now_ms)


class _ApiTestCase(unittest.TestCase):
    config = {}

    def setUp(self) -> None:
        handle = tempfile.NamedTemporaryFile(prefix="dbproxy_api_", suffix=".sqlite", delete=False)
        handle.close()
        self.db_path = handle.name
        self.datastore = Datastore.from_url(f"sqlite:///{self.db_path}", logger=_QUIET)
        metadata.create_all(self.datastore.engine)
        overrides = {
            "PROXY_API_KEY": _API_KEY,
            "PROXY_SECRET_KEY": _SECRET,
            "JWT_SECRET": "jwt-test-secret",
            "IP_RATE_LIMIT": 1000,
            "DATABASE_URL": None,
        }
        overrides.update(self.config)
        self.app = create_test_app(config_overrides=overrides, datastore=self.datastore)
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        self.datastore.dispose()
        os.unlink(self.db_path)

    def post(self, path, body, headers=None):
        return self.client.post(
            path, data=json.dumps(body), headers=headers or _signed(body)
        )

    def patch(self, path, body):
        return self.client.patch(path, data=json.dumps(body), headers=_signed(body))

    def get(self, path, headers=None):
        return self.client.get(path, headers=headers if headers is not None else _signed())


class QuoteEndpointTests(_ApiTestCase):
    def test_signed_quote_is_created(self):
        res = self.post("/api/quotes", _QUOTE_BODY)
        self.assertEqual(res.status_code, 200, res.get_json())
        body = res.get_json()
        self.assertTrue(body["success"])
        self.assertEqual(body["data"]["status"], "submitted")
        self.assertRegex(body["data"]["id"], r"^QR-\d+$")
        self.assertIn("created_at", body["data"])

    def test_replayed_request_with_old_timestamp_is_stale(self):
        res = self.post("/api/quotes", _QUOTE_BODY, headers=_signed(_QUOTE_BODY, age_ms=600_000))
        self.assertEqual(res.status_code, 401)
        body = res.get_json()
        self.assertFalse(body["success"])
        self.assertEqual(body["error"], "stale_timestamp")

    def test_missing_credentials(self):
        res = self.client.post("/api/quotes", json=_QUOTE_BODY)
        self.assertEqual(res.status_code, 401)
        body = res.get_json()
        self.assertEqual(body["error"], "missing_credentials")
        self.assertEqual(body["required"], ["x-api-key", "x-signature", "x-timestamp"])

    def test_unpaired_surrogate_body_is_rejected_not_crashed(self):
        raw = '{"email":"\\ud800"}'
        headers = _signed()
        headers["x-signature"] = "0" * 64
        res = self.client.post("/api/quotes", data=raw, headers=headers)
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["error"], "invalid_signature")

        # Signed over the same parsed body, the request reaches validation.
        res = self.client.post("/api/quotes", data=raw, headers=_signed(json.loads(raw)))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "validation_error")

    def test_body_tampering_is_rejected(self):
        headers = _signed(_QUOTE_BODY)
        tampered = dict(_QUOTE_BODY, quantity=500)
        res = self.client.post("/api/quotes", data=json.dumps(tampered), headers=headers)
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["error"], "invalid_signature")

    def test_validation_errors_are_field_level(self):
        body = {"email": "not-an-email", "quantity": 0, "urgency": "someday"}
        res = self.post("/api/quotes", body)
        self.assertEqual(res.status_code, 400)
        payload = res.get_json()
        self.assertEqual(payload["error"], "validation_error")
        fields = {item["field"] for item in payload["errors"]}
        self.assertTrue(
            {"email", "firstName", "lastName", "partType", "quantity", "urgency"} <= fields,
            fields,
        )

    def test_invalid_phone_is_rejected(self):
        res = self.post("/api/quotes", dict(_QUOTE_BODY, phone="call me"))
        self.assertEqual(res.status_code, 400)
        self.assertIn("phone", {item["field"] for item in res.get_json()["errors"]})

    def test_unknown_fields_are_ignored(self):
        res = self.post("/api/quotes", dict(_QUOTE_BODY, favouriteColour="blue"))
        self.assertEqual(res.status_code, 200)

    def test_fetch_list_and_update(self):
        created = self.post("/api/quotes", _QUOTE_BODY).get_json()["data"]
        reference_id = created["id"]

        res = self.get(f"/api/quotes/{reference_id}")
        self.assertEqual(res.status_code, 200)
        record = res.get_json()["data"]
        self.assertEqual(record["reference_id"], reference_id)
        self.assertEqual(record["email"], "a@b.com")
        self.assertIs(record["email_updates"], True)

        res = self.get("/api/quotes?status=submitted&limit=500")
        self.assertEqual(res.status_code, 200)
        listing = res.get_json()
        self.assertEqual(listing["pagination"], {"page": 1, "limit": 100, "total": 1, "totalPages": 1})
        self.assertEqual(listing["data"][0]["reference_id"], reference_id)

        res = self.patch(f"/api/quotes/{reference_id}", {"status": "reviewing", "adminNotes": "ok"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["data"]["status"], "reviewing")

    def test_invalid_status_update_is_rejected(self):
        reference_id = self.post("/api/quotes", _QUOTE_BODY).get_json()["data"]["id"]
        res = self.patch(f"/api/quotes/{reference_id}", {"status": "open"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["errors"][0]["field"], "status")

    def test_unknown_reference_is_404(self):
        res = self.get("/api/quotes/QR-1")
        self.assertEqual(res.status_code, 404)
        body = res.get_json()
        self.assertEqual(body["error"], "not_found")
        self.assertFalse(body["success"])

    def test_invalid_list_filter_is_rejected(self):
        res = self.get("/api/quotes?urgency=yesterday")
        self.assertEqual(res.status_code, 400)


class OtherSubmissionEndpointTests(_ApiTestCase):
    def test_contact_support_splits_name_and_defaults(self):
        body = {
            "email": "c@example.com",
            "name": "Casey  Van Dyke",
            "subject": "Order status",
            "message": "Where is my order?",
        }
        res = self.post("/api/contact-support", body)
        self.assertEqual(res.status_code, 200, res.get_json())
        data = res.get_json()["data"]
        self.assertRegex(data["id"], r"^CS-\d+$")
        self.assertEqual(data["status"], "open")

        record = self.get(f"/api/contact-support/{data['id']}").get_json()["data"]
        self.assertEqual(record["first_name"], "Casey")
        self.assertEqual(record["last_name"], "Van Dyke")
        self.assertEqual(record["category"], "general")
        self.assertEqual(record["priority"], "normal")

    def test_blank_names_are_rejected(self):
        body = {"email": "c@example.com", "name": "   ", "subject": "Hi", "message": "Hello"}
        res = self.post("/api/contact-support", body)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(
            [item["field"] for item in res.get_json()["errors"]], ["name"]
        )

        res = self.post("/api/quotes", dict(_QUOTE_BODY, firstName="\t "))
        self.assertEqual(res.status_code, 400)
        self.assertIn("firstName", {item["field"] for item in res.get_json()["errors"]})
        users = self.datastore.fetch_one("SELECT COUNT(*) AS n FROM users")["n"]
        self.assertEqual(users, 0)

    def test_suggestion_round_trip(self):
        body = {"email": "s@example.com", "firstName": "S", "lastName": "T", "partName": "Gear"}
        res = self.post("/api/suggestions", body)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertRegex(res.get_json()["data"]["id"], r"^PS-\d+$")

        listing = self.get("/api/suggestions").get_json()
        self.assertEqual(listing["pagination"]["total"], 1)
        self.assertEqual(listing["data"][0]["part_name"], "Gear")


class RateLimitTests(_ApiTestCase):
    def test_twenty_first_request_within_a_minute_is_limited(self):
        statuses = [self.get("/api/quotes").status_code for _ in range(21)]
        self.assertEqual(statuses[:20], [200] * 20)
        self.assertEqual(statuses[20], 429)

    def test_limited_response_carries_retry_after(self):
        for _ in range(20):
            self.get("/api/quotes")
        res = self.get("/api/quotes")
        self.assertEqual(res.status_code, 429)
        body = res.get_json()
        self.assertEqual(body["error"], "rate_limited")
        self.assertGreater(body["retryAfter"], 0)
        self.assertEqual(res.headers["Retry-After"], str(body["retryAfter"]))


class IpRateLimitTests(_ApiTestCase):
    config = {"IP_RATE_LIMIT": 3}

    def test_ip_limit_applies_to_unauthenticated_routes(self):
        statuses = [self.client.get("/health/live").status_code for _ in range(4)]
        self.assertEqual(statuses, [200, 200, 200, 429])


class _FailingDatastore:
    def _fail(self, sql, params=()):
        raise OperationalError(sql, params, Exception("connection refused"))

    fetch_all = fetch_one = execute = _fail


class PipelineTests(_ApiTestCase):
    def test_database_errors_answer_database_unavailable(self):
        app = create_test_app(
            config_overrides={"PROXY_API_KEY": _API_KEY, "PROXY_SECRET_KEY": _SECRET},
            datastore=_FailingDatastore(),
        )
        res = app.test_client().get("/api/quotes/QR-1", headers=_signed())
        self.assertEqual(res.status_code, 500)
        body = res.get_json()
        self.assertEqual(body["error"], "database_unavailable")
        self.assertFalse(body["success"])
        self.assertNotIn("stack", body)

    def test_unreachable_datastore_answers_database_unavailable(self):
        missing = os.path.join(tempfile.gettempdir(), "dbproxy-no-such-dir", "db.sqlite")
        datastore = Datastore.from_url(f"sqlite:///{missing}", logger=_QUIET)
        app = create_test_app(
            config_overrides={"PROXY_API_KEY": _API_KEY, "PROXY_SECRET_KEY": _SECRET},
            datastore=datastore,
        )
        res = app.test_client().get("/api/parts/7", headers=_signed())
        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.get_json()["error"], "database_unavailable")
        datastore.dispose()

    def test_unconfigured_credentials_fail_closed(self):
        app = create_test_app(
            config_overrides={"PROXY_API_KEY": None, "PROXY_SECRET_KEY": None},
            datastore=self.datastore,
        )
        res = app.test_client().get("/api/quotes", headers=_signed())
        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.get_json()["error"], "auth_not_configured")

    def test_unknown_route_returns_json_404(self):
        res = self.client.get("/nowhere")
        self.assertEqual(res.status_code, 404)
        body = res.get_json()
        self.assertEqual(body["path"], "/nowhere")
        self.assertEqual(body["method"], "GET")

    def test_security_headers(self):
        res = self.client.get("/api/quotes", headers={**_signed(), "Origin": "http://localhost:3000"})
        self.assertEqual(res.headers.get("X-Content-Type-Options"), "nosniff")
        self.assertEqual(res.headers.get("Cache-Control"), "no-store")
        self.assertEqual(res.headers.get("Referrer-Policy"), "no-referrer")
        self.assertIn("frame-ancestors 'none'", res.headers.get("Content-Security-Policy", ""))
        self.assertNotIn("X-Frame-Options", res.headers)
        self.assertNotIn("Strict-Transport-Security", res.headers)
        self.assertIn("Origin", res.headers.get("Vary", ""))

        health = self.client.get("/health/live")
        self.assertEqual(health.headers.get("Cache-Control"), "no-store")

        index = self.client.get("/")
        self.assertEqual(index.headers.get("X-Frame-Options"), "DENY")
        self.assertNotIn("Content-Security-Policy", index.headers)

    def test_openapi_admin_components_are_distinct(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            app = create_test_app(
                config_overrides={"IP_RATE_LIMIT": 1000}, datastore=self.datastore
            )
            res = app.test_client().get("/openapi.json")
        self.assertEqual(res.status_code, 200)
        components = res.get_json()["components"]["schemas"]
        self.assertEqual(set(components["AdminSummary"]["properties"]), {"id", "email"})
        self.assertEqual(set(components["Admin"]["properties"]), {"id", "email", "role"})
        self.assertNotIn("Admin1", components)
        self.assertFalse(
            [w for w in caught if "Multiple schemas" in str(w.message)],
            [str(w.message) for w in caught],
        )

    def test_service_index(self):
        res = self.client.get("/")
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(body["status"], "operational")
        self.assertEqual(body["endpoints"]["contactSupport"], "/api/contact-support")

    def test_health_routes(self):
        res = self.client.get("/health")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["database"]["status"], "healthy")
        self.assertEqual(self.client.get("/health/ready").get_json(), {"status": "ready"})
        self.assertEqual(self.client.get("/health/live").status_code, 200)

    def test_detailed_health_flags_missing_settings(self):
        res = self.client.get("/health/detailed")
        self.assertEqual(res.status_code, 503)
        checks = res.get_json()["checks"]
        self.assertEqual(checks["database"]["status"], "healthy")
        self.assertEqual(checks["environment"]["missing"], ["DATABASE_URL"])

    def test_unexpected_errors_include_detail_outside_production(self):
        @self.app.get("/boom")
        def boom():
            raise RuntimeError("kaboom")

        res = self.client.get("/boom")
        self.assertEqual(res.status_code, 500)
        body = res.get_json()
        self.assertEqual(body["error"], "internal_error")
        self.assertEqual(body["detail"], "kaboom")
        self.assertEqual(body["request"]["path"], "/boom")


class ProductionErrorTests(_ApiTestCase):
    config = {"APP_ENV": "production"}

    def test_unexpected_errors_are_generic_in_production(self):
        @self.app.get("/boom")
        def boom():
            raise RuntimeError("kaboom")

        res = self.client.get("/boom")
        self.assertEqual(res.status_code, 500)
        body = res.get_json()
        self.assertEqual(body["message"], "Unexpected server error.")
        self.assertNotIn("detail", body)
        self.assertNotIn("stack", body)

    def test_production_responses_carry_hsts(self):
        res = self.client.get("/health/live")
        self.assertIn("max-age=", res.headers.get("Strict-Transport-Security", ""))


class AdminEndpointTests(_ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.app.extensions["admin_auth"].create_admin("admin@example.com", "correct-horse")

    def _login(self, password="correct-horse"):
        return self.client.post(
            "/api/admin/login", json={"email": "admin@example.com", "password": password}
        )

    def test_login_and_verify(self):
        res = self._login()
        self.assertEqual(res.status_code, 200, res.get_json())
        data = res.get_json()["data"]
        self.assertEqual(data["admin"]["email"], "admin@example.com")
        self.assertNotIn("role", data["admin"])

        res = self.client.get(
            "/api/admin/verify", headers={"Authorization": f"Bearer {data['token']}"}
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["data"]["admin"]["role"], "admin")

        last_login = self.datastore.fetch_one(
            "SELECT last_login FROM admin_users WHERE email = $1", ("admin@example.com",)
        )["last_login"]
        self.assertIsNotNone(last_login)

    def test_wrong_password_and_unknown_email(self):
        res = self._login(password="wrong-password")
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["error"], "invalid_credentials")

        res = self.client.post(
            "/api/admin/login", json={"email": "nobody@example.com", "password": "whatever1"}
        )
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["error"], "invalid_credentials")

    def test_disabled_account(self):
        self.datastore.execute(
            "UPDATE admin_users SET is_active = $1 WHERE email = $2", (False, "admin@example.com")
        )
        res = self._login()
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["error"], "account_disabled")

    def test_verify_rejects_bad_tokens(self):
        res = self.client.get("/api/admin/verify")
        self.assertEqual(res.status_code, 401)
        res = self.client.get("/api/admin/verify", headers={"Authorization": "Bearer nope"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["error"], "invalid_token")

    def test_verify_rejects_deactivated_admin(self):
        token = self._login().get_json()["data"]["token"]
        self.datastore.execute(
            "UPDATE admin_users SET is_active = $1 WHERE email = $2", (False, "admin@example.com")
        )
        res = self.client.get("/api/admin/verify", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(res.status_code, 401)

    def test_logout_always_succeeds(self):
        res = self.client.post("/api/admin/logout", headers={"Authorization": "Bearer junk"})
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.get_json()["success"])

    def test_short_password_is_a_validation_error(self):
        res = self._login(password="short")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["errors"][0]["field"], "password")

    def test_login_without_jwt_secret(self):
        app = create_test_app(
            config_overrides={"JWT_SECRET": None, "IP_RATE_LIMIT": 1000}, datastore=self.datastore
        )
        res = app.test_client().post(
            "/api/admin/login", json={"email": "admin@example.com", "password": "correct-horse"}
        )
        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.get_json()["error"], "admin_auth_not_configured")


if __name__ == "__main__":
    unittest.main()
