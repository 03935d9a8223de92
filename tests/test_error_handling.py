import sqlite3
import unittest
from unittest.mock import patch

from app import create_app
from app.config import Config
from app.contexts.procurement.application.lifecycle_engine import RequestLifecycleEngine
from app.db import close_db
from app.errors import AppError, ConflictError, InvalidStateError, SystemError, ValidationError
from app.ui_strings import error_message
from tests.helpers.temp_db import TempDbSandbox


PM = {"X-User-Role": "PROJECT_MANAGER", "X-Username": "alice"}


def _build_temp_app(temp_db: TempDbSandbox, **overrides):
    attrs = {"PROPAGATE_EXCEPTIONS": False, "RATE_LIMIT_ENABLED": False}
    attrs.update(overrides)
    return create_app(temp_db.make_config(Config, **attrs))


class AppErrorPayloadTest(unittest.TestCase):
    def test_non_critical_error_exposes_details_and_payload(self) -> None:
        error = InvalidStateError(details="close_bidding is not allowed from DRAFT", payload={"status": "DRAFT"})
        payload = error.to_response_payload("req-1")
        self.assertEqual(payload["error"], "action_not_allowed_for_status")
        self.assertEqual(payload["message"], error_message("action_not_allowed_for_status"))
        self.assertEqual(payload["request_id"], "req-1")
        self.assertEqual(payload["details"], "close_bidding is not allowed from DRAFT")
        self.assertEqual(payload["status"], "DRAFT")

    def test_critical_error_hides_details(self) -> None:
        payload = SystemError(details="secret dsn").to_response_payload("req-2")
        self.assertNotIn("details", payload)
        self.assertEqual(payload["error"], "system_error")

    def test_unknown_message_key_falls_back(self) -> None:
        error = AppError(code="x", message_key="does_not_exist")
        self.assertEqual(error.user_message(), error_message("unexpected_error"))

    def test_defaults_per_subclass(self) -> None:
        self.assertEqual(ValidationError().http_status, 400)
        self.assertEqual(ConflictError().http_status, 409)
        self.assertEqual(ConflictError().code, "status_conflict")
        self.assertFalse(ConflictError().critical)


class ErrorHandlingApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_api")
        self.app = _build_temp_app(self._temp_db, TESTING=True)
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_missing_role_header(self) -> None:
        response = self.client.get("/api/requests")
        self.assertEqual(response.status_code, 401)

        payload = response.get_json()
        self.assertEqual(payload.get("error"), "auth_required")
        self.assertEqual(payload.get("message"), error_message("auth_required"))
        self.assertTrue((payload.get("request_id") or "").strip())
        self.assertEqual(response.headers.get("X-Request-Id"), payload["request_id"])

    def test_missing_username_on_mutation(self) -> None:
        response = self.client.post("/api/requests", headers={"X-User-Role": "PROJECT_MANAGER"}, json={"title": "x"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()["message"], error_message("identity_required"))

    def test_incoming_request_id_is_echoed(self) -> None:
        response = self.client.get("/api/requests/missing", headers={**PM, "X-Request-Id": "trace-123"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.headers.get("X-Request-Id"), "trace-123")
        payload = response.get_json()
        self.assertEqual(payload["request_id"], "trace-123")
        self.assertEqual(payload["message"], error_message("request_not_found"))

    def test_owner_guard_returns_not_owner(self) -> None:
        created = self.client.post("/api/requests", headers=PM, json={"title": "Data engineer"}).get_json()
        response = self.client.post(
            f"/api/requests/{created['id']}/submit-for-review",
            headers={"X-User-Role": "PROJECT_MANAGER", "X-Username": "bob"},
        )
        self.assertEqual(response.status_code, 403)
        payload = response.get_json()
        self.assertEqual(payload["error"], "permission_denied")
        self.assertEqual(payload["message"], error_message("not_owner"))

    def test_conflict_maps_to_409(self) -> None:
        created = self.client.post("/api/requests", headers=PM, json={"title": "Data engineer"}).get_json()
        with patch.object(RequestLifecycleEngine, "submit_for_review", side_effect=ConflictError(details="lost race")):
            response = self.client.post(f"/api/requests/{created['id']}/submit-for-review", headers=PM)
        self.assertEqual(response.status_code, 409)
        payload = response.get_json()
        self.assertEqual(payload["error"], "status_conflict")
        self.assertEqual(payload["details"], "lost race")

    def test_unexpected_exception_returns_generic_500(self) -> None:
        with patch.object(RequestLifecycleEngine, "list", side_effect=RuntimeError("kaboom")):
            with self.assertLogs(self.app.logger.name, level="ERROR") as logs:
                response = self.client.get("/api/requests", headers=PM)

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload["error"], "unexpected_error")
        self.assertEqual(payload["message"], error_message("unexpected_error"))
        self.assertNotIn("details", payload)
        body = response.get_data(as_text=True)
        self.assertNotIn("Traceback", body)
        self.assertNotIn("kaboom", body)
        self.assertTrue(any("unexpected_exception" in line for line in logs.output))

    def test_unknown_route_keeps_http_status(self) -> None:
        response = self.client.get("/api/does-not-exist")
        self.assertEqual(response.status_code, 404)

    def test_storage_failure_maps_to_503(self) -> None:
        with patch("app.db.sqlite3.connect", side_effect=sqlite3.OperationalError("unable to open database file")):
            response = self.client.get("/api/requests", headers=PM)
        self.assertEqual(response.status_code, 503)
        payload = response.get_json()
        self.assertEqual(payload["error"], "storage_unavailable")
        self.assertIn("unable to open", payload["details"])

    def test_health_reports_degraded_storage(self) -> None:
        with patch("app.db.sqlite3.connect", side_effect=sqlite3.OperationalError("disk I/O error")):
            response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["status"], "degraded")
        self.assertEqual(payload["storage"], "unavailable")


if __name__ == "__main__":
    unittest.main()
