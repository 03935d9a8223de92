import json
import logging
import unittest

from app import create_app
from app.config import Config
from app.core import RequestCreated, get_event_bus
from app.db import close_db
from app.observability import JsonLogFormatter, bind_request_id, reset_metrics_for_tests, set_log_request_id
from tests.helpers.temp_db import TempDbSandbox


PM = {"X-User-Role": "PROJECT_MANAGER", "X-Username": "alice"}


class _MetricsConfig(Config):
    TESTING = False
    DB_AUTO_INIT = False


class ObservabilityPrometheusTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="observability_metrics")
        self.app = create_app(self._temp_db.make_config(Config, TESTING=True))
        self.client = self.app.test_client()
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_metrics_for_tests()

    def test_metrics_endpoint_exposes_prometheus_metrics(self) -> None:
        self.client.get("/api/unknown")
        created = self.client.post("/api/requests", headers=PM, json={"title": "SRE"})
        self.assertEqual(created.status_code, 201)
        self.client.post(f"/api/requests/{created.get_json()['id']}/submit-for-review", headers=PM)

        response = self.client.get("/metrics")
        self.assertEqual(response.status_code, 200)
        content_type = response.headers.get("Content-Type") or ""
        self.assertIn("text/plain", content_type)

        payload = response.get_data(as_text=True)
        self.assertIn("http_request_total", payload)
        self.assertIn("http_request_duration_ms_bucket", payload)
        self.assertIn('request_status_count{status="IN_REVIEW"} 1', payload)
        self.assertIn('request_transition_total{action="submit_for_review",result="applied"} 1', payload)
        self.assertIn('notification_total{result="delivered"}', payload)
        self.assertIn('domain_event_emitted_total{event_type="RequestCreated"} 1', payload)
        self.assertIn("expiry_sweep_runs_total 0", payload)
        self.assertIn('route="/api/requests"', payload)

    def test_event_bus_counts_published_events(self) -> None:
        get_event_bus().publish(RequestCreated(request_id="r-9", created_by="alice"))
        payload = self.client.get("/metrics").get_data(as_text=True)
        self.assertIn('event_type="RequestCreated"', payload)

    def test_health_reports_storage_and_http_metrics(self) -> None:
        self.client.get("/api/requests", headers=PM)
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.get_json() or {}

        self.assertEqual(payload.get("status"), "ok")
        self.assertEqual(payload.get("storage"), "ok")
        self.assertEqual(payload.get("db"), "sqlite")
        self.assertGreaterEqual(payload["metrics"]["http"]["requests_total"], 1)


class MetricsWithoutSchemaTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="observability_no_schema")
        self.app = create_app(self._temp_db.make_config(_MetricsConfig))
        self.client = self.app.test_client()
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_metrics_for_tests()

    def test_metrics_survive_missing_tables(self) -> None:
        response = self.client.get("/metrics")
        self.assertEqual(response.status_code, 200)
        self.assertNotIn("request_status_count{", response.get_data(as_text=True))


class JsonLogFormatterTest(unittest.TestCase):
    def tearDown(self) -> None:
        set_log_request_id(None)

    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord(
            name="app",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="worker_log",
            args=(),
            exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_log_formatter_includes_request_id_outside_request_context(self) -> None:
        set_log_request_id("worker-req-123")
        parsed = json.loads(JsonLogFormatter().format(self._record()))
        self.assertEqual(parsed.get("request_id"), "worker-req-123")
        self.assertEqual(parsed.get("message"), "worker_log")

    def test_bound_request_id_is_restored(self) -> None:
        set_log_request_id("outer")
        with bind_request_id("sweep-1"):
            inner = json.loads(JsonLogFormatter().format(self._record()))
        outer = json.loads(JsonLogFormatter().format(self._record()))
        self.assertEqual(inner["request_id"], "sweep-1")
        self.assertEqual(outer["request_id"], "outer")

    def test_extra_fields_are_serialized(self) -> None:
        parsed = json.loads(JsonLogFormatter().format(self._record(request_ref="r-1", action="expire")))
        self.assertEqual(parsed["request_ref"], "r-1")
        self.assertEqual(parsed["action"], "expire")


if __name__ == "__main__":
    unittest.main()
