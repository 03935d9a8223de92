import os
import tempfile
import unittest

from app import create_app
from app.config import Config
from app.db import close_db, get_db
from tests.helpers.temp_db import TempDbSandbox, assert_safe_temp_db_path


class TempDbSandboxTest(unittest.TestCase):
    def test_open_database_applies_schema_and_cleanup_removes_it(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_schema")
        db = sandbox.open_database()
        tables = {
            row["name"] for row in db.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        }
        self.assertTrue({"requests", "offers", "purchase_orders", "notifications", "status_events"} <= tables)
        self.assertTrue(sandbox.db_path.startswith(os.path.realpath(tempfile.gettempdir())))

        sandbox.cleanup()
        self.assertFalse(os.path.exists(sandbox.temp_dir))

    def test_config_points_the_app_at_the_sandbox(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_config")
        self.addCleanup(sandbox.cleanup)
        app = create_app(sandbox.make_config(Config, TESTING=True, RATE_LIMIT_ENABLED=False))

        self.assertEqual(app.config["DB_PATH"], sandbox.db_path)
        self.assertFalse(app.config["EXPIRY_SWEEP_ENABLED"])
        self.assertFalse(app.config["RATE_LIMIT_ENABLED"])
        with app.app_context():
            self.assertEqual(get_db().execute("SELECT COUNT(*) AS total FROM requests").fetchone()["total"], 0)
            close_db()

    def test_repository_paths_are_refused(self) -> None:
        workspace_db = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "servicebid.db")
        with self.assertRaises(ValueError):
            assert_safe_temp_db_path(workspace_db)


if __name__ == "__main__":
    unittest.main()
