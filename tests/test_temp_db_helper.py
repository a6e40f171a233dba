import os
import tempfile
import unittest
from pathlib import Path

from intervention_engine.config import Config
from intervention_engine.db import connect_database, create_schema
from tests.helpers.temp_db import TempDbSandbox


class TempDbSandboxTest(unittest.TestCase):
    def test_sandbox_lives_under_temp_and_outside_the_repository(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_location")
        try:
            db_path = Path(sandbox.db_path).resolve()
            self.assertTrue(db_path.is_relative_to(Path(tempfile.gettempdir()).resolve()))
            self.assertFalse(db_path.is_relative_to(Path(__file__).resolve().parents[1]))
        finally:
            sandbox.cleanup()

    def test_cleanup_removes_schema_file(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_cleanup")
        db = connect_database(sandbox.db_path)
        try:
            create_schema(db)
            row = db.execute("SELECT COUNT(*) AS total FROM interventions").fetchone()
            self.assertEqual(int(row["total"]), 0)
        finally:
            db.close()

        sandbox.cleanup()
        self.assertFalse(os.path.exists(sandbox.db_path))
        self.assertFalse(os.path.exists(sandbox.temp_dir))

    def test_make_config_points_to_sandbox(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_config")
        try:
            config = sandbox.make_config(Config, QUOTE_SIBLING_POLICY="keep_pending")
            self.assertEqual(config.DB_PATH, sandbox.db_path)
            self.assertEqual(config.DATABASE_DIR, sandbox.temp_dir)
            self.assertEqual(config.QUOTE_SIBLING_POLICY, "keep_pending")
            self.assertTrue(issubclass(config, Config))
        finally:
            sandbox.cleanup()


if __name__ == "__main__":
    unittest.main()
