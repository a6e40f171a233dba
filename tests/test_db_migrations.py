import os
import sqlite3
import unittest

from intervention_engine import create_app
from intervention_engine.config import Config
from intervention_engine.db import close_db
from intervention_engine.db_migrations import to_sqlalchemy_url
from tests.helpers.temp_db import TempDbSandbox


def _table_exists(db_path: str, table_name: str) -> bool:
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table_name,),
        ).fetchone()
        return row is not None
    finally:
        conn.close()


class SqlalchemyUrlTest(unittest.TestCase):
    def test_heroku_style_postgres_scheme_is_normalized(self) -> None:
        self.assertEqual(to_sqlalchemy_url("postgres://u:p@db/interventions"), "postgresql://u:p@db/interventions")

    def test_sqlite_file_becomes_absolute_url(self) -> None:
        url = to_sqlalchemy_url("database/interventions.db")
        self.assertTrue(url.startswith("sqlite:///"))
        self.assertTrue(url.endswith("/database/interventions.db"))

    def test_empty_path_is_refused(self) -> None:
        with self.assertRaises(RuntimeError):
            to_sqlalchemy_url("  ")


class DbMigrationsTest(unittest.TestCase):
    def setUp(self) -> None:
        self._sandbox = TempDbSandbox(prefix="intervention_migrations")
        self.db_path = self._sandbox.db_path
        self._prev_env = os.environ.get("FLASK_ENV")
        os.environ["FLASK_ENV"] = "development"

    def tearDown(self) -> None:
        if self._prev_env is None:
            os.environ.pop("FLASK_ENV", None)
        else:
            os.environ["FLASK_ENV"] = self._prev_env
        self._sandbox.cleanup()

    def _build_app(self, *, db_auto_init: bool, db_path: str | None = None):
        config = self._sandbox.make_config(
            Config,
            DB_PATH=db_path or self.db_path,
            TESTING=False,
            DB_AUTO_INIT=db_auto_init,
            LOG_JSON=False,
        )
        return create_app(config)

    def test_schema_not_created_by_default(self) -> None:
        app = self._build_app(db_auto_init=False)
        with app.app_context():
            close_db()

        self.assertFalse(_table_exists(self.db_path, "interventions"))

    def test_schema_created_with_explicit_dev_flag(self) -> None:
        app = self._build_app(db_auto_init=True)
        with app.app_context():
            close_db()

        self.assertTrue(_table_exists(self.db_path, "interventions"))

    def test_flask_db_upgrade_and_downgrade(self) -> None:
        runner = self._build_app(db_auto_init=False).test_cli_runner()

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "interventions"))

        downgrade_result = runner.invoke(args=["db", "downgrade", "base"])
        self.assertEqual(downgrade_result.exit_code, 0, msg=downgrade_result.output)
        self.assertFalse(_table_exists(self.db_path, "interventions"))

        reupgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(reupgrade_result.exit_code, 0, msg=reupgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "interventions"))

    def test_upgrade_creates_missing_database_directory(self) -> None:
        nested = os.path.join(self._sandbox.temp_dir, "database", "interventions.db")
        result = self._build_app(db_auto_init=False, db_path=nested).test_cli_runner().invoke(args=["db", "upgrade"])
        self.assertEqual(result.exit_code, 0, msg=result.output)
        self.assertTrue(_table_exists(nested, "quotes"))

    def test_upgrade_creates_single_accepted_quote_index(self) -> None:
        result = self._build_app(db_auto_init=False).test_cli_runner().invoke(args=["db", "upgrade"])
        self.assertEqual(result.exit_code, 0, msg=result.output)

        conn = sqlite3.connect(self.db_path)
        try:
            names = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='index'").fetchall()
            }
        finally:
            conn.close()
        self.assertIn("ux_quotes_single_accepted", names)

    def test_status_reports_pending_until_auto_init_base_is_stamped(self) -> None:
        app = self._build_app(db_auto_init=True)
        with app.app_context():
            close_db()
        runner = app.test_cli_runner()

        pending = runner.invoke(args=["db", "status"])
        self.assertEqual(pending.exit_code, 1, msg=pending.output)
        self.assertIn("en attente", pending.output)

        stamped = runner.invoke(args=["db", "stamp"])
        self.assertEqual(stamped.exit_code, 0, msg=stamped.output)

        current = runner.invoke(args=["db", "status"])
        self.assertEqual(current.exit_code, 0, msg=current.output)
        self.assertIn("Schema a jour.", current.output)


if __name__ == "__main__":
    unittest.main()
