import contextlib
import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g

from intervention_engine.errors import StaleState


_SERIALIZATION_FAILURE_CODES = {"40001", "40P01"}
_UNIQUE_VIOLATION_CODE = "23505"


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._in_transaction = False

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    @contextlib.contextmanager
    def transaction(self):
        """Run the enclosed statements as one serializable unit.

        Nested calls join the outer transaction. On PostgreSQL a serialization
        failure is reported as StaleState so callers refetch and retry.
        """
        if self._in_transaction:
            yield self
            return

        begin = "BEGIN ISOLATION LEVEL SERIALIZABLE" if self.backend == "postgres" else "BEGIN IMMEDIATE"
        self.execute(begin)
        self._in_transaction = True
        try:
            yield self
        except Exception as exc:
            self._rollback()
            if _is_serialization_failure(exc):
                raise StaleState(details=str(exc)) from exc
            raise
        else:
            try:
                self.execute("COMMIT")
            except Exception as exc:
                self._rollback()
                if _is_serialization_failure(exc):
                    raise StaleState(details=str(exc)) from exc
                raise
        finally:
            self._in_transaction = False

    def _rollback(self) -> None:
        try:
            self.execute("ROLLBACK")
        except Exception:  # noqa: BLE001
            # Connection already aborted the transaction.
            pass

    def commit(self):
        if not self._in_transaction:
            self._conn.commit()

    def close(self):
        self._conn.close()


def _is_serialization_failure(exc: Exception) -> bool:
    code = str(getattr(exc, "pgcode", "") or "")
    return code in _SERIALIZATION_FAILURE_CODES


def is_unique_violation(exc: Exception) -> bool:
    if isinstance(exc, sqlite3.IntegrityError):
        return "UNIQUE" in str(exc).upper()
    return str(getattr(exc, "pgcode", "") or "") == _UNIQUE_VIOLATION_CODE


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 non installe.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    # Autocommit mode: transactions are opened explicitly by Database.transaction().
    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = connect_database(db_path)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    create_schema(get_db())


def _column_types(backend: str) -> dict:
    if backend == "postgres":
        return {"pk": "BIGSERIAL PRIMARY KEY", "real": "DOUBLE PRECISION", "fk": "BIGINT"}
    return {"pk": "INTEGER PRIMARY KEY AUTOINCREMENT", "real": "REAL", "fk": "INTEGER"}


_SCHEMA: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS interventions (
        id {pk},
        reference TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        intervention_type TEXT,
        urgency TEXT NOT NULL DEFAULT 'normale' CHECK (
            urgency IN ('basse','normale','haute','urgente')
        ),
        status TEXT NOT NULL DEFAULT 'demande' CHECK (
            status IN ('demande','rejetee','approuvee','demande_de_devis','planification','planifiee',
                       'en_cours','cloturee_par_prestataire','cloturee_par_locataire',
                       'cloturee_par_gestionnaire','annulee')
        ),
        tenant_user_id TEXT,
        lot_reference TEXT,
        building_reference TEXT,
        scheduled_date TEXT,
        selected_quote_id {fk},
        quote_deadline TEXT,
        final_amount {real},
        finalized_at TEXT,
        correction_cycle INTEGER NOT NULL DEFAULT 0,
        version INTEGER NOT NULL DEFAULT 1,
        created_by TEXT,
        team_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS intervention_assignments (
        id {pk},
        intervention_id {fk} NOT NULL REFERENCES interventions(id),
        user_id TEXT NOT NULL,
        role TEXT NOT NULL CHECK (role IN ('gestionnaire','prestataire')),
        team_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE (intervention_id, user_id, role)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quote_requests (
        id {pk},
        intervention_id {fk} NOT NULL REFERENCES interventions(id),
        provider_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'sent' CHECK (status IN ('sent','responded','cancelled')),
        deadline TEXT,
        general_notes TEXT,
        message TEXT,
        requested_by TEXT,
        team_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quotes (
        id {pk},
        intervention_id {fk} NOT NULL REFERENCES interventions(id),
        provider_id TEXT NOT NULL,
        labor_cost {real} NOT NULL DEFAULT 0,
        materials_cost {real} NOT NULL DEFAULT 0,
        total_amount {real} NOT NULL DEFAULT 0,
        work_details TEXT NOT NULL DEFAULT '',
        estimated_duration_hours {real},
        estimated_start_date TEXT,
        terms_and_conditions TEXT,
        attachments TEXT NOT NULL DEFAULT '[]',
        status TEXT NOT NULL DEFAULT 'pending' CHECK (
            status IN ('pending','sent','accepted','rejected','cancelled')
        ),
        submitted_at TEXT NOT NULL,
        reviewed_at TEXT,
        reviewed_by TEXT,
        review_comments TEXT,
        rejection_reason TEXT,
        team_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_quotes_single_accepted
    ON quotes (intervention_id) WHERE status = 'accepted'
    """,
    """
    CREATE TABLE IF NOT EXISTS time_slots (
        id {pk},
        intervention_id {fk} NOT NULL REFERENCES interventions(id),
        slot_date TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('requested','pending','selected','superseded')),
        proposed_by TEXT NOT NULL,
        proposer_role TEXT NOT NULL,
        team_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS time_slot_responses (
        id {pk},
        time_slot_id {fk} NOT NULL REFERENCES time_slots(id),
        user_id TEXT NOT NULL,
        user_role TEXT NOT NULL,
        response TEXT NOT NULL CHECK (response IN ('accept','reject','withdraw')),
        reason TEXT,
        team_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (time_slot_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS closure_artifacts (
        id {pk},
        intervention_id {fk} NOT NULL REFERENCES interventions(id),
        stage TEXT NOT NULL CHECK (
            stage IN ('work_completion','tenant_validation','manager_finalization')
        ),
        cycle INTEGER NOT NULL DEFAULT 0,
        payload TEXT NOT NULL,
        submitted_by TEXT NOT NULL,
        team_id TEXT NOT NULL,
        submitted_at TEXT NOT NULL,
        UNIQUE (intervention_id, stage, cycle)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS status_events (
        id {pk},
        entity TEXT NOT NULL,
        entity_id {fk} NOT NULL,
        from_status TEXT,
        to_status TEXT,
        reason TEXT,
        actor_id TEXT,
        team_id TEXT NOT NULL,
        occurred_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_interventions_team_status ON interventions (team_id, status)",
    "CREATE INDEX IF NOT EXISTS ix_quotes_intervention ON quotes (intervention_id, status)",
    "CREATE INDEX IF NOT EXISTS ix_time_slots_intervention ON time_slots (intervention_id, status)",
    "CREATE INDEX IF NOT EXISTS ix_status_events_entity ON status_events (entity, entity_id)",
]


def create_schema(db: Database) -> None:
    types = _column_types(db.backend)
    for statement in _SCHEMA:
        db.execute(statement.format(**types))
    db.commit()
