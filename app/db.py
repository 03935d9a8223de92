import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g

from app.errors import StorageUnavailableError


def _storage_errors() -> tuple:
    errors = [sqlite3.OperationalError]
    if psycopg2 is not None:
        errors.extend([psycopg2.OperationalError, psycopg2.InterfaceError])
    return tuple(errors)


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection

    def execute(self, sql: str, params: Iterable | None = None):
        try:
            if self.backend == "postgres":
                cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
                if params:
                    sql = _convert_qmark_to_pg(sql)
                    cursor.execute(sql, list(params))
                else:
                    cursor.execute(sql)
                return cursor
            return self._conn.execute(sql, params or ())
        except _storage_errors() as exc:
            raise StorageUnavailableError(details=str(exc)) from exc

    def commit(self):
        try:
            self._conn.commit()
        except _storage_errors() as exc:
            raise StorageUnavailableError(details=str(exc)) from exc

    def rollback(self):
        try:
            self._conn.rollback()
        except _storage_errors() as exc:
            raise StorageUnavailableError(details=str(exc)) from exc

    def close(self):
        self._conn.close()


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 nao instalado.")
        try:
            conn = psycopg2.connect(db_path)
        except psycopg2.OperationalError as exc:
            raise StorageUnavailableError(details=str(exc)) from exc
        # a transition and its side effects commit together
        conn.autocommit = False
        return Database("postgres", conn)

    try:
        conn = sqlite3.connect(db_path, timeout=30.0)
    except sqlite3.OperationalError as exc:
        raise StorageUnavailableError(details=str(exc)) from exc
    conn.row_factory = sqlite3.Row
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


REQUEST_STATUS_CHECK = (
    "'DRAFT','IN_REVIEW','APPROVED_FOR_SUBMISSION','BIDDING','BID_EVALUATION',"
    "'RECOMMENDED','SENT_TO_ORDERING','ORDERED','REJECTED','EXPIRED'"
)
OFFER_STATUS_CHECK = "'SUBMITTED','SHORTLISTED','RECOMMENDED','ORDERED','REJECTED'"


def _schema_statements(backend: str) -> List[str]:
    serial = "SERIAL PRIMARY KEY" if backend == "postgres" else "INTEGER PRIMARY KEY AUTOINCREMENT"
    real = "DOUBLE PRECISION" if backend == "postgres" else "REAL"
    return [
        f"""
        CREATE TABLE IF NOT EXISTS requests (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'DRAFT' CHECK (status IN ({REQUEST_STATUS_CHECK})),
            payload_json TEXT NOT NULL DEFAULT '{{}}',
            max_offers INTEGER NOT NULL DEFAULT 0,
            bidding_cycle_days INTEGER NOT NULL DEFAULT 7,
            created_by TEXT NOT NULL,
            submitted_at TEXT,
            submitted_by TEXT,
            review_approved_at TEXT,
            review_approved_by TEXT,
            rejected_at TEXT,
            rejected_by TEXT,
            reject_reason TEXT,
            bidding_started_at TEXT,
            bidding_started_by TEXT,
            bid_evaluation_at TEXT,
            shortlisted_offer_ids_json TEXT,
            recommended_at TEXT,
            recommended_by TEXT,
            recommended_offer_id TEXT,
            sent_to_ordering_at TEXT,
            sent_to_ordering_by TEXT,
            ordered_at TEXT,
            ordered_by TEXT,
            ordered_offer_id TEXT,
            order_id TEXT,
            expired_at TEXT,
            reactivated_at TEXT,
            reactivated_by TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_requests_status ON requests (status, created_at)",
        "CREATE INDEX IF NOT EXISTS idx_requests_created_by ON requests (created_by, created_at)",
        f"""
        CREATE TABLE IF NOT EXISTS offers (
            id TEXT PRIMARY KEY,
            request_id TEXT NOT NULL,
            submitted_by TEXT NOT NULL,
            provider_name TEXT,
            price {real},
            currency TEXT NOT NULL DEFAULT 'EUR',
            delivery_days INTEGER,
            roles_provided_json TEXT NOT NULL DEFAULT '[]',
            notes TEXT,
            status TEXT NOT NULL DEFAULT 'SUBMITTED' CHECK (status IN ({OFFER_STATUS_CHECK})),
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_offers_request ON offers (request_id, created_at)",
        f"""
        CREATE TABLE IF NOT EXISTS purchase_orders (
            id TEXT PRIMARY KEY,
            request_id TEXT NOT NULL UNIQUE,
            offer_id TEXT NOT NULL,
            ordered_by TEXT NOT NULL,
            ordered_at TEXT NOT NULL,
            total_price {real},
            currency TEXT NOT NULL DEFAULT 'EUR',
            provider_username TEXT,
            provider_name TEXT,
            roles_provided_json TEXT NOT NULL DEFAULT '[]',
            delivery_days INTEGER,
            snapshot_json TEXT NOT NULL DEFAULT '{{}}',
            created_at TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS notifications (
            id TEXT PRIMARY KEY,
            uniq_key TEXT UNIQUE,
            to_username TEXT,
            to_role TEXT,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL DEFAULT '',
            request_id TEXT,
            meta_json TEXT NOT NULL DEFAULT '{}',
            read INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_notifications_username ON notifications (to_username, created_at)",
        "CREATE INDEX IF NOT EXISTS idx_notifications_role ON notifications (to_role, created_at)",
        f"""
        CREATE TABLE IF NOT EXISTS status_events (
            id {serial},
            entity TEXT NOT NULL CHECK (entity IN ('request','offer','purchase_order')),
            entity_id TEXT NOT NULL,
            action TEXT NOT NULL,
            from_status TEXT,
            to_status TEXT NOT NULL,
            reason TEXT,
            actor TEXT,
            occurred_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_status_events_entity ON status_events (entity, entity_id, occurred_at)",
    ]


def _evaluation_statements() -> List[str]:
    # Added by revision 20261015_000002; same DDL on both backends.
    return [
        """
        CREATE TABLE IF NOT EXISTS evaluations (
            id TEXT PRIMARY KEY,
            request_id TEXT NOT NULL UNIQUE,
            evaluated_by TEXT NOT NULL,
            weights_json TEXT NOT NULL DEFAULT '{}',
            offers_json TEXT NOT NULL DEFAULT '[]',
            comment TEXT,
            recommended_offer_id TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
    ]


def init_db(db: Database | None = None) -> None:
    db = db or get_db()
    for statement in _schema_statements(db.backend) + _evaluation_statements():
        db.execute(statement)
    db.commit()
