from __future__ import annotations

from flask import current_app
from sqlalchemy import event, inspect, text
from sqlalchemy.exc import SQLAlchemyError

from oldmanfooty.extensions import db

CORE_TABLES = {'user', 'club', 'club_alternate_name', 'carnival', 'sync_logs', 'audit_log'}


def ensure_core_tables() -> None:
    """Ensure core ORM tables exist. If missing (e.g., fresh DB without migrations), create them.

    This is a development convenience so the app can run without manual Alembic steps.
    """
    try:
        inspector = inspect(db.engine)
        existing = set(inspector.get_table_names())
        if not CORE_TABLES.issubset(existing):
            db.create_all()
    except SQLAlchemyError as exc:
        # Do not block startup on errors here
        current_app.logger.warning(f"Could not bootstrap core tables: {exc}")


def configure_sqlite_transactions(engine) -> None:
    """Have SQLite transactions begin with an explicit BEGIN so savepoints nest inside them.

    pysqlite otherwise defers BEGIN until the first DML statement and never emits
    it for SAVEPOINT, so releasing an outermost savepoint commits its work.
    """
    if engine.dialect.name != 'sqlite':
        return

    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _emit_begin(conn):
        conn.exec_driver_sql('BEGIN')


def database_reachable() -> tuple[bool, str | None]:
    try:
        with db.engine.connect() as conn:
            conn.execute(text('SELECT 1'))
        return True, None
    except SQLAlchemyError as exc:
        return False, str(exc)


def sync_log_table_exists() -> bool:
    return 'sync_logs' in inspect(db.engine).get_table_names()


__all__ = ['configure_sqlite_transactions', 'ensure_core_tables', 'database_reachable', 'sync_log_table_exists']
