"""
Database migrations for the local store.

Uses SQLite ALTER TABLE ADD COLUMN for incremental schema evolution.
Each migration is idempotent: columns are only added if absent.

Called automatically from get_engine() after create_all() so databases
created by older releases (before retry bookkeeping, weight goals and
daily-log notes existed) are brought up to date without manual steps.
"""
from sqlalchemy import text


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times: checks column existence before altering.
    Supports SQLite only (uses PRAGMA table_info).

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """
    with engine.connect() as conn:
        # sync_queue: retry bookkeeping
        _add_column_if_missing(conn, "sync_queue", "retry_count", "INTEGER DEFAULT 0")
        _add_column_if_missing(conn, "sync_queue", "last_error", "TEXT")
        _add_column_if_missing(conn, "sync_queue", "synced_at", "DATETIME")

        # goal: weight goals and achievement date
        _add_column_if_missing(conn, "goal", "starting_weight", "REAL")
        _add_column_if_missing(conn, "goal", "achieved_date", "DATETIME")

        # daily_log / streak
        _add_column_if_missing(conn, "daily_log", "notes", "TEXT")
        _add_column_if_missing(conn, "streak", "last_workout_date", "DATE")

        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> None:
    """Add a column to a table if it doesn't already exist.

    Args:
        conn: SQLAlchemy connection.
        table: Table name.
        column: Column name to add.
        col_type: SQLite type string, e.g. "INTEGER", "REAL", "TEXT".
    """
    result = conn.execute(text(f"PRAGMA table_info({table})"))
    existing_columns = {row[1] for row in result}
    if existing_columns and column not in existing_columns:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
