# backend/db.py
# Database abstraction layer supporting PostgreSQL (production) and SQLite (dev/tests)
#
# All SQL in this backend uses named ":param" placeholders, which both sqlite3
# and SQLAlchemy text() accept unchanged.

import sqlite3
from contextlib import contextmanager
from pathlib import Path as FsPath
from typing import Any, Dict, Generator, List, Optional, Union
from urllib.parse import urlparse

from sqlalchemy import create_engine, text, pool
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError as SAIntegrityError

try:
    from backend.config import DATABASE_PATH, DATABASE_URL, IS_DEV
except ModuleNotFoundError:
    from config import DATABASE_PATH, DATABASE_URL, IS_DEV

DbConnection = Union[sqlite3.Connection, Connection]

_database_url: str = DATABASE_URL
_database_path: str = DATABASE_PATH

# Detect database type
IS_POSTGRES = _database_url.startswith(("postgres://", "postgresql://"))

# Global engine (SQLAlchemy) or None for SQLite
_engine: Optional[Engine] = None

# Seconds a SQLite writer waits for the lock held by another transaction
SQLITE_BUSY_TIMEOUT = 30.0


def configure_database(database_path: Optional[str] = None, database_url: Optional[str] = None) -> None:
    """
    Point the storage layer at a different database.

    Used by tests (temp SQLite files) and by tooling that migrates a database
    other than the configured one. Resets any existing engine.
    """
    global _database_path, _database_url, IS_POSTGRES, _engine

    if database_path is not None:
        _database_path = database_path
    if database_url is not None:
        _database_url = database_url.strip()

    IS_POSTGRES = _database_url.startswith(("postgres://", "postgresql://"))

    if _engine is not None:
        _engine.dispose()
    _engine = None


def sqlite_path() -> str:
    """Resolve the SQLite file path (relative paths live next to this module)."""
    path = FsPath(_database_path)
    if not path.is_absolute():
        path = FsPath(__file__).resolve().parent / path
    return str(path)


def init_engine() -> None:
    """Initialize SQLAlchemy engine for PostgreSQL if DATABASE_URL is set."""
    global _engine

    if not IS_POSTGRES:
        # SQLite mode - no engine needed
        _engine = None
        print("[DB] Using SQLite (local dev mode)")
        return

    # Parse and validate URL
    parsed = urlparse(_database_url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Invalid DATABASE_URL: {_database_url[:20]}...")

    url = _database_url
    if url.startswith("postgres://"):
        # SQLAlchemy only accepts the postgresql:// scheme
        url = "postgresql://" + url[len("postgres://"):]

    _engine = create_engine(
        url,
        poolclass=pool.QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        echo=False,
    )

    print(f"[DB] Using PostgreSQL ({parsed.hostname})")


def _connect_sqlite() -> sqlite3.Connection:
    conn = sqlite3.connect(
        sqlite_path(),
        timeout=SQLITE_BUSY_TIMEOUT,
        isolation_level=None,  # explicit BEGIN/COMMIT in transaction()
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


@contextmanager
def get_db_connection() -> Generator[DbConnection, None, None]:
    """
    Context manager for database connections.
    Returns sqlite3.Connection for SQLite or sqlalchemy.Connection for Postgres.

    Statements run outside transaction() are autocommitted on SQLite; use
    transaction() for anything that writes.
    """
    if IS_POSTGRES:
        if _engine is None:
            init_engine()

        with _engine.connect() as conn:
            yield conn
    else:
        conn = _connect_sqlite()
        try:
            yield conn
        finally:
            conn.close()


@contextmanager
def transaction() -> Generator[DbConnection, None, None]:
    """
    Unit of work: everything executed on the yielded connection commits
    together, or not at all if the block raises.

    SQLite takes the write lock up front (BEGIN IMMEDIATE) so concurrent
    mutating transactions are serialized instead of failing on upgrade.
    """
    with get_db_connection() as conn:
        if IS_POSTGRES:
            trans = conn.begin()
            try:
                yield conn
            except BaseException:
                trans.rollback()
                raise
            trans.commit()
        else:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")


def execute_query(
    conn: DbConnection,
    query: str,
    params: Optional[Dict[str, Any]] = None,
) -> Any:
    """
    Execute a query with named parameters.

    Returns:
        Cursor (SQLite) or CursorResult (PostgreSQL); both expose rowcount.
    """
    if IS_POSTGRES:
        return conn.execute(text(query), params or {})
    return conn.execute(query, params or {})


def row_to_dict(row) -> Optional[Dict[str, Any]]:
    """Convert a sqlite3.Row or SQLAlchemy Row to a plain dict (None stays None)."""
    if row is None:
        return None
    if isinstance(row, sqlite3.Row):
        return dict(row)
    return dict(row._mapping)


def fetch_one(conn: DbConnection, query: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    return row_to_dict(execute_query(conn, query, params).fetchone())


def fetch_all(conn: DbConnection, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    return [row_to_dict(r) for r in execute_query(conn, query, params).fetchall()]


def lock_clause() -> str:
    """Row lock suffix for SELECTs inside a mutating transaction."""
    # SQLite already holds the database write lock after BEGIN IMMEDIATE
    return " FOR UPDATE" if IS_POSTGRES else ""


def is_integrity_error(exc: BaseException) -> bool:
    """True for unique/foreign-key/check violations on either backend."""
    return isinstance(exc, (sqlite3.IntegrityError, SAIntegrityError))


if IS_DEV:
    print(f"[DB] Storage target: {'PostgreSQL' if IS_POSTGRES else sqlite_path()}")
