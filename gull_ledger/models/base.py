"""
Database engine, session management, and base model.

Every model inherits from Base. Every request gets a session
from get_db().
"""

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from gull_ledger.config import get_settings

settings = get_settings()


def enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Let SQLAlchemy issue BEGIN itself on SQLite.

    pysqlite only starts a transaction before DML, so a SAVEPOINT
    issued first would open (and its RELEASE commit) the outer
    transaction. Each entry write runs in its own savepoint, which
    needs the real BEGIN.
    """
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


# --- Engine ---
# pool_pre_ping=True tests connections before using them, which
# handles a restarted database or a stale connection.
# SQLite connections are shared with FastAPI's worker threads.
_connect_args = (
    {"check_same_thread": False}
    if settings.DATABASE_URL.startswith("sqlite")
    else {}
)

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    connect_args=_connect_args,
)
if settings.DATABASE_URL.startswith("sqlite"):
    enable_sqlite_savepoints(engine)

# --- Session Factory ---
# autocommit=False: the caller decides when a batch is committed.
# autoflush=False: SQL is only sent on explicit flush or commit.
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    pass


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# --- Dependency for FastAPI ---
def get_db():
    """
    Provide a database session for a single request.

    The try/finally guarantees the session is closed even when
    the endpoint raises, so connections never leak from the pool.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
