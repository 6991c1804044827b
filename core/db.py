"""
core/db.py -- Engine construction shared by CredentialStore and QuoteStore.

Both stores point at the same DATABASE_URL; each owns its own tables.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and a busy timeout on every new SQLite connection.

    PRAGMAs are per-connection, so they are set in the connect hook rather
    than once at startup. The busy timeout lets a writer wait for the other
    side of a token race instead of failing with "database is locked".
    """
    dbapi_conn.execute("PRAGMA busy_timeout=5000")
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def build_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine
