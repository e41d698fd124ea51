"""
Database engine initialisation, schema creation and health checks.
"""

import logging
import sys
from typing import Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url

from mailtrack.config import STATEMENT_TIMEOUT_MS, get_env
from mailtrack.schema import metadata

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(db_uri: str, timeout_ms: int = STATEMENT_TIMEOUT_MS) -> Engine:
    """Create an engine whose statements and pool waits are bounded by *timeout_ms*.

    A statement exceeding the bound raises inside the caller's transaction,
    which is then rolled back by the surrounding ``engine.begin()`` block.
    """
    url = make_url(db_uri)
    backend = url.get_backend_name()
    kwargs = {"future": True, "pool_pre_ping": True}
    connect_args = {}

    if backend == "postgresql":
        connect_args["options"] = f"-c statement_timeout={int(timeout_ms)}"
    elif backend == "sqlite":
        connect_args["timeout"] = max(timeout_ms / 1000.0, 1.0)
        connect_args["check_same_thread"] = False

    if backend != "sqlite" or (url.database not in (None, "", ":memory:")):
        kwargs["pool_timeout"] = max(timeout_ms / 1000.0, 1.0)

    engine = create_engine(url, connect_args=connect_args, **kwargs)
    if backend == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def init_engine(db_uri: Optional[str] = None) -> Engine:
    """Create the application engine and verify the connection."""
    engine = make_engine(db_uri or get_env("DB_URI"))
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.critical("Could not connect to DB: %s", e)
        sys.exit(1)
    logger.info("[init] Connected to DB (%s).", engine.url.get_backend_name())
    return engine


def create_schema(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    metadata.create_all(engine)


def check_health(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("Database health check failed")
        return False
