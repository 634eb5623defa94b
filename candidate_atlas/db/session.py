"""
Database handle shared by the candidate store and the status tracker.

The engine is created once per process by whoever owns the run (normally the
CLI through IngestionContext), passed explicitly to every component and
disposed on shutdown.
"""
import logging
import socket
from contextlib import closing
from typing import Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def _report_connection_failure(database_url: str, exc: Exception) -> None:
    """Log high-signal diagnostics when the application cannot reach the database."""
    logger.warning(f"Could not connect to database: {exc}")

    try:
        url = make_url(database_url)
    except Exception as parse_error:  # pragma: no cover
        logger.warning(f"Unable to parse DATABASE_URL ({parse_error}); skipping detailed diagnostics.")
        return

    if url.get_backend_name() == "sqlite":
        logger.warning(f"  SQLite database: {url.database or ':memory:'}")
        return

    logger.warning(
        f"  Dialect: {url.get_backend_name()} (driver: {url.get_driver_name() or 'default'}) "
        f"Host: {url.host or 'localhost'} Port: {url.port or '(default)'} "
        f"Database: {url.database} Username: {url.username}"
    )

    host = url.host or "localhost"
    port = url.port or 5432

    try:
        with closing(socket.create_connection((host, port), timeout=2)):
            logger.warning(f"  Socket check: able to reach {host}:{port}")
    except OSError as socket_err:
        logger.warning(f"  Socket check: unable to reach {host}:{port} ({socket_err})")


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Let SQLAlchemy own transaction boundaries on pysqlite.

    pysqlite issues its own BEGIN lazily, which breaks SAVEPOINT handling that
    the bulk upsert relies on for per-row conflict isolation.
    """

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    """Owns one SQLAlchemy engine for the lifetime of a run."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._closed = False

    @classmethod
    def from_url(cls, database_url: str, *, echo: bool = False, verify: bool = True) -> "Database":
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite":
            engine_kwargs = {"echo": echo, "connect_args": {"check_same_thread": False}}
            if url.database in (None, "", ":memory:"):
                # One shared connection, otherwise every checkout sees a fresh empty database.
                engine_kwargs["poolclass"] = StaticPool
            engine = create_engine(database_url, **engine_kwargs)
            _enable_sqlite_savepoints(engine)
        else:
            engine = create_engine(database_url, echo=echo, pool_pre_ping=True)

        database = cls(engine)
        if verify:
            database.ping()
        return database

    def ping(self) -> bool:
        """Test the connection eagerly so failures surface at startup."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as exc:
            _report_connection_failure(str(self.engine.url), exc)
            return False

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def close(self) -> None:
        if self._closed:
            return
        self.engine.dispose()
        self._closed = True
        logger.debug("Database engine disposed")

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:
        self.close()
        return None
