"""Database connection management with connection pooling."""
from contextlib import contextmanager
from threading import Event, Lock
from typing import Callable, Iterator, Optional
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine, URL
from sqlalchemy.exc import SQLAlchemyError, TimeoutError as PoolTimeoutError
from sqlalchemy.pool import QueuePool

from mssql_bridge.config import BridgeSettings
from mssql_bridge.errors import PoolConnectionError

logger = logging.getLogger(__name__)

EngineFactory = Callable[[BridgeSettings], Engine]


def create_mssql_engine(settings: BridgeSettings) -> Engine:
    """
    Build a pooled SQLAlchemy engine for SQL Server over pymssql.

    The QueuePool never opens connections ahead of demand, so the lower
    bound is always zero; ``pool_max`` caps concurrent connections and
    ``pool_recycle`` retires connections after the idle timeout.
    """
    url = URL.create(
        'mssql+pymssql',
        username=settings.username or None,
        password=settings.password or None,
        host=settings.server,
        port=settings.db_port,
        database=settings.database or None,
    )
    connect_args = {
        'login_timeout': settings.connect_timeout,
        'timeout': settings.request_timeout,
        'encryption': 'require' if settings.encrypt else 'off',
    }
    if settings.encrypt and not settings.trust_server_certificate:
        # FreeTDS only verifies the certificate when a CA file is configured
        logger.warning(
            "MSSQL_TRUST_SERVER_CERTIFICATE is false; certificate validation "
            "follows the FreeTDS 'ca file' setting"
        )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=settings.pool_max,
        max_overflow=0,
        pool_timeout=settings.connect_timeout,
        pool_recycle=settings.pool_idle_timeout,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


class PoolManager:
    """
    Owns the single connection pool for the process.

    ``ensure_pool`` is single-flight: the check-and-create sequence runs
    under a lock, so concurrent requests racing to reconnect build one
    engine between them.
    """

    def __init__(self, settings: BridgeSettings, engine_factory: EngineFactory = create_mssql_engine):
        self._settings = settings
        self._engine_factory = engine_factory
        self._engine: Optional[Engine] = None
        self._connected = False
        self._last_error: Optional[str] = None
        self._lock = Lock()
        self._startup_done = Event()

    @property
    def connected(self) -> bool:
        return self._engine is not None and self._connected

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def status(self) -> str:
        """'degraded' after a failed connect not yet followed by a good one."""
        if self._last_error is not None and not self.connected:
            return 'degraded'
        return 'ok'

    def ensure_pool(self) -> Engine:
        """
        Return a live engine, creating one if absent or disconnected.

        Raises:
            PoolConnectionError: If the driver cannot establish a session
        """
        engine = self._engine
        if engine is not None and self._connected:
            return engine

        with self._lock:
            # Another caller may have connected while we waited
            if self._engine is not None and self._connected:
                return self._engine
            return self._replace_engine()

    def _replace_engine(self) -> Engine:
        stale, self._engine, self._connected = self._engine, None, False
        if stale is not None:
            self._dispose(stale)

        logger.info("Connecting to MSSQL database: %s", self._settings.describe())
        try:
            engine = self._engine_factory(self._settings)
        except SQLAlchemyError as exc:
            self._last_error = str(exc)
            logger.error("Database connection failed: %s", exc)
            raise PoolConnectionError(f"Database connection failed: {exc}") from exc

        try:
            with engine.connect():
                pass
        except (SQLAlchemyError, OSError) as exc:
            self._dispose(engine)
            self._last_error = str(exc)
            logger.error("Database connection failed: %s", exc)
            raise PoolConnectionError(f"Database connection failed: {exc}") from exc

        self._engine = engine
        self._connected = True
        self._last_error = None
        logger.info("Connected to MSSQL database")
        return engine

    def mark_disconnected(self, engine: Engine, reason: Optional[BaseException] = None) -> None:
        """Flag the current engine as dead so the next request rebuilds it."""
        if engine is not self._engine:
            return
        self._connected = False
        if reason is not None:
            self._last_error = str(reason)
        logger.warning("Database connection lost: %s", reason)

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """
        Check out one connection inside its own transaction.

        Commits when the block exits cleanly, rolls back on error, and
        returns the connection to the pool either way.
        """
        engine = self.ensure_pool()
        try:
            conn = engine.connect()
        except PoolTimeoutError as exc:
            raise PoolConnectionError(f"Connection pool exhausted: {exc}") from exc
        except SQLAlchemyError as exc:
            self.mark_disconnected(engine, exc)
            raise PoolConnectionError(f"Database connection failed: {exc}") from exc

        with conn:
            with conn.begin():
                yield conn

    def startup(self) -> bool:
        """Eager connect at process start; failure leaves the pool degraded."""
        try:
            self.ensure_pool()
            return True
        except PoolConnectionError as exc:
            logger.error("Failed to initialize database connection: %s", exc)
            return False
        finally:
            self._startup_done.set()

    def wait_for_startup(self, timeout: Optional[float] = None) -> bool:
        """Block until the startup connect attempt has finished, either way."""
        return self._startup_done.wait(timeout)

    def close(self) -> None:
        """Close all connections in the pool."""
        with self._lock:
            engine, self._engine, self._connected = self._engine, None, False
        if engine is not None:
            self._dispose(engine)
            logger.info("Database connection pool closed")

    @staticmethod
    def _dispose(engine: Engine) -> None:
        try:
            engine.dispose()
        except Exception as exc:  # pragma: no cover - best effort close
            logger.warning("Error while disposing connection pool: %s", exc)
