"""Shared fixtures: an in-memory stand-in for a pooled SQLAlchemy engine."""
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from mssql_bridge.config import BridgeSettings


class FakeDriverError(Exception):
    """Mimics pymssql errors: (number, b"message")."""


def driver_error(number: int, message: str) -> FakeDriverError:
    return FakeDriverError(number, f"{message}DB-Lib error message 20018, severity 16:\n".encode())


def programming_error(message: str = "Invalid object name 'missing_table'.") -> ProgrammingError:
    return ProgrammingError("EXEC", None, driver_error(208, message))


def connect_error(message: str = "Unable to connect: Adaptive Server is unavailable") -> OperationalError:
    return OperationalError("connect", None, driver_error(20009, message))


class FakeResult:
    """Positional records plus column names, like a CursorResult."""

    def __init__(self, rows: Optional[List[Any]], columns: Optional[List[str]] = None):
        self._rows = rows
        if columns is None and rows:
            columns = list(rows[0])
        self._columns = columns or []

    @property
    def returns_rows(self) -> bool:
        return self._rows is not None

    def keys(self):
        return list(self._columns)

    def __iter__(self):
        for row in self._rows or []:
            yield tuple(row.values()) if isinstance(row, dict) else tuple(row)


class FakeConnection:
    def __init__(self, engine: "FakeEngine"):
        self.engine = engine
        self.options: Dict[str, Any] = {}
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True
        return False

    def begin(self):
        return FakeTransaction(self.engine)

    def execution_options(self, **options):
        self.options.update(options)
        return self

    def exec_driver_sql(self, sql: str, params: Optional[Dict[str, Any]] = None):
        self.engine.executed.append((sql, params, dict(self.options)))
        return FakeResult(self.engine.handler(sql, params), self.engine.columns)


class FakeTransaction:
    def __init__(self, engine: "FakeEngine"):
        self.engine = engine

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.engine.commits += 1
        else:
            self.engine.rollbacks += 1
        return False


class FakeEngine:
    def __init__(self, handler: Callable, connect_failures: int = 0):
        self.handler = handler
        self.connect_failures = connect_failures
        self.connects = 0
        self.executed: List = []
        self.commits = 0
        self.rollbacks = 0
        self.disposed = False
        self.columns: Optional[List[str]] = None

    def connect(self) -> FakeConnection:
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise connect_error()
        self.connects += 1
        return FakeConnection(self)

    def dispose(self) -> None:
        self.disposed = True


class FakeEngineFactory:
    """Engine factory that records every engine it builds."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, connect_failures: int = 0):
        self.rows = rows if rows is not None else []
        self.connect_failures = connect_failures
        self.error: Optional[Exception] = None
        self.columns: Optional[List[str]] = None
        self.engines: List[FakeEngine] = []

    @property
    def calls(self) -> int:
        return len(self.engines)

    @property
    def engine(self) -> FakeEngine:
        return self.engines[-1]

    def handler(self, sql, params):
        if self.error is not None:
            raise self.error
        return self.rows

    def __call__(self, settings: BridgeSettings) -> FakeEngine:
        failures = 1 if self.connect_failures > 0 else 0
        self.connect_failures -= failures
        engine = FakeEngine(self.handler, connect_failures=failures)
        engine.columns = self.columns
        self.engines.append(engine)
        return engine


@pytest.fixture
def settings():
    return BridgeSettings(
        server='db.test',
        database='bridge',
        username='bridge_user',
        password='secret',
        environment='development',
    )


@pytest.fixture
def factory():
    return FakeEngineFactory(rows=[{"x": 1}])
