"""
PostgreSQL connection management.

Provides a context manager that always closes the connection, plus an
in-memory mock used by tests and by DB_MOCK_MODE.

Repositories never open connections themselves; commands open exactly one
connection per invocation and hand it to the repositories they need.
"""

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Generator, Optional, Protocol, Sequence

import psycopg2

from src.core.safety import mask_url

logger = logging.getLogger(__name__)


class DatabaseConnectionError(Exception):
    """Raised when the PostgreSQL connection fails."""
    pass


class PostgresConnection(Protocol):
    """
    The slice of the DB-API connection interface the repositories use.

    Using a protocol means tests can provide a mock without a database.
    """

    def cursor(self): ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...
    def close(self) -> None: ...


@dataclass
class PostgresConfig:
    """Configuration for a PostgreSQL connection."""
    dsn: str
    connect_timeout: int = 15
    application_name: str = "marketplace-ops"


@contextmanager
def get_postgres_connection(config: PostgresConfig) -> Generator[PostgresConnection, None, None]:
    """
    Provide a PostgreSQL connection with automatic cleanup.

    Usage:
        with get_postgres_connection(config) as conn:
            cursor = conn.cursor()
            # do work
            conn.commit()
    """
    try:
        conn = psycopg2.connect(
            config.dsn,
            connect_timeout=config.connect_timeout,
            application_name=config.application_name,
        )
    except psycopg2.Error as e:
        logger.error(
            "PostgreSQL connection failed",
            extra={"error": str(e), "dsn": mask_url(config.dsn)}
        )
        raise DatabaseConnectionError(f"Database connection failed: {e}") from e

    logger.debug("Established PostgreSQL connection", extra={"dsn": mask_url(config.dsn)})

    try:
        yield conn
    finally:
        try:
            conn.close()
            logger.debug("Closed PostgreSQL connection")
        except psycopg2.Error as e:
            logger.warning(
                "Error closing PostgreSQL connection",
                extra={"error": str(e)}
            )


# ---------------------------------------------------------------------------
# Mock Connection for Local Development and Tests
# ---------------------------------------------------------------------------

def _normalise(query: Any) -> str:
    return re.sub(r"\s+", " ", str(query)).strip()


@dataclass
class _QueuedResult:
    rows: list
    columns: Optional[Sequence[str]]
    rowcount: Optional[int]
    match: Optional[str]
    error: Optional[Exception] = None


class MockPostgresCursor:
    """
    Mock cursor backed by a MockPostgresConnection.

    Results are served from the connection's queue: the first queued
    result whose match string appears in the query wins, falling back to
    the oldest unmatched result. Queries with nothing queued return no rows.
    """

    def __init__(self, connection: "MockPostgresConnection") -> None:
        self._connection = connection
        self._results: list = []
        self._position = 0
        self.rowcount: int = -1
        self.description: Optional[list[tuple]] = None
        self.closed = False

    def execute(self, query: Any, params: Optional[Sequence[Any]] = None) -> None:
        text = _normalise(query)
        logger.debug("Mock cursor execute", extra={"query": text[:100], "params": params})
        self._connection.executed.append((text, tuple(params) if params is not None else None))

        result = self._connection._take_result(text)
        if result is None:
            self._results, self.description = [], None
            self.rowcount = 0
        else:
            if result.error is not None:
                raise result.error
            self._results = list(result.rows)
            self.description = (
                [(name, None, None, None, None, None, None) for name in result.columns]
                if result.columns
                else None
            )
            self.rowcount = result.rowcount if result.rowcount is not None else len(self._results)
        self._position = 0

    def fetchone(self):
        if self._position >= len(self._results):
            return None
        row = self._results[self._position]
        self._position += 1
        return row

    def fetchall(self) -> list:
        rows = self._results[self._position:]
        self._position = len(self._results)
        return rows

    def fetchmany(self, size: int = 1) -> list:
        rows = self._results[self._position:self._position + size]
        self._position += len(rows)
        return rows

    def close(self) -> None:
        self.closed = True


class MockPostgresConnection:
    """
    In-memory stand-in for a psycopg2 connection.

    Records every executed statement so tests can assert on the SQL a
    repository sends, and counts commits and rollbacks.
    """

    def __init__(self) -> None:
        self.executed: list[tuple[str, Optional[tuple]]] = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False
        self._queue: list[_QueuedResult] = []

        logger.info("Initialized mock PostgreSQL connection (in-memory)")

    def queue_result(
        self,
        rows: Sequence[Any] = (),
        match: Optional[str] = None,
        columns: Optional[Sequence[str]] = None,
        rowcount: Optional[int] = None,
    ) -> None:
        """Queue rows for a future query. match is a case-insensitive substring."""
        self._queue.append(_QueuedResult(list(rows), columns, rowcount, match))

    def queue_error(self, error: Exception, match: Optional[str] = None) -> None:
        """Make a future query raise error."""
        self._queue.append(_QueuedResult([], None, None, match, error))

    def _take_result(self, query: str) -> Optional[_QueuedResult]:
        lowered = query.lower()
        for i, queued in enumerate(self._queue):
            if queued.match and queued.match.lower() in lowered:
                return self._queue.pop(i)
        for i, queued in enumerate(self._queue):
            if queued.match is None:
                return self._queue.pop(i)
        return None

    def queries(self, containing: str = "") -> list[str]:
        """Executed statements, optionally filtered by a substring (for test assertions)."""
        return [q for q, _ in self.executed if containing.lower() in q.lower()]

    def cursor(self) -> MockPostgresCursor:
        return MockPostgresCursor(self)

    def commit(self) -> None:
        self.commits += 1
        logger.debug("Mock connection commit")

    def rollback(self) -> None:
        self.rollbacks += 1
        logger.debug("Mock connection rollback")

    def close(self) -> None:
        self.closed = True
        logger.debug("Mock connection close")


@contextmanager
def get_mock_postgres_connection() -> Generator[MockPostgresConnection, None, None]:
    conn = MockPostgresConnection()
    try:
        yield conn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

@contextmanager
def create_postgres_connection(
    config: Optional[PostgresConfig] = None,
    mock_mode: bool = False,
) -> Generator[PostgresConnection, None, None]:
    """
    Create a PostgreSQL connection based on configuration.

    Args:
        config: Connection configuration (required if not mock_mode)
        mock_mode: If True, yield an in-memory mock connection

    Yields:
        PostgresConnection implementation (real or mock)
    """
    if mock_mode:
        with get_mock_postgres_connection() as conn:
            yield conn
    else:
        if config is None:
            raise ValueError("config is required when not in mock mode")

        with get_postgres_connection(config) as conn:
            yield conn
