"""
Snowflake database connection management.

Provides connection factory and context manager for Snowflake operations.
Includes mock mode with in-memory storage for local development.

Most code never touches this module directly - it goes through
VisitorRepository, which handles the translation between domain models
and database rows.
"""

import base64
import logging
import re
from contextlib import contextmanager
from typing import Generator, Optional

from .repositories.visitors import SnowflakeConfig, SnowflakeConnection

logger = logging.getLogger(__name__)


class SnowflakeConnectionError(Exception):
    """Raised when Snowflake connection fails."""
    pass


def _load_private_key(config: SnowflakeConfig) -> bytes:
    """
    Load the private key for key-pair authentication.

    Snowflake wants DER-encoded PKCS8 bytes, not a file path. The key
    comes either from a PEM file or from a base64-encoded PEM (which is
    easier to inject as a deployment secret).
    """
    from cryptography.hazmat.backends import default_backend
    from cryptography.hazmat.primitives import serialization

    if config.private_key_path:
        with open(config.private_key_path, 'rb') as key_file:
            pem = key_file.read()
    else:
        pem = base64.b64decode(config.private_key_base64)

    private_key = serialization.load_pem_private_key(
        pem,
        password=None,  # No password on the key
        backend=default_backend()
    )

    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )


@contextmanager
def get_snowflake_connection(config: SnowflakeConfig) -> Generator[SnowflakeConnection, None, None]:
    """
    Provide Snowflake connection with automatic cleanup.

    Supports both password and key-pair authentication:
    - If a private key (path or base64) is set, uses key-pair auth
    - Otherwise, uses password auth

    Only connection failures are translated into SnowflakeConnectionError.
    Errors raised by the caller inside the with-block pass through as-is.

    Usage:
        with get_snowflake_connection(config) as conn:
            cursor = conn.cursor()
            # do work
            conn.commit()
    """
    try:
        import snowflake.connector
    except ImportError:
        raise ImportError(
            "snowflake-connector-python is required. "
            "Install with: pip install snowflake-connector-python"
        )

    connect_params = {
        'account': config.account,
        'user': config.user,
        'database': config.database,
        'schema': config.schema,
        'warehouse': config.warehouse,
        'role': config.role,
        'client_session_keep_alive': True,
    }

    if config.private_key_path or config.private_key_base64:
        logger.info("Using key-pair authentication for Snowflake")
        connect_params['private_key'] = _load_private_key(config)
    elif config.password:
        logger.info("Using password authentication for Snowflake")
        connect_params['password'] = config.password
    else:
        raise SnowflakeConnectionError(
            "Either password or a private key must be provided"
        )

    try:
        conn = snowflake.connector.connect(**connect_params)
    except snowflake.connector.errors.DatabaseError as e:
        logger.error(
            "Snowflake connection failed",
            extra={"error": str(e), "account": config.account}
        )
        raise SnowflakeConnectionError(f"Database connection failed: {e}")

    logger.debug(
        "Established Snowflake connection",
        extra={
            "account": config.account,
            "database": config.database,
            "schema": config.schema,
        }
    )

    try:
        yield conn
    finally:
        try:
            conn.close()
            logger.debug("Closed Snowflake connection")
        except Exception as e:
            logger.warning(
                "Error closing Snowflake connection",
                extra={"error": str(e)}
            )


# ---------------------------------------------------------------------------
# Mock Connection for Local Development
# ---------------------------------------------------------------------------

_INSERT = re.compile(r"INSERT INTO (\w+)\s*\(([^)]*)\)\s*VALUES", re.IGNORECASE | re.DOTALL)
_UPDATE = re.compile(r"UPDATE (\w+)\s+SET\s+(.*?)\s+WHERE\s+(\w+)\s*=\s*%s", re.IGNORECASE | re.DOTALL)
_SELECT = re.compile(r"SELECT\s+(.*?)\s+FROM\s+(\w+)\s+WHERE\s+(\w+)\s*=\s*%s", re.IGNORECASE | re.DOTALL)
_DELETE = re.compile(r"DELETE FROM (\w+)\s+WHERE\s+(\w+)\s*=\s*%s", re.IGNORECASE | re.DOTALL)
_NEXTVAL = re.compile(r"SELECT\s+(\w+)\.NEXTVAL", re.IGNORECASE)


class MockSnowflakeCursor:
    """
    Mock Snowflake cursor for testing.

    Implements just enough of the cursor interface for VisitorRepository:
    sequence NEXTVAL, single-row INSERT, UPDATE/SELECT/DELETE keyed by one
    column. Queries are matched by pattern, which is simplified but
    sufficient for exercising the API flow.
    """

    def __init__(self, storage: dict) -> None:
        self._storage = storage
        self._results: list = []
        self._rowcount: int = 0

    def execute(self, query: str, params: Optional[tuple] = None) -> 'MockSnowflakeCursor':
        logger.debug(
            "Mock cursor execute",
            extra={"query": query.strip()[:100]}
        )

        params = tuple(params or ())
        self._results = []
        self._rowcount = 0

        failure = self._storage['fail_on']
        if failure and failure.lower() in query.lower():
            raise RuntimeError(f"Injected failure for query containing {failure!r}")

        handlers = (
            (_NEXTVAL, self._handle_nextval),
            (_INSERT, self._handle_insert),
            (_UPDATE, self._handle_update),
            (_DELETE, self._handle_delete),
            (_SELECT, self._handle_select),
        )
        for pattern, handler in handlers:
            match = pattern.search(query)
            if match:
                handler(match, params)
                break

        return self

    def _table(self, name: str) -> dict:
        return self._storage['tables'].setdefault(name.lower(), {})

    def _handle_nextval(self, match: re.Match, params: tuple) -> None:
        sequence = match.group(1).lower()
        sequences = self._storage["sequences"]
        sequences[sequence] = sequences.get(sequence, 0) + 1
        self._results = [(sequences[sequence],)]

    def _handle_insert(self, match: re.Match, params: tuple) -> None:
        columns = [col.strip().lower() for col in match.group(2).split(",")]
        row = dict(zip(columns, params))
        self._table(match.group(1))[row[columns[0]]] = row
        self._rowcount = 1

    def _handle_update(self, match: re.Match, params: tuple) -> None:
        assignments = [a.split("=")[0].strip().lower() for a in match.group(2).split(",")]
        row = self._table(match.group(1)).get(params[-1])
        if row is None:
            return
        row.update(zip(assignments, params[:-1]))
        self._rowcount = 1

    def _handle_select(self, match: re.Match, params: tuple) -> None:
        columns = [col.strip().lower() for col in match.group(1).split(",")]
        row = self._table(match.group(2)).get(params[0])
        if row is not None:
            self._results = [tuple(row.get(col) for col in columns)]

    def _handle_delete(self, match: re.Match, params: tuple) -> None:
        if self._table(match.group(1)).pop(params[0], None) is not None:
            self._rowcount = 1

    def fetchone(self):
        """Fetch one row from results."""
        if not self._results:
            return None
        return self._results[0]

    def fetchall(self) -> list:
        """Fetch all rows from results."""
        return self._results

    def close(self) -> None:
        """Close cursor (no-op for mock)."""
        pass

    @property
    def rowcount(self) -> int:
        """Return number of rows affected."""
        return self._rowcount


class MockSnowflakeConnection:
    """
    Mock Snowflake connection for local development.

    Stores rows in memory keyed by their first inserted column.
    Not suitable for production, but perfect for:
    - Local development
    - Unit tests
    - CI/CD environments
    """

    def __init__(self) -> None:
        # {'tables': {table: {key: row_dict}}, 'sequences': {name: last_value}}
        self._storage: dict = {
            'tables': {'visitors': {}},
            'sequences': {},
            'fail_on': None,
        }

        logger.info("Initialized mock Snowflake connection (in-memory)")

    def cursor(self) -> MockSnowflakeCursor:
        """Create a mock cursor."""
        return MockSnowflakeCursor(self._storage)

    def commit(self) -> None:
        """Commit transaction (no-op for mock, always auto-commits)."""
        logger.debug("Mock connection commit")

    def rollback(self) -> None:
        """Rollback transaction (no-op for mock)."""
        logger.debug("Mock connection rollback")

    def close(self) -> None:
        """Close connection (no-op for mock)."""
        logger.debug("Mock connection close")

    # Helper methods for testing
    def _get_visitor(self, visitor_id: int) -> Optional[dict]:
        """Get a visitor row from mock storage (for test assertions)."""
        return self._storage['tables']['visitors'].get(visitor_id)

    def _fail_queries_containing(self, fragment: Optional[str]) -> None:
        """Make every query containing fragment raise (for test setup)."""
        self._storage['fail_on'] = fragment

    def _clear(self) -> None:
        """Clear all mock storage (for test cleanup)."""
        for table in self._storage['tables'].values():
            table.clear()
        self._storage['sequences'].clear()
        self._storage['fail_on'] = None


@contextmanager
def get_mock_snowflake_connection() -> Generator[MockSnowflakeConnection, None, None]:
    """Provide mock Snowflake connection for local development."""
    conn = MockSnowflakeConnection()
    try:
        yield conn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

@contextmanager
def create_snowflake_connection(
    config: Optional[SnowflakeConfig] = None,
    mock_mode: bool = False,
) -> Generator[SnowflakeConnection, None, None]:
    """
    Create Snowflake connection based on configuration.

    Args:
        config: Snowflake configuration (required if not mock_mode)
        mock_mode: If True, return mock connection for testing

    Yields:
        SnowflakeConnection implementation (real or mock)
    """
    if mock_mode:
        with get_mock_snowflake_connection() as conn:
            yield conn
    else:
        if config is None:
            raise ValueError("config is required when not in mock mode")

        with get_snowflake_connection(config) as conn:
            yield conn
