"""Pytest configuration and fixtures."""

from typing import Any, Dict, List, Optional, Tuple

import pytest

from diagnostics import NoRowsError, RemoteError
from reconcilers.registry import register_builtin_reconcilers, reset_registry


class FakeServer:
    """
    In-memory stand-in for ServerHandle.

    Records every statement sent to it. Queries are answered from canned
    rows keyed by a fragment of the SQL text; a fragment mapped to None (or
    no matching fragment at all) means the query returns no row.
    """

    def __init__(self):
        self.executed: List[Tuple[str, Tuple[Any, ...]]] = []
        self.queries: List[Tuple[str, Tuple[Any, ...]]] = []
        self.rows: Dict[str, Optional[Tuple[Any, ...]]] = {}
        self.failures: Dict[str, str] = {}
        self.closed = False

    def on_query(self, fragment: str, row: Optional[Tuple[Any, ...]]) -> None:
        self.rows[fragment] = row

    def fail_on(self, fragment: str, message: str = "statement failed") -> None:
        self.failures[fragment] = message

    def _maybe_fail(self, sql: str) -> None:
        for fragment, message in self.failures.items():
            if fragment in sql:
                raise RemoteError(message)

    async def execute(self, sql: str, params=()) -> None:
        self.executed.append((sql, tuple(params)))
        self._maybe_fail(sql)

    async def query_row(self, sql: str, params=()) -> Tuple[Any, ...]:
        self.queries.append((sql, tuple(params)))
        self._maybe_fail(sql)
        for fragment, row in self.rows.items():
            if fragment in sql:
                if row is None:
                    break
                return row
        raise NoRowsError(sql)

    async def query_scalar(self, sql: str, params=()) -> Any:
        return (await self.query_row(sql, params))[0]

    async def close(self) -> None:
        self.closed = True

    @property
    def statements(self) -> List[str]:
        return [sql for sql, _ in self.executed]


@pytest.fixture
def server():
    """A fresh FakeServer."""
    return FakeServer()


@pytest.fixture
def registry():
    """A registry holding the built-in reconcilers."""
    reset_registry()
    yield register_builtin_reconcilers()
    reset_registry()


@pytest.fixture
def database_state():
    """Observed record of a database as persisted after create."""
    return {
        "id": "sales",
        "name": "sales",
        "collation": "SQL_Latin1_General_CP1_CI_AS",
        "compatibility_level": 150,
        "owner": None,
    }


@pytest.fixture
def login_state():
    """Observed record of a sql login as persisted after create."""
    return {
        "id": "app",
        "name": "app",
        "type": "sql",
        "password": "s3cret",
        "default_database": "master",
    }
