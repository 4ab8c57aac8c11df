"""
Server Handle - Connection to the target SQL Server instance.

Wraps a single pyodbc connection shared by every reconciler. Statements run
in a worker thread so the event loop is not blocked; a lock serializes them
because a pyodbc connection cannot be used from two threads at once.
No pooling, retry or backoff is done here: a failed statement is surfaced
immediately as a RemoteError.
"""

import asyncio
import logging
import threading
from typing import Any, Optional, Sequence, Tuple

import pyodbc

from diagnostics import NoRowsError, RemoteError

logger = logging.getLogger(__name__)


class ServerHandle:
    """Executes statements and row queries against SQL Server."""

    def __init__(self, dsn: str, timeout: int = 30):
        self.dsn = dsn
        self.timeout = timeout
        self.connection: Optional[pyodbc.Connection] = None
        self._lock = threading.Lock()

    async def connect(self) -> None:
        """Open the connection and check the server answers."""
        try:
            self.connection = await asyncio.to_thread(
                pyodbc.connect, self.dsn, autocommit=True, timeout=self.timeout
            )
        except pyodbc.Error as e:
            raise RemoteError(f"Unable to connect to SQL Server: {e}") from e
        try:
            await self.query_row("SELECT 1")
        except (RemoteError, NoRowsError):
            await self.close()
            raise
        logger.info("Connected to SQL Server")

    async def close(self) -> None:
        """Close the connection."""
        if self.connection is not None:
            await asyncio.to_thread(self.connection.close)
            self.connection = None
            logger.info("Closed SQL Server connection")

    def _ensure_connected(self) -> None:
        if self.connection is None:
            raise RuntimeError(
                "Server not connected. Call connect() before issuing statements."
            )

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        """
        Execute a statement that returns no rows.

        Raises:
            RemoteError: If the server rejects the statement.
        """
        self._ensure_connected()
        await asyncio.to_thread(self._run, sql, tuple(params), False)

    async def query_row(self, sql: str, params: Sequence[Any] = ()) -> Tuple[Any, ...]:
        """
        Run a query and return its first row.

        Result sets without columns (USE, SET NOCOUNT, row counts) that
        precede the SELECT in the same batch are skipped.

        Raises:
            NoRowsError: If the query returned no row.
            RemoteError: If the server rejects the query.
        """
        self._ensure_connected()
        row = await asyncio.to_thread(self._run, sql, tuple(params), True)
        if row is None:
            raise NoRowsError(sql)
        return row

    async def query_scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        """Run a query and return the first column of its first row."""
        row = await self.query_row(sql, params)
        return row[0]

    def _run(self, sql: str, params: Tuple[Any, ...], fetch: bool) -> Optional[Tuple]:
        with self._lock:
            cursor = self.connection.cursor()
            try:
                if params:
                    cursor.execute(sql, params)
                else:
                    cursor.execute(sql)
                if not fetch:
                    while cursor.nextset():
                        pass
                    return None
                while cursor.description is None:
                    if not cursor.nextset():
                        return None
                row = cursor.fetchone()
                return tuple(row) if row is not None else None
            except pyodbc.Error as e:
                raise RemoteError(_driver_message(e)) from e
            finally:
                cursor.close()


def _driver_message(error: pyodbc.Error) -> str:
    """Return the server's message from a pyodbc error."""
    if len(error.args) > 1:
        return str(error.args[1])
    return str(error)
