"""Read-only probe of the server version."""

import logging
from typing import Any, Mapping, Optional

import codec
import commands
from commands import Operation
from descriptors import ResourceKind
from diagnostics import Diagnostics, NoRowsError, RemoteError, ValidationError
from reconcilers.base import LifecycleResult, ResourceReconciler

logger = logging.getLogger(__name__)


class ServerInfoReconciler(ResourceReconciler):
    """Reports the SQL Server version. Supports read only."""

    kind = ResourceKind.SERVER_INFO

    async def read(self, state: Optional[Mapping[str, Any]] = None) -> LifecycleResult:
        diagnostics = Diagnostics()
        statement = commands.build(self.kind, Operation.VERSION, {})[0]
        logger.debug(f"Querying: {statement}")
        try:
            version = await self.server.query_scalar(statement.text, statement.params)
        except NoRowsError:
            version = None
        except RemoteError as e:
            self._record_error(e, codec.SERVER_INFO_ID, diagnostics)
            return LifecycleResult(diagnostics=diagnostics)

        return LifecycleResult(
            state={"id": codec.SERVER_INFO_ID, "version": version},
            diagnostics=diagnostics,
        )

    async def create(self, desired: Mapping[str, Any]) -> LifecycleResult:
        return self._read_only("create")

    async def update(
        self, desired: Mapping[str, Any], state: Mapping[str, Any]
    ) -> LifecycleResult:
        return self._read_only("update")

    async def delete(self, state: Mapping[str, Any]) -> LifecycleResult:
        return self._read_only("delete")

    async def import_resource(self, identifier: str) -> LifecycleResult:
        return await self.read()

    def _read_only(self, operation: str) -> LifecycleResult:
        diagnostics = Diagnostics()
        self._record_error(
            ValidationError(f"{self.kind.value} is read-only; cannot {operation}"),
            codec.SERVER_INFO_ID,
            diagnostics,
        )
        return LifecycleResult(diagnostics=diagnostics)
