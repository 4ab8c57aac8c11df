"""Reconciler for databases."""

import logging
from typing import Any, Dict, Optional, Tuple

import commands
from commands import Operation
from descriptors import ResourceKind
from diagnostics import PreconditionError
from reconcilers.base import ResourceReconciler

logger = logging.getLogger(__name__)


class DatabaseReconciler(ResourceReconciler):
    """
    Databases are renamed in place; collation and compatibility level are
    fixed at creation, except that a level a failed create never set is
    applied by the next update. The owner, when declared, must already exist as a
    server principal and is assigned with ALTER AUTHORIZATION.
    """

    kind = ResourceKind.DATABASE

    async def check_preconditions(
        self, record: Dict[str, Any], previous: Optional[Dict[str, Any]]
    ) -> None:
        owner = record.get("owner")
        if not owner:
            return
        if previous is not None and previous.get("owner") == owner:
            return

        probe = commands.build(self.kind, Operation.PRINCIPAL_EXISTS, record)[0]
        if await self._query(probe) is None:
            raise PreconditionError(
                f"owner does not exist: no server principal named {owner!r}",
                attribute="owner",
            )

    def refresh(self, record: Dict[str, Any], row: Tuple[Any, ...]) -> Dict[str, Any]:
        _, collation, compatibility_level, owner = row
        refreshed = dict(record)
        refreshed["collation"] = collation
        # A level never set by the create sequence stays unset until an update applies it
        if record.get("compatibility_level") is not None:
            refreshed["compatibility_level"] = compatibility_level
        # An undeclared owner stays unmanaged
        if record.get("owner") is not None:
            refreshed["owner"] = owner
        return refreshed
