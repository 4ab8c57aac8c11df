"""
Reconciler Base - The resource lifecycle state machine.

A reconciler converges one resource kind. Each of its entry points (create,
read, update, delete) runs to completion within the call: it decodes the
attribute bags, checks preconditions, renders the kind's statements and runs
them in order through the server handle. Failures are recorded in the call's
Diagnostics rather than raised; once a blocking error is recorded the
remaining steps of that call are skipped.

Kind-specific behavior lives in the subclasses through a small set of hooks
(check_preconditions, refresh); statement rendering lives in commands.py.
"""

import logging
from abc import ABC
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import codec
import commands
from commands import Operation, Statement
from descriptors import ResourceDescriptor, ResourceKind, describe
from diagnostics import (
    Diagnostics,
    IrreplaceableAttributeError,
    NoRowsError,
    PartialApplyError,
    PreconditionError,
    ReconcileError,
    RemoteError,
)

logger = logging.getLogger(__name__)


@dataclass
class LifecycleResult:
    """
    Outcome of one lifecycle call.

    state is the observed record to persist. It is None after a successful
    delete and when read finds the resource gone. When partial is True the
    call failed after changing the server, and state describes what exists
    now.
    """

    state: Optional[Dict[str, Any]] = None
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    partial: bool = False

    @property
    def success(self) -> bool:
        return not self.diagnostics.has_blocking_error()

    @property
    def absent(self) -> bool:
        return self.success and self.state is None


class ResourceReconciler(ABC):
    """
    Base class for the reconciler of one resource kind.

    Subclasses set ``kind`` and override the hooks they need. The server
    handle is passed in explicitly; reconcilers hold no other state.
    """

    kind: ResourceKind

    def __init__(self, server: Any):
        self.server = server

    @property
    def descriptor(self) -> ResourceDescriptor:
        return describe(self.kind)

    # ==================== Hooks ====================

    async def check_preconditions(
        self, record: Dict[str, Any], previous: Optional[Dict[str, Any]]
    ) -> None:
        """
        Check that objects the record refers to exist on the server.

        Args:
            record: The desired record.
            previous: The observed record on update, None on create.

        Raises:
            PreconditionError: If a referenced object is missing.
            RemoteError: If the check itself fails.
        """

    def refresh(self, record: Dict[str, Any], row: Tuple[Any, ...]) -> Dict[str, Any]:
        """
        Merge a lookup row into the record.

        Attributes the catalog does not expose are kept as they were.
        """
        return dict(record)

    # ==================== Lifecycle ====================

    async def create(self, desired: Mapping[str, Any]) -> LifecycleResult:
        """
        Create the resource described by a desired bag.

        Returns:
            LifecycleResult with the observed record on success.
        """
        diagnostics = Diagnostics()
        record = self._decode(desired, diagnostics)
        if diagnostics.has_blocking_error():
            return LifecycleResult(diagnostics=diagnostics)

        identifier = codec.compute_identifier(self.kind, record)
        try:
            await self.check_preconditions(record, None)
        except ReconcileError as e:
            self._record_error(e, identifier, diagnostics)
        if diagnostics.has_blocking_error():
            return LifecycleResult(diagnostics=diagnostics)

        statements = self._build(Operation.CREATE, record, identifier, diagnostics)
        if diagnostics.has_blocking_error():
            return LifecycleResult(diagnostics=diagnostics)

        applied, error = await self._execute(statements)
        if error is None:
            logger.info(f"Created {self.kind.value} {identifier!r}")
            return LifecycleResult(state=self._observed(record), diagnostics=diagnostics)

        if applied == 0:
            self._record_error(error, identifier, diagnostics)
            return LifecycleResult(diagnostics=diagnostics)

        empty = {name: None for name in self.descriptor.managed_attributes}
        snapshot = self._snapshot(empty, record, statements[:applied])
        self._record_error(
            PartialApplyError(
                f"{self.kind.value} {identifier!r} was created but "
                f"'{statements[applied]}' failed: {error.message}. "
                f"Retry with an update instead of creating it again."
            ),
            identifier,
            diagnostics,
        )
        return LifecycleResult(state=snapshot, diagnostics=diagnostics, partial=True)

    async def read(self, state: Mapping[str, Any]) -> LifecycleResult:
        """
        Refresh an observed record from the server.

        A resource that no longer exists yields an absent result (state None,
        no diagnostics); the caller drops it from persisted state.
        """
        diagnostics = Diagnostics()
        record = self._load_state(state, diagnostics)
        if diagnostics.has_blocking_error():
            return LifecycleResult(diagnostics=diagnostics)

        identifier = codec.compute_identifier(self.kind, record)
        try:
            row = await self._lookup(record)
        except RemoteError as e:
            self._record_error(e, identifier, diagnostics)
            return LifecycleResult(diagnostics=diagnostics)

        if row is None:
            logger.info(
                f"{self.kind.value} {identifier!r} no longer exists on the server"
            )
            return LifecycleResult(diagnostics=diagnostics)

        return LifecycleResult(
            state=self._observed(self.refresh(record, row)), diagnostics=diagnostics
        )

    async def update(
        self, desired: Mapping[str, Any], state: Mapping[str, Any]
    ) -> LifecycleResult:
        """
        Converge an existing resource onto a desired bag.

        Replace-only attributes that changed fail the call before any
        statement runs, unless the kind can rename that attribute. Renames
        run before in-place alterations.
        """
        diagnostics = Diagnostics()
        record = self._decode(desired, diagnostics)
        observed = self._load_state(state, diagnostics)
        if diagnostics.has_blocking_error():
            return LifecycleResult(diagnostics=diagnostics)

        identifier = codec.compute_identifier(self.kind, observed)
        diff = self.descriptor.diff(record, observed)
        renamed = [a for a in diff.requires_replace if a in self.descriptor.renameable]
        for attribute in diff.requires_replace:
            if attribute not in renamed:
                change = f"changing {attribute}"
                if attribute not in self.descriptor.sensitive_attributes:
                    change += (
                        f" from {observed.get(attribute)!r} "
                        f"to {record.get(attribute)!r}"
                    )
                self._record_error(
                    IrreplaceableAttributeError(
                        f"{change} requires deleting and recreating "
                        f"the {self.kind.value}",
                        attribute=attribute,
                    ),
                    identifier,
                    diagnostics,
                )
        if diagnostics.has_blocking_error():
            return LifecycleResult(diagnostics=diagnostics)

        try:
            await self.check_preconditions(record, observed)
        except ReconcileError as e:
            self._record_error(e, identifier, diagnostics)
        if diagnostics.has_blocking_error():
            return LifecycleResult(diagnostics=diagnostics)

        statements: List[Statement] = []
        if renamed:
            statements += self._build(
                Operation.RENAME, record, identifier, diagnostics, previous=observed
            )
        if diff.in_place:
            statements += self._build(
                Operation.ALTER,
                record,
                identifier,
                diagnostics,
                attributes=diff.in_place,
            )
        if diagnostics.has_blocking_error():
            return LifecycleResult(diagnostics=diagnostics)

        applied, error = await self._execute(statements)
        if error is None:
            if statements:
                logger.info(
                    f"Updated {self.kind.value} {identifier!r} "
                    f"({', '.join(renamed + diff.in_place)})"
                )
            return LifecycleResult(state=self._observed(record), diagnostics=diagnostics)

        if applied == 0:
            self._record_error(error, identifier, diagnostics)
            return LifecycleResult(diagnostics=diagnostics)

        snapshot = self._snapshot(observed, record, statements[:applied])
        self._record_error(
            PartialApplyError(
                f"{self.kind.value} {identifier!r} is now "
                f"{snapshot['id']!r} but '{statements[applied]}' failed: "
                f"{error.message}"
            ),
            identifier,
            diagnostics,
        )
        return LifecycleResult(state=snapshot, diagnostics=diagnostics, partial=True)

    async def delete(self, state: Mapping[str, Any]) -> LifecycleResult:
        """
        Remove the resource identified by an observed record.

        On failure the returned state is the unchanged record so the caller
        keeps tracking it.
        """
        diagnostics = Diagnostics()
        record = self._load_state(state, diagnostics)
        if diagnostics.has_blocking_error():
            return LifecycleResult(diagnostics=diagnostics)

        identifier = codec.compute_identifier(self.kind, record)
        statements = self._build(Operation.DELETE, record, identifier, diagnostics)
        if diagnostics.has_blocking_error():
            return LifecycleResult(diagnostics=diagnostics)

        _, error = await self._execute(statements)
        if error is not None:
            self._record_error(error, identifier, diagnostics)
            return LifecycleResult(state=self._observed(record), diagnostics=diagnostics)

        logger.info(f"Deleted {self.kind.value} {identifier!r}")
        return LifecycleResult(diagnostics=diagnostics)

    async def import_resource(self, identifier: str) -> LifecycleResult:
        """
        Start tracking an object that already exists on the server.

        Attributes the catalog does not expose (such as a login password)
        are left empty and get set by the next update.
        """
        diagnostics = Diagnostics()
        try:
            identity = codec.parse_identifier(self.kind, identifier)
        except ReconcileError as e:
            diagnostics.add_error(e)
            return LifecycleResult(diagnostics=diagnostics)

        record: Dict[str, Any] = {}
        for name in self.descriptor.managed_attributes:
            record[name] = self.descriptor.attribute(name).default
        record.update(identity)

        try:
            row = await self._lookup(record)
        except RemoteError as e:
            self._record_error(e, identifier, diagnostics)
            return LifecycleResult(diagnostics=diagnostics)

        if row is None:
            self._record_error(
                PreconditionError(f"{self.kind.value} {identifier!r} does not exist"),
                identifier,
                diagnostics,
            )
            return LifecycleResult(diagnostics=diagnostics)

        logger.info(f"Imported {self.kind.value} {identifier!r}")
        return LifecycleResult(
            state=self._observed(self.refresh(record, row)), diagnostics=diagnostics
        )

    # ==================== Helpers ====================

    def _decode(
        self, bag: Mapping[str, Any], diagnostics: Diagnostics
    ) -> Optional[Dict[str, Any]]:
        try:
            return codec.decode(self.kind, bag)
        except ReconcileError as e:
            diagnostics.add_error(e)
            return None

    def _load_state(
        self, state: Mapping[str, Any], diagnostics: Diagnostics
    ) -> Optional[Dict[str, Any]]:
        """
        Load a persisted observed record.

        Persisted state is not re-validated against the schema: an imported
        login, for instance, has no password yet. Only the identity must be
        complete.
        """
        state = state or {}
        record = {name: state.get(name) for name in self.descriptor.managed_attributes}
        try:
            codec.compute_identifier(self.kind, record)
        except ReconcileError as e:
            diagnostics.add_error(e)
            return None
        return record

    def _observed(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        observed = dict(record)
        observed["id"] = codec.compute_identifier(self.kind, record)
        return observed

    def _snapshot(
        self,
        base: Mapping[str, Any],
        record: Mapping[str, Any],
        applied: List[Statement],
    ) -> Dict[str, Any]:
        """Overlay onto base the attributes that the applied statements set."""
        snapshot = dict(base)
        for statement in applied:
            for attribute in statement.attributes:
                snapshot[attribute] = record.get(attribute)
        return self._observed(snapshot)

    def _build(
        self,
        operation: Operation,
        record: Dict[str, Any],
        identifier: str,
        diagnostics: Diagnostics,
        **options: Any,
    ) -> List[Statement]:
        try:
            return commands.build(self.kind, operation, record, **options)
        except ValueError as e:
            diagnostics.add_error(
                ReconcileError(str(e), kind=self.kind.value, identifier=identifier)
            )
            return []

    async def _execute(
        self, statements: List[Statement]
    ) -> Tuple[int, Optional[RemoteError]]:
        """
        Run statements strictly in order, stopping at the first failure.

        Returns:
            Tuple of (number of statements applied, error or None).
        """
        for index, statement in enumerate(statements):
            logger.debug(f"Executing: {statement}")
            try:
                await self.server.execute(statement.text, statement.params)
            except RemoteError as e:
                return index, e
        return len(statements), None

    async def _query(self, statement: Statement) -> Optional[Tuple[Any, ...]]:
        """Run a lookup query; None when it returns no row."""
        logger.debug(f"Querying: {statement}")
        try:
            return await self.server.query_row(statement.text, statement.params)
        except NoRowsError:
            return None

    async def _lookup(self, record: Dict[str, Any]) -> Optional[Tuple[Any, ...]]:
        """
        Find the resource on the server.

        For kinds living inside a database, a missing database means the
        resource is gone as well.
        """
        if commands.supports(self.kind, Operation.NAMESPACE_EXISTS):
            probe = commands.build(self.kind, Operation.NAMESPACE_EXISTS, record)[0]
            if await self._query(probe) is None:
                return None
        lookup = commands.build(self.kind, Operation.LOOKUP, record)[0]
        return await self._query(lookup)

    def _record_error(
        self, error: ReconcileError, identifier: Optional[str], diagnostics: Diagnostics
    ) -> None:
        error.kind = error.kind or self.kind.value
        error.identifier = error.identifier or identifier
        diagnostics.add_error(error)
