"""
Controller - Converges a manifest onto the server.

Similar to a Kubernetes controller run once: refreshes tracked resources to
detect drift, diffs every declared resource against its observed record, and
dispatches create/update/replace/delete calls to the reconciler of the
resource's kind. Resources are processed in manifest order and removed ones
in reverse tracking order; there is no dependency graph beyond that.
A failure is scoped to its resource: the run continues with the others.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import codec
from config import ControllerConfig
from descriptors import describe
from diagnostics import Diagnostics, ReconcileError
from manifest import ResourceSpec, split_address
from reconcilers.base import LifecycleResult, ResourceReconciler
from reconcilers.registry import ReconcilerRegistry, get_registry
from state import StateStore

logger = logging.getLogger(__name__)


class ChangeAction(Enum):
    """What a plan does to a resource."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "no-op"


@dataclass
class PlannedChange:
    """A single step of a plan."""

    address: str
    kind: str
    action: ChangeAction
    desired: Optional[Dict[str, Any]] = None
    state: Optional[Dict[str, Any]] = None
    attributes: List[str] = field(default_factory=list)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    @property
    def identifier(self) -> Optional[str]:
        for record in (self.state, self.desired):
            if record:
                try:
                    return codec.compute_identifier(self.kind, record)
                except ReconcileError:
                    continue
        return None


@dataclass
class ApplyReport:
    """Outcome of an apply or destroy run."""

    changes: List[PlannedChange] = field(default_factory=list)
    results: Dict[str, LifecycleResult] = field(default_factory=dict)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return not self.diagnostics.has_blocking_error()

    def count(self, action: ChangeAction) -> int:
        return sum(
            1
            for change in self.changes
            if change.action is action
            and change.address in self.results
            and self.results[change.address].success
        )


class Controller:
    """
    Drives reconcilers over a manifest and a state store.

    The server handle is shared by every reconciler it creates.
    """

    def __init__(
        self,
        server: Any,
        state: StateStore,
        registry: Optional[ReconcilerRegistry] = None,
        config: Optional[ControllerConfig] = None,
    ):
        self.server = server
        self.state = state
        self.registry = registry or get_registry()
        self.config = config or ControllerConfig()

    def _reconciler(self, kind: str) -> ResourceReconciler:
        return self.registry.get_reconciler(kind, self.server)

    async def refresh(self) -> Diagnostics:
        """
        Read every tracked resource back from the server.

        Resources found missing are dropped from state (drift removal).

        Returns:
            Diagnostics of reads that failed; those resources keep their
            previous observed record.
        """
        diagnostics = Diagnostics()
        for failed in (await self._read_tracked()).values():
            diagnostics.extend(failed)
        return diagnostics

    async def _read_tracked(self) -> Dict[str, Diagnostics]:
        """Refresh tracked resources; returns the diagnostics of failed reads by address."""
        failures: Dict[str, Diagnostics] = {}
        for address, entry in self.state.items():
            result = await self._reconciler(entry["kind"]).read(entry["state"])
            if not result.success:
                failures[address] = result.diagnostics
            elif result.absent:
                logger.info(f"Drift: {address} was removed outside the operator")
                self.state.remove(address)
            else:
                if result.state != entry["state"]:
                    logger.info(f"Drift: {address} was changed outside the operator")
                self.state.put(address, entry["kind"], result.state)
        self.state.save()
        return failures

    async def plan(self, manifest: List[ResourceSpec]) -> List[PlannedChange]:
        """
        Compute the changes that converge the server onto a manifest.

        Deletions of resources no longer declared come first, in reverse
        tracking order; declared resources follow in manifest order.
        A resource whose refresh failed carries the read errors and is not
        changed by apply.
        """
        failures: Dict[str, Diagnostics] = {}
        if self.config.refresh_before_plan:
            failures = await self._read_tracked()

        declared = {resource.address for resource in manifest}
        changes: List[PlannedChange] = []

        for address in reversed(self.state.addresses()):
            if address not in declared:
                entry = self.state.get(address)
                changes.append(
                    PlannedChange(
                        address=address,
                        kind=entry["kind"],
                        action=ChangeAction.DELETE,
                        state=entry["state"],
                    )
                )

        for resource in manifest:
            changes.append(self._plan_resource(resource))

        for change in changes:
            if change.address in failures:
                change.diagnostics.extend(failures[change.address])

        return changes

    def _plan_resource(self, resource: ResourceSpec) -> PlannedChange:
        entry = self.state.get(resource.address)
        change = PlannedChange(
            address=resource.address,
            kind=resource.kind,
            action=ChangeAction.CREATE,
            desired=resource.spec,
            state=entry["state"] if entry else None,
        )
        try:
            record = codec.decode(resource.kind, resource.spec)
        except ReconcileError as e:
            e.kind = e.kind or resource.kind
            change.diagnostics.add_error(e)
            return change

        if entry is None:
            change.attributes = [name for name, value in record.items() if value is not None]
            return change

        descriptor = describe(resource.kind)
        diff = descriptor.diff(record, entry["state"])
        blocked = [a for a in diff.requires_replace if a not in descriptor.renameable]
        change.attributes = diff.requires_replace + diff.in_place
        if blocked:
            change.action = ChangeAction.REPLACE
        elif diff.has_changes:
            change.action = ChangeAction.UPDATE
        else:
            change.action = ChangeAction.NOOP
        return change

    async def apply(self, manifest: List[ResourceSpec]) -> ApplyReport:
        """Plan and execute every change, saving state after each one."""
        start_time = time.monotonic()
        report = ApplyReport(changes=await self.plan(manifest))

        for change in report.changes:
            if change.diagnostics.has_blocking_error():
                report.diagnostics.extend(change.diagnostics)
                continue
            if change.action is ChangeAction.NOOP:
                continue

            result = await self._apply_change(change)
            report.results[change.address] = result
            report.diagnostics.extend(result.diagnostics)
            self.state.save()

        report.duration_seconds = time.monotonic() - start_time
        logger.info(
            f"Apply finished in {report.duration_seconds:.2f}s: "
            f"{report.count(ChangeAction.CREATE)} created, "
            f"{report.count(ChangeAction.UPDATE)} updated, "
            f"{report.count(ChangeAction.REPLACE)} replaced, "
            f"{report.count(ChangeAction.DELETE)} deleted, "
            f"{len(report.diagnostics.errors)} error(s)"
        )
        return report

    async def destroy(self) -> ApplyReport:
        """Delete every tracked resource, most recently tracked first."""
        return await self.apply([])

    async def _apply_change(self, change: PlannedChange) -> LifecycleResult:
        reconciler = self._reconciler(change.kind)

        if change.action is ChangeAction.DELETE:
            result = await reconciler.delete(change.state)
            if result.success:
                self.state.remove(change.address)
            return result

        if change.action is ChangeAction.UPDATE:
            result = await reconciler.update(change.desired, change.state)
            self._track(change, result)
            return result

        if change.action is ChangeAction.REPLACE:
            logger.info(
                f"Replacing {change.address}: {', '.join(change.attributes)} "
                f"cannot be updated in place"
            )
            deleted = await reconciler.delete(change.state)
            if not deleted.success:
                return deleted
            self.state.remove(change.address)

        result = await reconciler.create(change.desired)
        self._track(change, result)
        return result

    def _track(self, change: PlannedChange, result: LifecycleResult) -> None:
        """Persist a result that describes what exists on the server."""
        if result.state is None:
            return
        if result.success or result.partial:
            self.state.put(change.address, change.kind, result.state)

    async def import_resource(self, address: str, identifier: str) -> LifecycleResult:
        """
        Start tracking an existing server object under a manifest address.

        Raises:
            ManifestError: If the address is malformed.
        """
        kind, _ = split_address(address)
        result = await self._reconciler(kind).import_resource(identifier)
        if result.success and result.state is not None:
            self.state.put(address, kind, result.state)
            self.state.save()
        return result
