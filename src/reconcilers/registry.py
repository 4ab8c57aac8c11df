"""
Reconciler Registry - Registration and lookup of reconcilers by kind.

Maps every resource kind to exactly one reconciler class. Built-in
reconcilers are registered at startup; additional ones are discovered via
the 'mssql_operator.reconcilers' entry point group.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, List, Optional, Type, Union

from descriptors import ResourceKind, describe
from reconcilers.base import ResourceReconciler
from validation import validate_schema

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "mssql_operator.reconcilers"


class ReconcilerRegistry:
    """
    Central registry of reconciler classes.

    Classes are registered once; instances are created per server handle,
    since a reconciler holds nothing but its handle.
    """

    def __init__(self):
        self._reconcilers: Dict[ResourceKind, Type[ResourceReconciler]] = {}

    def register(self, reconciler_class: Type[ResourceReconciler]) -> None:
        """
        Register a reconciler class for its kind.

        Args:
            reconciler_class: The ResourceReconciler subclass to register

        Raises:
            ValueError: If the class declares no kind, its kind's schema is
                invalid, or another class already handles the kind
        """
        kind = getattr(reconciler_class, "kind", None)
        if not isinstance(kind, ResourceKind):
            raise ValueError(
                f"Reconciler {reconciler_class.__name__} does not declare a kind"
            )

        existing = self._reconcilers.get(kind)
        if existing is not None and existing is not reconciler_class:
            raise ValueError(
                f"Resource kind '{kind.value}' is already handled by "
                f"{existing.__name__}. Cannot register {reconciler_class.__name__}."
            )

        is_valid, error = validate_schema(describe(kind).json_schema())
        if not is_valid:
            raise ValueError(f"Resource kind '{kind.value}' has an invalid schema: {error}")

        self._reconcilers[kind] = reconciler_class
        logger.debug(f"Registered reconciler {reconciler_class.__name__} ({kind.value})")

    def has_reconciler(self, kind: Union[ResourceKind, str]) -> bool:
        """Check if a reconciler handles the given kind."""
        try:
            return ResourceKind(kind) in self._reconcilers
        except ValueError:
            return False

    def get_reconciler(
        self, kind: Union[ResourceKind, str], server: Any
    ) -> ResourceReconciler:
        """
        Create the reconciler of a kind, bound to a server handle.

        Args:
            kind: The resource kind
            server: The server handle the reconciler issues statements through

        Raises:
            ValueError: If the kind is unknown or has no reconciler
        """
        try:
            kind = ResourceKind(kind)
        except ValueError:
            raise ValueError(
                f"Unknown resource kind: {kind}. "
                f"Available kinds: {', '.join(self.list_kinds()) or 'none'}"
            ) from None

        reconciler_class = self._reconcilers.get(kind)
        if reconciler_class is None:
            raise ValueError(f"No reconciler registered for kind: {kind.value}")
        return reconciler_class(server)

    def list_kinds(self) -> List[str]:
        """List all kinds that have a reconciler."""
        return [kind.value for kind in self._reconcilers]

    def get_reconciler_info(self, kind: Union[ResourceKind, str]) -> Optional[Dict[str, Any]]:
        """
        Get information about the reconciler of a kind.

        Returns:
            Dictionary with 'kind', 'reconciler' and 'description', or None
        """
        if not self.has_reconciler(kind):
            return None
        kind = ResourceKind(kind)
        return {
            "kind": kind.value,
            "reconciler": self._reconcilers[kind].__name__,
            "description": describe(kind).description,
        }


# Global registry instance
_registry: Optional[ReconcilerRegistry] = None


def get_registry() -> ReconcilerRegistry:
    """Get the global reconciler registry singleton."""
    global _registry
    if _registry is None:
        _registry = ReconcilerRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_reconcilers() -> ReconcilerRegistry:
    """
    Register the built-in reconcilers and discover additional ones via
    entry points.
    """
    from reconcilers.database import DatabaseReconciler
    from reconcilers.login import LoginReconciler
    from reconcilers.role import RoleReconciler
    from reconcilers.role_assignment import RoleAssignmentReconciler
    from reconcilers.server_info import ServerInfoReconciler
    from reconcilers.user import UserReconciler

    registry = get_registry()
    for reconciler_class in (
        DatabaseReconciler,
        LoginReconciler,
        UserReconciler,
        RoleReconciler,
        RoleAssignmentReconciler,
        ServerInfoReconciler,
    ):
        registry.register(reconciler_class)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            registry.register(ep.load())
        except Exception as e:
            logger.warning(f"Could not load reconciler {ep.name}: {e}")

    return registry
