"""Reconciler for database users."""

from typing import Any, Dict, Tuple

from descriptors import ResourceKind
from reconcilers.base import ResourceReconciler


class UserReconciler(ResourceReconciler):
    """Database users; renamed in place, the login mapping is fixed."""

    kind = ResourceKind.USER

    def refresh(self, record: Dict[str, Any], row: Tuple[Any, ...]) -> Dict[str, Any]:
        refreshed = dict(record)
        refreshed["login"] = row[1]
        return refreshed
