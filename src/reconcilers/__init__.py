"""
Reconcilers package.

One reconciler per resource kind, each implementing create, read, update and
delete on top of the shared lifecycle in reconcilers.base.
"""

from reconcilers.base import LifecycleResult, ResourceReconciler
from reconcilers.registry import (
    ReconcilerRegistry,
    get_registry,
    register_builtin_reconcilers,
    reset_registry,
)

__all__ = [
    "LifecycleResult",
    "ResourceReconciler",
    "ReconcilerRegistry",
    "get_registry",
    "register_builtin_reconcilers",
    "reset_registry",
]
