"""Reconciler for database roles."""

from descriptors import ResourceKind
from reconcilers.base import ResourceReconciler


class RoleReconciler(ResourceReconciler):
    kind = ResourceKind.ROLE
