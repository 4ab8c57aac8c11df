"""Reconciler for database role memberships."""

from descriptors import ResourceKind
from reconcilers.base import ResourceReconciler


class RoleAssignmentReconciler(ResourceReconciler):
    """
    A role membership has no update path: any change is a removal of the
    old membership and the addition of the new one.
    """

    kind = ResourceKind.ROLE_ASSIGNMENT
