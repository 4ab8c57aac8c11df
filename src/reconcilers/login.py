"""Reconciler for server logins."""

from typing import Any, Dict, Tuple

from descriptors import ResourceKind
from reconcilers.base import ResourceReconciler

# sys.server_principals.type_desc -> login type
LOGIN_TYPES = {
    "SQL_LOGIN": "sql",
    "WINDOWS_LOGIN": "windows",
    "WINDOWS_GROUP": "windows",
}


class LoginReconciler(ResourceReconciler):
    """
    Logins are renamed with ALTER LOGIN ... WITH NAME. Password and default
    database can be altered in place for sql logins only; the password is
    never read back from the server.
    """

    kind = ResourceKind.LOGIN

    def refresh(self, record: Dict[str, Any], row: Tuple[Any, ...]) -> Dict[str, Any]:
        _, type_desc, default_database = row
        refreshed = dict(record)
        refreshed["type"] = LOGIN_TYPES.get(type_desc, record.get("type"))
        refreshed["default_database"] = default_database
        return refreshed
