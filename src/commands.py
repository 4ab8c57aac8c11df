"""
Command Builder - Renders T-SQL statement sequences for resource records.

Identifiers (resource names) are bracket-quoted; they cannot be bound as
parameters in T-SQL. Values compared in predicates are bound as ``?``
parameters. Passwords cannot be parameterized in CREATE/ALTER LOGIN, so they
are rendered as escaped N'...' literals and the statement is marked
sensitive.

Statements that run inside a database carry that database and re-select it
at the start of their own batch: the server handle gives no session
affinity between statements.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from descriptors import ResourceKind

MASTER = "master"

_COLLATION_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
_STRING_LITERAL = re.compile(r"N'(?:[^']|'')*'")


class Operation(Enum):
    """Statement sequences a kind can render."""

    CREATE = "create"
    LOOKUP = "lookup"
    RENAME = "rename"
    ALTER = "alter"
    DELETE = "delete"
    PRINCIPAL_EXISTS = "principal_exists"
    NAMESPACE_EXISTS = "namespace_exists"
    VERSION = "version"


def quote_identifier(name: str) -> str:
    """Bracket-quote an identifier, doubling any closing bracket."""
    if not name:
        raise ValueError("identifier must not be empty")
    return "[" + str(name).replace("]", "]]") + "]"


def quote_string(value: str) -> str:
    """Render a Unicode string literal, doubling any single quote."""
    return "N'" + str(value).replace("'", "''") + "'"


@dataclass(frozen=True)
class Statement:
    """One batch sent to the server."""

    sql: str
    params: Tuple[Any, ...] = ()
    # Database selected at the start of the batch
    database: Optional[str] = None
    # Record attributes made true on the server by this statement
    attributes: Tuple[str, ...] = ()
    sensitive: bool = False

    @property
    def text(self) -> str:
        if self.database is None:
            return self.sql
        return f"USE {quote_identifier(self.database)};\n{self.sql}"

    def redacted(self) -> str:
        """Statement text safe for logs."""
        if not self.sensitive:
            return self.text
        return _STRING_LITERAL.sub("N'***'", self.text)

    def __str__(self) -> str:
        return self.redacted()


Record = Mapping[str, Any]


# ==================== Database ====================


def _database_create(record: Record) -> List[Statement]:
    name = quote_identifier(record["name"])
    collation = record["collation"]
    if not _COLLATION_PATTERN.match(str(collation)):
        raise ValueError(f"invalid collation name: {collation!r}")

    statements = [
        Statement(
            f"CREATE DATABASE {name} COLLATE {collation}",
            database=MASTER,
            attributes=("name", "collation"),
        )
    ]
    statements.extend(_database_alter(record, ["compatibility_level", "owner"]))
    return statements


def _database_lookup(record: Record) -> List[Statement]:
    return [
        Statement(
            "SELECT name, collation_name, compatibility_level, SUSER_SNAME(owner_sid) "
            "FROM sys.databases WHERE name = ?",
            params=(record["name"],),
            database=MASTER,
        )
    ]


def _database_rename(previous: Record, record: Record) -> List[Statement]:
    return [
        Statement(
            f"ALTER DATABASE {quote_identifier(previous['name'])} "
            f"MODIFY NAME = {quote_identifier(record['name'])}",
            database=MASTER,
            attributes=("name",),
        )
    ]


def _database_alter(record: Record, attributes: Iterable[str]) -> List[Statement]:
    statements = []
    if "compatibility_level" in attributes:
        statements.append(
            Statement(
                f"ALTER DATABASE {quote_identifier(record['name'])} SET COMPATIBILITY_LEVEL = "
                f"{int(record['compatibility_level'])}",
                database=MASTER,
                attributes=("compatibility_level",),
            )
        )
    if "owner" in attributes and record.get("owner"):
        statements.append(
            Statement(
                f"ALTER AUTHORIZATION ON DATABASE::{quote_identifier(record['name'])} "
                f"TO {quote_identifier(record['owner'])}",
                database=MASTER,
                attributes=("owner",),
            )
        )
    return statements


def _database_delete(record: Record) -> List[Statement]:
    return [
        Statement(
            f"DROP DATABASE {quote_identifier(record['name'])}",
            database=MASTER,
        )
    ]


def _principal_exists(record: Record) -> List[Statement]:
    return [
        Statement(
            "SELECT 1 FROM sys.server_principals WHERE name = ?",
            params=(record["owner"],),
        )
    ]


# ==================== Login ====================


def _login_create(record: Record) -> List[Statement]:
    name = quote_identifier(record["name"])
    default_database = quote_identifier(record["default_database"])
    if record["type"] == "windows":
        return [
            Statement(
                f"CREATE LOGIN {name} FROM WINDOWS "
                f"WITH DEFAULT_DATABASE = {default_database}",
                attributes=("name", "type", "default_database"),
            )
        ]
    return [
        Statement(
            f"CREATE LOGIN {name} WITH PASSWORD = {quote_string(record['password'])}, "
            f"DEFAULT_DATABASE = {default_database}",
            attributes=("name", "type", "password", "default_database"),
            sensitive=True,
        )
    ]


def _login_lookup(record: Record) -> List[Statement]:
    return [
        Statement(
            "SELECT name, type_desc, default_database_name "
            "FROM sys.server_principals WHERE name = ? AND type IN ('S', 'U', 'G')",
            params=(record["name"],),
        )
    ]


def _login_rename(previous: Record, record: Record) -> List[Statement]:
    return [
        Statement(
            f"ALTER LOGIN {quote_identifier(previous['name'])} "
            f"WITH NAME = {quote_identifier(record['name'])}",
            attributes=("name",),
        )
    ]


def _login_alter(record: Record, attributes: Iterable[str]) -> List[Statement]:
    options = []
    changed = []
    if "password" in attributes:
        options.append(f"PASSWORD = {quote_string(record['password'])}")
        changed.append("password")
    if "default_database" in attributes:
        options.append(
            f"DEFAULT_DATABASE = {quote_identifier(record['default_database'])}"
        )
        changed.append("default_database")
    if not options:
        return []
    return [
        Statement(
            f"ALTER LOGIN {quote_identifier(record['name'])} WITH {', '.join(options)}",
            attributes=tuple(changed),
            sensitive="password" in changed,
        )
    ]


def _login_delete(record: Record) -> List[Statement]:
    return [Statement(f"DROP LOGIN {quote_identifier(record['name'])}")]


# ==================== User ====================


def _namespace_exists(record: Record) -> List[Statement]:
    return [
        Statement(
            "SELECT 1 FROM sys.databases WHERE name = ?",
            params=(record["database"],),
        )
    ]


def _user_create(record: Record) -> List[Statement]:
    name = quote_identifier(record["name"])
    if record.get("login"):
        sql = f"CREATE USER {name} FOR LOGIN {quote_identifier(record['login'])}"
    else:
        sql = f"CREATE USER {name} WITHOUT LOGIN"
    return [
        Statement(
            sql,
            database=record["database"],
            attributes=("name", "database", "login"),
        )
    ]


def _user_lookup(record: Record) -> List[Statement]:
    return [
        Statement(
            "SELECT dp.name, sp.name FROM sys.database_principals AS dp "
            "LEFT JOIN sys.server_principals AS sp ON sp.sid = dp.sid "
            "WHERE dp.name = ? AND dp.type IN ('S', 'U', 'G')",
            params=(record["name"],),
            database=record["database"],
        )
    ]


def _user_rename(previous: Record, record: Record) -> List[Statement]:
    return [
        Statement(
            f"ALTER USER {quote_identifier(previous['name'])} "
            f"WITH NAME = {quote_identifier(record['name'])}",
            database=previous["database"],
            attributes=("name",),
        )
    ]


def _user_delete(record: Record) -> List[Statement]:
    return [
        Statement(
            f"DROP USER {quote_identifier(record['name'])}",
            database=record["database"],
        )
    ]


# ==================== Role ====================


def _role_create(record: Record) -> List[Statement]:
    return [
        Statement(
            f"CREATE ROLE {quote_identifier(record['name'])}",
            database=record["database"],
            attributes=("name", "database"),
        )
    ]


def _role_lookup(record: Record) -> List[Statement]:
    return [
        Statement(
            "SELECT name FROM sys.database_principals WHERE type = 'R' AND name = ?",
            params=(record["name"],),
            database=record["database"],
        )
    ]


def _role_delete(record: Record) -> List[Statement]:
    return [
        Statement(
            f"DROP ROLE {quote_identifier(record['name'])}",
            database=record["database"],
        )
    ]


# ==================== Role assignment ====================


def _role_assignment_create(record: Record) -> List[Statement]:
    return [
        Statement(
            f"ALTER ROLE {quote_identifier(record['role'])} "
            f"ADD MEMBER {quote_identifier(record['member'])}",
            database=record["database"],
            attributes=("role", "member", "database"),
        )
    ]


def _role_assignment_lookup(record: Record) -> List[Statement]:
    return [
        Statement(
            "SELECT m.name FROM sys.database_role_members AS drm "
            "JOIN sys.database_principals AS r ON drm.role_principal_id = r.principal_id "
            "JOIN sys.database_principals AS m ON drm.member_principal_id = m.principal_id "
            "WHERE r.name = ? AND m.name = ?",
            params=(record["role"], record["member"]),
            database=record["database"],
        )
    ]


def _role_assignment_delete(record: Record) -> List[Statement]:
    return [
        Statement(
            f"ALTER ROLE {quote_identifier(record['role'])} "
            f"DROP MEMBER {quote_identifier(record['member'])}",
            database=record["database"],
        )
    ]


# ==================== Server info ====================


def _server_version(record: Record) -> List[Statement]:
    return [Statement("SELECT @@VERSION")]


_BUILDERS: Dict[Tuple[ResourceKind, Operation], Callable[..., List[Statement]]] = {
    (ResourceKind.DATABASE, Operation.CREATE): _database_create,
    (ResourceKind.DATABASE, Operation.LOOKUP): _database_lookup,
    (ResourceKind.DATABASE, Operation.RENAME): _database_rename,
    (ResourceKind.DATABASE, Operation.ALTER): _database_alter,
    (ResourceKind.DATABASE, Operation.DELETE): _database_delete,
    (ResourceKind.DATABASE, Operation.PRINCIPAL_EXISTS): _principal_exists,
    (ResourceKind.LOGIN, Operation.CREATE): _login_create,
    (ResourceKind.LOGIN, Operation.LOOKUP): _login_lookup,
    (ResourceKind.LOGIN, Operation.RENAME): _login_rename,
    (ResourceKind.LOGIN, Operation.ALTER): _login_alter,
    (ResourceKind.LOGIN, Operation.DELETE): _login_delete,
    (ResourceKind.USER, Operation.CREATE): _user_create,
    (ResourceKind.USER, Operation.LOOKUP): _user_lookup,
    (ResourceKind.USER, Operation.RENAME): _user_rename,
    (ResourceKind.USER, Operation.DELETE): _user_delete,
    (ResourceKind.USER, Operation.NAMESPACE_EXISTS): _namespace_exists,
    (ResourceKind.ROLE, Operation.CREATE): _role_create,
    (ResourceKind.ROLE, Operation.LOOKUP): _role_lookup,
    (ResourceKind.ROLE, Operation.DELETE): _role_delete,
    (ResourceKind.ROLE, Operation.NAMESPACE_EXISTS): _namespace_exists,
    (ResourceKind.ROLE_ASSIGNMENT, Operation.CREATE): _role_assignment_create,
    (ResourceKind.ROLE_ASSIGNMENT, Operation.LOOKUP): _role_assignment_lookup,
    (ResourceKind.ROLE_ASSIGNMENT, Operation.DELETE): _role_assignment_delete,
    (ResourceKind.ROLE_ASSIGNMENT, Operation.NAMESPACE_EXISTS): _namespace_exists,
    (ResourceKind.SERVER_INFO, Operation.VERSION): _server_version,
}


def supports(kind: Union[ResourceKind, str], operation: Union[Operation, str]) -> bool:
    """Whether a kind can render the given operation."""
    return (ResourceKind(kind), Operation(operation)) in _BUILDERS


def build(
    kind: Union[ResourceKind, str],
    operation: Union[Operation, str],
    record: Record,
    previous: Optional[Record] = None,
    attributes: Iterable[str] = (),
) -> List[Statement]:
    """
    Render the ordered statement sequence of an operation.

    Args:
        kind: Resource kind.
        operation: What to render.
        record: The record the statements act on (the new values for RENAME
            and ALTER).
        previous: The old record; required for RENAME.
        attributes: Attributes to change; used by ALTER.

    Raises:
        ValueError: If the kind has no such operation or a value is invalid.
    """
    kind = ResourceKind(kind)
    operation = Operation(operation)
    builder = _BUILDERS.get((kind, operation))
    if builder is None:
        raise ValueError(f"{kind.value} does not support {operation.value}")

    if operation is Operation.RENAME:
        if previous is None:
            raise ValueError("rename requires the previous record")
        return builder(previous, record)
    if operation is Operation.ALTER:
        return builder(record, list(attributes))
    return builder(record)
