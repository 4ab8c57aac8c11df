"""
Resource Descriptors - Static per-kind metadata.

Describes, for every resource kind, its attribute set, which attributes form
its identity, which can be changed in place and which can only change
through an explicit rename. Nothing here touches the server.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union


class ResourceKind(Enum):
    """The closed set of resource kinds."""

    DATABASE = "database"
    LOGIN = "login"
    USER = "user"
    ROLE = "role"
    ROLE_ASSIGNMENT = "role_assignment"
    SERVER_INFO = "server_info"


@dataclass(frozen=True)
class Attribute:
    """Schema of one resource attribute."""

    name: str
    type: str = "string"
    required: bool = False
    computed: bool = False
    sensitive: bool = False
    default: Any = None
    enum: Optional[Tuple[Any, ...]] = None
    pattern: Optional[str] = None
    description: str = ""

    @property
    def optional(self) -> bool:
        return not self.required and not self.computed

    @property
    def settable(self) -> bool:
        """Whether the caller may supply a value for this attribute."""
        return not self.computed


@dataclass
class Diff:
    """Attribute-level comparison of a desired and an observed record."""

    unchanged: List[str] = field(default_factory=list)
    in_place: List[str] = field(default_factory=list)
    requires_replace: List[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.in_place or self.requires_replace)


@dataclass(frozen=True)
class ResourceDescriptor:
    """Static description of a resource kind."""

    kind: ResourceKind
    description: str
    attributes: Tuple[Attribute, ...]
    identity: Tuple[str, ...]
    updatable: Tuple[str, ...] = ()
    renameable: Tuple[str, ...] = ()
    # Set by a follow-up statement of the create sequence; an unset observed
    # value left by a partial create is completed in place
    completable: Tuple[str, ...] = ()
    read_only: bool = False
    # Restricts the in-place set to records satisfying the predicate
    updatable_when: Optional[Callable[[Dict[str, Any]], bool]] = None
    schema_extra: Dict[str, Any] = field(default_factory=dict)

    def attribute(self, name: str) -> Attribute:
        for attr in self.attributes:
            if attr.name == name:
                return attr
        raise KeyError(f"{self.kind.value} has no attribute {name!r}")

    @property
    def attribute_names(self) -> List[str]:
        return [attr.name for attr in self.attributes]

    @property
    def managed_attributes(self) -> List[str]:
        """Attributes compared by diff(); excludes server-computed ones like id."""
        return [attr.name for attr in self.attributes if attr.settable]

    @property
    def sensitive_attributes(self) -> List[str]:
        return [attr.name for attr in self.attributes if attr.sensitive]

    def updatable_for(self, record: Dict[str, Any]) -> Tuple[str, ...]:
        """Return the attributes that can be updated in place for this record."""
        if self.updatable_when is not None and not self.updatable_when(record):
            return ()
        return self.updatable

    def diff(
        self,
        desired: Dict[str, Any],
        observed: Dict[str, Any],
        updatable: Optional[Tuple[str, ...]] = None,
    ) -> Diff:
        """
        Partition the managed attributes into unchanged, in-place and
        requires-replace.

        Args:
            desired: Decoded desired record.
            observed: Last observed record.
            updatable: In-place set to use; defaults to updatable_for(desired).
        """
        if updatable is None:
            updatable = self.updatable_for(desired)

        result = Diff()
        for name in self.managed_attributes:
            if desired.get(name) == observed.get(name):
                result.unchanged.append(name)
            elif name in updatable or (
                name in self.completable and observed.get(name) is None
            ):
                result.in_place.append(name)
            else:
                result.requires_replace.append(name)
        return result

    def json_schema(self) -> Dict[str, Any]:
        """Build the Draft 7 JSON Schema a desired bag is validated against."""
        properties: Dict[str, Any] = {}
        for attr in self.attributes:
            if not attr.settable:
                continue
            prop: Dict[str, Any] = {}
            if attr.required or attr.default is not None:
                prop["type"] = attr.type
            else:
                prop["type"] = [attr.type, "null"]
            if attr.enum is not None:
                prop["enum"] = list(attr.enum)
            if attr.pattern is not None:
                prop["pattern"] = attr.pattern
            if attr.type == "string" and attr.required:
                prop["minLength"] = 1
            if attr.description:
                prop["description"] = attr.description
            properties[attr.name] = prop

        schema = {
            "type": "object",
            "properties": properties,
            "required": [attr.name for attr in self.attributes if attr.required],
            "additionalProperties": False,
        }
        schema.update(self.schema_extra)
        return schema


ID = Attribute("id", computed=True, description="Resource identifier.")

COMPATIBILITY_LEVELS = (80, 90, 100, 110, 120, 130, 140, 150, 160)

DATABASE = ResourceDescriptor(
    kind=ResourceKind.DATABASE,
    description="SQL Server database.",
    attributes=(
        Attribute("name", required=True, description="Database name."),
        Attribute(
            "collation",
            default="SQL_Latin1_General_CP1_CI_AS",
            pattern=r"^[A-Za-z0-9_]+$",
            description="Database collation.",
        ),
        Attribute(
            "compatibility_level",
            type="integer",
            default=150,
            enum=COMPATIBILITY_LEVELS,
            description="Database compatibility level.",
        ),
        Attribute("owner", description="Login that owns the database."),
        ID,
    ),
    identity=("name",),
    updatable=("owner",),
    renameable=("name",),
    completable=("compatibility_level",),
)

LOGIN = ResourceDescriptor(
    kind=ResourceKind.LOGIN,
    description="Server login.",
    attributes=(
        Attribute("name", required=True, description="Login name."),
        Attribute(
            "type",
            required=True,
            enum=("sql", "windows"),
            description="Login type: sql or windows.",
        ),
        Attribute(
            "password",
            sensitive=True,
            description="Login password. Required for sql logins.",
        ),
        Attribute(
            "default_database",
            default="master",
            description="Default database. Defaults to master.",
        ),
        ID,
    ),
    identity=("name",),
    updatable=("password", "default_database"),
    renameable=("name",),
    updatable_when=lambda record: record.get("type") == "sql",
    schema_extra={
        "if": {"properties": {"type": {"const": "sql"}}},
        "then": {
            "required": ["password"],
            "properties": {"password": {"type": "string", "minLength": 1}},
        },
    },
)

USER = ResourceDescriptor(
    kind=ResourceKind.USER,
    description="Database user.",
    attributes=(
        Attribute("name", required=True, description="User name."),
        Attribute(
            "database",
            required=True,
            description="Database name where the user will be created.",
        ),
        Attribute(
            "login",
            description="Login name to map the user to. Omit for a user without login.",
        ),
        ID,
    ),
    identity=("database", "name"),
    renameable=("name",),
)

ROLE = ResourceDescriptor(
    kind=ResourceKind.ROLE,
    description="Database role.",
    attributes=(
        Attribute("name", required=True, description="Role name."),
        Attribute("database", required=True, description="Database of the role."),
        ID,
    ),
    identity=("database", "name"),
)

ROLE_ASSIGNMENT = ResourceDescriptor(
    kind=ResourceKind.ROLE_ASSIGNMENT,
    description="Membership of a database principal in a database role.",
    attributes=(
        Attribute("role", required=True, description="Role name."),
        Attribute("member", required=True, description="Member principal name."),
        Attribute("database", required=True, description="Database of the role."),
        ID,
    ),
    identity=("database", "role", "member"),
)

SERVER_INFO = ResourceDescriptor(
    kind=ResourceKind.SERVER_INFO,
    description="Read-only server information.",
    attributes=(
        Attribute("version", computed=True, description="SQL Server version."),
        ID,
    ),
    identity=(),
    read_only=True,
)

DESCRIPTORS: Dict[ResourceKind, ResourceDescriptor] = {
    d.kind: d for d in (DATABASE, LOGIN, USER, ROLE, ROLE_ASSIGNMENT, SERVER_INFO)
}


def describe(kind: Union[ResourceKind, str]) -> ResourceDescriptor:
    """
    Return the descriptor of a resource kind.

    Raises:
        ValueError: If kind is not one of the known kinds.
    """
    return DESCRIPTORS[ResourceKind(kind)]
