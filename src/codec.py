"""
State Codec - Conversion between attribute bags and resource records.

A bag is what callers hand in and persist: a plain mapping of attribute name
to value. A record is the decoded form the reconcilers work on: every
settable attribute present, defaults applied, values validated against the
kind's schema.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from descriptors import ResourceKind, describe
from diagnostics import ValidationError
from validation import schema_errors

logger = logging.getLogger(__name__)

SERVER_INFO_ID = "mssql_server"
REDACTED = "(sensitive)"


class _Unknown:
    """Placeholder for an attribute value that is not resolved yet."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<unknown>"

    def __bool__(self) -> bool:
        return False


UNKNOWN = _Unknown()


def decode(
    kind: Union[ResourceKind, str],
    bag: Optional[Mapping[str, Any]],
    allow_unknown: bool = False,
) -> Dict[str, Any]:
    """
    Decode an attribute bag into a record.

    Args:
        kind: Resource kind of the bag.
        bag: Attribute values. A stored "id" is ignored.
        allow_unknown: Accept UNKNOWN values (planning only).

    Returns:
        A record holding every settable attribute, defaults applied.

    Raises:
        ValidationError: On unknown values (unless allowed), unexpected or
            missing required attributes, wrong types or invalid enum values.
    """
    descriptor = describe(kind)
    kind_name = descriptor.kind.value
    values = dict(bag or {})
    values.pop("id", None)

    pending = [name for name, value in values.items() if value is UNKNOWN]
    if pending and not allow_unknown:
        raise ValidationError(
            f"value of {', '.join(pending)} is not known yet",
            kind=kind_name,
            attribute=pending[0],
        )

    record: Dict[str, Any] = {}
    for name in descriptor.managed_attributes:
        value = values.get(name)
        if value is None:
            value = descriptor.attribute(name).default
        record[name] = value

    # Absent and null values are dropped so a missing required attribute
    # is reported as such; unexpected keys are kept to be rejected.
    candidate = {
        name: value
        for name, value in {**values, **record}.items()
        if value is not None and value is not UNKNOWN
    }
    errors = [
        (path, message)
        for path, message in schema_errors(candidate, descriptor.json_schema())
        if path not in pending
    ]
    if errors:
        path, _ = errors[0]
        raise ValidationError(
            "; ".join(f"{p}: {m}" for p, m in errors),
            kind=kind_name,
            attribute=None if path == "(root)" else path,
        )
    return record


def compute_identifier(kind: Union[ResourceKind, str], record: Mapping[str, Any]) -> str:
    """
    Derive the identifier of a resource from its identity attributes.

    database, login: name
    user, role: database.name
    role_assignment: database.role.member
    server_info: constant

    In composite identifiers a dot or backslash inside a part is escaped
    with a backslash, so distinct identities never share an identifier.

    Raises:
        ValidationError: If an identity attribute has no known value.
    """
    descriptor = describe(kind)
    if descriptor.kind is ResourceKind.SERVER_INFO:
        return SERVER_INFO_ID

    parts = []
    for name in descriptor.identity:
        value = record.get(name)
        if value is None or value is UNKNOWN or value == "":
            raise ValidationError(
                f"identity attribute {name} has no value",
                kind=descriptor.kind.value,
                attribute=name,
            )
        parts.append(str(value))
    if len(parts) == 1:
        return parts[0]
    return ".".join(_escape(part) for part in parts)


def _escape(part: str) -> str:
    return part.replace("\\", "\\\\").replace(".", "\\.")


def _split(identifier: str, count: int) -> List[str]:
    """Split on unescaped dots into at most count parts."""
    parts: List[str] = []
    current: List[str] = []
    chars = iter(identifier)
    for char in chars:
        if char == "\\":
            following = next(chars, "")
            if following in (".", "\\"):
                current.append(following)
            else:
                # Not an escape: DOMAIN\user keeps its backslash
                current.append(char + following)
        elif char == "." and len(parts) < count - 1:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def parse_identifier(kind: Union[ResourceKind, str], identifier: str) -> Dict[str, str]:
    """
    Split an identifier back into identity attributes.

    Escaped dots stay inside their part. The last identity attribute also
    absorbs any extra unescaped dots, so "sales.app.user" parses as database
    "sales", name "app.user" for a user.

    Raises:
        ValidationError: If the identifier has too few parts.
    """
    descriptor = describe(kind)
    if descriptor.kind is ResourceKind.SERVER_INFO:
        return {}

    count = len(descriptor.identity)
    parts = [identifier] if count == 1 else _split(identifier, count)
    if len(parts) != count or not all(parts):
        expected = ".".join(f"<{name}>" for name in descriptor.identity)
        raise ValidationError(
            f"identifier {identifier!r} does not match {expected}",
            kind=descriptor.kind.value,
            identifier=identifier,
        )
    return dict(zip(descriptor.identity, parts))


def encode(
    kind: Union[ResourceKind, str], record: Mapping[str, Any], redact: bool = False
) -> Dict[str, Any]:
    """
    Encode a record as a bag, including its identifier.

    Args:
        kind: Resource kind of the record.
        record: The record to encode.
        redact: Mask sensitive values (for display, never for persistence).
    """
    descriptor = describe(kind)
    bag = {name: record.get(name) for name in descriptor.attribute_names}
    if bag.get("id") is None:
        bag["id"] = compute_identifier(descriptor.kind, record)
    if redact:
        for name in descriptor.sensitive_attributes:
            if bag.get(name) is not None:
                bag[name] = REDACTED
    return bag
