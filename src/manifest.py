"""
Manifest - Declared resources loaded from YAML or JSON.

    resources:
      - kind: login
        name: app_login
        spec:
          name: app
          type: sql
          password: s3cret

``name`` is the resource's address within the manifest and never changes;
the ``name`` attribute inside ``spec`` is the server object name and may be
renamed.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

import yaml

from descriptors import ResourceKind
from validation import validate_document

logger = logging.getLogger(__name__)

MANAGED_KINDS = [kind.value for kind in ResourceKind if kind is not ResourceKind.SERVER_INFO]

MANIFEST_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["resources"],
    "properties": {
        "resources": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["kind", "name"],
                "properties": {
                    "kind": {"enum": MANAGED_KINDS},
                    "name": {"type": "string", "pattern": r"^[A-Za-z0-9_-]+$"},
                    "spec": {"type": "object"},
                },
                "additionalProperties": False,
            },
        },
    },
    "additionalProperties": False,
}


class ManifestError(ValueError):
    """Raised when a manifest is malformed."""


@dataclass
class ResourceSpec:
    """A declared resource."""

    kind: str
    name: str
    spec: Dict[str, Any] = field(default_factory=dict)

    @property
    def address(self) -> str:
        return make_address(self.kind, self.name)


def make_address(kind: str, name: str) -> str:
    return f"{kind}.{name}"


def split_address(address: str) -> Tuple[str, str]:
    """
    Split "kind.name" into its parts.

    Raises:
        ManifestError: If the address has no known kind prefix.
    """
    kind, _, name = address.partition(".")
    if kind not in MANAGED_KINDS or not name:
        raise ManifestError(
            f"Invalid address {address!r}: expected <kind>.<name> with kind one of "
            f"{', '.join(MANAGED_KINDS)}"
        )
    return kind, name


def parse_manifest(data: Any) -> List[ResourceSpec]:
    """
    Validate a manifest document and return its resources in order.

    Raises:
        ManifestError: If the document is invalid or an address repeats.
    """
    if data is None:
        data = {"resources": []}
    if not isinstance(data, dict):
        raise ManifestError("Manifest must be a mapping with a 'resources' list")

    is_valid, error = validate_document(data, MANIFEST_SCHEMA)
    if not is_valid:
        raise ManifestError(f"Invalid manifest: {error}")

    resources = []
    seen = set()
    for item in data["resources"]:
        resource = ResourceSpec(
            kind=item["kind"], name=item["name"], spec=dict(item.get("spec") or {})
        )
        if resource.address in seen:
            raise ManifestError(f"Duplicate resource address: {resource.address}")
        seen.add(resource.address)
        resources.append(resource)
    return resources


def load_manifest(path: Union[str, Path]) -> List[ResourceSpec]:
    """Load a manifest from a .yaml/.yml or .json file."""
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix in (".yaml", ".yml"):
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ManifestError(f"Invalid YAML in {path}: {e}") from e
        else:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ManifestError(f"Invalid JSON in {path}: {e}") from e

    resources = parse_manifest(data)
    logger.debug(f"Loaded {len(resources)} resource(s) from {path}")
    return resources
