"""
State Store - Observed records persisted between runs.

Keeps one observed record per manifest address in a JSON file. Addresses
keep the order in which resources were first tracked, which is the reverse
of the order they are destroyed in.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class StateError(Exception):
    """Raised when the state file cannot be read."""


class StateStore:
    """JSON-file backed mapping of address -> {"kind", "state"}."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._resources: Dict[str, Dict[str, Any]] = {}

    def load(self) -> "StateStore":
        """
        Load the state file; a missing file is an empty state.

        Raises:
            StateError: If the file is not valid state.
        """
        if not self.path.exists():
            self._resources = {}
            return self

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StateError(f"State file {self.path} is not valid JSON: {e}") from e

        if data.get("version") != STATE_VERSION:
            raise StateError(
                f"Unsupported state version {data.get('version')!r} in {self.path}"
            )
        self._resources = dict(data.get("resources", {}))
        logger.debug(f"Loaded {len(self._resources)} resource(s) from {self.path}")
        return self

    def save(self) -> None:
        """Write the state file atomically, readable by the owner only."""
        payload = json.dumps(
            {"version": STATE_VERSION, "resources": self._resources}, indent=2
        )
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(payload + "\n", encoding="utf-8")
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)

    def get(self, address: str) -> Optional[Dict[str, Any]]:
        return self._resources.get(address)

    def put(self, address: str, kind: str, state: Dict[str, Any]) -> None:
        """Track or update a resource; a new address goes last."""
        self._resources[address] = {"kind": kind, "state": dict(state)}

    def remove(self, address: str) -> None:
        self._resources.pop(address, None)

    def addresses(self) -> List[str]:
        return list(self._resources)

    def items(self) -> Iterator[Tuple[str, Dict[str, Any]]]:
        return iter(list(self._resources.items()))

    def __contains__(self, address: str) -> bool:
        return address in self._resources

    def __len__(self) -> int:
        return len(self._resources)
