"""
Local state: address -> {id, declared} as last rendered from the cluster.

The id is the only handle needed to re-address a stored script; `declared`
is the basis for the next plan and is replaced after every fresh read.
"""

from __future__ import annotations

import os
import tempfile
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import StateError
from .reconciler import ResourceState

STATE_VERSION = 1


class StateStore:
    def __init__(self, path: str) -> None:
        self.path = path
        self._resources: Dict[str, ResourceState] = {}

    def load(self) -> "StateStore":
        self._resources = {}
        if not os.path.exists(self.path):
            return self
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise StateError(f"Cannot read state file {self.path}: {exc}") from exc

        if not isinstance(data, dict):
            raise StateError(f"Top-level YAML must be a mapping: {self.path}")
        version = data.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            raise StateError(f"Unsupported state version {version!r} in {self.path}")

        for address, entry in (data.get("resources") or {}).items():
            if not isinstance(entry, dict) or not entry.get("id"):
                raise StateError(f"State entry '{address}' has no id")
            self._resources[str(address)] = ResourceState(id=str(entry["id"]), declared=dict(entry.get("declared") or {}))
        return self

    def save(self) -> None:
        doc: Dict[str, Any] = {
            "version": STATE_VERSION,
            "resources": {
                address: {"id": st.id, "declared": st.declared}
                for address, st in self.items()
            },
        }
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".state-", suffix=".yml", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(doc, f, sort_keys=False, allow_unicode=True)
            os.replace(tmp, self.path)
        except OSError as exc:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise StateError(f"Cannot write state file {self.path}: {exc}") from exc

    def get(self, address: str) -> Optional[ResourceState]:
        return self._resources.get(address)

    def put(self, address: str, state: ResourceState) -> None:
        self._resources[address] = state

    def remove(self, address: str) -> None:
        self._resources.pop(address, None)

    def addresses(self) -> List[str]:
        return sorted(self._resources)

    def items(self) -> List[Tuple[str, ResourceState]]:
        return sorted(self._resources.items(), key=lambda kv: kv[0])

    def __len__(self) -> int:
        return len(self._resources)
