"""
Error taxonomy for scriptsync.

- Configuration mistakes: DecodeError, MalformedIdError, ManifestError, ConfigError.
- Cluster-side rejections: RemoteWriteError / RemoteReadError / RemoteDeleteError.
- "Not found" is NOT an error: reads and deletes fold it into `Absent`.
"""

from __future__ import annotations

from typing import Iterable, Optional


class ScriptSyncError(Exception):
    """Base error for scriptsync."""


class ConfigError(ScriptSyncError, ValueError):
    """Raised when runtime configuration cannot be resolved."""


class DecodeError(ScriptSyncError):
    """Malformed JSON (or shape) in a declared params/search-template field."""

    def __init__(self, message: str, *, field: str = "") -> None:
        super().__init__(message)
        self.field = field


class SourceVariantError(DecodeError):
    """Declared source block sets both `script` and `search_template`, or neither."""


class MalformedIdError(ScriptSyncError):
    """An id string that cannot be parsed back into scope + name."""

    def __init__(self, raw: str, reason: str) -> None:
        super().__init__(f"Malformed stored script id {raw!r}: {reason}")
        self.raw = raw
        self.reason = reason


class RemoteError(ScriptSyncError):
    """Non-success, non-404 response from the cluster."""

    action = "call"

    def __init__(self, name: str, *, status: int = 0, detail: str = "") -> None:
        msg = f"Unable to {self.action} stored script '{name}'"
        if status:
            msg += f" (status={status})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.name = name
        self.status = status
        self.detail = detail


class RemoteWriteError(RemoteError):
    action = "create or update"


class RemoteReadError(RemoteError):
    action = "get"


class RemoteDeleteError(RemoteError):
    action = "delete"


class ManifestError(ScriptSyncError):
    """Raised when the declared manifest is structurally invalid."""

    def __init__(self, problems: Iterable[str], *, path: Optional[str] = None) -> None:
        self.problems = list(problems)
        where = f"{path}: " if path else ""
        super().__init__(where + "; ".join(self.problems))


class StateError(ScriptSyncError):
    """Raised when the local state file cannot be read or written."""
