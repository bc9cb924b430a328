"""
Composite identifiers: `<scope>/<name>`.

`%` and `/` inside either part are escaped as `%25` / `%2F`, so every id has
exactly one raw separator and parses back to the exact (scope, name) pair.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import MalformedIdError

SEPARATOR = "/"

_ESCAPE_RE = re.compile(r"%(25|2[fF])")
_STRAY_PERCENT_RE = re.compile(r"%(?!25|2[fF])")


def _escape(part: str) -> str:
    return part.replace("%", "%25").replace(SEPARATOR, "%2F")


def _unescape(raw: str, part: str) -> str:
    if _STRAY_PERCENT_RE.search(part):
        raise MalformedIdError(raw, "unsupported escape sequence")
    return _ESCAPE_RE.sub(lambda m: "%" if m.group(1) == "25" else SEPARATOR, part)


@dataclass(frozen=True)
class CompositeId:
    scope: str
    name: str

    def __str__(self) -> str:
        return f"{_escape(self.scope)}{SEPARATOR}{_escape(self.name)}"


def compose(scope: str, name: str) -> CompositeId:
    if not scope:
        raise ValueError("scope must be non-empty")
    if not name:
        raise ValueError("name must be non-empty")
    return CompositeId(scope=scope, name=name)


def parse(raw: str) -> CompositeId:
    if not isinstance(raw, str) or not raw:
        raise MalformedIdError(str(raw), "empty id")
    parts = raw.split(SEPARATOR)
    if len(parts) != 2:
        raise MalformedIdError(raw, f"expected '<scope>{SEPARATOR}<name>'")
    scope, name = parts
    if not scope or not name:
        raise MalformedIdError(raw, "scope and name must be non-empty")
    return CompositeId(scope=_unescape(raw, scope), name=_unescape(raw, name))
