"""
Canonical stored-script model and its wire (cluster JSON) format.

Wire body (PUT /_scripts/{name}, GET response):
    {"script": {"lang": "painless", "source": "<string>" | {...}, "params": {...}}}

The source is a tagged union: a literal script body OR a structured
search-template body. Both/neither is not representable.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

JSONValue = Any
Params = Dict[str, Any]

MUSTACHE = "mustache"


@dataclass(frozen=True)
class LiteralSource:
    """Literal script body (e.g. painless)."""
    text: str


@dataclass(frozen=True)
class TemplateSource:
    """Search-template body, kept as the decoded JSON value."""
    body: JSONValue


ScriptSource = Union[LiteralSource, TemplateSource]


@dataclass(frozen=True)
class Script:
    lang: str
    source: Optional[ScriptSource] = None
    params: Params = field(default_factory=dict)

    @property
    def script_source(self) -> Optional[str]:
        return self.source.text if isinstance(self.source, LiteralSource) else None

    @property
    def search_template_source(self) -> Optional[JSONValue]:
        return self.source.body if isinstance(self.source, TemplateSource) else None

    # ----- wire -----

    def to_wire(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"lang": self.lang}
        if isinstance(self.source, LiteralSource):
            body["source"] = self.source.text
        elif isinstance(self.source, TemplateSource):
            body["source"] = self.source.body
        if self.params:
            body["params"] = dict(self.params)
        return body

    @classmethod
    def from_wire(cls, body: Dict[str, Any]) -> "Script":
        """
        Tolerant decoding:
          - `source` string -> literal (unless a mustache JSON object, see below)
          - `source` object -> template
          - legacy `script` key -> literal
          - missing keys leave the variant unset
        """
        lang = str(body.get("lang") or "")
        source: Optional[ScriptSource] = None

        raw = body.get("source")
        if isinstance(raw, (dict, list)):
            source = TemplateSource(raw)
        elif isinstance(raw, str) and raw != "":
            source = _string_source(lang, raw)
        elif isinstance(body.get("script"), str) and body["script"] != "":
            source = LiteralSource(body["script"])

        params = body.get("params")
        return cls(lang=lang, source=source, params=dict(params) if isinstance(params, dict) else {})


def _string_source(lang: str, raw: str) -> ScriptSource:
    # Clusters hand stored search templates back as serialized strings.
    if lang == MUSTACHE:
        try:
            decoded = json.loads(raw)
        except ValueError:
            return LiteralSource(raw)
        if isinstance(decoded, dict):
            return TemplateSource(decoded)
    return LiteralSource(raw)


@dataclass(frozen=True)
class StoredScript:
    """A named script as held by the cluster."""
    name: str
    script: Optional[Script] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("stored script name must be non-empty")

    def to_wire(self) -> Dict[str, Any]:
        # The name travels in the URL, not in the body.
        return {"script": self.script.to_wire() if self.script else {}}

    @classmethod
    def from_wire(cls, name: str, payload: Dict[str, Any]) -> "StoredScript":
        body = payload.get("script") if isinstance(payload, dict) else None
        script = Script.from_wire(body) if isinstance(body, dict) else None
        return cls(name=name, script=script)
