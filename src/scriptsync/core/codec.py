"""
Codec between the declared configuration shape and the canonical model.

Declared shape (list-of-one-map blocks, as written by humans):

    {
      "name": "sum_script",
      "script": [{
        "lang": "painless",
        "source": [{"script": "...", "search_template": ""}],
        "params": "{}"
      }]
    }

Rules:
- Empty strings mean "not provided".
- Exactly one of `script` / `search_template` must be provided.
- JSON strings (params, search_template) are compared semantically, never textually.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional

from .errors import DecodeError, SourceVariantError
from .models import MUSTACHE, JSONValue, LiteralSource, Script, ScriptSource, StoredScript, TemplateSource

Declared = Dict[str, Any]

SOURCE_KEYS = ("script", "search_template")
EMPTY_PARAMS = "{}"


# ---------- JSON canonicalization ----------

def canonical_json(value: JSONValue) -> str:
    """Stable text form: sorted keys, compact separators."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _parse_json(raw: str, field: str) -> JSONValue:
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise DecodeError(f"{field}: invalid JSON ({exc})", field=field) from exc


def json_equal(a: Any, b: Any) -> bool:
    """
    Semantic JSON equality. Strings are parsed first; a string that is not JSON
    is compared as-is. Key order and whitespace never matter.
    """
    def norm(v: Any) -> Any:
        if isinstance(v, str):
            if v.strip() == "":
                return None
            try:
                return json.loads(v)
            except ValueError:
                return v
        return v

    return canonical_json(norm(a)) == canonical_json(norm(b))


# ---------- helpers ----------

def _first(block: Any) -> Mapping[str, Any]:
    """Accept a list-of-one-map block or a plain map; empty -> {}."""
    if isinstance(block, list):
        return block[0] if block and isinstance(block[0], Mapping) else {}
    if isinstance(block, Mapping):
        return block
    return {}


def _provided(value: Any) -> bool:
    return isinstance(value, str) and value != ""


# ---------- encode ----------

def encode_source(source_block: Any) -> ScriptSource:
    src = _first(source_block)
    script = src.get("script")
    template = src.get("search_template")

    if _provided(script) and _provided(template):
        raise SourceVariantError("source: only one of 'script' or 'search_template' may be set", field="source")
    if _provided(script):
        return LiteralSource(script)
    if _provided(template):
        return TemplateSource(_parse_json(template, "search_template"))
    raise SourceVariantError("source: one of 'script' or 'search_template' is required", field="source")


def encode_params(raw: Optional[str]) -> Dict[str, Any]:
    if not _provided(raw):
        return {}
    value = _parse_json(raw, "params")
    if not isinstance(value, dict):
        raise DecodeError("params: must be a JSON object", field="params")
    return value


def encode_script(block: Any) -> Script:
    """Declared `script` block -> canonical Script."""
    b = _first(block)
    lang = b.get("lang")
    if not _provided(lang):
        raise DecodeError("script.lang: required", field="lang")
    return Script(lang=lang, source=encode_source(b.get("source")), params=encode_params(b.get("params")))


def encode(declared: Mapping[str, Any]) -> StoredScript:
    name = declared.get("name")
    if not _provided(name):
        raise DecodeError("name: required", field="name")
    return StoredScript(name=name, script=encode_script(declared.get("script")))


# ---------- decode ----------

def _declared_source(like: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    if not like:
        return {}
    return _first(_first(like.get("script")).get("source"))


def decode_script(script: Script, like: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    Canonical Script -> declared `script` block (one element).

    `like` is the source block the script was declared with. A mustache
    literal whose text is a JSON object reads back as a template; when the
    declaration used `script`, it is rendered back as `script`, keeping the
    declared text if it is still semantically the same.
    """
    block: Dict[str, Any] = {"lang": script.lang}
    declared_text = (like or {}).get("script")
    if isinstance(script.source, LiteralSource):
        block["source"] = [{"script": script.source.text}]
    elif isinstance(script.source, TemplateSource) and _provided(declared_text):
        text = declared_text if json_equal(declared_text, script.source.body) else canonical_json(script.source.body)
        block["source"] = [{"script": text}]
    elif isinstance(script.source, TemplateSource):
        block["source"] = [{"search_template": canonical_json(script.source.body)}]
    block["params"] = canonical_json(script.params or {})
    return block


def decode(stored: StoredScript, like: Optional[Mapping[str, Any]] = None) -> Declared:
    """StoredScript -> declared shape; `like` (a declared shape) settles the mustache variant."""
    declared: Declared = {"name": stored.name}
    if stored.script is not None:
        declared["script"] = [decode_script(stored.script, _declared_source(like))]
    return declared


# ---------- diff suppression ----------

def connection_target(declared: Optional[Mapping[str, Any]]) -> Optional[str]:
    """`base_url|scope` of the declared connection block, None for the default cluster."""
    conn = _first((declared or {}).get("connection"))
    base_url = str(conn.get("base_url") or "").rstrip("/")
    if not base_url:
        return None
    return f"{base_url}|{conn.get('scope') or ''}"


def _comparable(declared: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if not declared:
        return {}
    b = _first(declared.get("script"))
    src = _first(b.get("source"))
    out: Dict[str, Any] = {
        "name": declared.get("name") or None,
        "connection": connection_target(declared),
        "lang": b.get("lang") or None,
        "script": src.get("script") or None,
        "search_template": src.get("search_template") or None,
        "params": b.get("params") or EMPTY_PARAMS,
    }
    return out


def diff_fields(a: Optional[Mapping[str, Any]], b: Optional[Mapping[str, Any]]) -> List[str]:
    """Return the declared fields that differ semantically between `a` and `b`."""
    ca, cb = _comparable(a), _comparable(b)
    changed: List[str] = []
    for key in ("name", "connection", "lang", "script", "search_template", "params"):
        if key in ("search_template", "params"):
            if not json_equal(ca.get(key), cb.get(key)):
                changed.append(key)
        elif ca.get(key) != cb.get(key):
            changed.append(key)

    # a mustache body is the same script whichever variant carried it
    if "script" in changed and "search_template" in changed and ca.get("lang") == cb.get("lang") == MUSTACHE:
        body_a = ca.get("script") or ca.get("search_template")
        body_b = cb.get("script") or cb.get("search_template")
        if json_equal(body_a, body_b):
            changed = [k for k in changed if k not in SOURCE_KEYS]
    return changed


def declared_equal(a: Optional[Mapping[str, Any]], b: Optional[Mapping[str, Any]]) -> bool:
    return not diff_fields(a, b)
