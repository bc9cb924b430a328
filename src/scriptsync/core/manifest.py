"""
Manifest loader: the declared stored scripts.

File format (YAML):

    stored_scripts:
      sum_script:                 # address (state key)
        name: sum_script          # optional, defaults to the address
        script:
          lang: painless
          source:
            script: "return params.a + params.b;"
          params: '{"a": 1, "b": 2}'
        connection:               # optional, defaults to the `cluster` config section
          base_url: https://es-east:9200
          api_key: "${EAST_API_KEY}"
          verify_tls: true

Checks:
- `name` and `script.lang` required.
- Exactly one of `source.script` / `source.search_template` (empty string = unset).
- `search_template` and `params` must be valid JSON (YAML mappings are accepted
  and serialized); `params` defaults to "{}" and must be an object.
- `connection`, when present, needs `base_url`; `api_key` excludes
  `username`/`password`. Values are kept as written (`${VAR}` references are
  resolved only when a client is built), so state files never hold expanded
  secrets unless the manifest does.
- A name may be declared once per target cluster.

Output is the normalized declared shape used by the codec (list-of-one-map blocks).
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .codec import EMPTY_PARAMS, canonical_json, connection_target
from .config import to_bool
from .errors import ConfigError, ManifestError

Declared = Dict[str, Any]

CONNECTION_KEYS = ("base_url", "username", "password", "api_key", "scope", "verify_tls")


def _one(block: Any, where: str, problems: List[str]) -> Dict[str, Any]:
    if isinstance(block, list):
        if len(block) != 1 or not isinstance(block[0], Mapping):
            problems.append(f"{where}: expected exactly one block")
            return {}
        return dict(block[0])
    if isinstance(block, Mapping):
        return dict(block)
    problems.append(f"{where}: expected a mapping")
    return {}


def _json_text(value: Any, where: str, problems: List[str]) -> str:
    """Accept a JSON string or a YAML structure; return JSON text ("" if unset)."""
    if value is None or value == "":
        return ""
    if isinstance(value, (dict, list)):
        return canonical_json(value)
    if not isinstance(value, str):
        problems.append(f"{where}: expected a JSON string")
        return ""
    try:
        json.loads(value)
    except ValueError as exc:
        problems.append(f"{where}: invalid JSON ({exc})")
    return value


def _connection(raw: Any, where: str, problems: List[str]) -> Optional[Dict[str, Any]]:
    if raw is None:
        return None
    conn = _one(raw, where, problems)
    unknown = sorted(str(k) for k in conn if k not in CONNECTION_KEYS)
    if unknown:
        problems.append(f"{where}: unknown keys " + ", ".join(unknown))

    out: Dict[str, Any] = {}
    for key in ("base_url", "username", "password", "api_key", "scope"):
        value = conn.get(key)
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            problems.append(f"{where}.{key}: expected a string")
            continue
        out[key] = value
    if "verify_tls" in conn:
        try:
            out["verify_tls"] = to_bool(conn["verify_tls"], f"{where}.verify_tls")
        except ConfigError as exc:
            problems.append(str(exc))

    if conn and not out.get("base_url"):
        problems.append(f"{where}.base_url: required")
    if out.get("api_key") and (out.get("username") or out.get("password")):
        problems.append(f"{where}: use either api_key or username/password")
    return out


def normalize_declared(address: str, raw: Any) -> Declared:
    """Validate one manifest entry and return its declared shape."""
    problems: List[str] = []
    if not isinstance(raw, Mapping):
        raise ManifestError([f"{address}: expected a mapping"])

    name = raw.get("name", address)
    if not isinstance(name, str) or not name.strip():
        problems.append(f"{address}.name: required")

    script = _one(raw.get("script"), f"{address}.script", problems)
    lang = script.get("lang")
    if not isinstance(lang, str) or not lang.strip():
        problems.append(f"{address}.script.lang: required")

    source = _one(script.get("source"), f"{address}.script.source", problems)
    literal = source.get("script") or ""
    if not isinstance(literal, str):
        problems.append(f"{address}.script.source.script: expected a string")
        literal = ""
    template = _json_text(source.get("search_template"), f"{address}.script.source.search_template", problems)

    if literal and template:
        problems.append(f"{address}.script.source: only one of 'script' or 'search_template' may be set")
    elif not literal and not template:
        problems.append(f"{address}.script.source: one of 'script' or 'search_template' is required")

    params = _json_text(script.get("params"), f"{address}.script.params", problems) or EMPTY_PARAMS
    try:
        if not isinstance(json.loads(params), dict):
            problems.append(f"{address}.script.params: must be a JSON object")
    except ValueError:
        pass  # already reported

    connection = _connection(raw.get("connection"), f"{address}.connection", problems)

    if problems:
        raise ManifestError(problems)

    src_block: Dict[str, str] = {"script": literal} if literal else {"search_template": template}
    declared: Declared = {
        "name": name,
        "script": [{"lang": lang, "source": [src_block], "params": params}],
    }
    if connection:
        declared["connection"] = [connection]
    return declared


def parse_manifest(data: Any, *, path: str = "") -> Dict[str, Declared]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ManifestError(["top-level YAML must be a mapping"], path=path)
    entries = data.get("stored_scripts") or {}
    if not isinstance(entries, Mapping):
        raise ManifestError(["'stored_scripts' must be a mapping of address -> definition"], path=path)

    out: Dict[str, Declared] = {}
    problems: List[str] = []
    names: Dict[Tuple[Optional[str], str], str] = {}
    for address, raw in entries.items():
        try:
            declared = normalize_declared(str(address), raw)
        except ManifestError as exc:
            problems.extend(exc.problems)
            continue
        key = (connection_target(declared), declared["name"])
        other = names.get(key)
        if other:
            problems.append(f"{address}.name: '{declared['name']}' already declared by '{other}'")
            continue
        names[key] = str(address)
        out[str(address)] = declared

    if problems:
        raise ManifestError(problems, path=path)
    return out


def load_manifest(path: str) -> Dict[str, Declared]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ManifestError([f"manifest not found: {path}"]) from exc
    except yaml.YAMLError as exc:
        raise ManifestError([f"invalid YAML: {exc}"], path=path) from exc
    return parse_manifest(data, path=path)
