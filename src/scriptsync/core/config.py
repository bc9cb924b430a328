"""
Runtime configuration for scriptsync.

Layers, lowest to highest precedence:
  1) dataclass defaults below
  2) the first YAML file found (./scriptsync.yml, then ~/.config/scriptsync/config.yml)
  3) SSYNC_<SECTION>__<KEY> environment variables (a local .env is loaded first)
  4) CLI overrides

Every layer is checked against the section dataclasses: unknown sections or
keys are errors, and values are coerced to the type of the field's default.
String values may reference the environment as ${VAR} or ${VAR:-fallback}.
"""

from __future__ import annotations

import os
import re
import uuid
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError


@dataclass
class AppSection:
    run_id: str = ""
    dry_run: bool = False


@dataclass
class ClusterSection:
    """Default cluster, used by manifest entries without their own `connection` block."""
    base_url: str = ""
    username: str = ""
    password: str = ""       # secret, never logged in clear text
    api_key: str = ""        # secret, never logged in clear text
    scope: str = ""          # id discriminator; empty -> cluster_uuid from GET /
    verify_tls: bool = True
    timeout_sec: int = 30
    retries: int = 3


@dataclass
class PathsSection:
    manifest: str = "./scripts.yml"
    state: str = "./scriptsync.state.yml"


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"
    file_level: str = "DEBUG"


@dataclass
class AppConfig:
    app: AppSection
    cluster: ClusterSection
    paths: PathsSection
    logging: LoggingSection

    @property
    def run_id(self) -> str:
        """Stable identifier for this process, generated on first access."""
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


SECTIONS = {
    "app": AppSection,
    "cluster": ClusterSection,
    "paths": PathsSection,
    "logging": LoggingSection,
}

CONFIG_FILES: Tuple[str, ...] = (
    "./scriptsync.yml",
    os.path.expanduser("~/.config/scriptsync/config.yml"),
)

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")
_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off", ""}


def expand_vars(value: Any) -> Any:
    """Substitute ${VAR} and ${VAR:-fallback} inside strings, recursively."""
    if isinstance(value, str):
        return _VAR_RE.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ""), value)
    if isinstance(value, Mapping):
        return {k: expand_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_vars(v) for v in value]
    return value


def to_bool(value: Any, where: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{where}: expected a boolean, got {value!r}")


def _coerce(kind: type, value: Any, where: str) -> Any:
    if kind is bool:
        return to_bool(value, where)
    if kind is int:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{where}: expected an integer, got {value!r}") from None
    return "" if value is None else str(value)


def _merge_layer(values: Dict[str, Dict[str, Any]], layer: Mapping[str, Any], origin: str) -> None:
    """Validate one layer against the section dataclasses and fold it into `values`."""
    for section, entries in layer.items():
        cls = SECTIONS.get(section)
        if cls is None:
            raise ConfigError(f"{origin}: unknown section '{section}'")
        if entries is None:
            continue
        if not isinstance(entries, Mapping):
            raise ConfigError(f"{origin}: section '{section}' must be a mapping")
        kinds = {f.name: type(f.default) for f in fields(cls)}
        for key, raw in entries.items():
            if key not in kinds:
                raise ConfigError(f"{origin}: unknown key '{section}.{key}'")
            values[section][key] = _coerce(kinds[key], expand_vars(raw), f"{origin}: {section}.{key}")


def _file_layer(files: Tuple[str, ...]) -> Tuple[str, Dict[str, Any]]:
    for path in files:
        if not os.path.exists(path):
            continue
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Top-level YAML must be a mapping: {path}")
        return path, data
    return "", {}


def _env_layer(prefix: str) -> Dict[str, Dict[str, Any]]:
    """SSYNC_CLUSTER__BASE_URL=x -> {"cluster": {"base_url": "x"}}."""
    out: Dict[str, Dict[str, Any]] = {}
    for name, val in os.environ.items():
        if not name.startswith(prefix):
            continue
        section, sep, key = name[len(prefix):].lower().partition("__")
        if not sep or not key:
            raise ConfigError(f"{name}: expected {prefix}<SECTION>__<KEY>")
        out.setdefault(section, {})[key] = val
    return out


def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Optional[Tuple[str, ...]] = None,
    env_prefix: str = "SSYNC_",
) -> AppConfig:
    # real environment variables win over .env entries
    env_file = find_dotenv(usecwd=True)
    if env_file:
        load_dotenv(env_file, override=False)

    values: Dict[str, Dict[str, Any]] = {name: {} for name in SECTIONS}
    path, file_data = _file_layer(files or CONFIG_FILES)
    _merge_layer(values, file_data, path or "config file")
    _merge_layer(values, _env_layer(env_prefix), "environment")
    _merge_layer(values, cli_overrides or {}, "command line")

    return AppConfig(**{name: cls(**values[name]) for name, cls in SECTIONS.items()})
