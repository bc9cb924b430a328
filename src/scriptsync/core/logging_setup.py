"""
Central logging for scriptsync.

- Console handler: INFO..CRITICAL (no DEBUG)
- Timed rotated file handler: DEBUG (logs/app.log, daily rotation)
- Action-based file handler: DEBUG (logs/YYYY-MM-DD/<action>_<run_id>.log)
- Secret redaction: masks ApiKey/Basic/Bearer credentials, passwords and tokens
- UTC timestamps in ISO-8601
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple


class MaskSecretsFilter(logging.Filter):
    """
    Redact common secrets (authorization headers, API keys, passwords) from log records.
    """

    _patterns = [
        re.compile(r"(Authorization:\s*(?:Bearer|ApiKey|Basic)\s+)([A-Za-z0-9._=+/-]+)", re.IGNORECASE),
        re.compile(r"(api[_-]?key\s*[=:]\s*)([A-Za-z0-9._=+/-]+)", re.IGNORECASE),
        re.compile(r"(password\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
        re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(https?://[^:/\s]+:)([^@\s]+)(?=@)", re.IGNORECASE),
    ]

    @staticmethod
    def _mask(text: str) -> str:
        masked = text
        for pat in MaskSecretsFilter._patterns:
            masked = pat.sub(r"\1***REDACTED***", masked)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask(str(v)) for k, v in record.args.items()}
            else:
                record.args = tuple(self._mask(a) if isinstance(a, str) else a for a in record.args)
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        return True


class ContextDefaultsFilter(logging.Filter):
    """Fill the context fields for records that did not come through the adapter."""

    fields = ("run_id", "action", "cluster", "manifest")

    def filter(self, record: logging.LogRecord) -> bool:
        for f in self.fields:
            if not hasattr(record, f):
                setattr(record, f, "-")
        return True


def _utc_formatter(fmt: str) -> logging.Formatter:
    f = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")
    f.converter = time.gmtime  # type: ignore[attr-defined]
    return f


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


def _reset_console_handler(base: logging.Logger, level: str, formatter: logging.Formatter, filters: Tuple[logging.Filter, ...]) -> None:
    """
    Keep exactly ONE StreamHandler bound to the current sys.stderr
    (pytest swaps stdio between tests).
    """
    for h in list(base.handlers):
        if type(h) is logging.StreamHandler:
            base.removeHandler(h)
            h.close()

    sh = logging.StreamHandler(stream=sys.stderr)
    sh.setLevel(_level(level, logging.INFO))
    sh.setFormatter(formatter)
    for flt in filters:
        sh.addFilter(flt)
    base.addHandler(sh)


def _reset_app_file_handler(base: logging.Logger, base_dir: str, level: str, formatter: logging.Formatter, filters: Tuple[logging.Filter, ...]) -> None:
    """Point the single rotating handler at <base_dir>/app.log, replacing one aimed elsewhere."""
    os.makedirs(base_dir, exist_ok=True)
    desired = os.path.abspath(os.path.join(base_dir, "app.log"))

    for h in list(base.handlers):
        if isinstance(h, logging.handlers.TimedRotatingFileHandler) and os.path.abspath(h.baseFilename) != desired:
            base.removeHandler(h)
            h.close()

    if not any(
        isinstance(h, logging.handlers.TimedRotatingFileHandler) and os.path.abspath(h.baseFilename) == desired
        for h in base.handlers
    ):
        rh = logging.handlers.TimedRotatingFileHandler(
            desired,
            when="midnight",
            backupCount=14,
            encoding="utf-8",
            utc=True,
        )
        rh.setLevel(_level(level, logging.DEBUG))
        rh.setFormatter(formatter)
        for flt in filters:
            rh.addFilter(flt)
        base.addHandler(rh)


def build_logger(
    *,
    name: str = "ssync",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Configure and return a LoggerAdapter.

    Design:
      - A base logger `<name>` holds console + rotating file handlers.
      - A child logger `<name>.<action>.<run_id>` holds a per-run file handler.
      - Records propagate to base logger so they appear in all sinks.
    """
    filters = (MaskSecretsFilter(), ContextDefaultsFilter())
    formatter = _utc_formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | "
        "run=%(run_id)s action=%(action)s cluster=%(cluster)s manifest=%(manifest)s | "
        "%(message)s"
    )

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    _reset_console_handler(base, console_level, formatter, filters)
    _reset_app_file_handler(base, base_dir, file_level, formatter, filters)

    child = logging.getLogger(f"{name}.{action}.{run_id}")
    child.setLevel(logging.DEBUG)
    child.propagate = True

    if not getattr(child, "_ssync_action_configured", False):
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        dated_dir = os.path.join(base_dir, today)
        os.makedirs(dated_dir, exist_ok=True)

        fh = logging.FileHandler(os.path.join(dated_dir, f"{action}_{run_id}.log"), encoding="utf-8")
        fh.setLevel(_level(file_level, logging.DEBUG))
        fh.setFormatter(formatter)
        for flt in filters:
            fh.addFilter(flt)
        child.addHandler(fh)
        child._ssync_action_configured = True  # type: ignore[attr-defined]

    adapter = logging.LoggerAdapter(
        child,
        {
            "run_id": run_id,
            "action": action,
            "cluster": (extra or {}).get("cluster"),
            "manifest": (extra or {}).get("manifest"),
        },
    )
    adapter.debug("Logger initialised")
    return adapter
