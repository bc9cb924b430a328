"""
Command-line interface for scriptsync.

Usage (examples):
  - Plan (fresh read of every known script, no writes):
      python -m scriptsync.cli plan --manifest ./scripts.yml --base-url http://127.0.0.1:9200

  - Apply (create/update/replace/delete until the cluster matches the manifest):
      python -m scriptsync.cli apply --manifest ./scripts.yml --base-url http://127.0.0.1:9200 --api-key KEY

  - Destroy every script recorded in the state file:
      python -m scriptsync.cli destroy --base-url http://127.0.0.1:9200
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, Iterable, List, Optional

import requests
import yaml

from .core.codec import canonical_json
from .core.config import AppConfig, expand_vars, load_config, to_bool
from .core.errors import ConfigError, ScriptSyncError
from .core.logging_setup import build_logger
from .core.manifest import load_manifest
from .core.planner import Decision, plan
from .core.reconciler import StoredScriptReconciler
from .core.search_client import SearchClient
from .core.state import StateStore

_SYMBOLS = {"CREATE": "+", "UPDATE": "~", "REPLACE": "-/+", "DELETE": "-", "NOOP": "="}


def _summarize_counts(counts: Dict[str, int]) -> str:
    # stable order for readability
    keys = ["CREATE", "UPDATE", "REPLACE", "DELETE", "NOOP", "ERROR"]
    return " | ".join(f"{k}={counts.get(k, 0)}" for k in keys)


def _exit_code_from_counts(counts: Dict[str, int]) -> int:
    return 2 if counts.get("ERROR", 0) else 0


def _count(counts: Dict[str, int], key: str) -> None:
    counts[key] = counts.get(key, 0) + 1


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="scriptsync", description="Stored script / search template reconciler")
    sub = p.add_subparsers(dest="cmd", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="Config YAML file (default: first of ./scriptsync.yml, ~/.config/scriptsync/config.yml)")
    common.add_argument("--manifest", default=None, help="Manifest YAML with stored_scripts")
    common.add_argument("--state", default=None, help="State file path")

    # Cluster / HTTP
    common.add_argument("--base-url", default=None, help="Cluster base URL")
    common.add_argument("--username", default=None, help="Basic auth username")
    common.add_argument("--password", default=None, help="Basic auth password")
    common.add_argument("--api-key", default=None, help="API key (Authorization: ApiKey)")
    common.add_argument("--scope", default=None, help="Id scope (default: cluster_uuid)")
    common.add_argument("--verify-tls", default=None, choices=["true", "false"], help="Verify TLS (https)")
    common.add_argument("--timeout-sec", type=int, default=None, help="HTTP timeout seconds")
    common.add_argument("--retries", type=int, default=None, help="HTTP retries (5xx/network)")

    # Logging
    common.add_argument("--logs-dir", default=None, help="Logs base directory")
    common.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    common.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")

    sub.add_parser("plan", parents=[common], help="Show what apply would change")
    a = sub.add_parser("apply", parents=[common], help="Converge the cluster to the manifest")
    a.add_argument("--dry-run", action="store_true", help="Plan only, no writes")
    sub.add_parser("destroy", parents=[common], help="Delete every script recorded in state")
    sub.add_parser("show", parents=[common], help="Print the recorded state")
    return p


def _cli_overrides(args: argparse.Namespace, *, dry_run: bool) -> Dict[str, Any]:
    def pick(**kv: Any) -> Dict[str, Any]:
        return {k: v for k, v in kv.items() if v is not None}

    return {
        "app": {"dry_run": dry_run},
        "cluster": pick(
            base_url=args.base_url,
            username=args.username,
            password=args.password,
            api_key=args.api_key,
            scope=args.scope,
            verify_tls=args.verify_tls,
            timeout_sec=args.timeout_sec,
            retries=args.retries,
        ),
        "paths": pick(manifest=args.manifest, state=args.state),
        "logging": pick(base_dir=args.logs_dir, console_level=args.console_level, file_level=args.file_level),
    }


def _connection_block(declared: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    block = (declared or {}).get("connection")
    if isinstance(block, list):
        block = block[0] if block else None
    return dict(block) if block else None


class ReconcilerPool:
    """
    One reconciler per distinct connection.

    Entries without a `connection` block use the `cluster` config section.
    Timeouts and retries always come from that section.
    """

    def __init__(self, cfg: AppConfig, logger: logging.LoggerAdapter) -> None:
        self.cfg = cfg
        self.log = logger
        self._by_key: Dict[str, StoredScriptReconciler] = {}

    def default_available(self) -> bool:
        return bool(self.cfg.cluster.base_url)

    def available(self, declared: Optional[Dict[str, Any]]) -> bool:
        return _connection_block(declared) is not None or self.default_available()

    def get(self, declared: Optional[Dict[str, Any]], address: str) -> StoredScriptReconciler:
        conn = _connection_block(declared)
        if conn is None:
            if not self.default_available():
                raise ConfigError(f"cluster.base_url is required for '{address}' (no connection block)")
            c = self.cfg.cluster
            conn = {
                "base_url": c.base_url,
                "username": c.username,
                "password": c.password,
                "api_key": c.api_key,
                "scope": c.scope,
                "verify_tls": c.verify_tls,
            }
        else:
            conn = expand_vars(conn)

        key = canonical_json(conn)
        rec = self._by_key.get(key)
        if rec is None:
            client = SearchClient(
                conn["base_url"],
                username=conn.get("username", ""),
                password=conn.get("password", ""),
                api_key=conn.get("api_key", ""),
                verify_tls=to_bool(conn.get("verify_tls", True), "connection.verify_tls"),
                timeout_sec=int(self.cfg.cluster.timeout_sec),
                retries=int(self.cfg.cluster.retries),
                logger=self.log,
            )
            rec = StoredScriptReconciler(client, scope=conn.get("scope") or None, logger=self.log)
            self._by_key[key] = rec
            self.log.debug("Reconciler for %s created", conn["base_url"])
        return rec


def _refresh_state(
    pool: ReconcilerPool,
    store: StateStore,
    logger: logging.LoggerAdapter,
    counts: Dict[str, int],
) -> None:
    """Replace every recorded declared shape with a fresh read; drop scripts that are gone."""
    for address, current in store.items():
        if not pool.available(current.declared):
            logger.warning("No cluster for '%s'; planning against its recorded state", address)
            continue
        try:
            fresh = pool.get(current.declared, address).refresh(current.id, like=current.declared)
        except ScriptSyncError as e:
            logger.error("Refresh of '%s' failed: %s", address, e)
            _count(counts, "ERROR")
            continue
        if fresh is None:
            logger.warning("Stored script for '%s' is gone from the cluster; it will be re-created", address)
            store.remove(address)
        else:
            store.put(address, fresh)


def _print_plan(decisions: List[Decision]) -> None:
    for d in decisions:
        if d.op != "NOOP":
            print(f"  {_SYMBOLS[d.op]} {d.address}: {d.reason}")


def _execute(
    pool: ReconcilerPool,
    store: StateStore,
    decisions: List[Decision],
    logger: logging.LoggerAdapter,
    counts: Dict[str, int],
) -> None:
    for d in decisions:
        try:
            if d.op == "NOOP":
                pass
            elif d.op == "DELETE":
                assert d.current is not None
                pool.get(d.current.declared, d.address).delete(d.current.id)
                store.remove(d.address)
            else:
                assert d.declared is not None
                if d.op == "REPLACE":
                    assert d.current is not None
                    pool.get(d.current.declared, d.address).delete(d.current.id)
                    store.remove(d.address)
                store.put(d.address, pool.get(d.declared, d.address).apply(d.declared))
        except ScriptSyncError as e:
            logger.error("%s '%s' failed: %s", d.op, d.address, e)
            _count(counts, "ERROR")
            continue
        logger.info("%s %s (%s)", d.op, d.address, d.reason)
        _count(counts, d.op)



def _run(args: argparse.Namespace) -> int:
    dry_run = args.cmd == "plan" or bool(getattr(args, "dry_run", False))
    files = (args.config,) if args.config else None
    cfg = load_config(_cli_overrides(args, dry_run=dry_run), files=files)

    logger = build_logger(
        run_id=cfg.run_id,
        action=args.cmd,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"cluster": cfg.cluster.base_url, "manifest": cfg.paths.manifest},
    )
    logger.info("Starting scriptsync %s (dry_run=%s)", args.cmd, dry_run)

    store = StateStore(cfg.paths.state).load()

    if args.cmd == "show":
        doc = {address: {"id": st.id, "declared": st.declared} for address, st in store.items()}
        print(yaml.safe_dump(doc, sort_keys=False), end="")
        return 0

    counts: Dict[str, int] = {}
    declared = {} if args.cmd == "destroy" else load_manifest(cfg.paths.manifest)
    logger.info("Loaded %s declared stored scripts from %s", len(declared), cfg.paths.manifest)

    pool = ReconcilerPool(cfg, logger)
    _refresh_state(pool, store, logger, counts)

    current = dict(store.items())
    decisions = plan(declared, current)

    if dry_run:
        for d in decisions:
            _count(counts, d.op)
        _print_plan(decisions)
        logger.info("Plan summary: %s", _summarize_counts(counts))
        print(_summarize_counts(counts))
        return _exit_code_from_counts(counts)

    try:
        _execute(pool, store, decisions, logger, counts)
    finally:
        store.save()

    logger.info("%s summary: %s", args.cmd.capitalize(), _summarize_counts(counts))
    print(_summarize_counts(counts))
    return _exit_code_from_counts(counts)


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        return _run(args)
    except (ScriptSyncError, requests.RequestException) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
