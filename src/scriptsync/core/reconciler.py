from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from . import codec, identity
from .errors import RemoteDeleteError, RemoteReadError, RemoteWriteError
from .identity import CompositeId
from .models import StoredScript
from .search_client import HttpError, SearchClient


@dataclass(frozen=True)
class Found:
    stored: StoredScript


@dataclass(frozen=True)
class Absent:
    name: str


@dataclass(frozen=True)
class Deleted:
    name: str


ReadResult = Union[Found, Absent]
DeleteResult = Union[Deleted, Absent]


@dataclass(frozen=True)
class ResourceState:
    """What gets persisted per resource: the id and the server-rendered declared shape."""
    id: str
    declared: Dict[str, Any]


def error_detail(err: HttpError) -> str:
    """Short human-readable reason from a cluster error body."""
    data = err.json()
    if data is None:
        return (err.body or err.message or "").strip()[:400]

    error = data.get("error")
    if isinstance(error, dict):
        parts = []
        reason = error.get("reason")
        if isinstance(reason, str) and reason.strip():
            parts.append(reason.strip())
        caused = error.get("caused_by")
        if isinstance(caused, dict) and caused.get("reason"):
            parts.append(f"caused by: {caused['reason']}")
        if not parts:
            for rc in error.get("root_cause") or []:
                if isinstance(rc, dict) and rc.get("reason"):
                    parts.append(str(rc["reason"]))
        if parts:
            kind = error.get("type")
            prefix = f"[{kind}] " if kind else ""
            return (prefix + "; ".join(parts))[:400]
    if isinstance(error, str) and error.strip():
        return error.strip()[:400]
    return (err.body or err.message).strip()[:400]


class StoredScriptReconciler:
    """
    Put / Read / Delete of stored scripts with idempotent semantics.

    - Put is a full replace; same content twice -> same id, same remote state.
    - Read folds 404 into `Absent`.
    - Delete folds 404 into `Absent` (already gone is success).
    - Transport exceptions (timeouts, connection errors) are not caught here.
    """

    def __init__(
        self,
        client: SearchClient,
        *,
        scope: Optional[str] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.client = client
        self._scope = scope
        self.log = logger or logging.getLogger("ssync.reconciler")

    def scope(self) -> str:
        if self._scope:
            return self._scope
        try:
            self._scope = self.client.cluster_uuid()
        except HttpError as e:
            raise RemoteReadError("<cluster info>", status=e.status, detail=error_detail(e)) from e
        return self._scope

    # ----- core operations -----

    def put(self, declared: Mapping[str, Any]) -> CompositeId:
        stored = codec.encode(declared)
        cid = identity.compose(self.scope(), stored.name)
        self.log.debug("PUT stored script %s as %s", stored.name, cid)
        try:
            self.client.put_script(stored.name, stored.to_wire())
        except HttpError as e:
            raise RemoteWriteError(stored.name, status=e.status, detail=error_detail(e)) from e
        self.log.info("Stored script '%s' written", stored.name)
        return cid

    def read(self, cid: Union[str, CompositeId]) -> ReadResult:
        cid = _as_id(cid)
        try:
            payload = self.client.get_script(cid.name)
        except HttpError as e:
            if e.status == 404:
                self.log.info("Stored script '%s' not found", cid.name)
                return Absent(cid.name)
            raise RemoteReadError(cid.name, status=e.status, detail=error_detail(e)) from e

        if isinstance(payload, dict) and payload.get("found") is False:
            return Absent(cid.name)
        if not isinstance(payload, dict):
            raise RemoteReadError(cid.name, detail="unexpected response body")
        return Found(StoredScript.from_wire(cid.name, payload))

    def delete(self, cid: Union[str, CompositeId]) -> DeleteResult:
        cid = _as_id(cid)
        try:
            self.client.delete_script(cid.name)
        except HttpError as e:
            if e.status == 404:
                self.log.info("Stored script '%s' already absent", cid.name)
                return Absent(cid.name)
            raise RemoteDeleteError(cid.name, status=e.status, detail=error_detail(e)) from e
        self.log.info("Stored script '%s' deleted", cid.name)
        return Deleted(cid.name)

    # ----- convergence loop -----

    def refresh(
        self,
        cid: Union[str, CompositeId],
        like: Optional[Mapping[str, Any]] = None,
    ) -> Optional[ResourceState]:
        """
        Fresh read rendered into the declared shape; None when the script is gone.

        `like` is the declared shape last applied. It settles how an ambiguous
        mustache source is rendered, and its `connection` block is carried over
        since the cluster does not hold it.
        """
        cid = _as_id(cid)
        res = self.read(cid)
        if isinstance(res, Absent):
            return None
        declared = codec.decode(res.stored, like=like)
        if like and like.get("connection"):
            declared["connection"] = like["connection"]
        return ResourceState(id=str(cid), declared=declared)

    def apply(self, declared: Mapping[str, Any]) -> ResourceState:
        """Put, then replace the declared value with what the cluster persisted."""
        cid = self.put(declared)
        state = self.refresh(cid, like=declared)
        if state is None:
            raise RemoteReadError(cid.name, detail="stored script missing right after a successful write")
        return state


def _as_id(cid: Union[str, CompositeId]) -> CompositeId:
    return cid if isinstance(cid, CompositeId) else identity.parse(cid)

