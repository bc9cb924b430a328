"""
Search cluster HTTP client.

- requests.Session based, JSON only (application/json).
- Methods: get_json, put_json, delete_json + stored-script helpers.
- Retries with exponential backoff on network errors and 5xx.
- No retry on 4xx.
- TLS verification toggle (verify_tls=True by default).
- Auth: API key (`Authorization: ApiKey ...`) or basic (username/password).
- Non-2xx responses raise HttpError with status, url, and body.
- Network errors/timeouts are re-raised unchanged once retries are exhausted.

Usage:
    client = SearchClient(base_url, api_key="...", verify_tls=True, timeout_sec=10, retries=3)
    client.put_script("sum_script", {"script": {"lang": "painless", "source": "..."}})
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

import requests
import urllib3

JSON = Union[Dict[str, Any], list]


@dataclass
class HttpError(Exception):
    """HTTP error with context."""
    status: int
    url: str
    body: str = ""
    message: str = ""

    def __str__(self) -> str:
        base = f"HttpError(status={self.status}, url={self.url})"
        if self.message:
            base += f": {self.message}"
        if self.body:
            base += f" body={self.body[:200]}"
        return base

    def json(self) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(self.body)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None


class SearchClient:
    """Minimal JSON HTTP client with retries and timeouts."""

    def __init__(
        self,
        base_url: str,
        *,
        username: str = "",
        password: str = "",
        api_key: str = "",
        verify_tls: bool = True,
        timeout_sec: float = 30,
        retries: int = 3,
        backoff_base_sec: float = 0.05,
        logger: Optional[logging.LoggerAdapter] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.verify_tls = verify_tls
        self.timeout = float(timeout_sec)
        self.retries = max(0, int(retries))
        self.backoff = float(backoff_base_sec)
        self.log = logger or logging.getLogger("ssync.http")

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "scriptsync/HTTPClient",
        })
        if api_key:
            self.session.headers["Authorization"] = f"ApiKey {api_key}"
        elif username:
            self.session.auth = (username, password)

        if not verify_tls:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    # ------------- Public API -------------

    def get_json(self, path: str) -> JSON:
        return self._request_json("GET", path)

    def put_json(self, path: str, payload: Dict[str, Any]) -> JSON:
        return self._request_json("PUT", path, payload)

    def delete_json(self, path: str) -> JSON:
        return self._request_json("DELETE", path)

    def cluster_uuid(self) -> str:
        info = self.get_json("/")
        uuid = info.get("cluster_uuid") if isinstance(info, dict) else None
        if not uuid:
            raise HttpError(status=200, url=self._full_url("/"), message="cluster_uuid missing from cluster info")
        return str(uuid)

    @staticmethod
    def script_path(name: str) -> str:
        return f"_scripts/{quote(name, safe='')}"

    def put_script(self, name: str, body: Dict[str, Any]) -> JSON:
        return self.put_json(self.script_path(name), body)

    def get_script(self, name: str) -> JSON:
        return self.get_json(self.script_path(name))

    def delete_script(self, name: str) -> JSON:
        return self.delete_json(self.script_path(name))

    # ------------- Internal -------------

    def _full_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request_json(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> JSON:
        url = self._full_url(path)
        if payload is not None:
            self.log.debug("%s %s payload=%s", method, path, json.dumps(payload)[:600])

        attempts = self.retries + 1
        for attempt in range(attempts):
            start = time.time()
            try:
                resp = self.session.request(
                    method=method,
                    url=url,
                    json=payload,
                    timeout=self.timeout,
                    verify=self.verify_tls,
                )
            except requests.RequestException as e:
                # Network/timeout. Retry while attempts remain, then surface as-is.
                self._log_err(method, path, 0, e)
                if attempt < attempts - 1:
                    self._sleep_backoff(attempt)
                    continue
                raise

            elapsed = (time.time() - start) * 1000
            status = resp.status_code
            if status >= 400:
                err = HttpError(status=status, url=url, body=resp.text or "", message=resp.reason or "")
                self._log_err(method, path, status, err)
                # Retry only on 5xx
                if 500 <= status < 600 and attempt < attempts - 1:
                    self._sleep_backoff(attempt)
                    continue
                raise err

            self._log_ok(method, path, status, elapsed)
            if status == 204 or not resp.content:
                return {}
            try:
                return resp.json()
            except ValueError as e:
                raise HttpError(status=status, url=url, body=resp.text, message=str(e)) from e

        raise AssertionError("unreachable")  # pragma: no cover

    def _sleep_backoff(self, attempt: int) -> None:
        time.sleep(self.backoff * (2 ** attempt))

    def _log_ok(self, method: str, path: str, status: int, elapsed_ms: float) -> None:
        self.log.debug("%s %s -> %s in %.1fms", method, path, status, elapsed_ms)

    def _log_err(self, method: str, path: str, status: int, err: Exception) -> None:
        # 404 is routine for reads/deletes of absent scripts.
        level = logging.DEBUG if status == 404 else logging.WARNING
        self.log.log(level, "%s %s failed (status=%s): %s", method, path, status, err)
