import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import unquote, urlparse

import pytest

CLUSTER_UUID = "c1uster-uuid"


class _ClusterHandler(BaseHTTPRequestHandler):
    """In-memory stand-in for the `/_scripts` API of a search cluster."""

    # per-server state, replaced by the fixture
    cluster_uuid = CLUSTER_UUID
    scripts = {}
    calls = {}
    failures = {}
    auth_seen = []

    protocol_version = "HTTP/1.1"

    def _send_json(self, status, obj):
        raw = json.dumps(obj).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def _read_body(self):
        length = int(self.headers.get("Content-Length", "0"))
        body = self.rfile.read(length) if length else b"{}"
        return json.loads(body.decode("utf-8"))

    def _script_name(self):
        path = urlparse(self.path).path
        if not path.startswith("/_scripts/"):
            return None
        return unquote(path[len("/_scripts/"):])

    def _count(self, method):
        self.calls[method] = self.calls.get(method, 0) + 1
        self.auth_seen.append(self.headers.get("Authorization", ""))

    def _injected(self, method, name):
        failure = self.failures.get((method, name))
        if failure is None:
            return False
        status, body = failure
        self._send_json(status, body)
        return True

    def do_GET(self):  # noqa: N802
        self._count("GET")
        if urlparse(self.path).path == "/":
            self._send_json(200, {"name": "node-1", "cluster_name": "test", "cluster_uuid": self.cluster_uuid})
            return
        name = self._script_name()
        if name is None or self._injected("GET", name):
            if name is None:
                self._send_json(404, {"error": "not found"})
            return
        stored = self.scripts.get(name)
        if stored is None:
            self._send_json(404, {"_id": name, "found": False})
            return
        self._send_json(200, {"_id": name, "found": True, "script": stored})

    def do_PUT(self):  # noqa: N802
        self._count("PUT")
        name = self._script_name()
        body = self._read_body()
        if name is None or self._injected("PUT", name):
            if name is None:
                self._send_json(404, {"error": "not found"})
            return
        script = body.get("script") or {}
        if script.get("lang") not in ("painless", "expression", "mustache"):
            self._send_json(400, {
                "error": {
                    "root_cause": [{"type": "illegal_argument_exception", "reason": "unknown language"}],
                    "type": "illegal_argument_exception",
                    "reason": f"script_lang not supported [{script.get('lang')}]",
                },
                "status": 400,
            })
            return
        stored = {"lang": script["lang"], "source": script.get("source")}
        # clusters keep templates as serialized strings
        if isinstance(stored["source"], (dict, list)):
            stored["source"] = json.dumps(stored["source"])
        if script.get("params"):
            stored["params"] = script["params"]
        self.scripts[name] = stored
        self._send_json(200, {"acknowledged": True})

    def do_DELETE(self):  # noqa: N802
        self._count("DELETE")
        name = self._script_name()
        if name is None or self._injected("DELETE", name):
            if name is None:
                self._send_json(404, {"error": "not found"})
            return
        if self.scripts.pop(name, None) is None:
            self._send_json(404, {
                "error": {"type": "resource_not_found_exception", "reason": f"stored script [{name}] does not exist"},
                "status": 404,
            })
            return
        self._send_json(200, {"acknowledged": True})

    def log_message(self, fmt, *args):  # silence server logs during tests
        return


class FakeCluster:
    def __init__(self, handler, base_url):
        self.handler = handler
        self.base_url = base_url

    @property
    def scripts(self):
        return self.handler.scripts

    @property
    def calls(self):
        return self.handler.calls

    @property
    def auth_seen(self):
        return self.handler.auth_seen

    def fail(self, method, name, status, body):
        self.handler.failures[(method, name)] = (status, body)


@pytest.fixture()
def cluster_factory():
    """Start fake clusters on demand; each gets its own scripts and uuid."""
    servers = []

    def start(uuid=CLUSTER_UUID):
        handler = type("Handler", (_ClusterHandler,), {
            "cluster_uuid": uuid, "scripts": {}, "calls": {}, "failures": {}, "auth_seen": [],
        })
        server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
        host, port = server.server_address
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        servers.append((server, thread))
        return FakeCluster(handler, f"http://{host}:{port}")

    yield start
    for server, thread in servers:
        server.shutdown()
        thread.join(timeout=1.0)


@pytest.fixture()
def cluster(cluster_factory):
    return cluster_factory()
