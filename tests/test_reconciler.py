import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from scriptsync.core import codec
from scriptsync.core.errors import (
    MalformedIdError,
    RemoteDeleteError,
    RemoteReadError,
    RemoteWriteError,
    SourceVariantError,
)
from scriptsync.core.identity import compose
from scriptsync.core.models import LiteralSource, Script, TemplateSource
from scriptsync.core.reconciler import Absent, Deleted, Found, StoredScriptReconciler, error_detail
from scriptsync.core.search_client import HttpError, SearchClient

CLUSTER_UUID = "c1uster-uuid"


def _declared(name="sum_script", source=None, params="{}", lang="painless"):
    source = source or {"script": "return params.a + params.b;"}
    return {"name": name, "script": [{"lang": lang, "source": [source], "params": params}]}


@pytest.fixture()
def reconciler(cluster):
    client = SearchClient(cluster.base_url, api_key="KEY", timeout_sec=2, retries=0)
    return StoredScriptReconciler(client)


def test_create_then_read(reconciler, cluster):
    cid = reconciler.put(_declared())
    assert str(cid) == f"{CLUSTER_UUID}/sum_script"

    res = reconciler.read(str(cid))
    assert isinstance(res, Found)
    assert res.stored.name == "sum_script"
    assert res.stored.script == Script("painless", LiteralSource("return params.a + params.b;"), {})
    assert cluster.auth_seen[-1] == "ApiKey KEY"


def test_put_is_idempotent(reconciler, cluster):
    declared = _declared(params='{"a": 1, "b": 2}')
    first = reconciler.put(declared)
    snapshot = json.loads(json.dumps(cluster.scripts))
    second = reconciler.put(declared)

    assert first == second
    assert cluster.scripts == snapshot
    res = reconciler.read(second)
    assert codec.declared_equal(codec.decode(res.stored), declared)


def test_search_template_round_trip(reconciler):
    tpl = '{"query":{"match":{"f":"{{v}}"}}}'
    declared = _declared(name="tpl", source={"search_template": tpl}, lang="mustache")

    state = reconciler.apply(declared)
    res = reconciler.read(state.id)
    assert res.stored.script.source == TemplateSource({"query": {"match": {"f": "{{v}}"}}})
    assert codec.declared_equal(state.declared, declared)


def test_apply_rerenders_from_server(reconciler):
    declared = _declared(params='{ "b" : 2,  "a": 1 }')
    state = reconciler.apply(declared)
    assert state.id == f"{CLUSTER_UUID}/sum_script"
    # server rendering replaces the declared text
    assert state.declared["script"][0]["params"] == '{"a":1,"b":2}'


def test_explicit_scope_skips_cluster_lookup(cluster):
    client = SearchClient(cluster.base_url, timeout_sec=2, retries=0)
    rec = StoredScriptReconciler(client, scope="prod")
    cid = rec.put(_declared())
    assert str(cid) == "prod/sum_script"
    # only the PUT, no GET / for the cluster uuid
    assert cluster.calls == {"PUT": 1}


def test_same_name_under_two_scopes_gives_distinct_ids(cluster):
    client = SearchClient(cluster.base_url, timeout_sec=2, retries=0)
    a = StoredScriptReconciler(client, scope="east").put(_declared())
    b = StoredScriptReconciler(client, scope="west").put(_declared())
    assert a != b and a.name == b.name


def test_read_absent_is_not_an_error(reconciler):
    res = reconciler.read(compose("scope", "nope"))
    assert res == Absent("nope")
    assert reconciler.refresh("scope/nope") is None


def test_delete_then_read(reconciler):
    cid = reconciler.put(_declared())
    assert reconciler.delete(cid) == Deleted("sum_script")
    assert isinstance(reconciler.read(cid), Absent)
    # second delete: already gone is success
    assert reconciler.delete(cid) == Absent("sum_script")


def test_put_rejection_carries_cluster_reason(reconciler):
    with pytest.raises(RemoteWriteError) as ei:
        reconciler.put(_declared(lang="cobol"))
    err = ei.value
    assert err.status == 400
    assert "script_lang not supported [cobol]" in err.detail
    assert "illegal_argument_exception" in str(err)


def test_put_invalid_declaration_never_reaches_cluster(reconciler, cluster):
    with pytest.raises(SourceVariantError):
        reconciler.put(_declared(source={"script": "x", "search_template": "{}"}))
    assert "PUT" not in cluster.calls


def test_read_server_error(reconciler, cluster):
    cluster.fail("GET", "boom", 500, {"error": {"type": "x", "reason": "shard failure"}})
    with pytest.raises(RemoteReadError) as ei:
        reconciler.read("scope/boom")
    assert ei.value.status == 500 and "shard failure" in ei.value.detail


def test_delete_forbidden(reconciler, cluster):
    cluster.fail("DELETE", "locked", 403, {"error": {"type": "security_exception", "reason": "action is unauthorized"}})
    with pytest.raises(RemoteDeleteError) as ei:
        reconciler.delete("scope/locked")
    assert "unauthorized" in ei.value.detail


def test_malformed_id_aborts_without_calls(reconciler, cluster):
    with pytest.raises(MalformedIdError):
        reconciler.read("no-separator")
    with pytest.raises(MalformedIdError):
        reconciler.delete("a/b/c")
    assert cluster.calls == {}


def test_apply_fails_when_script_vanishes(cluster):
    client = SearchClient(cluster.base_url, timeout_sec=2, retries=0)
    rec = StoredScriptReconciler(client, scope="s")
    cluster.fail("GET", "sum_script", 404, {"found": False})
    with pytest.raises(RemoteReadError):
        rec.apply(_declared())


class _SlowHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def do_GET(self):  # noqa: N802
        time.sleep(0.3)
        self.send_response(200)
        self.send_header("Content-Length", "2")
        self.end_headers()
        self.wfile.write(b"{}")

    def log_message(self, fmt, *args):
        return


def test_transport_timeout_is_not_relabelled():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _SlowHandler)
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    try:
        host, port = server.server_address
        client = SearchClient(f"http://{host}:{port}", timeout_sec=0.05, retries=0)
        rec = StoredScriptReconciler(client, scope="s")
        with pytest.raises(requests.Timeout):
            rec.read("s/x")
    finally:
        server.shutdown()
        t.join(timeout=1.0)


def test_error_detail_fallbacks():
    assert error_detail(HttpError(status=502, url="u", body="Bad Gateway")) == "Bad Gateway"
    assert error_detail(HttpError(status=400, url="u", body='{"error": "plain"}')) == "plain"
    body = json.dumps({"error": {"root_cause": [{"reason": "rc-1"}], "type": "t"}})
    assert error_detail(HttpError(status=400, url="u", body=body)) == "[t] rc-1"


def test_mustache_literal_converges(reconciler, cluster):
    declared = _declared(name="t", source={"script": '{"query": {"match_all": {}}}'}, lang="mustache")
    state = reconciler.apply(declared)
    assert state.declared["script"][0]["source"] == [{"script": '{"query": {"match_all": {}}}'}]
    assert codec.diff_fields(declared, state.declared) == []

    again = reconciler.refresh(state.id, like=state.declared)
    assert again == state


def test_cluster_uuid_is_looked_up_once(reconciler, cluster):
    for name in ("a", "b", "c"):
        reconciler.put(_declared(name=name))
    assert cluster.calls == {"GET": 1, "PUT": 3}


def test_connection_block_is_carried_into_state(reconciler):
    declared = dict(_declared(), connection=[{"base_url": "http://elsewhere:9200"}])
    state = reconciler.apply(declared)
    assert state.declared["connection"] == [{"base_url": "http://elsewhere:9200"}]
    assert codec.diff_fields(declared, state.declared) == []
