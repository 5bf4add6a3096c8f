# tests/test_firebase_api.py

import json

import pytest
import requests

from tips.services.remote import RemoteError
from tips.utils.firebase_api import FirebaseTree, _Stream, apply_event, iter_sse


class FakeResponse:
    def __init__(self, status=200, payload=None):
        self.status_code = status
        self._payload = payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response or FakeResponse(payload={})
        self.exc = exc
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.exc is not None:
            raise self.exc
        return self.response


def _tree(session, auth=None):
    return FirebaseTree("https://tips.example.com/", auth=auth, timeout=3, session=session)


def test_requests_use_json_urls_and_auth():
    s = FakeSession(FakeResponse(payload={"a": 1}))
    tree = _tree(s, auth="TOKEN")
    assert tree.get("/rooms/R1/units/") == {"a": 1}
    method, url, kw = s.calls[0]
    assert method == "GET"
    assert url == "https://tips.example.com/rooms/R1/units.json"
    assert kw["params"] == {"auth": "TOKEN"}
    assert kw["timeout"] == 3


def test_set_none_is_delete_and_update_is_patch():
    s = FakeSession()
    tree = _tree(s)
    tree.set("rooms/R1/x", {"a": None})
    tree.set("rooms/R1/y", 5)
    tree.update("rooms/R1", {"z/w": 1})
    assert [c[0] for c in s.calls] == ["DELETE", "PUT", "PATCH"]
    assert s.calls[1][2]["json"] == 5
    assert s.calls[0][2]["params"] == {}


def test_http_error_becomes_remote_error():
    tree = _tree(FakeSession(FakeResponse(status=401)))
    with pytest.raises(RemoteError):
        tree.set("rooms/R1/x", 1)


def test_timeout_becomes_remote_error():
    tree = _tree(FakeSession(exc=requests.Timeout("lento")))
    with pytest.raises(RemoteError):
        tree.get("rooms/R1")


def test_non_json_get_is_remote_error():
    tree = _tree(FakeSession(FakeResponse(payload=None)))
    with pytest.raises(RemoteError):
        tree.get("rooms/R1")


def test_iter_sse_blocks():
    lines = [
        "event: put",
        'data: {"path": "/", "data": {"a": 1}}',
        "",
        ": comentario",
        b"event: keep-alive",
        b"data: null",
        "",
        "event: patch",
        'data: {"path": "/", "data": {"b": 2}}',
    ]
    events = list(iter_sse(lines))
    assert [e for e, _ in events] == ["put", "keep-alive", "patch"]
    assert json.loads(events[0][1])["data"] == {"a": 1}


def test_apply_event_put_and_patch():
    snap = apply_event(None, "put", "/", {"C1": {"number": 1}})
    snap = apply_event(snap, "put", "/C1/items/I1", {"name": "Egg"})
    assert snap == {"C1": {"number": 1, "items": {"I1": {"name": "Egg"}}}}
    snap = apply_event(snap, "patch", "/C1", {"number": 2, "items/I1": None})
    assert snap == {"C1": {"number": 2}}
    assert apply_event(snap, "put", "/", None) is None


def test_apply_event_into_list_node():
    snap = apply_event(None, "put", "/", {"I1": [{"userId": "A"}]})
    snap = apply_event(snap, "put", "/I1/1", {"userId": "B"})
    assert snap == {"I1": {"0": {"userId": "A"}, "1": {"userId": "B"}}}


def test_stream_handle_delivers_full_snapshot():
    seen = []
    stream = _Stream(_tree(FakeSession()), "rooms/R1/units", seen.append, None)
    stream.handle("put", json.dumps({"path": "/", "data": {"U1": {"name": "ml"}}}))
    stream.handle("patch", json.dumps({"path": "/", "data": {"U2": {"name": "g"}}}))
    stream.handle("keep-alive", "null")
    assert seen == [{"U1": {"name": "ml"}}, {"U1": {"name": "ml"}, "U2": {"name": "g"}}]


def test_stream_cancel_raises():
    stream = _Stream(_tree(FakeSession()), "rooms/R1/units", lambda v: None, None)
    with pytest.raises(RemoteError):
        stream.handle("cancel", "permission denied")
    with pytest.raises(RemoteError):
        stream.handle("auth_revoked", "token expired")
