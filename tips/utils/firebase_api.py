# tips/utils/firebase_api.py
"""
Cliente REST + streaming (Server-Sent Events) de Firebase Realtime Database.

Implementa el contrato ``RemoteTree``: get/set/update/remove con timeout y
suscripciones que mantienen una copia del subárbol y la entregan completa en
cada evento ``put``/``patch``. Si el stream se corta se notifica el error y se
reconecta pasados ``retry_seconds``.
"""
from __future__ import annotations

import copy
import json
import logging
import threading
from typing import Any, Iterator, Optional, Tuple

import requests

from tips.services.remote import (
    ErrorCallback,
    RemoteError,
    RemoteTree,
    Subscription,
    ValueCallback,
    clean_value,
    split_path,
)

logger = logging.getLogger(__name__)


def iter_sse(lines) -> Iterator[Tuple[str, str]]:
    """
    Parser mínimo de text/event-stream: produce (event, data) por bloque.
    """
    event, data = None, []
    for raw in lines:
        if raw is None:
            continue
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        line = raw.rstrip("\r")
        if not line:
            if event is not None:
                yield event, "\n".join(data)
            event, data = None, []
            continue
        if line.startswith(":"):
            continue
        name, _, val = line.partition(":")
        if val.startswith(" "):
            val = val[1:]
        if name == "event":
            event = val
        elif name == "data":
            data.append(val)
    if event is not None:
        yield event, "\n".join(data)


def apply_event(snapshot: Any, event: str, path: str, data: Any) -> Any:
    """Aplica un evento put/patch sobre la copia local del subárbol."""
    parts = split_path(path)
    if event == "patch":
        for k, v in (data or {}).items():
            snapshot = _put(snapshot, parts + split_path(str(k)), v)
        return snapshot
    return _put(snapshot, parts, data)


def _as_dict(node: Any) -> dict:
    if isinstance(node, dict):
        return node
    if isinstance(node, list):
        return {str(i): v for i, v in enumerate(node) if v is not None}
    return {}


def _put(snapshot: Any, parts, value: Any) -> Any:
    value = clean_value(value)
    if not parts:
        return value
    root = _as_dict(snapshot)
    node = root
    for p in parts[:-1]:
        child = node.get(p)
        if isinstance(child, list):
            child = _as_dict(child)
            node[p] = child
        if not isinstance(child, dict):
            if value is None:
                return root or None
            child = {}
            node[p] = child
        node = child
    if value is None:
        node.pop(parts[-1], None)
    else:
        node[parts[-1]] = value
    return clean_value(root)


class FirebaseTree(RemoteTree):
    def __init__(self, base_url: str, auth: Optional[str] = None, timeout: float = 10,
                 retry_seconds: float = 5, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.timeout = timeout
        self.retry_seconds = retry_seconds
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{'/'.join(split_path(path))}.json"

    def _params(self) -> dict:
        return {"auth": self.auth} if self.auth else {}

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            r = self.session.request(
                method, self._url(path), params=self._params(), timeout=self.timeout, **kwargs
            )
            r.raise_for_status()
        except requests.RequestException as e:
            raise RemoteError(f"{method} {path}: {e}") from e
        return r

    def get(self, path: str) -> Any:
        try:
            return self._request("GET", path).json()
        except ValueError as e:
            raise RemoteError(f"GET {path}: respuesta no JSON") from e

    def set(self, path: str, value: Any) -> None:
        value = clean_value(value)
        if value is None:
            self._request("DELETE", path)
        else:
            self._request("PUT", path, json=value)

    def update(self, path: str, values: dict) -> None:
        self._request("PATCH", path, json=values)

    def remove(self, path: str) -> None:
        self._request("DELETE", path)

    def subscribe(self, path: str, on_value: ValueCallback,
                  on_error: Optional[ErrorCallback] = None) -> Subscription:
        stream = _Stream(self, path, on_value, on_error)
        stream.start()
        return Subscription(stream.stop)


class _Stream:
    """Hilo que mantiene abierto el stream SSE de una ruta."""

    # Firebase manda keep-alive cada ~30 s
    READ_TIMEOUT = 60

    def __init__(self, tree: FirebaseTree, path: str, on_value: ValueCallback,
                 on_error: Optional[ErrorCallback]):
        self.tree = tree
        self.path = path
        self.on_value = on_value
        self.on_error = on_error
        self.snapshot: Any = None
        self._closed = threading.Event()
        self._response: Optional[requests.Response] = None
        self._thread = threading.Thread(target=self._loop, name=f"sse:{path}", daemon=True)

    def start(self) -> None:
        self._thread.start()
        logger.info("[firebase] stream abierto %s", self.path)

    def stop(self) -> None:
        self._closed.set()
        resp = self._response
        if resp is not None:
            resp.close()
        logger.info("[firebase] stream cerrado %s", self.path)

    def _loop(self) -> None:
        while not self._closed.is_set():
            try:
                self._consume()
            except (requests.RequestException, RemoteError, ValueError) as exc:
                if self._closed.is_set():
                    return
                logger.warning("[firebase] stream %s caído: %s", self.path, exc)
                if self.on_error is not None:
                    err = exc if isinstance(exc, RemoteError) else RemoteError(str(exc))
                    self.on_error(err)
            self._closed.wait(self.tree.retry_seconds)

    def _consume(self) -> None:
        with self.tree.session.get(
            self.tree._url(self.path),
            params=self.tree._params(),
            headers={"Accept": "text/event-stream"},
            stream=True,
            timeout=(self.tree.timeout, self.READ_TIMEOUT),
        ) as resp:
            resp.raise_for_status()
            self._response = resp
            for event, raw in iter_sse(resp.iter_lines(decode_unicode=True)):
                if self._closed.is_set():
                    return
                self.handle(event, raw)

    def handle(self, event: str, raw: str) -> None:
        if event in ("put", "patch"):
            payload = json.loads(raw) if raw else {}
            self.snapshot = apply_event(self.snapshot, event, payload.get("path", "/"), payload.get("data"))
            self.on_value(copy.deepcopy(self.snapshot))
        elif event in ("cancel", "auth_revoked"):
            raise RemoteError(f"stream {event}: {raw}")
        # keep-alive: nada que hacer
