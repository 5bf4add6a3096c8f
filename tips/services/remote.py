# tips/services/remote.py
"""
Contrato del árbol remoto (base de datos en tiempo real de la sala).

Las rutas son cadenas tipo ``rooms/ABC/cycles/<id>``. Un valor ``None`` (o un
dict/lista vacíos) borra el nodo, igual que en Firebase.
"""
from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

ValueCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]


class RemoteError(Exception):
    """Fallo de lectura/escritura/suscripción contra el árbol remoto."""


def split_path(path: str) -> List[str]:
    return [p for p in (path or "").strip("/").split("/") if p]


def clean_value(value: Any) -> Any:
    """Quita None y contenedores vacíos (el árbol remoto no los guarda)."""
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            cv = clean_value(v)
            if cv is not None:
                out[str(k)] = cv
        return out or None
    if isinstance(value, list):
        out_list = [clean_value(v) for v in value]
        return out_list if any(v is not None for v in out_list) else None
    return value


class Subscription:
    def __init__(self, closer: Callable[[], None]):
        self._closer = closer
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._closer()


class RemoteTree:
    """Interfaz mínima que el espejo y el store necesitan del backend."""

    def get(self, path: str) -> Any:
        raise NotImplementedError

    def set(self, path: str, value: Any) -> None:
        raise NotImplementedError

    def update(self, path: str, values: dict) -> None:
        raise NotImplementedError

    def remove(self, path: str) -> None:
        self.set(path, None)

    def subscribe(self, path: str, on_value: ValueCallback,
                  on_error: Optional[ErrorCallback] = None) -> Subscription:
        raise NotImplementedError


class MemoryTree(RemoteTree):
    """
    Árbol en memoria con el mismo contrato que el backend real.
    Se usa sin conexión (una sola instancia comparte la "sala") y en tests.
    Los suscriptores reciben el valor actual al suscribirse y tras cada
    escritura que afecte a su ruta.
    """

    def __init__(self, data: Optional[dict] = None):
        self._root: dict = clean_value(copy.deepcopy(data)) or {}
        self._lock = threading.RLock()
        self._listeners: List[Tuple[List[str], ValueCallback]] = []

    # ---- lectura ----
    def _node(self, parts: List[str]) -> Any:
        node: Any = self._root
        for p in parts:
            if isinstance(node, dict):
                node = node.get(p)
            elif isinstance(node, list) and p.isdigit() and int(p) < len(node):
                node = node[int(p)]
            else:
                return None
            if node is None:
                return None
        return node

    def get(self, path: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._node(split_path(path)))

    # ---- escritura ----
    def _write(self, parts: List[str], value: Any) -> None:
        value = clean_value(copy.deepcopy(value))
        if not parts:
            self._root = value if isinstance(value, dict) else {}
            return
        node = self._root
        trail = []
        for p in parts[:-1]:
            child = node.get(p)
            if isinstance(child, list):
                child = {str(i): v for i, v in enumerate(child) if v is not None}
                node[p] = child
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[p] = child
            trail.append((node, p))
            node = child
        if value is None:
            node.pop(parts[-1], None)
            # poda de padres vacíos
            for parent, key in reversed(trail):
                if parent[key]:
                    break
                del parent[key]
        else:
            node[parts[-1]] = value

    def _notify(self, parts: List[str]) -> None:
        with self._lock:
            targets = [
                (lp, cb) for lp, cb in list(self._listeners)
                if lp[:len(parts)] == parts or parts[:len(lp)] == lp
            ]
            values = [(cb, copy.deepcopy(self._node(lp))) for lp, cb in targets]
        for cb, value in values:
            cb(value)

    def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        with self._lock:
            self._write(parts, value)
        self._notify(parts)

    def update(self, path: str, values: dict) -> None:
        parts = split_path(path)
        with self._lock:
            for k, v in (values or {}).items():
                self._write(parts + split_path(str(k)), v)
        self._notify(parts)

    def subscribe(self, path: str, on_value: ValueCallback,
                  on_error: Optional[ErrorCallback] = None) -> Subscription:
        parts = split_path(path)
        entry = (parts, on_value)
        with self._lock:
            self._listeners.append(entry)
            current = copy.deepcopy(self._node(parts))

        def _close():
            with self._lock:
                if entry in self._listeners:
                    self._listeners.remove(entry)

        on_value(current)
        return Subscription(_close)

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)
