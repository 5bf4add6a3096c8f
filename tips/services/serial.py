# tips/services/serial.py
"""
Secuencia principal única: todo comando local y todo evento remoto pasa por
una ``SerialQueue`` y se ejecuta en orden de llegada, de uno en uno.

No hay hilo dedicado: el primer hilo que encola se convierte en "drenador" y
ejecuta la cola hasta vaciarla; los demás esperan su ``Future``. Una llamada
hecha desde dentro de la propia secuencia se ejecuta en línea.
"""
from __future__ import annotations

import functools
import logging
import threading
from collections import deque
from concurrent.futures import Future
from contextlib import nullcontext
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Set

from flask import has_app_context

logger = logging.getLogger(__name__)


class SerialQueue:
    def __init__(self, app=None, timeout: Optional[float] = None):
        self._app = app
        self._timeout = timeout
        self._pending: deque = deque()
        self._lock = threading.Lock()
        self._drainer: Optional[int] = None

    @property
    def on_sequence(self) -> bool:
        return self._drainer == threading.get_ident()

    def post(self, fn: Callable, *args, **kwargs) -> Future:
        """Encola ``fn``; si nadie está drenando, la ejecuta ya en este hilo."""
        fut: Future = Future()
        with self._lock:
            self._pending.append((fut, fn, args, kwargs))
            if self._drainer is not None:
                return fut
            self._drainer = threading.get_ident()
        self._drain()
        return fut

    def call(self, fn: Callable, *args, **kwargs):
        """Ejecuta ``fn`` en la secuencia y devuelve su resultado (o relanza)."""
        if self.on_sequence:
            return fn(*args, **kwargs)
        return self.post(fn, *args, **kwargs).result(timeout=self._timeout)

    def _context(self):
        if self._app is not None and not has_app_context():
            return self._app.app_context()
        return nullcontext()

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._pending:
                    self._drainer = None
                    return
                fut, fn, args, kwargs = self._pending.popleft()
            if not fut.set_running_or_notify_cancel():
                continue
            try:
                with self._context():
                    result = fn(*args, **kwargs)
            except Exception as exc:
                logger.exception("[queue] error ejecutando %s", getattr(fn, "__qualname__", fn))
                fut.set_exception(exc)
            else:
                fut.set_result(result)


def serialized(method):
    """Hace que el método se ejecute en ``self._queue``."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        return self._queue.call(method, self, *args, **kwargs)
    return wrapper


class LeaseMap:
    """
    Concesiones por id (p. ej. ciclo en creación). Mientras una concesión está
    viva, el espejo ignora snapshots que aún no la reflejan. Caducan solas
    para que un eco remoto perdido no bloquee la sincronización.
    """

    def __init__(self, clock: Callable[[], datetime], ttl_seconds: float = 30):
        self._clock = clock
        self._ttl = timedelta(seconds=ttl_seconds)
        self._leases: Dict[str, datetime] = {}

    def acquire(self, key: str) -> None:
        self._leases[key] = self._clock() + self._ttl

    def release(self, key: str) -> None:
        self._leases.pop(key, None)

    def active(self) -> Set[str]:
        now = self._clock()
        for key, expires in list(self._leases.items()):
            if expires <= now:
                logger.warning("[lease] concesión %s caducada", key)
                del self._leases[key]
        return set(self._leases)

    def __contains__(self, key: str) -> bool:
        return key in self.active()
