# tips/services/mirror.py
"""
Espejo de la sala remota: una suscripción por subárbol
(``rooms/{sala}/cycles``, ``units``, ``users``, ``consumptionLog``,
``categoryCollapsed``, ``treatmentTimerEnd``). Cada snapshot se encola en la
secuencia del store y se fusiona allí; nunca se toca el estado desde el hilo
del stream.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List

from tips.models.domain import (
    Cycle,
    Item,
    Unit,
    User,
    _children,
    decode_items,
    decode_log,
    default_units,
)
from tips.services.remote import Subscription
from tips.utils.timeutil import parse_optional_iso

if TYPE_CHECKING:
    from tips.services.store import StateStore

logger = logging.getLogger(__name__)

SUBTREES = ("cycles", "units", "users", "consumptionLog", "categoryCollapsed", "treatmentTimerEnd")


def merge_items(local: List[Item], remote: List[Item]) -> List[Item]:
    """
    Por id gana el remoto; los locales sin pareja remota se conservan y los
    solo-remotos se añaden. Resultado ordenado por ``order``.
    """
    by_id = {it.id: it for it in remote}
    merged = [by_id.get(it.id, it) for it in local]
    seen = {it.id for it in merged}
    merged.extend(it for it in remote if it.id not in seen)
    return sorted(merged, key=lambda it: it.sort_key)


class RemoteMirror:
    def __init__(self, store: "StateStore"):
        self.store = store
        self.room_code = None
        self._subs: List[Subscription] = []
        # cada start() abre una generación nueva; los eventos de la anterior se descartan
        self._generation = 0

    @property
    def active(self) -> bool:
        return bool(self._subs)

    def start(self, room_code: str) -> None:
        self.stop()
        self._generation += 1
        gen = self._generation
        self.room_code = room_code
        handlers = {
            "cycles": self.merge_cycles,
            "units": self.merge_units,
            "users": self.merge_users,
            "consumptionLog": self.merge_log,
            "categoryCollapsed": self.merge_collapsed,
            "treatmentTimerEnd": self.merge_timer_end,
        }
        for name in SUBTREES:
            self._subs.append(self.store.remote.subscribe(
                f"rooms/{room_code}/{name}",
                self._poster(gen, name, handlers[name]),
                self._error_poster(gen, name),
            ))
        logger.info("[mirror] suscrito a la sala %s", room_code)

    def stop(self) -> None:
        subs, self._subs = self._subs, []
        for sub in subs:
            sub.close()
        if subs:
            logger.info("[mirror] suscripciones cerradas (sala %s)", self.room_code)
        self._generation += 1

    def _poster(self, gen: int, name: str, handler):
        def on_value(value: Any) -> None:
            self.store._queue.post(self._guarded, gen, name, handler, value)
        return on_value

    def _error_poster(self, gen: int, name: str):
        def on_error(exc: Exception) -> None:
            self.store._queue.post(self._guarded, gen, name, self.on_error, (name, exc))
        return on_error

    def _guarded(self, gen: int, name: str, handler, value: Any) -> None:
        if gen != self._generation:
            logger.debug("[mirror] evento de %s de una sala anterior, descartado", name)
            return
        handler(value)

    # ======================
    # Fusiones (siempre en la secuencia del store)
    # ======================
    def merge_cycles(self, value: Any) -> None:
        store = self.store
        raw_cycles: Dict[str, Any] = {
            k: v for k, v in _children(value).items() if isinstance(v, dict)
        }

        pending = store.leases.active()
        if pending:
            confirmed = pending & set(raw_cycles)
            for cycle_id in confirmed:
                store.leases.release(cycle_id)
            if pending - confirmed:
                logger.info("[mirror] snapshot de ciclos ignorado: creación en curso %s", pending - confirmed)
                return

        cycles: List[Cycle] = []
        cycle_items = dict(store.cycle_items)
        for key, raw in raw_cycles.items():
            cycle = Cycle.from_dict(raw, id=key)
            if cycle is None:
                logger.warning("[mirror] ciclo %s malformado, se ignora", key)
                continue
            cycles.append(cycle)
            remote_items = decode_items(raw.get("items"))
            if remote_items:
                local = cycle_items.get(cycle.id)
                cycle_items[cycle.id] = merge_items(local, remote_items) if local else remote_items
            elif cycle.id not in cycle_items:
                cycle_items[cycle.id] = []

        if not cycles:
            store.cycles = []
            if store.cycle_items:
                store.sync_error = None
            else:
                store.sync_error = "No cycles found in the room or data is malformed."
            logger.info("[mirror] sin ciclos remotos (items locales: %d)", len(store.cycle_items))
            store._save_cache()
            store._emit("cycles")
            return

        store.cycles = sorted(cycles, key=lambda c: c.start_date)
        store.cycle_items = cycle_items
        store.sync_error = None
        store._save_cache()
        store._emit("cycles")
        logger.debug("[mirror] %d ciclos sincronizados", len(cycles))

    def merge_units(self, value: Any) -> None:
        units = [
            u for u in (Unit.from_dict(raw, id=key) for key, raw in _children(value).items())
            if u is not None
        ]
        self.store.units = units or default_units()
        self.store._emit("units")

    def merge_users(self, value: Any) -> None:
        store = self.store
        users = [
            u for u in (User.from_dict(raw, id=key) for key, raw in _children(value).items())
            if u is not None
        ]
        store.users = users
        current_id = store.current_user.id if store.current_user else store.cache.get_str("currentUserId")
        refreshed = next((u for u in users if u.id == current_id), None)
        if refreshed is not None:
            store.current_user = refreshed
            store._save_current_user()
        store.is_loading = False
        store._emit("users")

    def merge_log(self, value: Any) -> None:
        self.store.consumption_log = decode_log(value)
        self.store._save_cache()
        self.store._emit("consumptionLog")

    def merge_collapsed(self, value: Any) -> None:
        self.store.category_collapsed = {
            str(k): bool(v) for k, v in _children(value).items() if isinstance(v, bool)
        }
        self.store._emit("collapsed")

    def merge_timer_end(self, value: Any) -> None:
        store = self.store
        now = store.clock()
        try:
            incoming = parse_optional_iso(value)
        except ValueError:
            logger.warning("[mirror] treatmentTimerEnd ilegible: %r", value)
            incoming = None

        if incoming is not None and incoming > now:
            if store.treatment_timer_end != incoming:
                logger.info("[mirror] temporizador remoto adoptado: %s", incoming)
                store.treatment_timer_end = incoming
        elif value is None and store.treatment_timer_end is not None and store.treatment_timer_end > now:
            logger.info("[mirror] borrado remoto ignorado: temporizador local activo hasta %s",
                        store.treatment_timer_end)
        else:
            store.treatment_timer_end = None
            store.treatment_timer_id = None
        store._save_cache()
        store._emit("timer")

    def on_error(self, payload) -> None:
        name, exc = payload
        store = self.store
        store.sync_error = f"Failed to sync {name}: {exc}"
        store.is_loading = False
        logger.error("[mirror] error de sincronización en %s: %s", name, exc)
