# tips/services/store.py
"""
StateStore: copia local de todo lo que ve el usuario (ciclos, items, unidades,
usuarios, registro de consumos, flags de categorías y temporizador) y único
punto por el que pasa cualquier mutación.

Todas las operaciones públicas que mutan se ejecutan en la ``SerialQueue`` del
store (decorador ``@serialized``), igual que los snapshots del espejo remoto,
así que nunca hay dos escritores a la vez. Las escrituras remotas van primero;
si fallan se registra el error, se devuelve False y el estado local no cambia.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import date, datetime, time
from typing import Callable, Dict, Iterable, List, Optional

from flask import current_app

from tips.models.domain import (
    DEFAULT_TIMER_SECONDS,
    Category,
    Cycle,
    Item,
    LogEntry,
    Unit,
    User,
    decode_cycle_items,
    decode_entries,
    decode_items,
    decode_log,
    default_units,
    encode_cycle_items,
    encode_entries,
    encode_log,
)
from tips.services.local_cache import LocalCache
from tips.services.mirror import RemoteMirror
from tips.services.notifications import NotificationCenter
from tips.services.remote import MemoryTree, RemoteError, RemoteTree
from tips.services.serial import LeaseMap, SerialQueue, serialized
from tips.services.timer import TimerController
from tips.utils import schedule
from tips.utils.timeutil import format_day, parse_day, same_second, to_iso

logger = logging.getLogger(__name__)

# claves de la caché local
CYCLES_KEY = "cachedCycles"
CYCLE_ITEMS_KEY = "cachedCycleItems"
LOG_KEY = "cachedConsumptionLog"
TIMER_ID_KEY = "cachedTreatmentTimerId"
CURRENT_USER_KEY = "currentUserId"
LAST_RESET_KEY = "lastResetDate"
ROOM_KEY = "roomCode"


def user_settings_key(user_id: str) -> str:
    return f"userSettings_{user_id}"


Listener = Callable[[str], None]


class StateStore:
    def __init__(
        self,
        remote: RemoteTree,
        cache: LocalCache,
        notifications: Optional[NotificationCenter] = None,
        clock: Callable[[], datetime] = datetime.now,
        app=None,
        default_timer_seconds: float = DEFAULT_TIMER_SECONDS,
    ):
        self.remote = remote
        self.cache = cache
        self.notifications = notifications or NotificationCenter(clock)
        self.clock = clock
        self.default_timer_seconds = default_timer_seconds
        self._queue = SerialQueue(app=app)
        self.leases = LeaseMap(clock)

        self.cycles: List[Cycle] = []
        self.cycle_items: Dict[str, List[Item]] = {}
        self.units: List[Unit] = default_units()
        self.users: List[User] = []
        self.current_user: Optional[User] = None
        self.consumption_log: Dict[str, Dict[str, List[LogEntry]]] = {}
        self.category_collapsed: Dict[str, bool] = {}
        self.last_reset_date: Optional[date] = None
        self.treatment_timer_end: Optional[datetime] = None
        self.treatment_timer_id: Optional[str] = None
        self.room_code: Optional[str] = None
        self.sync_error: Optional[str] = None
        self.is_loading = True

        self._listeners: List[Listener] = []
        self.mirror = RemoteMirror(self)
        self.timer = TimerController(self)

    @classmethod
    def from_app(cls, app, clock: Optional[Callable[[], datetime]] = None) -> "StateStore":
        """Construye el store con el backend remoto que indique la config."""
        cfg = app.config
        clock = clock or cfg.get("TIPS_CLOCK") or datetime.now
        url = cfg.get("TIPS_REMOTE_URL")
        if url:
            from tips.utils.firebase_api import FirebaseTree

            remote: RemoteTree = FirebaseTree(
                url,
                auth=cfg.get("TIPS_REMOTE_AUTH") or None,
                timeout=float(cfg.get("REMOTE_TIMEOUT", 10)),
            )
            logger.info("[store] backend remoto: %s", url)
        else:
            remote = MemoryTree()
            logger.info("[store] sin TIPS_REMOTE_URL: árbol en memoria")
        return cls(
            remote=remote,
            cache=LocalCache(cfg["TIPS_TIMER_CACHE"]),
            notifications=NotificationCenter(clock),
            clock=clock,
            app=app,
            default_timer_seconds=float(cfg.get("DEFAULT_TIMER_SECONDS", DEFAULT_TIMER_SECONDS)),
        )

    def run(self, fn: Callable, *args, **kwargs):
        """Ejecuta ``fn`` en la secuencia del store y devuelve su resultado."""
        return self._queue.call(fn, *args, **kwargs)

    # ======================
    # Suscripción a cambios
    # ======================
    def on_change(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _emit(self, topic: str) -> None:
        for listener in list(self._listeners):
            listener(topic)

    # ======================
    # Arranque y caché local
    # ======================
    @serialized
    def bootstrap(self) -> None:
        """Carga la caché, reanuda el temporizador y empieza a espejar la sala."""
        self._load_cache()
        self.timer.resume()
        self._check_and_reset()
        if self.current_user is not None:
            self.notifications.schedule_daily_reminders(self.current_user)
        if self.room_code:
            self.mirror.start(self.room_code)
        else:
            self.sync_error = "No room code set."
            self.is_loading = False
        logger.info("[store] arranque completo (sala=%s, usuario=%s)",
                    self.room_code, self.current_user.id if self.current_user else None)

    def _load_cache(self) -> None:
        now = self.clock()
        self.room_code = self.cache.get_str(ROOM_KEY)

        user_id = self.cache.get_str(CURRENT_USER_KEY)
        if user_id:
            user = User.from_dict(self.cache.get_json(user_settings_key(user_id)), id=user_id)
            if user is not None:
                self.current_user = user
                logger.info("[store] usuario actual desde caché: %s", user_id)

        raw_cycles = self.cache.get_json(CYCLES_KEY)
        if isinstance(raw_cycles, list):
            self.cycles = [c for c in (Cycle.from_dict(d) for d in raw_cycles) if c is not None]
        raw_items = self.cache.get_json(CYCLE_ITEMS_KEY)
        if isinstance(raw_items, dict):
            self.cycle_items = decode_cycle_items(raw_items)
        raw_log = self.cache.get_json(LOG_KEY)
        if isinstance(raw_log, dict):
            self.consumption_log = decode_log(raw_log)

        raw_reset = self.cache.get_str(LAST_RESET_KEY)
        if raw_reset:
            try:
                self.last_reset_date = parse_day(raw_reset)
            except ValueError:
                logger.warning("[store] lastResetDate ilegible: %r", raw_reset)

        self.treatment_timer_end = self.cache.load_timer_end(now)
        self.treatment_timer_id = self.cache.get_str(TIMER_ID_KEY)
        logger.info(
            "[store] caché cargada: %d ciclos, %d listas de items, timer=%s",
            len(self.cycles), len(self.cycle_items), self.treatment_timer_end,
        )

    def _save_cache(self) -> None:
        self.cache.set_json(CYCLES_KEY, [c.to_dict(with_id=True) for c in self.cycles])
        self.cache.set_json(CYCLE_ITEMS_KEY, encode_cycle_items(self.cycle_items))
        self.cache.set_json(LOG_KEY, encode_log(self.consumption_log))
        self.cache.save_timer_end(self.treatment_timer_end)
        self.cache.set_or_delete(TIMER_ID_KEY, self.treatment_timer_id)

    def _save_current_user(self) -> None:
        user = self.current_user
        if user is None:
            return
        self.cache.set_json(CURRENT_USER_KEY, user.id)
        self.cache.set_json(user_settings_key(user.id), user.to_dict())
        self._save_cache()

    # ======================
    # Consultas
    # ======================
    def today(self) -> date:
        return self.clock().date()

    def cycle(self, cycle_id: str) -> Optional[Cycle]:
        return next((c for c in self.cycles if c.id == cycle_id), None)

    def current_cycle(self) -> Optional[Cycle]:
        return self.cycles[-1] if self.cycles else None

    def items_for(self, cycle_id: Optional[str]) -> List[Item]:
        if cycle_id is None:
            return []
        return sorted(self.cycle_items.get(cycle_id, []), key=lambda it: it.sort_key)

    def item(self, item_id: str, cycle_id: str) -> Optional[Item]:
        return next((it for it in self.cycle_items.get(cycle_id, []) if it.id == item_id), None)

    def logs_for(self, cycle_id: str, item_id: str) -> List[LogEntry]:
        return list(self.consumption_log.get(cycle_id, {}).get(item_id, []))

    def user(self, user_id: str) -> Optional[User]:
        return next((u for u in self.users if u.id == user_id), None)

    def is_admin(self) -> bool:
        return bool(self.current_user and self.current_user.is_admin)

    def is_checked_today(self, item_id: str, cycle_id: Optional[str] = None) -> bool:
        cycle_id = cycle_id or (self.current_cycle().id if self.cycles else None)
        if cycle_id is None:
            return False
        return schedule.is_logged_on(self.logs_for(cycle_id, item_id), self.today())

    def is_category_complete(self, category: Category) -> bool:
        cycle = self.current_cycle()
        if cycle is None:
            return False
        return schedule.is_category_complete(
            category, self.items_for(cycle.id), self.consumption_log.get(cycle.id, {}), self.today()
        )

    def is_collapsed(self, category: Category) -> bool:
        value = self.category_collapsed.get(category.value)
        return self.is_category_complete(category) if value is None else value

    @serialized
    def snapshot(self) -> dict:
        """Vista completa del estado, en el formato del árbol remoto."""
        return {
            "roomCode": self.room_code,
            "syncError": self.sync_error,
            "isLoading": self.is_loading,
            "currentUser": self.current_user.to_dict(with_id=True) if self.current_user else None,
            "cycles": [c.to_dict(with_id=True) for c in self.cycles],
            "cycleItems": encode_cycle_items(self.cycle_items),
            "units": [u.to_dict(with_id=True) for u in self.units],
            "users": [u.to_dict(with_id=True) for u in self.users],
            "consumptionLog": encode_log(self.consumption_log),
            "categoryCollapsed": dict(self.category_collapsed),
            "lastResetDate": format_day(self.last_reset_date) if self.last_reset_date else None,
            "treatmentTimerEnd": to_iso(self.treatment_timer_end) if self.treatment_timer_end else None,
            "treatmentTimerId": self.treatment_timer_id,
        }

    # ======================
    # Helpers remotos
    # ======================
    def _path(self, *parts: str) -> str:
        if not self.room_code:
            raise RemoteError("no hay código de sala")
        return "/".join(("rooms", self.room_code) + tuple(str(p) for p in parts))

    def _require_admin(self, op: str) -> bool:
        if not self.is_admin():
            logger.warning("[store] %s denegado: el usuario actual no es admin", op)
            return False
        return True

    def _require_cycle(self, op: str, cycle_id: str) -> bool:
        if self.cycle(cycle_id) is None:
            logger.warning("[store] %s: ciclo %s no existe", op, cycle_id)
            return False
        return True

    # ======================
    # Items
    # ======================
    @serialized
    def add_item(self, item: Item, cycle_id: str) -> bool:
        if not self._require_cycle("add_item", cycle_id) or not self._require_admin("add_item"):
            return False
        current = list(self.cycle_items.get(cycle_id, []))
        if item.order is None:
            item = replace(item, order=len(current))
        try:
            self.remote.set(self._path("cycles", cycle_id, "items", item.id), item.to_dict())
        except RemoteError as e:
            logger.error("[store] error guardando item %s en ciclo %s: %s", item.id, cycle_id, e)
            return False

        for i, existing in enumerate(current):
            if existing.id == item.id:
                current[i] = item
                break
        else:
            current.append(item)
        self.cycle_items[cycle_id] = sorted(current, key=lambda it: it.sort_key)
        self._save_cache()
        self._emit("items")
        logger.info("[store] item %s guardado en ciclo %s (order=%s)", item.id, cycle_id, item.order)
        return True

    @serialized
    def remove_item(self, item_id: str, cycle_id: str) -> bool:
        if not self._require_cycle("remove_item", cycle_id) or not self._require_admin("remove_item"):
            return False
        try:
            self.remote.remove(self._path("cycles", cycle_id, "items", item_id))
        except RemoteError as e:
            logger.error("[store] error borrando item %s: %s", item_id, e)
            return False
        self.cycle_items[cycle_id] = [it for it in self.cycle_items.get(cycle_id, []) if it.id != item_id]
        self._save_cache()
        self._emit("items")
        return True

    @serialized
    def save_items(self, items: Iterable[Item], cycle_id: str) -> bool:
        """Sobrescribe la lista completa de items del ciclo (tras reordenar)."""
        if not self._require_cycle("save_items", cycle_id):
            return False
        items = [it if it.order is not None else replace(it, order=i) for i, it in enumerate(items)]
        try:
            self.remote.set(
                self._path("cycles", cycle_id, "items"),
                {it.id: it.to_dict() for it in items},
            )
        except RemoteError as e:
            logger.error("[store] error guardando items del ciclo %s: %s", cycle_id, e)
            return False
        self.cycle_items[cycle_id] = sorted(items, key=lambda it: it.sort_key)
        self._save_cache()
        self._emit("items")
        return True

    @serialized
    def reorder_items(self, cycle_id: str, category: Category, ordered_ids: List[str]) -> bool:
        """
        Reordena los items de una categoría. Reciben ``order`` 0..n-1 en el orden
        dado; los de otras categorías no cambian.
        """
        if not self._require_cycle("reorder_items", cycle_id):
            return False
        current = self.items_for(cycle_id)
        in_category = {it.id: it for it in current if it.category is category}
        if set(ordered_ids) != set(in_category) or len(ordered_ids) != len(in_category):
            logger.warning("[store] reorder_items: ids no coinciden con la categoría %s", category.value)
            return False
        new_order = {item_id: i for i, item_id in enumerate(ordered_ids)}
        updated = [
            replace(it, order=new_order[it.id]) if it.id in new_order else it
            for it in current
        ]
        return self.save_items(updated, cycle_id)

    # ======================
    # Ciclos
    # ======================
    @serialized
    def add_cycle(self, cycle: Cycle, copy_items_from: Optional[str] = None) -> bool:
        if not self._require_admin("add_cycle"):
            return False
        if self.cycle(cycle.id) is not None:
            logger.info("[store] ciclo %s ya existe: se actualiza", cycle.id)
            return self._update_cycle(cycle)

        # alta optimista protegida por concesión
        self.leases.acquire(cycle.id)
        self.cycles.append(cycle)
        source_id = copy_items_from
        if source_id is None and len(self.cycles) > 1:
            source_id = self.cycles[-2].id

        copied: List[Item] = []
        if source_id is not None:
            try:
                raw = self.remote.get(self._path("cycles", source_id, "items"))
                copied = [it.copy_with_new_id() for it in decode_items(raw)]
            except RemoteError as e:
                logger.warning("[store] no se pudieron leer los items de %s: %s", source_id, e)
        self.cycle_items[cycle.id] = copied

        try:
            self.remote.update(self._path("cycles", cycle.id), cycle.to_dict())
            if copied:
                self.remote.update(
                    self._path("cycles", cycle.id, "items"),
                    {it.id: it.to_dict() for it in copied},
                )
        except RemoteError as e:
            logger.error("[store] error creando ciclo %s: %s", cycle.id, e)
            self.cycles = [c for c in self.cycles if c.id != cycle.id]
            self.cycle_items.pop(cycle.id, None)
            self.leases.release(cycle.id)
            self._emit("cycles")
            return False

        if source_id is not None:
            self._reupload_items(source_id)
        self._save_cache()
        self._emit("cycles")
        logger.info("[store] ciclo %s creado (%d items copiados de %s)", cycle.id, len(copied), source_id)
        return True

    def _update_cycle(self, cycle: Cycle) -> bool:
        try:
            self.remote.update(self._path("cycles", cycle.id), cycle.to_dict())
        except RemoteError as e:
            logger.error("[store] error actualizando ciclo %s: %s", cycle.id, e)
            return False
        self.cycles = sorted(
            [cycle if c.id == cycle.id else c for c in self.cycles],
            key=lambda c: c.start_date,
        )
        self._save_cache()
        self._emit("cycles")
        return True

    def _reupload_items(self, cycle_id: str) -> None:
        """Si el ciclo de origen tiene items locales pero no remotos, se vuelven a subir."""
        local = self.cycle_items.get(cycle_id) or []
        if not local:
            return
        try:
            remote_items = self.remote.get(self._path("cycles", cycle_id, "items"))
            if not remote_items:
                logger.info("[store] reenviando %d items locales del ciclo %s", len(local), cycle_id)
                self.remote.update(
                    self._path("cycles", cycle_id, "items"),
                    {it.id: it.to_dict() for it in local},
                )
        except RemoteError as e:
            logger.warning("[store] no se pudieron reenviar items de %s: %s", cycle_id, e)

    # ======================
    # Unidades y usuarios
    # ======================
    @serialized
    def add_unit(self, unit: Unit) -> bool:
        try:
            self.remote.set(self._path("units", unit.id), unit.to_dict())
        except RemoteError as e:
            logger.error("[store] error guardando unidad %s: %s", unit.name, e)
            return False
        if all(u.id != unit.id for u in self.units):
            self.units.append(unit)
        self._emit("units")
        return True

    @serialized
    def add_user(self, user: User) -> bool:
        """Alta o modificación de un usuario; refresca el usuario actual si es él."""
        try:
            self.remote.set(self._path("users", user.id), user.to_dict())
        except RemoteError as e:
            logger.error("[store] error guardando usuario %s: %s", user.id, e)
            return False
        self.users = [u for u in self.users if u.id != user.id] + [user]
        if self.current_user is not None and self.current_user.id == user.id:
            self.current_user = user
            self._save_current_user()
            self.notifications.schedule_daily_reminders(user)
        self._emit("users")
        return True

    @serialized
    def set_current_user(self, user: User) -> None:
        self.current_user = user
        self._save_current_user()
        self._emit("users")

    @serialized
    def join(self, name: str, is_admin: bool = False) -> Optional[User]:
        """Primer uso en este dispositivo: crea la identidad local y la publica."""
        user = User(name=name, is_admin=is_admin)
        self.set_current_user(user)
        if not self.add_user(user):
            return None
        logger.info("[store] %s se une a la sala %s (admin=%s)", name, self.room_code, is_admin)
        return user

    def _update_current_user(self, op: str, **changes) -> bool:
        if self.current_user is None:
            logger.warning("[store] %s: no hay usuario actual", op)
            return False
        return self.add_user(replace(self.current_user, **changes))

    @serialized
    def set_reminder_enabled(self, category: Category, enabled: bool) -> bool:
        if self.current_user is None:
            logger.warning("[store] set_reminder_enabled: no hay usuario actual")
            return False
        enabled_map = dict(self.current_user.reminders_enabled)
        enabled_map[category] = enabled
        return self._update_current_user("set_reminder_enabled", reminders_enabled=enabled_map)

    @serialized
    def set_reminder_time(self, category: Category, at: time) -> bool:
        if self.current_user is None:
            logger.warning("[store] set_reminder_time: no hay usuario actual")
            return False
        times = dict(self.current_user.reminder_times)
        times[category] = at.replace(second=0, microsecond=0)
        return self._update_current_user("set_reminder_time", reminder_times=times)

    @serialized
    def set_treatment_food_timer_enabled(self, enabled: bool) -> bool:
        ok = self._update_current_user("set_treatment_food_timer_enabled",
                                       treatment_food_timer_enabled=enabled)
        if ok and not enabled:
            self.timer.stop()
        return ok

    @serialized
    def set_treatment_timer_duration(self, seconds: float) -> bool:
        return self._update_current_user("set_treatment_timer_duration",
                                         treatment_timer_duration=float(seconds))

    @serialized
    def set_user_admin(self, user_id: str, is_admin: bool) -> bool:
        if not self._require_admin("set_user_admin"):
            return False
        user = self.user(user_id)
        if user is None:
            return False
        return self.add_user(replace(user, is_admin=is_admin))

    # ======================
    # Registro de consumos
    # ======================
    @serialized
    def log_consumption(self, item_id: str, cycle_id: str, when: Optional[datetime] = None) -> bool:
        """Añade (instante, usuario) a la lista del item. Idempotente."""
        if self.current_user is None:
            logger.warning("[store] log_consumption: no hay usuario actual")
            return False
        if not self._require_cycle("log_consumption", cycle_id):
            return False
        entry = LogEntry(date=(when or self.clock()).replace(microsecond=0), user_id=self.current_user.id)
        try:
            path = self._path("consumptionLog", cycle_id, item_id)
            entries = decode_entries(self.remote.get(path))
            if not any(same_second(e.date, entry.date) and e.user_id == entry.user_id for e in entries):
                entries.append(entry)
                self.remote.set(path, encode_entries(entries))
        except RemoteError as e:
            logger.error("[store] error registrando consumo de %s: %s", item_id, e)
            return False
        self.consumption_log.setdefault(cycle_id, {})[item_id] = entries
        self._save_cache()
        self._emit("consumptionLog")
        return True

    @serialized
    def remove_consumption(self, item_id: str, cycle_id: str, when: datetime) -> bool:
        """Quita las entradas del usuario actual con ese instante (al segundo)."""
        if self.current_user is None:
            logger.warning("[store] remove_consumption: no hay usuario actual")
            return False
        user_id = self.current_user.id

        def keep(e: LogEntry) -> bool:
            return not (same_second(e.date, when) and e.user_id == user_id)

        try:
            path = self._path("consumptionLog", cycle_id, item_id)
            remote_entries = [e for e in decode_entries(self.remote.get(path)) if keep(e)]
            self.remote.set(path, encode_entries(remote_entries))
        except RemoteError as e:
            logger.error("[store] error quitando consumo de %s: %s", item_id, e)
            return False
        local = [e for e in self.logs_for(cycle_id, item_id) if keep(e)]
        self._put_local_entries(cycle_id, item_id, local)
        self._save_cache()
        self._emit("consumptionLog")
        return True

    @serialized
    def set_consumption_log(self, item_id: str, cycle_id: str, entries: List[LogEntry]) -> bool:
        try:
            self.remote.set(self._path("consumptionLog", cycle_id, item_id), encode_entries(entries))
        except RemoteError as e:
            logger.error("[store] error reescribiendo consumos de %s: %s", item_id, e)
            return False
        self._put_local_entries(cycle_id, item_id, list(entries))
        self._save_cache()
        self._emit("consumptionLog")
        return True

    def _put_local_entries(self, cycle_id: str, item_id: str, entries: List[LogEntry]) -> None:
        cycle_log = dict(self.consumption_log.get(cycle_id, {}))
        if entries:
            cycle_log[item_id] = entries
        else:
            cycle_log.pop(item_id, None)
        if cycle_log:
            self.consumption_log[cycle_id] = cycle_log
        else:
            self.consumption_log.pop(cycle_id, None)

    # ======================
    # Flags de categoría, timer, reset diario
    # ======================
    @serialized
    def set_category_collapsed(self, category: Category, collapsed: bool) -> bool:
        self.category_collapsed[category.value] = collapsed
        try:
            self.remote.set(self._path("categoryCollapsed", category.value), collapsed)
        except RemoteError as e:
            logger.error("[store] error guardando categoryCollapsed/%s: %s", category.value, e)
            return False
        return True

    @serialized
    def set_treatment_timer_end(self, end: Optional[datetime]) -> bool:
        """El valor local se aplica siempre; el remoto es best-effort."""
        now = self.clock()
        if end is not None and end <= now:
            end = None
        self.treatment_timer_end = end
        if end is None:
            self.treatment_timer_id = None
        self._save_cache()
        self._emit("timer")
        try:
            if end is None:
                self.remote.remove(self._path("treatmentTimerEnd"))
            else:
                self.remote.set(self._path("treatmentTimerEnd"), to_iso(end))
        except RemoteError as e:
            logger.error("[store] error publicando treatmentTimerEnd: %s", e)
            return False
        return True

    @serialized
    def set_treatment_timer_id(self, timer_id: Optional[str]) -> None:
        self.treatment_timer_id = timer_id
        self.cache.set_or_delete(TIMER_ID_KEY, timer_id)

    @serialized
    def set_last_reset_date(self, day: date) -> bool:
        self.last_reset_date = day
        self.cache.set_json(LAST_RESET_KEY, format_day(day))
        try:
            self.remote.set(self._path("lastResetDate"), format_day(day))
        except RemoteError as e:
            logger.error("[store] error publicando lastResetDate: %s", e)
            return False
        return True

    @serialized
    def reset_daily(self) -> None:
        """
        Reset de inicio de día: quita los consumos con fecha de HOY, expande
        todas las categorías y conserva el temporizador solo si sigue vivo.
        """
        today = self.today()
        self.set_last_reset_date(today)

        for cycle_id, item_logs in list(self.consumption_log.items()):
            updated = {}
            for item_id, entries in item_logs.items():
                kept = [e for e in entries if e.date.date() != today]
                if kept:
                    updated[item_id] = kept
            try:
                self.remote.set(
                    self._path("consumptionLog", cycle_id),
                    {item_id: encode_entries(entries) for item_id, entries in updated.items()} or None,
                )
            except RemoteError as e:
                logger.error("[store] reset: error reescribiendo consumos del ciclo %s: %s", cycle_id, e)
            if updated:
                self.consumption_log[cycle_id] = updated
            else:
                del self.consumption_log[cycle_id]

        for category in Category:
            self.set_category_collapsed(category, False)

        if self.treatment_timer_end is not None and self.treatment_timer_end > self.clock():
            logger.info("[store] reset: se conserva el temporizador hasta %s", self.treatment_timer_end)
        else:
            self.treatment_timer_end = None
            self.treatment_timer_id = None

        self._save_cache()
        self._emit("consumptionLog")
        logger.info("[store] reset diario hecho para %s", today)

    @serialized
    def check_and_reset_if_needed(self) -> bool:
        """Devuelve True si se ha hecho el reset diario."""
        return self._check_and_reset()

    def _check_and_reset(self) -> bool:
        if self.last_reset_date != self.today():
            self.reset_daily()
            return True
        end = self.treatment_timer_end
        if end is not None and end <= self.clock():
            logger.info("[store] temporizador vencido (%s), se limpia", end)
            self.treatment_timer_end = None
            self.treatment_timer_id = None
            self._save_cache()
            self._emit("timer")
        return False

    # ======================
    # Sala
    # ======================
    @serialized
    def set_room_code(self, code: Optional[str]) -> None:
        self.mirror.stop()
        self.room_code = code or None
        self.cache.set_or_delete(ROOM_KEY, self.room_code)
        if self.room_code:
            self.sync_error = None
            self.is_loading = True
            self.mirror.start(self.room_code)
        else:
            self.sync_error = "No room code set."
            self.is_loading = False
        logger.info("[store] sala actual: %s", self.room_code)

    # ======================
    # Acción de usuario: marcar / desmarcar
    # ======================
    @serialized
    def toggle_check(self, item_id: str) -> Optional[bool]:
        """
        Marca o desmarca un item del ciclo actual para hoy y arrastra el
        temporizador y el plegado de la categoría. Devuelve el nuevo estado
        (True = marcado) o None si no se pudo. Un item marcado hoy solo por otra
        persona no se puede desmarcar desde aquí.
        """
        cycle = self.current_cycle()
        if cycle is None:
            return None
        item = self.item(item_id, cycle.id)
        if item is None:
            return None
        timer_enabled = bool(self.current_user and self.current_user.treatment_food_timer_enabled)
        today = self.today()

        if self.is_checked_today(item_id, cycle.id):
            todays = [e for e in self.logs_for(cycle.id, item_id) if e.date.date() == today]
            mine = [e for e in todays if self.current_user and e.user_id == self.current_user.id]
            if not mine:
                logger.warning("[store] toggle_check: %s solo lo ha marcado otro usuario hoy", item_id)
                return None
            if not self.remove_consumption(item_id, cycle.id, mine[0].date):
                return None
            if item.category is Category.TREATMENT and timer_enabled:
                self.timer.stop()
            checked = False
        else:
            if not self.log_consumption(item_id, cycle.id):
                return None
            if item.category is Category.TREATMENT and timer_enabled:
                if self.is_category_complete(Category.TREATMENT):
                    self.timer.stop()
                else:
                    self.timer.start()
            checked = True

        self.set_category_collapsed(item.category, self.is_category_complete(item.category))
        return checked


_store_lock = threading.Lock()


def get_store() -> StateStore:
    """Store de la app actual; se crea y arranca la primera vez."""
    app = current_app._get_current_object()
    with _store_lock:
        store = app.extensions.get("tips_store")
        if store is None:
            store = StateStore.from_app(app)
            app.extensions["tips_store"] = store
            store.bootstrap()
    return store
