# tips/models/domain.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional

from tips.utils.timeutil import (
    format_day,
    format_hhmm,
    from_iso,
    parse_day,
    parse_hhmm,
    to_iso,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMER_SECONDS = 900.0
DEFAULT_UNIT_NAMES = ("mg", "g")


def new_id() -> str:
    # Mismo formato que usan el resto de clientes de la sala (UUID en mayúsculas)
    return str(uuid.uuid4()).upper()


class Category(str, Enum):
    MEDICINE = "Medicine"
    MAINTENANCE = "Maintenance"
    TREATMENT = "Treatment"
    RECOMMENDED = "Recommended"

    @property
    def time_of_day(self) -> str:
        if self in (Category.MEDICINE, Category.MAINTENANCE):
            return "(AM)"
        if self is Category.TREATMENT:
            return "(PM)"
        return "(Any Time)"

    @classmethod
    def parse(cls, value) -> Optional["Category"]:
        if isinstance(value, Category):
            return value
        for c in cls:
            if value == c.value or (isinstance(value, str) and value.lower() == c.value.lower()):
                return c
        return None


# ======================
# Entidades
# ======================

@dataclass
class Cycle:
    number: int
    patient_name: str
    start_date: date
    food_challenge_date: date
    id: str = field(default_factory=new_id)

    def to_dict(self, with_id: bool = False) -> dict:
        d = {
            "number": self.number,
            "patientName": self.patient_name,
            "startDate": format_day(self.start_date),
            "foodChallengeDate": format_day(self.food_challenge_date),
        }
        if with_id:
            d["id"] = self.id
        return d

    @classmethod
    def from_dict(cls, data: Any, id: Optional[str] = None) -> Optional["Cycle"]:
        """Devuelve None si el diccionario no describe un ciclo válido."""
        if not isinstance(data, dict):
            return None
        try:
            return cls(
                id=str(id or data["id"]),
                number=int(data["number"]),
                patient_name=str(data.get("patientName") or "Unnamed"),
                start_date=parse_day(data["startDate"]),
                food_challenge_date=parse_day(data["foodChallengeDate"]),
            )
        except (KeyError, TypeError, ValueError):
            return None


@dataclass
class Item:
    name: str
    category: Category
    dose: Optional[float] = None
    unit: Optional[str] = None
    # semana (1..N) -> dosis
    weekly_doses: Optional[Dict[int, float]] = None
    # None = "sin asignar": add_item le da la posición al final
    order: Optional[int] = None
    id: str = field(default_factory=new_id)

    @property
    def sort_key(self) -> int:
        return self.order or 0

    def copy_with_new_id(self) -> "Item":
        return replace(
            self,
            id=new_id(),
            weekly_doses=dict(self.weekly_doses) if self.weekly_doses is not None else None,
        )

    def to_dict(self, with_id: bool = False) -> dict:
        d: Dict[str, Any] = {
            "name": self.name,
            "category": self.category.value,
            "order": self.sort_key,
        }
        if self.dose is not None:
            d["dose"] = self.dose
        if self.unit is not None:
            d["unit"] = self.unit
        if self.weekly_doses:
            d["weeklyDoses"] = {str(w): v for w, v in sorted(self.weekly_doses.items())}
        if with_id:
            d["id"] = self.id
        return d

    @classmethod
    def from_dict(cls, data: Any, id: Optional[str] = None) -> Optional["Item"]:
        if not isinstance(data, dict):
            return None
        category = Category.parse(data.get("category"))
        if category is None or not data.get("name"):
            return None
        try:
            dose = data.get("dose")
            weekly = data.get("weeklyDoses")
            weekly_doses = None
            if isinstance(weekly, dict) and weekly:
                weekly_doses = {int(w): float(v) for w, v in weekly.items() if v is not None}
            elif isinstance(weekly, list) and weekly:
                # el árbol remoto devuelve como lista los mapas de claves 0..N
                weekly_doses = {i: float(v) for i, v in enumerate(weekly) if v is not None}
            return cls(
                id=str(id or data["id"]),
                name=str(data["name"]),
                category=category,
                dose=float(dose) if dose is not None else None,
                unit=data.get("unit"),
                weekly_doses=weekly_doses,
                order=int(data.get("order") or 0),
            )
        except (KeyError, TypeError, ValueError):
            return None


@dataclass
class Unit:
    name: str
    id: str = field(default_factory=new_id)

    def to_dict(self, with_id: bool = False) -> dict:
        d = {"name": self.name}
        if with_id:
            d["id"] = self.id
        return d

    @classmethod
    def from_dict(cls, data: Any, id: Optional[str] = None) -> Optional["Unit"]:
        if not isinstance(data, dict) or not data.get("name"):
            return None
        try:
            return cls(id=str(id or data["id"]), name=str(data["name"]))
        except KeyError:
            return None


def default_units() -> List[Unit]:
    return [Unit(name=n) for n in DEFAULT_UNIT_NAMES]


@dataclass
class User:
    name: str
    is_admin: bool = False
    reminders_enabled: Dict[Category, bool] = field(default_factory=dict)
    reminder_times: Dict[Category, time] = field(default_factory=dict)
    treatment_food_timer_enabled: bool = False
    treatment_timer_duration: float = DEFAULT_TIMER_SECONDS
    id: str = field(default_factory=new_id)

    def to_dict(self, with_id: bool = False) -> dict:
        d = {
            "name": self.name,
            "isAdmin": self.is_admin,
            "remindersEnabled": {c.value: v for c, v in self.reminders_enabled.items()},
            "reminderTimes": {c.value: format_hhmm(t) for c, t in self.reminder_times.items()},
            "treatmentFoodTimerEnabled": self.treatment_food_timer_enabled,
            "treatmentTimerDuration": self.treatment_timer_duration,
        }
        if with_id:
            d["id"] = self.id
        return d

    @classmethod
    def from_dict(cls, data: Any, id: Optional[str] = None) -> Optional["User"]:
        if not isinstance(data, dict) or "name" not in data:
            return None
        try:
            enabled = {}
            for k, v in (data.get("remindersEnabled") or {}).items():
                c = Category.parse(k)
                if c is not None:
                    enabled[c] = bool(v)
            times = {}
            for k, v in (data.get("reminderTimes") or {}).items():
                c = Category.parse(k)
                if c is None:
                    continue
                try:
                    times[c] = parse_hhmm(v)
                except ValueError:
                    logger.warning("[domain] hora de recordatorio ilegible %r", v)
            return cls(
                id=str(id or data["id"]),
                name=str(data["name"]),
                is_admin=bool(data.get("isAdmin", False)),
                reminders_enabled=enabled,
                reminder_times=times,
                treatment_food_timer_enabled=bool(data.get("treatmentFoodTimerEnabled", False)),
                treatment_timer_duration=float(data.get("treatmentTimerDuration") or DEFAULT_TIMER_SECONDS),
            )
        except (KeyError, TypeError, ValueError):
            return None


@dataclass(frozen=True)
class LogEntry:
    """Un consumo: instante (precisión de segundos) + usuario que lo marcó."""
    date: datetime
    user_id: str

    def to_dict(self) -> dict:
        return {"timestamp": to_iso(self.date), "userId": self.user_id}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["LogEntry"]:
        if not isinstance(data, dict):
            return None
        try:
            return cls(date=from_iso(data["timestamp"]), user_id=str(data["userId"]))
        except (KeyError, TypeError, ValueError):
            return None


# ======================
# Colecciones (árbol remoto / caché)
# ======================

def _children(value: Any) -> Dict[str, Any]:
    """Hijos de un nodo remoto; las listas se tratan como mapas de índices."""
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        return {str(i): v for i, v in enumerate(value) if v is not None}
    return {}


def decode_items(value: Any) -> List[Item]:
    items = []
    for key, raw in _children(value).items():
        it = Item.from_dict(raw, id=raw.get("id", key) if isinstance(raw, dict) else key)
        if it is not None:
            items.append(it)
    return sorted(items, key=lambda it: it.sort_key)


def decode_entries(value: Any) -> List[LogEntry]:
    entries = []
    for raw in _children(value).values():
        e = LogEntry.from_dict(raw)
        if e is not None:
            entries.append(e)
    return entries


def encode_entries(entries: List[LogEntry]) -> Optional[List[dict]]:
    return [e.to_dict() for e in entries] or None


def decode_log(value: Any) -> Dict[str, Dict[str, List[LogEntry]]]:
    """consumptionLog/{cycleId}/{itemId}/[{timestamp, userId}] -> dicts anidados."""
    log: Dict[str, Dict[str, List[LogEntry]]] = {}
    for cycle_id, item_logs in _children(value).items():
        cycle_log = {}
        for item_id, raw_entries in _children(item_logs).items():
            cycle_log[item_id] = decode_entries(raw_entries)
        log[cycle_id] = cycle_log
    return log


def encode_log(log: Dict[str, Dict[str, List[LogEntry]]]) -> Dict[str, Dict[str, List[dict]]]:
    return {
        cycle_id: {item_id: [e.to_dict() for e in entries] for item_id, entries in item_logs.items()}
        for cycle_id, item_logs in log.items()
    }


def encode_cycle_items(cycle_items: Dict[str, List[Item]]) -> Dict[str, List[dict]]:
    return {cid: [it.to_dict(with_id=True) for it in items] for cid, items in cycle_items.items()}


def decode_cycle_items(value: Any) -> Dict[str, List[Item]]:
    return {cid: decode_items(raw) for cid, raw in _children(value).items()}
