# tips/utils/timeutil.py
"""
Conversión de fechas entre el formato del árbol remoto y Python.

Dentro de la app trabajamos con datetimes *naive* en hora local (como
``datetime.now()``); en el árbol remoto y en la caché los instantes viajan
como ISO-8601 en UTC con precisión de segundos (``2024-01-15T10:00:00Z``)
y las fechas de ciclo como ``YYYY-MM-DD``.
"""
from datetime import date, datetime, time, timezone
from typing import Optional


def to_iso(dt: datetime) -> str:
    """datetime local -> '2024-01-15T10:00:00Z'."""
    return dt.replace(microsecond=0).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def from_iso(value: str) -> datetime:
    """
    '2024-01-15T10:00:00Z' (o con offset) -> datetime local naive.
    Lanza ValueError si el texto no es ISO-8601.
    """
    if not isinstance(value, str):
        raise ValueError(f"timestamp inválido: {value!r}")
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt.replace(microsecond=0)


def parse_optional_iso(value) -> Optional[datetime]:
    try:
        return from_iso(value)
    except (TypeError, ValueError):
        return None


def format_day(d: date) -> str:
    return d.isoformat()


def parse_day(value) -> date:
    """
    Acepta 'YYYY-MM-DD' o un timestamp ISO completo y devuelve la fecha local.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"fecha inválida: {value!r}")
    s = value.strip()
    if "T" in s:
        return from_iso(s).date()
    return datetime.strptime(s[:10], "%Y-%m-%d").date()


def format_hhmm(t: time) -> str:
    return t.strftime("%H:%M")


def parse_hhmm(value) -> time:
    """'HH:MM' (o 'HH:MM:SS', o ISO con fecha) -> time(h, m)."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str):
        raise ValueError(f"hora inválida: {value!r}")
    s = value.strip()
    if "T" in s:
        return from_iso(s).time().replace(second=0)
    return datetime.strptime(s[:5], "%H:%M").time()


def same_second(a: datetime, b: datetime) -> bool:
    return a.replace(microsecond=0) == b.replace(microsecond=0)
