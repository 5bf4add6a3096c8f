# tips/utils/schedule.py
"""
Cálculos del calendario de un ciclo: semana/día, semanas totales, dosis a
mostrar y estado de cumplimiento. Funciones puras, sin estado.
"""
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from tips.models.domain import Category, Cycle, Item, LogEntry

# objetivo semanal mostrado para los "recommended"
RECOMMENDED_WEEKLY_TARGET = 5
CYCLE_WEEKS = 12
DAYS_BETWEEN_CYCLES = 3


def _as_date(d) -> date:
    return d.date() if isinstance(d, datetime) else d


def days_between(start, end) -> int:
    return (_as_date(end) - _as_date(start)).days


def week_number(cycle: Cycle, on) -> int:
    """Semana del ciclo (1..N); antes del inicio devuelve 1."""
    return max(1, days_between(cycle.start_date, on) // 7 + 1)


def day_of_week(cycle: Cycle, on) -> int:
    """Día dentro de la semana del ciclo (1..7)."""
    return max(1, days_between(cycle.start_date, on) % 7 + 1)


def total_weeks(cycle: Cycle) -> int:
    """
    Semanas de dosificación hasta la víspera del food challenge.
    Ej.: 2024-01-01 -> 2024-03-25 = 12 semanas.
    """
    last_day = cycle.food_challenge_date - timedelta(days=1)
    return days_between(cycle.start_date, last_day) // 7 + 1


def week_range(cycle: Cycle, on) -> Tuple[date, date]:
    """Primer y último día (inclusive) de la semana del ciclo que contiene ``on``."""
    offset = max(0, days_between(cycle.start_date, on)) // 7
    start = cycle.start_date + timedelta(weeks=offset)
    return start, start + timedelta(days=6)


def is_logged_on(logs: Iterable[LogEntry], day) -> bool:
    d = _as_date(day)
    return any(e.date.date() == d for e in logs)


def is_category_complete(category: Category, items: List[Item],
                         logs: Dict[str, List[LogEntry]], today) -> bool:
    in_category = [it for it in items if it.category is category]
    return bool(in_category) and all(is_logged_on(logs.get(it.id, []), today) for it in in_category)


def weekly_dose_count(logs: Iterable[LogEntry], week_start) -> int:
    start = _as_date(week_start)
    end = start + timedelta(days=6)
    return sum(1 for e in logs if start <= e.date.date() <= end)


def weekly_progress(count: int) -> dict:
    if count < 3:
        status = "low"
    elif count <= RECOMMENDED_WEEKLY_TARGET:
        status = "on_track"
    else:
        status = "over"
    return {
        "count": count,
        "target": RECOMMENDED_WEEKLY_TARGET,
        "ratio": min(count / RECOMMENDED_WEEKLY_TARGET, 1.0),
        "status": status,
    }


def display_dose(item: Item, week: int) -> Tuple[Optional[float], Optional[int]]:
    """
    (dosis, semana usada). Dosis fija si la hay; si no, la de la semana
    actual y, si falta, la de la primera semana definida.
    """
    if item.dose is not None:
        return item.dose, None
    if item.weekly_doses:
        if week in item.weekly_doses:
            return item.weekly_doses[week], week
        first = min(item.weekly_doses)
        return item.weekly_doses[first], first
    return None, None


def item_display_text(item: Item, week: int) -> str:
    dose, used_week = display_dose(item, week)
    if dose is None or item.unit is None:
        return item.name
    text = f"{item.name} - {dose:.1f} {item.unit}"
    if used_week is not None:
        text += f" (Week {used_week})"
    return text


def is_cycle_past_due(cycle: Cycle, today) -> bool:
    """El food challenge es hoy o ya pasó: toca preparar el ciclo siguiente."""
    return cycle.food_challenge_date <= _as_date(today)


def next_cycle_defaults(last: Optional[Cycle], today) -> dict:
    """Valores propuestos para el siguiente ciclo."""
    if last is None:
        start = _as_date(today)
        return {
            "number": 1,
            "patient_name": "",
            "start_date": start,
            "food_challenge_date": start + timedelta(weeks=CYCLE_WEEKS),
        }
    start = last.food_challenge_date + timedelta(days=DAYS_BETWEEN_CYCLES)
    return {
        "number": last.number + 1,
        "patient_name": last.patient_name,
        "start_date": start,
        "food_challenge_date": start + timedelta(weeks=CYCLE_WEEKS),
    }
