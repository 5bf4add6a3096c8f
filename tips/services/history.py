# tips/services/history.py
"""Historial de consumos de los últimos días y edición de entradas sueltas."""
from __future__ import annotations

import csv
import io
from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import List, Optional

from tips.models.domain import LogEntry
from tips.utils.timeutil import same_second, to_iso

HISTORY_DAYS = 7


def grouped_log_entries(store, now: Optional[datetime] = None, days: int = HISTORY_DAYS) -> List[dict]:
    """
    Entradas de los últimos ``days`` días con item y usuario conocidos,
    más recientes primero y agrupadas por día natural.
    """
    now = now or store.clock()
    since = now - timedelta(days=days)
    rows = []
    for cycle_id, item_logs in store.consumption_log.items():
        for item_id, entries in item_logs.items():
            item = store.item(item_id, cycle_id)
            if item is None:
                continue
            for e in entries:
                user = store.user(e.user_id)
                if user is None or e.date < since:
                    continue
                rows.append({
                    "cycleId": cycle_id,
                    "itemId": item_id,
                    "itemName": item.name,
                    "category": item.category.value,
                    "userId": user.id,
                    "userName": user.name,
                    "timestamp": to_iso(e.date),
                    "_date": e.date,
                })
    rows.sort(key=lambda r: r["_date"], reverse=True)

    groups: "OrderedDict[date, list]" = OrderedDict()
    for r in rows:
        groups.setdefault(r.pop("_date").date(), []).append(r)
    return [{"day": d.isoformat(), "entries": entries} for d, entries in groups.items()]


def update_log_timestamp(store, cycle_id: str, item_id: str, old: datetime, user_id: str,
                         new: datetime) -> bool:
    """Cambia el instante de una entrada (misma persona, mismo item)."""
    entries = store.logs_for(cycle_id, item_id)
    for i, e in enumerate(entries):
        if same_second(e.date, old) and e.user_id == user_id:
            entries[i] = LogEntry(date=new.replace(microsecond=0), user_id=user_id)
            return store.set_consumption_log(item_id, cycle_id, entries)
    return False


def delete_log_entry(store, cycle_id: str, item_id: str, when: datetime, user_id: str) -> bool:
    entries = store.logs_for(cycle_id, item_id)
    kept = [e for e in entries if not (same_second(e.date, when) and e.user_id == user_id)]
    if len(kept) == len(entries):
        return False
    return store.set_consumption_log(item_id, cycle_id, kept)


def export_csv(store) -> str:
    """Registro completo en CSV (una fila por entrada)."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["cycle", "item", "category", "user", "timestamp"])
    cycles = {c.id: c for c in store.cycles}
    for cycle_id, item_logs in store.consumption_log.items():
        cycle = cycles.get(cycle_id)
        for item_id, entries in item_logs.items():
            item = store.item(item_id, cycle_id)
            for e in sorted(entries, key=lambda e: e.date):
                user = store.user(e.user_id)
                writer.writerow([
                    cycle.number if cycle else cycle_id,
                    item.name if item else item_id,
                    item.category.value if item else "",
                    user.name if user else e.user_id,
                    to_iso(e.date),
                ])
    return buf.getvalue()
