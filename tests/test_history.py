# tests/test_history.py

import csv
import io
from datetime import datetime

from tips.models.domain import LogEntry
from tips.services import history


def _log(store, cycle, item, when):
    assert store.log_consumption(item.id, cycle.id, when)


def test_grouped_newest_first(admin_store, cycle, treatment_items):
    a, b = treatment_items
    _log(admin_store, cycle, a, datetime(2024, 1, 14, 20, 0, 0))
    _log(admin_store, cycle, b, datetime(2024, 1, 15, 8, 0, 0))
    _log(admin_store, cycle, a, datetime(2024, 1, 15, 9, 0, 0))
    # fuera de la ventana de 7 días
    _log(admin_store, cycle, a, datetime(2024, 1, 5, 9, 0, 0))

    groups = history.grouped_log_entries(admin_store)
    assert [g["day"] for g in groups] == ["2024-01-15", "2024-01-14"]
    assert [e["itemName"] for e in groups[0]["entries"]] == ["Peanut", "Almond"]
    assert groups[0]["entries"][0]["userName"] == "Ana"
    assert groups[1]["entries"][0]["category"] == "Treatment"


def test_grouped_skips_unknown_users_and_items(admin_store, cycle, treatment_items):
    a, _ = treatment_items
    admin_store.consumption_log[cycle.id] = {
        a.id: [LogEntry(datetime(2024, 1, 15, 9, 0, 0), "GHOST")],
        "NO-ITEM": [LogEntry(datetime(2024, 1, 15, 9, 0, 0), admin_store.current_user.id)],
    }
    assert history.grouped_log_entries(admin_store) == []


def test_update_timestamp(admin_store, cycle, treatment_items):
    a, _ = treatment_items
    me = admin_store.current_user.id
    old = datetime(2024, 1, 15, 9, 0, 0)
    new = datetime(2024, 1, 15, 7, 45, 0)
    _log(admin_store, cycle, a, old)

    assert history.update_log_timestamp(admin_store, cycle.id, a.id, old, me, new)
    assert admin_store.logs_for(cycle.id, a.id) == [LogEntry(new, me)]
    assert history.update_log_timestamp(admin_store, cycle.id, a.id, old, me, new) is False


def test_delete_entry(admin_store, cycle, treatment_items):
    a, _ = treatment_items
    me = admin_store.current_user.id
    when = datetime(2024, 1, 15, 9, 0, 0)
    _log(admin_store, cycle, a, when)
    assert history.delete_log_entry(admin_store, cycle.id, a.id, when, "OTHER") is False
    assert history.delete_log_entry(admin_store, cycle.id, a.id, when, me)
    assert admin_store.logs_for(cycle.id, a.id) == []


def test_export_csv(admin_store, cycle, treatment_items):
    a, _ = treatment_items
    _log(admin_store, cycle, a, datetime(2024, 1, 15, 9, 0, 0))
    rows = list(csv.reader(io.StringIO(history.export_csv(admin_store))))
    assert rows[0] == ["cycle", "item", "category", "user", "timestamp"]
    assert rows[1][:4] == ["1", "Peanut", "Treatment", "Ana"]
    assert len(rows) == 2
