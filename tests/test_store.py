# tests/test_store.py

from datetime import date, datetime, time, timedelta

from tips.models.domain import Category, Cycle, Item, LogEntry, Unit
from tips.services.remote import RemoteError
from tips.utils.timeutil import to_iso

ROOM = "ROOM-TEST"


def _fail(*args, **kwargs):
    raise RemoteError("sin conexión")


# ---------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------
def test_add_item_requires_admin(store, tree):
    store.set_room_code(ROOM)
    store.join("Bea", is_admin=False)
    # el ciclo existe en remoto aunque Bea no pueda crearlo
    tree.set(f"rooms/{ROOM}/cycles/C1", {"number": 1, "patientName": "Leo",
                                         "startDate": "2024-01-01", "foodChallengeDate": "2024-03-25"})
    assert store.cycle("C1") is not None
    item = Item(name="Peanut", category=Category.TREATMENT, dose=1.0, unit="g")
    assert store.add_item(item, "C1") is False
    assert store.items_for("C1") == []


def test_add_item_unknown_cycle(admin_store):
    item = Item(name="Peanut", category=Category.TREATMENT, dose=1.0, unit="g")
    assert admin_store.add_item(item, "NOPE") is False


def test_add_item_assigns_order_and_updates_in_place(admin_store, cycle, tree):
    a = Item(name="A", category=Category.MEDICINE, dose=1.0, unit="mg")
    b = Item(name="B", category=Category.MEDICINE, dose=2.0, unit="mg")
    assert admin_store.add_item(a, cycle.id)
    assert admin_store.add_item(b, cycle.id)
    assert [(it.name, it.order) for it in admin_store.items_for(cycle.id)] == [("A", 0), ("B", 1)]

    # misma id -> se reemplaza, no se duplica
    a2 = Item(name="A+", category=Category.MEDICINE, dose=3.0, unit="mg", order=0, id=a.id)
    assert admin_store.add_item(a2, cycle.id)
    items = admin_store.items_for(cycle.id)
    assert [it.name for it in items] == ["A+", "B"]
    assert tree.get(f"rooms/{ROOM}/cycles/{cycle.id}/items/{a.id}")["dose"] == 3.0


def test_add_item_remote_failure_leaves_state(admin_store, cycle, tree, monkeypatch):
    monkeypatch.setattr(tree, "set", _fail)
    item = Item(name="A", category=Category.MEDICINE, dose=1.0, unit="mg")
    assert admin_store.add_item(item, cycle.id) is False
    assert admin_store.items_for(cycle.id) == []


def test_remove_item(admin_store, cycle, treatment_items, tree):
    a, b = treatment_items
    assert admin_store.remove_item(a.id, cycle.id)
    assert [it.id for it in admin_store.items_for(cycle.id)] == [b.id]
    assert tree.get(f"rooms/{ROOM}/cycles/{cycle.id}/items/{a.id}") is None


def test_reorder_category_is_contiguous_and_keeps_others(admin_store, cycle):
    m1 = Item(name="M1", category=Category.MEDICINE, dose=1, unit="mg", order=0)
    t1 = Item(name="T1", category=Category.TREATMENT, dose=1, unit="g", order=1)
    t2 = Item(name="T2", category=Category.TREATMENT, dose=1, unit="g", order=5)
    r1 = Item(name="R1", category=Category.RECOMMENDED, dose=1, unit="g", order=3)
    for it in (m1, t1, t2, r1):
        assert admin_store.add_item(it, cycle.id)

    assert admin_store.reorder_items(cycle.id, Category.TREATMENT, [t2.id, t1.id])

    items = {it.name: it for it in admin_store.items_for(cycle.id)}
    assert items["T2"].order == 0 and items["T1"].order == 1
    assert items["M1"].order == 0 and items["R1"].order == 3
    treatment = [it for it in admin_store.items_for(cycle.id) if it.category is Category.TREATMENT]
    assert [it.name for it in treatment] == ["T2", "T1"]
    assert sorted(it.order for it in treatment) == list(range(len(treatment)))


def test_reorder_rejects_foreign_ids(admin_store, cycle, treatment_items):
    a, _ = treatment_items
    assert admin_store.reorder_items(cycle.id, Category.TREATMENT, [a.id]) is False


# ---------------------------------------------------------------------
# Ciclos
# ---------------------------------------------------------------------
def test_add_cycle_copies_items_with_new_ids(admin_store, cycle, treatment_items):
    c2 = Cycle(number=2, patient_name="Leo", start_date=date(2024, 3, 28), food_challenge_date=date(2024, 6, 20))
    assert admin_store.add_cycle(c2)

    assert [c.id for c in admin_store.cycles] == [cycle.id, c2.id]
    old = admin_store.items_for(cycle.id)
    new = admin_store.items_for(c2.id)
    assert [(it.name, it.order, it.dose, it.weekly_doses) for it in new] == \
        [(it.name, it.order, it.dose, it.weekly_doses) for it in old]
    assert not ({it.id for it in new} & {it.id for it in old})
    assert admin_store.current_cycle().id == c2.id
    assert not admin_store.leases.active()


def test_add_cycle_failure_removes_speculative_cycle(admin_store, cycle, tree, monkeypatch):
    monkeypatch.setattr(tree, "update", _fail)
    c2 = Cycle(number=2, patient_name="Leo", start_date=date(2024, 3, 28), food_challenge_date=date(2024, 6, 20))
    assert admin_store.add_cycle(c2) is False
    assert [c.id for c in admin_store.cycles] == [cycle.id]
    assert c2.id not in admin_store.cycle_items
    assert c2.id not in admin_store.leases


def test_add_cycle_existing_id_updates_metadata_only(admin_store, cycle, treatment_items, tree):
    edited = Cycle(number=1, patient_name="Leo B.", start_date=cycle.start_date,
                   food_challenge_date=date(2024, 4, 1), id=cycle.id)
    assert admin_store.add_cycle(edited)
    assert len(admin_store.cycles) == 1
    assert admin_store.cycle(cycle.id).patient_name == "Leo B."
    assert len(admin_store.items_for(cycle.id)) == 2
    assert tree.get(f"rooms/{ROOM}/cycles/{cycle.id}/foodChallengeDate") == "2024-04-01"


def test_add_cycle_reuploads_local_items_missing_remotely(admin_store, cycle, treatment_items, tree):
    # los items del ciclo 1 se pierden en remoto pero siguen en local
    tree.remove(f"rooms/{ROOM}/cycles/{cycle.id}/items")
    assert len(admin_store.items_for(cycle.id)) == 2
    c2 = Cycle(number=2, patient_name="Leo", start_date=date(2024, 3, 28), food_challenge_date=date(2024, 6, 20))
    assert admin_store.add_cycle(c2, copy_items_from=cycle.id)
    assert len(tree.get(f"rooms/{ROOM}/cycles/{cycle.id}/items")) == 2


# ---------------------------------------------------------------------
# Registro de consumos
# ---------------------------------------------------------------------
def test_log_consumption_is_idempotent(admin_store, cycle, treatment_items, tree):
    a, _ = treatment_items
    when = datetime(2024, 1, 15, 9, 30, 0)
    assert admin_store.log_consumption(a.id, cycle.id, when)
    assert admin_store.log_consumption(a.id, cycle.id, when)
    assert admin_store.logs_for(cycle.id, a.id) == [LogEntry(when, admin_store.current_user.id)]
    assert len(tree.get(f"rooms/{ROOM}/consumptionLog/{cycle.id}/{a.id}")) == 1


def test_log_consumption_requires_user_and_cycle(admin_store, cycle, treatment_items):
    a, _ = treatment_items
    assert admin_store.log_consumption(a.id, "NOPE") is False


def test_remove_consumption_removes_only_matching(admin_store, cycle, treatment_items, tree):
    a, _ = treatment_items
    me = admin_store.current_user.id
    t1 = datetime(2024, 1, 15, 9, 0, 0)
    t2 = datetime(2024, 1, 15, 9, 5, 0)
    admin_store.log_consumption(a.id, cycle.id, t1)
    admin_store.log_consumption(a.id, cycle.id, t2)
    # otra persona marca en el mismo segundo desde otro dispositivo
    path = f"rooms/{ROOM}/consumptionLog/{cycle.id}/{a.id}"
    tree.set(path, tree.get(path) + [{"timestamp": to_iso(t1), "userId": "OTHER"}])
    assert len(admin_store.logs_for(cycle.id, a.id)) == 3

    assert admin_store.remove_consumption(a.id, cycle.id, t1.replace(microsecond=400))
    left = admin_store.logs_for(cycle.id, a.id)
    assert LogEntry(t2, me) in left
    assert LogEntry(t1, me) not in left
    assert any(e.user_id == "OTHER" for e in left)
    assert len(left) == 2


def test_remove_last_consumption_prunes_maps(admin_store, cycle, treatment_items, tree):
    a, _ = treatment_items
    t1 = datetime(2024, 1, 15, 9, 0, 0)
    admin_store.log_consumption(a.id, cycle.id, t1)
    assert admin_store.remove_consumption(a.id, cycle.id, t1)
    assert cycle.id not in admin_store.consumption_log
    assert tree.get(f"rooms/{ROOM}/consumptionLog") is None


# ---------------------------------------------------------------------
# Caché local
# ---------------------------------------------------------------------
def test_cache_round_trip(admin_store, cycle, treatment_items, make_store):
    a, _ = treatment_items
    admin_store.log_consumption(a.id, cycle.id, datetime(2024, 1, 15, 9, 0, 0))

    # otro arranque, sin conexión (árbol vacío)
    from tips.services.remote import MemoryTree
    fresh = make_store(remote=MemoryTree())
    fresh.run(fresh._load_cache)
    assert fresh.room_code == ROOM
    assert fresh.current_user == admin_store.current_user
    assert fresh.cycles == admin_store.cycles
    assert fresh.cycle_items == admin_store.cycle_items
    assert fresh.consumption_log == admin_store.consumption_log


def test_cache_decode_failure_is_ignored(store):
    store.cache.set_json("cachedCycles", "no es una lista")
    store.cache.set_json("cachedConsumptionLog", {"C1": {"I1": [{"timestamp": "x"}]}})
    store.run(store._load_cache)
    assert store.cycles == []
    assert store.consumption_log == {"C1": {"I1": []}}


# ---------------------------------------------------------------------
# Reset diario
# ---------------------------------------------------------------------
def test_reset_daily_strips_today_only(admin_store, cycle, treatment_items, clock):
    a, b = treatment_items
    admin_store.log_consumption(a.id, cycle.id, datetime(2024, 1, 14, 20, 0, 0))
    admin_store.log_consumption(a.id, cycle.id, datetime(2024, 1, 15, 8, 0, 0))
    admin_store.log_consumption(b.id, cycle.id, datetime(2024, 1, 15, 8, 1, 0))
    admin_store.set_category_collapsed(Category.MEDICINE, True)

    admin_store.reset_daily()

    assert [e.date for e in admin_store.logs_for(cycle.id, a.id)] == [datetime(2024, 1, 14, 20, 0, 0)]
    assert admin_store.logs_for(cycle.id, b.id) == []
    assert all(v is False for v in admin_store.category_collapsed.values())
    assert admin_store.last_reset_date == date(2024, 1, 15)


def test_reset_daily_keeps_only_future_timer(admin_store, clock):
    admin_store.set_treatment_timer_end(clock() + timedelta(minutes=5))
    admin_store.reset_daily()
    assert admin_store.treatment_timer_end == clock() + timedelta(minutes=5)

    admin_store.treatment_timer_end = clock() - timedelta(seconds=1)
    admin_store.reset_daily()
    assert admin_store.treatment_timer_end is None


def test_check_and_reset_if_needed(admin_store, clock):
    # nunca se ha hecho reset: toca
    assert admin_store.check_and_reset_if_needed() is True
    assert admin_store.check_and_reset_if_needed() is False

    # mismo día: solo limpia un timer vencido
    admin_store.treatment_timer_end = clock() - timedelta(seconds=1)
    assert admin_store.check_and_reset_if_needed() is False
    assert admin_store.treatment_timer_end is None

    clock.advance(days=1)
    assert admin_store.check_and_reset_if_needed() is True
    assert admin_store.last_reset_date == date(2024, 1, 16)


# ---------------------------------------------------------------------
# Sala, unidades, usuarios
# ---------------------------------------------------------------------
def test_without_room_writes_fail(store):
    store.bootstrap()
    assert store.sync_error == "No room code set."
    assert store.is_loading is False
    assert store.add_unit(Unit(name="ml")) is False


def test_add_unit_and_users(admin_store, tree):
    assert admin_store.add_unit(Unit(name="ml"))
    assert "ml" in [u.name for u in admin_store.units]
    assert [u.name for u in admin_store.users] == ["Ana"]
    assert tree.get(f"rooms/{ROOM}/users/{admin_store.current_user.id}")["isAdmin"] is True


def test_reminder_settings_need_current_user(store):
    store.set_room_code(ROOM)
    assert store.set_reminder_enabled(Category.MEDICINE, True) is False
    assert store.set_reminder_time(Category.MEDICINE, time(8, 30)) is False
    assert store.users == []


def test_user_settings_round_trip_through_add_user(admin_store, tree):
    assert admin_store.set_treatment_food_timer_enabled(True)
    assert admin_store.set_treatment_timer_duration(600)
    me = admin_store.current_user
    assert me.treatment_food_timer_enabled and me.treatment_timer_duration == 600.0
    remote = tree.get(f"rooms/{ROOM}/users/{me.id}")
    assert remote["treatmentFoodTimerEnabled"] is True
    assert remote["treatmentTimerDuration"] == 600.0


def test_snapshot_shape(admin_store, cycle):
    snap = admin_store.snapshot()
    assert snap["roomCode"] == ROOM
    assert snap["cycles"][0]["id"] == cycle.id
    assert snap["currentUser"]["name"] == "Ana"
