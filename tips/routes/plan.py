# tips/routes/plan.py
"""Plan de tratamiento: ciclos, items de cada ciclo y unidades."""
from flask import Blueprint, current_app, jsonify

from tips.forms.cycle_form import CycleForm
from tips.forms.item_form import ItemForm, ReorderForm
from tips.forms.settings_form import UnitForm
from tips.models.domain import Category, Unit
from tips.services.store import get_store
from tips.utils import schedule
from tips.utils.http import form_error, load_form
from tips.utils.timeutil import format_day

plan = Blueprint("plan", __name__, url_prefix="/api")


def _check(store, cycle_id=None, admin=True):
    """Devuelve una respuesta de error si la operación no se puede intentar."""
    if admin and not store.is_admin():
        return jsonify({"error": "Solo un admin puede modificar el plan."}), 403
    if cycle_id is not None and store.cycle(cycle_id) is None:
        return jsonify({"error": f"Ciclo {cycle_id} no encontrado."}), 404
    return None


def _remote_failed(what):
    current_app.logger.error(f"[plan] fallo remoto: {what}")
    return jsonify({"error": f"No se pudo guardar {what} en la sala."}), 502


# ---------------------------------------------------------------------
# Ciclos
# ---------------------------------------------------------------------
@plan.get("/cycles")
def list_cycles():
    store = get_store()
    cycles = store.run(lambda: [c.to_dict(with_id=True) for c in store.cycles])
    return jsonify({"data": cycles})


@plan.get("/cycles/next")
def next_cycle():
    """Valores propuestos para el siguiente ciclo."""
    store = get_store()
    d = store.run(lambda: schedule.next_cycle_defaults(store.current_cycle(), store.today()))
    return jsonify({"data": {
        "number": d["number"],
        "patientName": d["patient_name"],
        "startDate": format_day(d["start_date"]),
        "foodChallengeDate": format_day(d["food_challenge_date"]),
    }})


@plan.post("/cycles")
def create_cycle():
    store = get_store()
    denied = _check(store)
    if denied:
        return denied
    form = load_form(CycleForm)
    if not form.validate():
        return form_error(form)
    cycle = form.to_cycle()
    if not store.add_cycle(cycle, copy_items_from=form.copy_items_from.data or None):
        return _remote_failed(f"el ciclo {cycle.number}")
    return jsonify({"data": cycle.to_dict(with_id=True)}), 201


@plan.put("/cycles/<cycle_id>")
def update_cycle(cycle_id):
    store = get_store()
    denied = _check(store, cycle_id)
    if denied:
        return denied
    form = load_form(CycleForm)
    if not form.validate():
        return form_error(form)
    form.id.data = cycle_id
    cycle = form.to_cycle()
    if not store.add_cycle(cycle):
        return _remote_failed(f"el ciclo {cycle.number}")
    return jsonify({"data": cycle.to_dict(with_id=True)})


# ---------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------
@plan.get("/cycles/<cycle_id>/items")
def list_items(cycle_id):
    store = get_store()
    denied = _check(store, cycle_id, admin=False)
    if denied:
        return denied
    items = store.run(lambda: [it.to_dict(with_id=True) for it in store.items_for(cycle_id)])
    return jsonify({"data": items})


def _save_item(cycle_id, item_id=None):
    store = get_store()
    denied = _check(store, cycle_id)
    if denied:
        return denied
    form = load_form(ItemForm)
    if item_id is not None:
        form.id.data = item_id
    if not form.validate():
        return form_error(form)
    item = form.to_item()
    if not store.add_item(item, cycle_id):
        return _remote_failed(f"el item {item.name}")
    saved = store.run(store.item, item.id, cycle_id)
    return jsonify({"data": saved.to_dict(with_id=True)}), (200 if item_id else 201)


@plan.post("/cycles/<cycle_id>/items")
def create_item(cycle_id):
    return _save_item(cycle_id)


@plan.put("/cycles/<cycle_id>/items/<item_id>")
def update_item(cycle_id, item_id):
    return _save_item(cycle_id, item_id)


@plan.delete("/cycles/<cycle_id>/items/<item_id>")
def delete_item(cycle_id, item_id):
    store = get_store()
    denied = _check(store, cycle_id)
    if denied:
        return denied
    if not store.remove_item(item_id, cycle_id):
        return _remote_failed(f"el borrado de {item_id}")
    return jsonify({"data": {"deleted": item_id}})


@plan.post("/cycles/<cycle_id>/items/reorder")
def reorder_items(cycle_id):
    """
    POST {"category": "Treatment", "ordered_ids": [id1, id2, ...]}
    Reordena solo esa categoría.
    """
    store = get_store()
    denied = _check(store, cycle_id)
    if denied:
        return denied
    form = load_form(ReorderForm)
    if not form.validate():
        return form_error(form)
    ok = store.reorder_items(cycle_id, Category(form.category.data), list(form.ordered_ids.data))
    if not ok:
        return jsonify({"error": "No se pudo reordenar: los ids no coinciden con la categoría o falló la sala."}), 409
    items = store.run(lambda: [it.to_dict(with_id=True) for it in store.items_for(cycle_id)])
    return jsonify({"data": items})


# ---------------------------------------------------------------------
# Unidades
# ---------------------------------------------------------------------
@plan.get("/units")
def list_units():
    store = get_store()
    return jsonify({"data": store.run(lambda: [u.to_dict(with_id=True) for u in store.units])})


@plan.post("/units")
def create_unit():
    store = get_store()
    form = load_form(UnitForm)
    if not form.validate():
        return form_error(form)
    unit = Unit(name=form.name.data.strip())
    if not store.add_unit(unit):
        return _remote_failed(f"la unidad {unit.name}")
    return jsonify({"data": unit.to_dict(with_id=True)}), 201
