# tips/routes/log.py
"""Marcar/desmarcar consumos y el historial de los últimos días."""
from flask import Blueprint, jsonify

from tips.forms.settings_form import ConsumptionForm, LogEditForm
from tips.services import history
from tips.services.store import get_store
from tips.utils.http import form_error, load_form
from tips.utils.timeutil import from_iso

log_bp = Blueprint("log", __name__, url_prefix="/api")


def _cycle_id(store, form):
    if form.cycle_id.data:
        return form.cycle_id.data
    cycle = store.run(store.current_cycle)
    return cycle.id if cycle else None


@log_bp.post("/items/<item_id>/toggle")
def toggle(item_id):
    """Marca/desmarca el item para hoy (arrastra timer y plegado)."""
    store = get_store()
    checked = store.toggle_check(item_id)
    if checked is None:
        return jsonify({"error": "No se pudo cambiar el estado del item."}), 409
    return jsonify({"data": {"itemId": item_id, "checked": checked}})


@log_bp.post("/log/check")
def check():
    store = get_store()
    form = load_form(ConsumptionForm)
    if not form.validate():
        return form_error(form)
    cycle_id = _cycle_id(store, form)
    if cycle_id is None:
        return jsonify({"error": "No hay ciclo activo."}), 404
    when = from_iso(form.timestamp.data) if form.timestamp.data else None
    if not store.log_consumption(form.item_id.data, cycle_id, when):
        return jsonify({"error": "No se pudo registrar el consumo."}), 409
    return jsonify({"data": [e.to_dict() for e in store.run(store.logs_for, cycle_id, form.item_id.data)]})


@log_bp.post("/log/uncheck")
def uncheck():
    store = get_store()
    form = load_form(ConsumptionForm)
    if not form.validate():
        return form_error(form)
    if not form.timestamp.data:
        return jsonify({"error": "timestamp es obligatorio."}), 400
    cycle_id = _cycle_id(store, form)
    if cycle_id is None:
        return jsonify({"error": "No hay ciclo activo."}), 404
    if not store.remove_consumption(form.item_id.data, cycle_id, from_iso(form.timestamp.data)):
        return jsonify({"error": "No se pudo quitar el consumo."}), 409
    return jsonify({"data": [e.to_dict() for e in store.run(store.logs_for, cycle_id, form.item_id.data)]})


# ---------------------------------------------------------------------
# Historial
# ---------------------------------------------------------------------
@log_bp.get("/history")
def get_history():
    """Últimos 7 días agrupados por día, lo más reciente primero."""
    store = get_store()
    return jsonify({"data": store.run(history.grouped_log_entries, store)})


@log_bp.put("/history")
def edit_history():
    store = get_store()
    form = load_form(LogEditForm)
    if not form.validate():
        return form_error(form)
    if not form.new_timestamp.data:
        return jsonify({"error": "new_timestamp es obligatorio."}), 400
    ok = store.run(
        history.update_log_timestamp, store,
        form.cycle_id.data, form.item_id.data,
        from_iso(form.timestamp.data), form.user_id.data,
        from_iso(form.new_timestamp.data),
    )
    if not ok:
        return jsonify({"error": "Entrada no encontrada o no se pudo guardar."}), 404
    return jsonify({"data": store.run(history.grouped_log_entries, store)})


@log_bp.delete("/history")
def delete_history():
    store = get_store()
    form = load_form(LogEditForm)
    if not form.validate():
        return form_error(form)
    ok = store.run(
        history.delete_log_entry, store,
        form.cycle_id.data, form.item_id.data,
        from_iso(form.timestamp.data), form.user_id.data,
    )
    if not ok:
        return jsonify({"error": "Entrada no encontrada o no se pudo borrar."}), 404
    return jsonify({"data": store.run(history.grouped_log_entries, store)})
