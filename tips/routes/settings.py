# tips/routes/settings.py
"""Sala, identidad local, recordatorios y ajustes del temporizador."""
from flask import Blueprint, current_app, jsonify

from tips.forms.settings_form import JoinForm, ReminderForm, RoomForm, TimerSettingsForm, UserRoleForm
from tips.models.domain import Category, new_id
from tips.services.store import get_store
from tips.utils.http import form_error, load_form

settings_bp = Blueprint("settings", __name__, url_prefix="/api")


def _me(store):
    user = store.current_user
    return user.to_dict(with_id=True) if user else None


# ---------------------------------------------------------------------
# Sala
# ---------------------------------------------------------------------
@settings_bp.get("/room")
def get_room():
    store = get_store()
    return jsonify({"data": {"roomCode": store.room_code, "syncError": store.sync_error}})


@settings_bp.put("/room")
def set_room():
    store = get_store()
    form = load_form(RoomForm)
    if not form.validate():
        return form_error(form)
    store.set_room_code(form.room_code.data.strip())
    return jsonify({"data": {"roomCode": store.room_code}})


@settings_bp.post("/room/new")
def new_room():
    """Crea una sala nueva (código aleatorio) y se cambia a ella."""
    store = get_store()
    code = new_id()
    store.set_room_code(code)
    current_app.logger.info(f"[settings] sala nueva {code}")
    return jsonify({"data": {"roomCode": code}}), 201


@settings_bp.delete("/room")
def leave_room():
    store = get_store()
    store.set_room_code(None)
    return jsonify({"data": {"roomCode": None}})


# ---------------------------------------------------------------------
# Usuario
# ---------------------------------------------------------------------
@settings_bp.post("/join")
def join():
    """
    Primer uso: {"name": "...", "is_admin": true, "room_code": "opcional"}.
    Si no hay sala y no se indica, se crea una nueva.
    """
    store = get_store()
    form = load_form(JoinForm)
    if not form.validate():
        return form_error(form)
    code = (form.room_code.data or "").strip() or store.room_code or new_id()
    if code != store.room_code:
        store.set_room_code(code)
    user = store.join(form.name.data.strip(), bool(form.is_admin.data))
    if user is None:
        return jsonify({"error": "No se pudo registrar el usuario en la sala."}), 502
    return jsonify({"data": {"user": user.to_dict(with_id=True), "roomCode": store.room_code}}), 201


@settings_bp.get("/users/me")
def me():
    store = get_store()
    data = store.run(_me, store)
    if data is None:
        return jsonify({"error": "Aún no te has unido a ninguna sala."}), 404
    return jsonify({"data": data})


@settings_bp.get("/users")
def list_users():
    store = get_store()
    return jsonify({"data": store.run(lambda: [u.to_dict(with_id=True) for u in store.users])})


@settings_bp.put("/users/<user_id>/role")
def set_role(user_id):
    store = get_store()
    if not store.is_admin():
        return jsonify({"error": "Solo un admin puede cambiar roles."}), 403
    if store.run(store.user, user_id) is None:
        return jsonify({"error": f"Usuario {user_id} no encontrado."}), 404
    form = load_form(UserRoleForm)
    if not form.validate():
        return form_error(form)
    if not store.set_user_admin(user_id, bool(form.is_admin.data)):
        return jsonify({"error": "No se pudo guardar el rol."}), 502
    return jsonify({"data": store.run(store.user, user_id).to_dict(with_id=True)})


# ---------------------------------------------------------------------
# Ajustes
# ---------------------------------------------------------------------
@settings_bp.put("/settings/reminders")
def set_reminder():
    store = get_store()
    if store.current_user is None:
        return jsonify({"error": "Aún no te has unido a ninguna sala."}), 404
    form = load_form(ReminderForm)
    if not form.validate():
        return form_error(form)
    category = Category(form.category.data)
    ok = True
    if form.time.data is not None:
        ok = store.set_reminder_time(category, form.time.data)
    ok = ok and store.set_reminder_enabled(category, bool(form.enabled.data))
    if not ok:
        return jsonify({"error": "No se pudo guardar el recordatorio."}), 502
    return jsonify({"data": store.run(_me, store)})


@settings_bp.put("/settings/timer")
def set_timer_settings():
    store = get_store()
    if store.current_user is None:
        return jsonify({"error": "Aún no te has unido a ninguna sala."}), 404
    form = load_form(TimerSettingsForm)
    if not form.validate():
        return form_error(form)
    ok = True
    if form.duration_minutes.data is not None:
        ok = store.set_treatment_timer_duration(form.duration_minutes.data * 60)
    ok = ok and store.set_treatment_food_timer_enabled(bool(form.enabled.data))
    if not ok:
        return jsonify({"error": "No se pudo guardar el ajuste del temporizador."}), 502
    return jsonify({"data": store.run(_me, store)})


@settings_bp.post("/daily/check")
def daily_check():
    """Reset diario si ha cambiado el día."""
    store = get_store()
    did_reset = store.check_and_reset_if_needed()
    return jsonify({"data": {"reset": did_reset, "lastResetDate": str(store.last_reset_date)}})
