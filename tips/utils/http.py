# tips/utils/http.py
from flask import jsonify, request

from tips.utils.formdata import json_formdata


def load_form(form_cls):
    """Formulario WTForms poblado con el cuerpo JSON de la petición (sin CSRF: API)."""
    payload = request.get_json(silent=True) or {}
    return form_cls(formdata=json_formdata(payload), meta={"csrf": False})


def form_error(form):
    return jsonify({"error": "Datos no válidos", "fields": form.errors}), 400
