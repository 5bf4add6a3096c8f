# tips/utils/formdata.py
from werkzeug.datastructures import MultiDict


def json_formdata(payload) -> MultiDict:
    """
    Aplana un cuerpo JSON al formato que entienden los formularios WTForms:
    {"weekly_doses": [{"week": 1}]} -> {"weekly_doses-0-week": "1"}.
    """
    out = MultiDict()

    def _walk(prefix, value):
        if value is None:
            return
        if isinstance(value, dict):
            for k, v in value.items():
                _walk(f"{prefix}-{k}" if prefix else str(k), v)
        elif isinstance(value, (list, tuple)):
            for i, v in enumerate(value):
                _walk(f"{prefix}-{i}", v)
        elif isinstance(value, bool):
            # BooleanField trata "false" como falso
            out.add(prefix, "true" if value else "false")
        else:
            out.add(prefix, str(value))

    _walk("", payload or {})
    return out
