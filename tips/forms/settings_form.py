# tips/forms/settings_form.py

from flask_wtf import FlaskForm
from wtforms import BooleanField, IntegerField, SelectField, StringField, TimeField
from wtforms.validators import DataRequired, InputRequired, Length, NumberRange, Optional, Regexp, ValidationError

from tips.models.domain import Category
from tips.utils.timeutil import from_iso

CATEGORY_CHOICES = [(c.value, c.value) for c in Category]
ROOM_CODE_RE = r"^[A-Za-z0-9_-]+$"


def _iso_timestamp(form, field):
    try:
        from_iso(field.data)
    except (TypeError, ValueError):
        raise ValidationError("Fecha ISO-8601 no válida")


class RoomForm(FlaskForm):
    room_code = StringField(
        "Código de sala",
        validators=[
            DataRequired("El código de sala es obligatorio"),
            Length(min=4, max=64),
            Regexp(ROOM_CODE_RE, message="Solo letras, números, '-' y '_'"),
        ],
    )


class JoinForm(FlaskForm):
    name = StringField("Nombre", validators=[DataRequired("El nombre es obligatorio"), Length(max=80)])
    is_admin = BooleanField("Admin", default=False)
    room_code = StringField(
        "Código de sala",
        validators=[Optional(), Length(min=4, max=64), Regexp(ROOM_CODE_RE)],
    )


class UnitForm(FlaskForm):
    name = StringField("Unidad", validators=[DataRequired("El nombre de la unidad es obligatorio"), Length(max=20)])


class ReminderForm(FlaskForm):
    category = SelectField("Categoría", choices=CATEGORY_CHOICES, validators=[DataRequired()])
    enabled = BooleanField("Activado", default=False)
    time = TimeField("Hora", format="%H:%M", validators=[Optional()])


class TimerSettingsForm(FlaskForm):
    enabled = BooleanField("Temporizador de treatment food", default=False)
    duration_minutes = IntegerField("Duración (min)", validators=[Optional(), NumberRange(min=1, max=180)])


class UserRoleForm(FlaskForm):
    is_admin = BooleanField("Admin", default=False)


class ConsumptionForm(FlaskForm):
    # vacío => ciclo actual
    cycle_id = StringField(validators=[Optional()])
    item_id = StringField(validators=[DataRequired("item_id es obligatorio")])
    timestamp = StringField(validators=[Optional(), _iso_timestamp])


class LogEditForm(FlaskForm):
    """Identifica una entrada del registro y, opcionalmente, su nuevo instante."""
    cycle_id = StringField(validators=[DataRequired()])
    item_id = StringField(validators=[DataRequired()])
    user_id = StringField(validators=[DataRequired()])
    timestamp = StringField(validators=[InputRequired(), _iso_timestamp])
    new_timestamp = StringField(validators=[Optional(), _iso_timestamp])
