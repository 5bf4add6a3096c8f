# tips/forms/cycle_form.py

from flask_wtf import FlaskForm
from wtforms import DateField, HiddenField, IntegerField, StringField
from wtforms.validators import DataRequired, NumberRange, Optional, ValidationError

from tips.models.domain import Cycle


class CycleForm(FlaskForm):
    id = HiddenField()
    number = IntegerField("Número de ciclo", validators=[DataRequired(), NumberRange(min=1)])
    patient_name = StringField("Paciente", validators=[DataRequired("El nombre del paciente es obligatorio")])
    start_date = DateField("Inicio", format="%Y-%m-%d", validators=[DataRequired("La fecha de inicio es obligatoria")])
    food_challenge_date = DateField(
        "Food challenge",
        format="%Y-%m-%d",
        validators=[DataRequired("La fecha del food challenge es obligatoria")],
    )
    # ciclo del que copiar items; vacío => el último
    copy_items_from = StringField("Copiar items de", validators=[Optional()])

    def validate_food_challenge_date(self, field):
        if self.start_date.data and field.data and field.data <= self.start_date.data:
            raise ValidationError("El food challenge debe ser posterior al inicio")

    def to_cycle(self) -> Cycle:
        kwargs = {"id": self.id.data} if self.id.data else {}
        return Cycle(
            number=self.number.data,
            patient_name=self.patient_name.data.strip(),
            start_date=self.start_date.data,
            food_challenge_date=self.food_challenge_date.data,
            **kwargs,
        )
