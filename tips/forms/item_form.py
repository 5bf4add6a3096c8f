# tips/forms/item_form.py

from flask_wtf import FlaskForm
from wtforms import FieldList, FloatField, Form, FormField, HiddenField, IntegerField, SelectField, StringField
from wtforms.validators import DataRequired, NumberRange, Optional

from tips.models.domain import Category, Item

CATEGORY_CHOICES = [(c.value, c.value) for c in Category]


class WeekDoseForm(Form):
    week = IntegerField("Semana", validators=[DataRequired(), NumberRange(min=1)])
    dose = FloatField("Dosis", validators=[Optional(), NumberRange(min=0)])


class ItemForm(FlaskForm):
    """
    Alta/edición de un item. Para treatment hace falta unidad y, o bien una
    dosis fija, o bien al menos una dosis semanal. Para el resto, dosis y
    unidad son obligatorias.
    """
    id = HiddenField()
    name = StringField("Nombre", validators=[DataRequired("El nombre es obligatorio")])
    category = SelectField("Categoría", choices=CATEGORY_CHOICES,
                           validators=[DataRequired("Selecciona una categoría")])
    dose = FloatField("Dosis", validators=[Optional(), NumberRange(min=0)])
    unit = StringField("Unidad", validators=[Optional()])
    weekly_doses = FieldList(FormField(WeekDoseForm), min_entries=0)
    order = IntegerField("Orden", validators=[Optional(), NumberRange(min=0)])

    def validate(self, extra_validators=None):
        if not super().validate(extra_validators=extra_validators):
            return False
        if not (self.unit.data or "").strip():
            self.unit.errors.append("La unidad es obligatoria")
            return False
        weekly = self._weekly()
        if self.category.data == Category.TREATMENT.value:
            if (self.dose.data is None) == (not weekly):
                self.dose.errors.append("Indica una dosis fija o dosis por semana (solo una de las dos)")
                return False
        elif self.dose.data is None:
            self.dose.errors.append("La dosis es obligatoria")
            return False
        return True

    def _weekly(self):
        return {
            entry.form.week.data: entry.form.dose.data
            for entry in self.weekly_doses
            if entry.form.week.data is not None and entry.form.dose.data is not None
        }

    def to_item(self) -> Item:
        weekly = self._weekly()
        kwargs = {}
        if self.id.data:
            kwargs["id"] = self.id.data
        return Item(
            name=self.name.data.strip(),
            category=Category(self.category.data),
            dose=self.dose.data if not weekly else None,
            unit=self.unit.data.strip(),
            weekly_doses=weekly or None,
            order=self.order.data,
            **kwargs,
        )


class ReorderForm(FlaskForm):
    category = SelectField("Categoría", choices=CATEGORY_CHOICES, validators=[DataRequired()])
    ordered_ids = FieldList(StringField(validators=[DataRequired()]), min_entries=1)
