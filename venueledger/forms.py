from flask_wtf import FlaskForm
from wtforms import (
    DecimalField as WTFormsDecimalField,
    IntegerField,
    PasswordField,
    StringField,
    TextAreaField,
)
from wtforms.validators import (
    DataRequired,
    Email,
    Length,
    NumberRange,
    Optional,
    ValidationError,
)

from venueledger.utils.numeric import ExpressionParsingError, parse_decimal_string


def _is_blank(raw_value) -> bool:
    return raw_value is None or (isinstance(raw_value, str) and not raw_value.strip())


class ExpressionDecimalField(WTFormsDecimalField):
    """Decimal field that accepts grouped amounts and '=' prefixed sums.

    JSON ``null`` and blank strings both leave the field empty so that the
    ``Optional`` validator can stop the chain.
    """

    expression_prefix = "="

    def process_formdata(self, valuelist):
        if not valuelist:
            return
        raw_value = valuelist[0]
        if _is_blank(raw_value):
            self.data = None
            self.raw_data = []
            return
        try:
            self.data = parse_decimal_string(raw_value, self.expression_prefix)
        except ExpressionParsingError as exc:
            self.data = None
            raise ValueError(str(exc)) from exc


class OptionalIntegerField(IntegerField):
    def process_formdata(self, valuelist):
        if valuelist and _is_blank(valuelist[0]):
            self.data = None
            self.raw_data = []
            return
        super().process_formdata(valuelist)


DecimalField = ExpressionDecimalField


class LoginForm(FlaskForm):
    email = StringField("Email", validators=[DataRequired(), Email()])
    password = PasswordField("Password", validators=[DataRequired()])


class CloseoutFinalizeForm(FlaskForm):
    """Optional details recorded when an event is closed out."""

    total_revenue = DecimalField(
        "Total revenue", validators=[Optional(), NumberRange(min=0)]
    )
    closeout_notes = TextAreaField(
        "Closeout notes", validators=[Optional(), Length(max=2000)]
    )


class ManualAdjustmentForm(FlaskForm):
    """Manual payout changes for one promoter on one event."""

    manual_adjustment_amount = DecimalField(
        "Adjustment amount", validators=[Optional()]
    )
    manual_adjustment_reason = StringField(
        "Adjustment reason", validators=[Length(max=255)]
    )
    manual_checkins_override = OptionalIntegerField(
        "Check-in override", validators=[Optional(), NumberRange(min=0)]
    )
    manual_checkins_reason = StringField(
        "Override reason", validators=[Length(max=255)]
    )

    def validate_manual_adjustment_reason(self, field):
        amount = self.manual_adjustment_amount.data
        if amount and not (field.data or "").strip():
            raise ValidationError("Explain why the payout is being adjusted.")

    def validate_manual_checkins_reason(self, field):
        if self.manual_checkins_override.data is not None and not (
            field.data or ""
        ).strip():
            raise ValidationError("Explain why the check-in count is overridden.")
