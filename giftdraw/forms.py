from __future__ import annotations

from email_validator import EmailNotValidError, validate_email
from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import BooleanField, DateTimeField, Field, PasswordField, StringField
from wtforms.validators import DataRequired, Email, Length, Optional, URL, ValidationError

from .errors import BadRequest
from .models import GiftPriority


class IdListField(Field):
    """A list of integer ids, e.g. `"participantIds": [1, 2, 3]` in a JSON body."""

    def process_formdata(self, valuelist):
        # JSON lists reach the form as repeated values; [] arrives as no values at all
        if not valuelist:
            return
        try:
            self.data = [int(v) for v in valuelist]
        except (TypeError, ValueError) as e:
            self.data = None
            raise ValueError("Ids must be integers.") from e

    def _value(self):
        return ",".join(str(v) for v in self.data or [])


class EmailListField(IdListField):
    def process_formdata(self, valuelist):
        if not valuelist:
            return
        emails = []
        for value in valuelist:
            try:
                emails.append(validate_email(str(value), check_deliverability=False).normalized.lower())
            except EmailNotValidError as e:
                self.data = None
                raise ValueError(f"Invalid email address: {value}") from e
        self.data = emails


class JsonForm(FlaskForm):
    def validate_or_raise(self) -> None:
        if not self.validate():
            raise BadRequest("Please check the submitted data.", details=self.errors)


class RegistrationForm(JsonForm):
    first_name = StringField(name="firstName", validators=[Optional(), Length(max=64)])
    last_name = StringField(name="lastName", validators=[Optional(), Length(max=64)])
    full_name = StringField(name="fullName", validators=[Optional(), Length(max=130)])
    nickname = StringField(validators=[Optional(), Length(max=64)])
    email = StringField(validators=[Optional(), Email(), Length(max=255)])
    is_child = BooleanField(name="isChild", default=False)
    primary_guardian_email = StringField(
        name="primaryGuardianEmail", validators=[Optional(), Email(), Length(max=255)]
    )
    guardian_emails = EmailListField(name="guardianEmails")


class VerificationForm(JsonForm):
    code = StringField(validators=[DataRequired(), Length(min=6, max=6)])


class EmailForm(JsonForm):
    email = StringField(validators=[DataRequired(), Email(), Length(max=255)])


class ParticipantLoginForm(EmailForm):
    code = StringField(validators=[DataRequired(), Length(min=6, max=6)])


class AdminLoginForm(JsonForm):
    password = PasswordField(validators=[DataRequired()])


class EventForm(JsonForm):
    name = StringField(validators=[DataRequired(), Length(min=4, max=120)])
    location = StringField(validators=[Optional(), Length(max=255)])
    participant_ids = IdListField(name="participantIds")
    draw_at = DateTimeField(name="drawAt", format=["%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S"], validators=[Optional()])
    moderator_email = StringField(name="moderatorEmail", validators=[Optional(), Email()])


def _priority(form, field):
    if field.data and field.data not in GiftPriority.ALL:
        raise ValidationError(f"Priority must be one of: {', '.join(GiftPriority.ALL)}.")


class GiftItemForm(JsonForm):
    """Validates one item of a gift list; built from a dict, not the request."""

    class Meta:
        csrf = False

    name = StringField(validators=[DataRequired(), Length(max=120)])
    url = StringField(validators=[Optional(), URL(), Length(max=500)])
    notes = StringField(validators=[Optional(), Length(max=500)])
    priority = StringField(validators=[Optional(), _priority])
    purchased = BooleanField(default=False)

    @classmethod
    def from_item(cls, item: dict) -> "GiftItemForm":
        return cls(formdata=MultiDict({k: v for k, v in item.items() if v is not None}))


class PurchasedForm(JsonForm):
    purchased = BooleanField(default=False)


def validate_gift_items(payload) -> list[dict]:
    if not isinstance(payload, list):
        raise BadRequest("`items` must be a list.")
    items, errors = [], {}
    for index, raw in enumerate(payload):
        if not isinstance(raw, dict):
            errors[str(index)] = {"item": ["Each item must be an object."]}
            continue
        form = GiftItemForm.from_item(raw)
        if not form.validate():
            errors[str(index)] = form.errors
            continue
        items.append({
            "name": form.name.data.strip(),
            "url": form.url.data or None,
            "notes": form.notes.data or None,
            "priority": form.priority.data or GiftPriority.MEDIUM,
            "purchased": bool(form.purchased.data),
        })
    if errors:
        raise BadRequest("Some gift items are invalid.", details=errors)
    return items
