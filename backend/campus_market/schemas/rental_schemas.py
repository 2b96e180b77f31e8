from datetime import datetime, timezone

from marshmallow import fields, pre_load, validates_schema, ValidationError, validate

from campus_market.extensions.ma import ma
from campus_market.models.message import Message
from campus_market.models.rental_agreement import PARTIES
from campus_market.models.rental_event import RentalEvent
from campus_market.services.rental_transitions import ACTIONS


def _is_future(value: datetime) -> bool:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value > datetime.utcnow()


class RentalCreateSchema(ma.Schema):
    """
    Body of POST /rentals. The codes and flags are generated by the service.
    """

    chat_id = fields.Integer(required=True, data_key="chatId")
    listing_id = fields.Integer(required=True, data_key="listingId")
    return_date = fields.DateTime(required=True, data_key="returnDate")  # ISO 8601

    @validates_schema
    def validate_return_date(self, data, **kwargs):
        return_date = data.get("return_date")
        if return_date and not _is_future(return_date):
            raise ValidationError("returnDate must be in the future", field_name="returnDate")


class RentalConfirmSchema(ma.Schema):
    """Body of PATCH /rentals/<id>/confirm."""

    confirmed_by = fields.String(
        required=True,
        data_key="confirmedBy",
        validate=validate.OneOf(PARTIES),
    )
    action = fields.String(required=True, validate=validate.OneOf(ACTIONS))
    date = fields.DateTime(required=False, load_default=None)
    otp = fields.String(
        required=False,
        load_default=None,
        validate=validate.Regexp(r"^\d{4}$", error="otp must be exactly 4 digits"),
    )
    version = fields.Integer(required=False, load_default=None)

    @pre_load
    def stringify_otp(self, data, **kwargs):
        # Numeric codes are accepted but always compared as text.
        if isinstance(data, dict) and isinstance(data.get("otp"), int) and not isinstance(data.get("otp"), bool):
            data = dict(data)
            data["otp"] = str(data["otp"])
        return data

    @validates_schema
    def validate_payload_for_action(self, data, **kwargs):
        action = data.get("action")
        if action in ("date", "reject_date"):
            if data.get("date") is None:
                raise ValidationError("date is required for this action", field_name="date")
            if not _is_future(data["date"]):
                raise ValidationError("date must be in the future", field_name="date")
        if action == "verify_otp" and not data.get("otp"):
            raise ValidationError("otp is required for this action", field_name="otp")


class RentalEventSchema(ma.SQLAlchemyAutoSchema):
    class Meta:
        model = RentalEvent
        include_fk = True
        exclude = ("payload_json",)

    agreement_id = ma.auto_field(data_key="agreementId")
    created_at = ma.auto_field(data_key="createdAt")
    payload = fields.Method("get_payload")

    def get_payload(self, obj):
        return obj.payload


class MessageSchema(ma.SQLAlchemyAutoSchema):
    class Meta:
        model = Message
        include_fk = True
        exclude = ("event_key",)

    chat_id = ma.auto_field(data_key="chatId")
    sender_id = ma.auto_field(data_key="senderId")
    is_system = ma.auto_field(data_key="isSystem")
    created_at = ma.auto_field(data_key="createdAt")
