from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from campus_market.schemas.rental_schemas import RentalConfirmSchema, RentalCreateSchema, RentalEventSchema
from campus_market.services import chat_service, listing_service, rental_service
from campus_market.utils.responses import success_response
from campus_market.utils.security import current_user_id

bp = Blueprint("rentals", __name__)

rental_create_schema = RentalCreateSchema()
rental_confirm_schema = RentalConfirmSchema()
rental_events_schema = RentalEventSchema(many=True)


def _post_milestone(agreement, event) -> None:
    notice = rental_service.milestone_message(agreement, event)
    if notice is None:
        return
    event_key, text = notice
    chat_service.post_system_message(agreement.chat_id, text, event_key=event_key)


@bp.get("/ping")
def ping():
    return success_response(message="rentals ok")


@bp.get("/<int:chat_id>")
@jwt_required()
def get_rental_for_chat(chat_id: int):
    """
    Latest agreement of a chat, or null when the item was never rented here.
    Clients poll this together with the chat messages.
    """
    user_id = current_user_id()

    chat = chat_service.get_chat(chat_id)
    role = chat_service.require_participant(chat, user_id)

    agreement = rental_service.get_latest_for_chat(chat.id)
    data = rental_service.agreement_to_dict(agreement, viewer_role=role) if agreement else None
    return success_response(data=data, message="OK")


@bp.post("")
@jwt_required()
def create_rental():
    """
    Seller marks a rental listing as rented inside a chat.
    Body JSON:
    {
      "chatId": 3,
      "listingId": 7,
      "returnDate": "2026-11-02T18:00:00Z"
    }
    """
    user_id = current_user_id()

    json_data = request.get_json() or {}
    data = rental_create_schema.load(json_data)

    agreement = rental_service.create_agreement(
        data["chat_id"],
        data["listing_id"],
        data["return_date"],
        actor_id=user_id,
    )

    listing_service.update_listing(agreement.listing_id, status="rented")
    chat_service.post_system_message(
        agreement.chat_id,
        "This item has been marked as rented.",
        event_key=f"RENTED:{agreement.id}",
    )

    return success_response(
        data=rental_service.agreement_to_dict(agreement, viewer_role="seller"),
        message="Rental created",
        status_code=201,
    )


@bp.patch("/<int:agreement_id>/confirm")
@jwt_required()
def confirm_rental(agreement_id: int):
    """
    Body JSON:
    {
      "confirmedBy": "buyer" | "seller",
      "action": "date" | "reject_date" | "verify_otp" | "start" | "end",
      "date": "2026-11-02T18:00:00Z",   (date, reject_date)
      "otp": "4821",                    (verify_otp)
      "version": 3                      (optional precondition)
    }
    """
    user_id = current_user_id()

    json_data = request.get_json() or {}
    data = rental_confirm_schema.load(json_data)

    agreement, event = rental_service.confirm(
        agreement_id,
        data["confirmed_by"],
        data["action"],
        {"date": data.get("date"), "otp": data.get("otp")},
        actor_id=user_id,
        expected_version=data.get("version"),
    )

    _post_milestone(agreement, event)

    return success_response(
        data=rental_service.agreement_to_dict(agreement, viewer_role=data["confirmed_by"]),
        message="Rental updated" if event else "No changes",
    )


@bp.get("/<int:agreement_id>/events")
@jwt_required()
def list_rental_events(agreement_id: int):
    user_id = current_user_id()

    agreement = rental_service.get_agreement(agreement_id)
    chat_service.require_participant(agreement.chat, user_id)

    events = rental_service.list_events(agreement.id)
    return success_response(data={"items": rental_events_schema.dump(events)}, message="OK")
