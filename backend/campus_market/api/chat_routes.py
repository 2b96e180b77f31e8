from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from campus_market.schemas.rental_schemas import MessageSchema
from campus_market.services import chat_service
from campus_market.utils.responses import success_response
from campus_market.utils.security import current_user_id

bp = Blueprint("chats", __name__)

messages_schema = MessageSchema(many=True)


@bp.get("/<int:chat_id>/messages")
@jwt_required()
def get_messages(chat_id: int):
    """Messages of a chat, oldest first. Clients poll this every few seconds."""
    user_id = current_user_id()

    limit = request.args.get("limit", 200, type=int)
    items = chat_service.list_messages(chat_id, user_id, limit=limit)
    return success_response(data={"items": messages_schema.dump(items)}, message="OK")
