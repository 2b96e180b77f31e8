from sqlalchemy.exc import OperationalError, ProgrammingError
from flask import current_app

from campus_market.extensions.db import db
from campus_market.models.chat import Chat
from campus_market.models.message import Message
from campus_market.utils.errors import Forbidden, NotFound


SYSTEM_PREFIX = "[System] "


def get_chat(chat_id: int) -> Chat:
	chat: Chat | None = db.session.get(Chat, chat_id)
	if not chat:
		raise NotFound("Chat not found.")
	return chat


def role_of(chat: Chat, user_id: int | None) -> str | None:
	"""'buyer' / 'seller' for participants of the chat, None for anyone else."""

	if user_id is None:
		return None
	if user_id == chat.buyer_id:
		return "buyer"
	if user_id == chat.seller_id:
		return "seller"
	return None


def require_participant(chat: Chat, user_id: int) -> str:
	role = role_of(chat, user_id)
	if role is None:
		raise Forbidden("You are not part of this chat.")
	return role


def post_system_message(chat_id: int, content: str, *, event_key: str | None = None) -> Message | None:
	"""Post a cosmetic status line into the chat.

	These messages are not authoritative; the rental record is. A repeated
	``event_key`` (double click, client retry) is skipped so the chat is not
	spammed with the same line twice.
	"""

	text = (content or "").strip()
	if not text:
		current_app.logger.debug("[chat] skip system message: empty content")
		return None
	if not text.startswith(SYSTEM_PREFIX):
		text = SYSTEM_PREFIX + text
	text = text[:500]

	try:
		if event_key:
			exists = Message.query.filter_by(chat_id=chat_id, event_key=event_key).first()
			if exists is not None:
				current_app.logger.debug("[chat] dedupe skip chat=%s event_key=%s", chat_id, event_key)
				return None

		msg = Message(chat_id=chat_id, sender_id=None, content=text, is_system=True, event_key=event_key)
		db.session.add(msg)
		db.session.commit()
		current_app.logger.info("[chat] system message id=%s chat=%s event_key=%s", msg.id, chat_id, event_key)
		return msg
	except (OperationalError, ProgrammingError):
		# Best-effort: the state change that triggered this is already committed.
		db.session.rollback()
		current_app.logger.warning("[chat] system message failed chat=%s event_key=%s", chat_id, event_key)
		return None


def list_messages(chat_id: int, user_id: int, limit: int = 200) -> list[Message]:
	chat = get_chat(chat_id)
	require_participant(chat, user_id)

	# Newest page, returned oldest first.
	newest = (
		Message.query.filter_by(chat_id=chat.id)
		.order_by(Message.created_at.desc(), Message.id.desc())
		.limit(max(1, min(int(limit), 500)))
		.all()
	)
	newest.reverse()
	return newest
