from datetime import datetime

from campus_market.extensions import db


class Message(db.Model):
	__tablename__ = "messages"

	id = db.Column(db.Integer, primary_key=True, autoincrement=True)
	chat_id = db.Column(
		db.Integer,
		db.ForeignKey("chats.id", ondelete="CASCADE"),
		nullable=False,
		index=True,
	)
	# NULL for messages posted by the system
	sender_id = db.Column(
		db.Integer,
		db.ForeignKey("users.id", ondelete="RESTRICT"),
		nullable=True,
		index=True,
	)

	content = db.Column(db.String(500), nullable=False)
	is_system = db.Column(db.Boolean, default=False, nullable=False)
	event_key = db.Column(db.String(120), nullable=True, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	chat = db.relationship("Chat", lazy="joined")

	def __repr__(self) -> str:
		return f"<Message id={self.id} chat={self.chat_id} sender={self.sender_id} system={self.is_system}>"
