from datetime import datetime

from campus_market.extensions import db


class Chat(db.Model):
    """One conversation per (listing, buyer, seller) triple."""

    __tablename__ = "chats"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)

    listing_id = db.Column(
        db.Integer,
        db.ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    buyer_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    seller_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    listing = db.relationship("Listing", lazy="joined")
    buyer = db.relationship("User", foreign_keys=[buyer_id], lazy="joined")
    seller = db.relationship("User", foreign_keys=[seller_id], lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("listing_id", "buyer_id", name="uq_chats_listing_buyer"),
    )

    def __repr__(self) -> str:
        return f"<Chat id={self.id} listing={self.listing_id} buyer={self.buyer_id} seller={self.seller_id}>"
