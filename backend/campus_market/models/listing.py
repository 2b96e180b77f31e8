from datetime import datetime

from campus_market.extensions import db


LISTING_TYPES = ("sell", "rent")
LISTING_STATUSES = ("available", "sold", "rented")


class Listing(db.Model):
    __tablename__ = "listings"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)

    seller_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    title = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text, nullable=False)
    price = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(80), nullable=False)

    # 'sell' | 'rent'
    type = db.Column(db.String(10), nullable=False)
    # 'available' | 'sold' | 'rented'
    status = db.Column(db.String(20), nullable=False, default="available")

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    seller = db.relationship("User", foreign_keys=[seller_id], lazy="joined")

    @property
    def is_rental(self) -> bool:
        return self.type == "rent"

    def __repr__(self) -> str:
        return f"<Listing id={self.id} type={self.type} status={self.status}>"
