from datetime import datetime

from campus_market.extensions import db


STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"

# Forward-only order of the lifecycle
STATUS_ORDER = (STATUS_PENDING, STATUS_ACTIVE, STATUS_COMPLETED)

PARTIES = ("buyer", "seller")


class RentalAgreement(db.Model):
    __tablename__ = "rental_agreements"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)

    chat_id = db.Column(
        db.Integer,
        db.ForeignKey("chats.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    listing_id = db.Column(
        db.Integer,
        db.ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    return_date = db.Column(db.DateTime, nullable=False)

    buyer_agreed_date = db.Column(db.Boolean, default=False, nullable=False)
    seller_agreed_date = db.Column(db.Boolean, default=False, nullable=False)

    # Seller shows handover_otp to the buyer; buyer shows return_otp to the seller.
    handover_otp = db.Column(db.String(4), nullable=False)
    return_otp = db.Column(db.String(4), nullable=False)

    handover_otp_verified = db.Column(db.Boolean, default=False, nullable=False)
    return_otp_verified = db.Column(db.Boolean, default=False, nullable=False)

    buyer_started = db.Column(db.Boolean, default=False, nullable=False)
    seller_started = db.Column(db.Boolean, default=False, nullable=False)

    buyer_confirmed = db.Column(db.Boolean, default=False, nullable=False)
    seller_confirmed = db.Column(db.Boolean, default=False, nullable=False)

    is_late = db.Column(db.Boolean, default=False, nullable=False)
    penalty = db.Column(db.Integer, default=0, nullable=False)
    late_observed_at = db.Column(db.DateTime, nullable=True)

    # 'pending' | 'active' | 'completed'. Lateness is a flag, not a status.
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    start_date = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    version = db.Column(db.Integer, nullable=False)

    chat = db.relationship("Chat", lazy="joined")
    listing = db.relationship("Listing", lazy="joined")

    events = db.relationship(
        "RentalEvent",
        back_populates="agreement",
        cascade="all, delete-orphan",
        order_by="RentalEvent.id",
    )

    __mapper_args__ = {"version_id_col": version}

    def agreed_flag(self, party: str) -> bool:
        return bool(getattr(self, f"{party}_agreed_date"))

    @property
    def date_agreed(self) -> bool:
        return bool(self.buyer_agreed_date and self.seller_agreed_date)

    @property
    def is_open(self) -> bool:
        return self.status != STATUS_COMPLETED

    def __repr__(self) -> str:
        return f"<RentalAgreement id={self.id} chat={self.chat_id} status={self.status}>"
