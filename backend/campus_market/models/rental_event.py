import json
from datetime import datetime

from campus_market.extensions import db


class RentalEvent(db.Model):
    """Append-only log of the transitions applied to an agreement."""

    __tablename__ = "rental_events"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    agreement_id = db.Column(
        db.Integer,
        db.ForeignKey("rental_agreements.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    kind = db.Column(db.String(40), nullable=False)
    # 'buyer' | 'seller' | NULL for events raised by the system
    party = db.Column(db.String(10), nullable=True)
    payload_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    agreement = db.relationship("RentalAgreement", back_populates="events")

    @property
    def payload(self) -> dict:
        if not self.payload_json:
            return {}
        return json.loads(self.payload_json)

    def __repr__(self) -> str:
        return f"<RentalEvent id={self.id} agreement={self.agreement_id} kind={self.kind} party={self.party}>"
