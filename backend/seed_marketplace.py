# backend/seed_marketplace.py
from flask_jwt_extended import create_access_token

from campus_market import create_app
from campus_market.extensions import db
from campus_market.models.chat import Chat
from campus_market.models.listing import Listing
from campus_market.models.user import User

app = create_app()

with app.app_context():
    seller = User.query.filter_by(username="seed_seller").first()
    if not seller:
        seller = User(username="seed_seller", email="seller@campus.test")
        db.session.add(seller)

    buyer = User.query.filter_by(username="seed_buyer").first()
    if not buyer:
        buyer = User(username="seed_buyer", email="buyer@campus.test")
        db.session.add(buyer)

    db.session.flush()  # ids

    listing = Listing(
        seller_id=seller.id,
        title="Scientific calculator (Casio fx-991EX)",
        description="Allowed in exams. Comes with cover.",
        price=50,
        category="Electronics",
        type="rent",
        status="available",
    )
    db.session.add(listing)
    db.session.flush()

    chat = Chat(listing_id=listing.id, buyer_id=buyer.id, seller_id=seller.id)
    db.session.add(chat)
    db.session.commit()

    print(f"Seeded listing={listing.id} chat={chat.id}")
    print(f"seller token: {create_access_token(identity=str(seller.id))}")
    print(f"buyer token:  {create_access_token(identity=str(buyer.id))}")
