import itertools
from datetime import datetime, timedelta

import pytest

from sqlalchemy.pool import StaticPool
from flask_jwt_extended import create_access_token

from campus_market import create_app
from campus_market.config import TestConfig as BaseTestConfig
from campus_market.extensions import db

# Register every mapper before create_all
import campus_market.models  # noqa: F401
from campus_market.models.user import User
from campus_market.models.listing import Listing
from campus_market.models.chat import Chat
from campus_market.services import rental_service


_seq = itertools.count(1)


class PytestConfig(BaseTestConfig):
	SQLALCHEMY_DATABASE_URI = "sqlite://"
	SQLALCHEMY_ENGINE_OPTIONS = {
		"connect_args": {"check_same_thread": False},
		"poolclass": StaticPool,
	}
	JWT_SECRET_KEY = "test-secret"
	LATE_PENALTY_AMOUNT = 500


@pytest.fixture(scope="session")
def app():
	app = create_app(PytestConfig)
	with app.app_context():
		db.create_all()
		yield app
		db.session.remove()
		db.drop_all()


@pytest.fixture()
def client(app):
	return app.test_client()


@pytest.fixture()
def db_session(app):
	with app.app_context():
		yield db.session
		db.session.rollback()


@pytest.fixture()
def make_user(db_session):
	def _make_user(username: str | None = None, college: str = "Alliance University"):
		n = next(_seq)
		u = User(
			username=username or f"student{n}",
			email=f"student{n}@campus.test",
			college=college,
		)
		db_session.add(u)
		db_session.commit()
		return u

	return _make_user


@pytest.fixture()
def make_token(app):
	def _make_token(user_id: int) -> str:
		with app.app_context():
			return create_access_token(identity=str(user_id))

	return _make_token


@pytest.fixture()
def auth_header(make_token):
	def _auth_header(user_id: int) -> dict:
		token = make_token(user_id)
		return {"Authorization": f"Bearer {token}"}

	return _auth_header


@pytest.fixture()
def make_listing(db_session):
	def _make_listing(seller_id: int, title: str = "Scientific calculator", type: str = "rent", status: str = "available"):
		listing = Listing(
			seller_id=seller_id,
			title=title,
			description="Casio fx-991, works fine",
			price=150,
			category="Electronics",
			type=type,
			status=status,
		)
		db_session.add(listing)
		db_session.commit()
		return listing

	return _make_listing


@pytest.fixture()
def make_chat(db_session):
	def _make_chat(listing, buyer_id: int):
		chat = Chat(listing_id=listing.id, buyer_id=buyer_id, seller_id=listing.seller_id)
		db_session.add(chat)
		db_session.commit()
		return chat

	return _make_chat


@pytest.fixture()
def rental_chat(make_user, make_listing, make_chat):
	"""Seller, buyer, a rent listing and the chat between them."""

	def _rental_chat():
		seller = make_user()
		buyer = make_user()
		listing = make_listing(seller.id)
		chat = make_chat(listing, buyer.id)
		return seller, buyer, listing, chat

	return _rental_chat


@pytest.fixture()
def make_agreement(rental_chat):
	def _make_agreement(days: int = 7):
		seller, buyer, listing, chat = rental_chat()
		agreement = rental_service.create_agreement(
			chat.id,
			listing.id,
			datetime.utcnow() + timedelta(days=days),
			actor_id=seller.id,
		)
		return agreement, seller, buyer

	return _make_agreement
