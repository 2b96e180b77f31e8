from datetime import datetime, timedelta

import pytest

from campus_market.models.listing import Listing
from campus_market.models.rental_agreement import RentalAgreement
from campus_market.models.rental_event import RentalEvent
from campus_market.services import rental_service
from campus_market.utils.errors import (
	ConcurrentUpdate,
	Forbidden,
	InvalidTransition,
	VerificationFailed,
)


def _agree(agreement):
	rental_service.confirm(agreement.id, "seller", "date", {"date": agreement.return_date})
	rental_service.confirm(agreement.id, "buyer", "date", {"date": agreement.return_date})


def _hand_over(agreement):
	_agree(agreement)
	rental_service.confirm(agreement.id, "buyer", "verify_otp", {"otp": agreement.handover_otp})


def _wrong(code: str) -> str:
	return "1000" if code != "1000" else "1001"


def test_create_generates_four_digit_codes(make_agreement):
	agreement, _, _ = make_agreement()

	for code in (agreement.handover_otp, agreement.return_otp):
		assert len(code) == 4
		assert 1000 <= int(code) <= 9999
	assert agreement.handover_otp != agreement.return_otp

	assert agreement.status == "pending"
	assert agreement.penalty == 0
	assert agreement.is_late is False
	assert not agreement.buyer_agreed_date and not agreement.seller_agreed_date


def test_return_code_is_regenerated_on_collision(monkeypatch):
	codes = iter(["4821", "4821", "7310"])
	monkeypatch.setattr(rental_service, "_gen_otp_4", lambda: next(codes))

	assert rental_service._gen_otp_pair() == ("4821", "7310")


def test_create_only_by_seller(rental_chat):
	seller, buyer, listing, chat = rental_chat()

	with pytest.raises(Forbidden):
		rental_service.create_agreement(
			chat.id, listing.id, datetime.utcnow() + timedelta(days=3), actor_id=buyer.id
		)


def test_create_rejects_sell_listing(make_user, make_listing, make_chat):
	seller = make_user()
	buyer = make_user()
	listing = make_listing(seller.id, type="sell")
	chat = make_chat(listing, buyer.id)

	with pytest.raises(InvalidTransition) as exc:
		rental_service.create_agreement(chat.id, listing.id, datetime.utcnow() + timedelta(days=3))
	assert exc.value.payload["code"] == "NOT_RENTABLE"


def test_create_one_open_agreement_per_chat(rental_chat):
	seller, buyer, listing, chat = rental_chat()
	when = datetime.utcnow() + timedelta(days=3)
	rental_service.create_agreement(chat.id, listing.id, when)

	with pytest.raises(InvalidTransition) as exc:
		rental_service.create_agreement(chat.id, listing.id, when)
	assert exc.value.payload["code"] == "ACTIVE_AGREEMENT_EXISTS"


def test_status_only_moves_forward(make_agreement):
	agreement, _, _ = make_agreement()
	seen = [agreement.status]

	_hand_over(agreement)
	seen.append(agreement.status)

	rental_service.confirm(agreement.id, "seller", "verify_otp", {"otp": agreement.return_otp})
	seen.append(agreement.status)

	assert seen == ["pending", "active", "completed"]

	with pytest.raises(InvalidTransition):
		rental_service.confirm(agreement.id, "seller", "verify_otp", {"otp": agreement.return_otp})
	assert agreement.status == "completed"


def test_handover_requires_agreed_date(make_agreement):
	agreement, _, _ = make_agreement()
	rental_service.confirm(agreement.id, "seller", "date", {"date": agreement.return_date})

	with pytest.raises(InvalidTransition) as exc:
		rental_service.confirm(agreement.id, "buyer", "verify_otp", {"otp": agreement.handover_otp})
	assert exc.value.payload["code"] == "DATE_NOT_AGREED"
	assert agreement.handover_otp_verified is False


def test_wrong_code_changes_nothing(make_agreement):
	agreement, _, _ = make_agreement()
	_agree(agreement)
	version = agreement.version

	with pytest.raises(VerificationFailed):
		rental_service.confirm(agreement.id, "buyer", "verify_otp", {"otp": _wrong(agreement.handover_otp)})

	fresh = rental_service.get_agreement(agreement.id)
	assert fresh.status == "pending"
	assert fresh.handover_otp_verified is False
	assert fresh.start_date is None
	assert fresh.version == version


def test_right_code_from_wrong_party(make_agreement):
	agreement, _, _ = make_agreement()
	_agree(agreement)

	with pytest.raises(InvalidTransition) as exc:
		rental_service.confirm(agreement.id, "seller", "verify_otp", {"otp": agreement.handover_otp})
	assert exc.value.payload["code"] == "WRONG_PARTY"
	assert agreement.status == "pending"


def test_return_code_does_not_open_handover(make_agreement):
	agreement, _, _ = make_agreement()
	_agree(agreement)

	with pytest.raises(VerificationFailed):
		rental_service.confirm(agreement.id, "buyer", "verify_otp", {"otp": agreement.return_otp})


def test_new_date_drops_previous_agreement(make_agreement):
	agreement, _, _ = make_agreement()
	rental_service.confirm(agreement.id, "seller", "date", {"date": agreement.return_date})
	assert agreement.seller_agreed_date is True

	new_date = agreement.return_date + timedelta(days=2)
	rental_service.confirm(agreement.id, "buyer", "date", {"date": new_date})

	assert agreement.return_date == new_date
	assert agreement.buyer_agreed_date is True
	assert agreement.seller_agreed_date is False
	assert agreement.date_agreed is False


def test_date_locked_once_both_agreed(make_agreement):
	agreement, _, _ = make_agreement()
	_agree(agreement)

	with pytest.raises(InvalidTransition) as exc:
		rental_service.confirm(agreement.id, "buyer", "date", {"date": agreement.return_date + timedelta(days=1)})
	assert exc.value.payload["code"] == "DATE_LOCKED"


def test_reject_date_resets_agreement(make_agreement):
	agreement, _, _ = make_agreement()
	_agree(agreement)

	new_date = agreement.return_date + timedelta(days=5)
	_, event = rental_service.confirm(agreement.id, "buyer", "reject_date", {"date": new_date})

	assert event is not None
	assert agreement.return_date == new_date
	assert agreement.buyer_agreed_date is False
	assert agreement.seller_agreed_date is False


def test_reject_date_without_agreement(make_agreement):
	agreement, _, _ = make_agreement()

	with pytest.raises(InvalidTransition):
		rental_service.confirm(agreement.id, "buyer", "reject_date", {"date": agreement.return_date})


def test_repeated_confirmation_records_no_event(make_agreement):
	agreement, _, _ = make_agreement()

	_, first = rental_service.confirm(agreement.id, "seller", "date", {"date": agreement.return_date})
	version = agreement.version
	_, second = rental_service.confirm(agreement.id, "seller", "date", {"date": agreement.return_date})

	assert first is not None
	assert second is None
	assert agreement.version == version
	assert RentalEvent.query.filter_by(agreement_id=agreement.id, kind="date_proposed").count() == 1


def test_start_and_end_set_own_flags(make_agreement):
	agreement, _, _ = make_agreement()

	with pytest.raises(InvalidTransition):
		rental_service.confirm(agreement.id, "seller", "start")

	_hand_over(agreement)
	rental_service.confirm(agreement.id, "seller", "start")
	assert agreement.seller_started is True
	assert agreement.buyer_started is False

	rental_service.confirm(agreement.id, "seller", "verify_otp", {"otp": agreement.return_otp})
	rental_service.confirm(agreement.id, "buyer", "end")
	assert agreement.buyer_confirmed is True
	assert agreement.seller_confirmed is False


def test_end_while_pending_fails(make_agreement):
	agreement, _, _ = make_agreement()

	with pytest.raises(InvalidTransition):
		rental_service.confirm(agreement.id, "buyer", "end")
	assert agreement.buyer_confirmed is False


def test_lateness_charges_penalty_once(make_agreement, db_session):
	agreement, _, _ = make_agreement()
	_hand_over(agreement)

	# Push the return date into the past
	row = db_session.get(RentalAgreement, agreement.id)
	row.return_date = datetime.utcnow() - timedelta(hours=1)
	db_session.commit()

	first = rental_service.get_latest_for_chat(agreement.chat_id)
	assert first.is_late is True
	assert first.penalty == 500

	again = rental_service.get_latest_for_chat(agreement.chat_id)
	assert again.penalty == 500
	assert RentalEvent.query.filter_by(agreement_id=agreement.id, kind="lateness_observed").count() == 1


def test_late_return_keeps_penalty(make_agreement, db_session):
	agreement, _, _ = make_agreement()
	_hand_over(agreement)

	row = db_session.get(RentalAgreement, agreement.id)
	row.return_date = datetime.utcnow() - timedelta(hours=1)
	db_session.commit()

	agreement, _ = rental_service.confirm(agreement.id, "seller", "verify_otp", {"otp": agreement.return_otp})

	assert agreement.status == "completed"
	assert agreement.is_late is False
	assert agreement.penalty == 500


def test_return_releases_listing(make_agreement, db_session):
	agreement, _, _ = make_agreement()
	listing = db_session.get(Listing, agreement.listing_id)
	listing.status = "rented"
	db_session.commit()

	_hand_over(agreement)
	rental_service.confirm(agreement.id, "seller", "verify_otp", {"otp": agreement.return_otp})

	db_session.expire_all()
	assert db_session.get(Listing, agreement.listing_id).status == "available"
	assert agreement.completed_at is not None


def test_stale_version_is_rejected(make_agreement):
	agreement, _, _ = make_agreement()
	loaded = agreement.version

	rental_service.confirm(agreement.id, "seller", "date", {"date": agreement.return_date}, expected_version=loaded)

	with pytest.raises(ConcurrentUpdate) as exc:
		rental_service.confirm(
			agreement.id,
			"buyer",
			"date",
			{"date": agreement.return_date + timedelta(days=1)},
			expected_version=loaded,
		)
	assert exc.value.status_code == 409
	assert exc.value.payload["version"] == agreement.version
	assert agreement.buyer_agreed_date is False


def test_role_mismatch(make_agreement):
	agreement, seller, _ = make_agreement()

	with pytest.raises(Forbidden) as exc:
		rental_service.confirm(
			agreement.id, "buyer", "date", {"date": agreement.return_date}, actor_id=seller.id
		)
	assert exc.value.payload["code"] == "ROLE_MISMATCH"


def test_overdue_pending_agreement_is_not_charged(make_agreement, db_session):
	agreement, _, _ = make_agreement()

	row = db_session.get(RentalAgreement, agreement.id)
	row.return_date = datetime.utcnow() - timedelta(hours=1)
	db_session.commit()

	seen = rental_service.get_latest_for_chat(agreement.chat_id)
	assert seen.status == "pending"
	assert seen.is_late is True
	assert seen.penalty == 0
	assert seen.late_observed_at is None
	assert RentalEvent.query.filter_by(agreement_id=agreement.id, kind="lateness_observed").count() == 0


def test_new_date_clears_lateness_in_same_write(make_agreement, db_session):
	agreement, _, _ = make_agreement()

	row = db_session.get(RentalAgreement, agreement.id)
	row.return_date = datetime.utcnow() - timedelta(hours=1)
	db_session.commit()
	assert rental_service.get_latest_for_chat(agreement.chat_id).is_late is True

	new_date = rental_service.normalize_datetime(datetime.utcnow() + timedelta(days=3))
	agreement, _ = rental_service.confirm(agreement.id, "buyer", "date", {"date": new_date})

	assert agreement.return_date == new_date
	assert agreement.is_late is False
	assert agreement.penalty == 0

	db_session.expire_all()
	stored = db_session.get(RentalAgreement, agreement.id)
	assert stored.is_late is False


def test_codes_never_change_during_lifecycle(make_agreement):
	agreement, _, _ = make_agreement()
	handover_otp = agreement.handover_otp
	return_otp = agreement.return_otp

	rental_service.confirm(agreement.id, "buyer", "date", {"date": agreement.return_date})
	rental_service.confirm(
		agreement.id, "seller", "reject_date", {"date": agreement.return_date + timedelta(days=1)}
	)
	_agree(agreement)
	assert (agreement.handover_otp, agreement.return_otp) == (handover_otp, return_otp)

	rental_service.confirm(agreement.id, "buyer", "verify_otp", {"otp": handover_otp})
	rental_service.confirm(agreement.id, "seller", "start")
	assert (agreement.handover_otp, agreement.return_otp) == (handover_otp, return_otp)

	rental_service.confirm(agreement.id, "seller", "verify_otp", {"otp": return_otp})
	rental_service.confirm(agreement.id, "buyer", "end")

	fresh = rental_service.get_agreement(agreement.id)
	assert fresh.status == "completed"
	assert (fresh.handover_otp, fresh.return_otp) == (handover_otp, return_otp)
