import json
import secrets
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from campus_market.extensions.db import db
from campus_market.models.rental_agreement import (
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    STATUS_PENDING,
    RentalAgreement,
)
from campus_market.models.rental_event import RentalEvent
from campus_market.services import chat_service, listing_service
from campus_market.services.rental_transitions import (
    HANDOVER,
    DateProposed,
    DateRejected,
    LatenessObserved,
    OtpVerified,
    build_event,
)
from campus_market.utils.errors import (
    ApiError,
    ConcurrentUpdate,
    Forbidden,
    InvalidTransition,
    NotFound,
    VerificationFailed,
)


LATE_PENALTY_AMOUNT_DEFAULT = 500
OTP_MIN = 1000
OTP_MAX = 9999


def _get_late_penalty_amount() -> int:
    try:
        v = int(current_app.config.get("LATE_PENALTY_AMOUNT", LATE_PENALTY_AMOUNT_DEFAULT))
        return max(0, v)
    except (TypeError, ValueError):
        return LATE_PENALTY_AMOUNT_DEFAULT


def normalize_datetime(dt: datetime) -> datetime:
    """Naive UTC, whole seconds; the form every timestamp is stored in."""

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0)


def _gen_otp_4() -> str:
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


def _gen_otp_pair() -> tuple[str, str]:
    handover = _gen_otp_4()
    ret = _gen_otp_4()
    while ret == handover:
        ret = _gen_otp_4()
    return handover, ret


def _record_event(agreement: RentalAgreement, event, now: datetime) -> None:
    db.session.add(
        RentalEvent(
            agreement_id=agreement.id,
            kind=event.kind,
            party=event.party,
            payload_json=json.dumps(event.payload(), ensure_ascii=False),
            created_at=now,
        )
    )


def refresh_lateness(agreement: RentalAgreement, now: datetime | None = None) -> bool:
    """Recompute ``is_late`` and charge the penalty the first time an active
    rental is seen overdue.

    Safe to call on every read: the penalty is tied to ``late_observed_at``,
    so calling this again never charges twice. Returns True if anything on
    the record changed (the caller commits).
    """

    now = now or datetime.utcnow()
    changed = False

    late = agreement.status != STATUS_COMPLETED and now > agreement.return_date
    if bool(agreement.is_late) != late:
        agreement.is_late = late
        changed = True

    # Only an item that was handed over can come back late.
    if late and agreement.status == STATUS_ACTIVE:
        event = LatenessObserved(_get_late_penalty_amount())
        if event.apply(agreement, now):
            _record_event(agreement, event, now)
            current_app.logger.info(
                "[rentals] late return agreement=%s return_date=%s penalty=%s",
                agreement.id,
                agreement.return_date.isoformat(),
                agreement.penalty,
            )
            changed = True

    return changed


def _commit_lateness(agreement: RentalAgreement) -> None:
    if not refresh_lateness(agreement):
        return
    try:
        db.session.commit()
    except StaleDataError:
        # Another request wrote the record first; it saw the same clock.
        db.session.rollback()
        db.session.refresh(agreement)


def create_agreement(
    chat_id: int,
    listing_id: int,
    proposed_return_date: datetime,
    *,
    actor_id: int | None = None,
) -> RentalAgreement:
    """
    Open a rental agreement for a chat whose seller is marking the item as rented.

    - The chat must belong to the listing, and the listing must be for rent.
    - Only one open (not completed) agreement per chat, and per listing.
    - Both one-time codes are generated here and never change afterwards.

    Marking the listing as rented and posting the chat notice is up to the caller.
    """

    chat = chat_service.get_chat(chat_id)
    listing = listing_service.get_listing(listing_id)

    if chat.listing_id != listing.id:
        raise ApiError("The chat does not belong to this listing.", 400, code="VALIDATION_ERROR")

    if actor_id is not None and chat_service.role_of(chat, actor_id) != "seller":
        raise Forbidden("Only the seller can mark this item as rented.")

    if not listing.is_rental:
        raise InvalidTransition("This listing is not offered for rent.", code="NOT_RENTABLE")
    if listing.status == "sold":
        raise InvalidTransition("This listing has already been sold.", code="NOT_RENTABLE")

    open_in_chat = (
        RentalAgreement.query.filter(RentalAgreement.chat_id == chat.id)
        .filter(RentalAgreement.status != STATUS_COMPLETED)
        .first()
    )
    if open_in_chat is not None:
        raise InvalidTransition(
            "This chat already has an open rental.",
            code="ACTIVE_AGREEMENT_EXISTS",
            payload={"id": open_in_chat.id},
        )

    open_for_listing = (
        RentalAgreement.query.filter(RentalAgreement.listing_id == listing.id)
        .filter(RentalAgreement.status != STATUS_COMPLETED)
        .first()
    )
    if open_for_listing is not None:
        raise InvalidTransition("This item is already rented out.", code="LISTING_RENTED")

    handover_otp, return_otp = _gen_otp_pair()

    agreement = RentalAgreement(
        chat_id=chat.id,
        listing_id=listing.id,
        return_date=normalize_datetime(proposed_return_date),
        handover_otp=handover_otp,
        return_otp=return_otp,
        status=STATUS_PENDING,
        buyer_agreed_date=False,
        seller_agreed_date=False,
        handover_otp_verified=False,
        return_otp_verified=False,
        buyer_started=False,
        seller_started=False,
        buyer_confirmed=False,
        seller_confirmed=False,
        is_late=False,
        penalty=0,
        created_at=datetime.utcnow(),
    )
    db.session.add(agreement)
    db.session.commit()

    current_app.logger.info(
        "[rentals] created agreement=%s chat=%s listing=%s return_date=%s",
        agreement.id,
        chat.id,
        listing.id,
        agreement.return_date.isoformat(),
    )
    return agreement


def get_agreement(agreement_id: int) -> RentalAgreement:
    agreement: RentalAgreement | None = db.session.get(RentalAgreement, agreement_id)
    if not agreement:
        raise NotFound("Rental not found.")
    return agreement


def get_latest_for_chat(chat_id: int) -> RentalAgreement | None:
    """Most recent agreement of the chat (one open rental per chat at a time)."""

    agreement = (
        RentalAgreement.query.filter_by(chat_id=chat_id)
        .order_by(RentalAgreement.created_at.desc(), RentalAgreement.id.desc())
        .first()
    )
    if agreement is None:
        return None

    # Lateness is lazy: persisted the first time somebody looks.
    _commit_lateness(agreement)
    return agreement


def list_events(agreement_id: int) -> list[RentalEvent]:
    agreement = get_agreement(agreement_id)
    _commit_lateness(agreement)
    return (
        RentalEvent.query.filter_by(agreement_id=agreement.id)
        .order_by(RentalEvent.created_at.asc(), RentalEvent.id.asc())
        .all()
    )


def _require_role(agreement: RentalAgreement, actor_id: int, confirmed_by: str) -> None:
    role = chat_service.role_of(agreement.chat, actor_id)
    if role is None:
        raise Forbidden("You are not part of this rental.")
    if role != confirmed_by:
        raise Forbidden(
            f"You are the {role} in this chat and cannot confirm as the {confirmed_by}.",
            code="ROLE_MISMATCH",
        )


def confirm(
    agreement_id: int,
    confirmed_by: str,
    action: str,
    data: dict | None = None,
    *,
    actor_id: int | None = None,
    expected_version: int | None = None,
):
    """Apply one party action to the agreement.

    Returns ``(agreement, event)``; ``event`` is None when the action was a
    repeat that changed nothing. The row is locked for the duration of the
    call and the ORM version counter rejects interleaved writes.
    """

    data = dict(data or {})
    if isinstance(data.get("date"), datetime):
        data["date"] = normalize_datetime(data["date"])

    agreement: RentalAgreement | None = db.session.get(
        RentalAgreement,
        agreement_id,
        with_for_update=True,
        populate_existing=True,
    )
    if not agreement:
        db.session.rollback()
        raise NotFound("Rental not found.")

    now = datetime.utcnow()
    try:
        if actor_id is not None:
            _require_role(agreement, actor_id, confirmed_by)

        if expected_version is not None and expected_version != agreement.version:
            raise ConcurrentUpdate(
                "This rental changed since you loaded it. Refresh and try again.",
                payload={"version": agreement.version},
            )

        refresh_lateness(agreement, now)

        event = build_event(agreement, confirmed_by, action, data)
        applied = event.apply(agreement, now)
        if applied:
            if isinstance(event, OtpVerified) and agreement.status == STATUS_COMPLETED:
                listing_service.update_listing(agreement.listing_id, status="available", commit=False)
            _record_event(agreement, event, now)

        # A new return date can end the lateness seen above.
        refresh_lateness(agreement, now)

        db.session.commit()
    except VerificationFailed:
        db.session.rollback()
        current_app.logger.warning(
            "[rentals] wrong code agreement=%s party=%s action=%s",
            agreement_id,
            confirmed_by,
            action,
        )
        raise
    except ApiError:
        db.session.rollback()
        raise
    except StaleDataError:
        db.session.rollback()
        current_app.logger.warning("[rentals] concurrent write agreement=%s party=%s", agreement_id, confirmed_by)
        raise ConcurrentUpdate("This rental changed while saving. Refresh and try again.")

    if applied:
        current_app.logger.info(
            "[rentals] agreement=%s %s by %s status=%s version=%s",
            agreement.id,
            event.kind,
            confirmed_by,
            agreement.status,
            agreement.version,
        )
    return agreement, (event if applied else None)


def milestone_message(agreement: RentalAgreement, event) -> tuple[str, str] | None:
    """(event_key, text) of the chat notice for a milestone, or None."""

    if event is None:
        return None

    if isinstance(event, DateProposed) and agreement.date_agreed:
        day = agreement.return_date.strftime("%d %b %Y")
        return (
            f"DATE_AGREED:{agreement.id}:{agreement.version}",
            f"Return date agreed: {day}.",
        )
    if isinstance(event, DateRejected):
        day = agreement.return_date.strftime("%d %b %Y")
        return (
            f"DATE_REJECTED:{agreement.id}:{agreement.version}",
            f"Return date rejected. New proposal: {day}.",
        )
    if isinstance(event, OtpVerified):
        if event.direction == HANDOVER:
            return (f"HANDOVER:{agreement.id}", "Handover confirmed. The rental is now active.")
        return (f"RETURNED:{agreement.id}", "Item returned. This item has been marked as available.")
    return None


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def agreement_to_dict(agreement: RentalAgreement, viewer_role: str | None = None) -> dict:
    """
    Wire form of an agreement.

    Each code is only shown to the party who has to show it to the other:
    the seller sees the handover code, the buyer sees the return code.
    """

    return {
        "id": agreement.id,
        "chatId": agreement.chat_id,
        "listingId": agreement.listing_id,
        "returnDate": _iso(agreement.return_date),
        "buyerAgreedDate": bool(agreement.buyer_agreed_date),
        "sellerAgreedDate": bool(agreement.seller_agreed_date),
        "handoverOtp": agreement.handover_otp if viewer_role == "seller" else None,
        "returnOtp": agreement.return_otp if viewer_role == "buyer" else None,
        "handoverOtpVerified": bool(agreement.handover_otp_verified),
        "returnOtpVerified": bool(agreement.return_otp_verified),
        "buyerStarted": bool(agreement.buyer_started),
        "sellerStarted": bool(agreement.seller_started),
        "buyerConfirmed": bool(agreement.buyer_confirmed),
        "sellerConfirmed": bool(agreement.seller_confirmed),
        "isLate": bool(agreement.is_late),
        "penalty": int(agreement.penalty or 0),
        "status": agreement.status,
        "createdAt": _iso(agreement.created_at),
        "startDate": _iso(agreement.start_date),
        "completedAt": _iso(agreement.completed_at),
        "version": agreement.version,
        "viewerRole": viewer_role,
    }
