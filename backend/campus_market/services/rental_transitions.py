"""Tagged events for the rental agreement lifecycle.

Every action accepted by ``rental_service.confirm`` is turned into one of the
events below by ``build_event``. ``apply`` checks the event's preconditions
against the agreement and mutates it in place; this is the only place the
transition rules live.

``apply`` returns False when the event would change nothing (a party
repeating a confirmation it already gave), so callers can answer idempotently
without logging a duplicate event.
"""

from datetime import datetime

from campus_market.models.rental_agreement import (
    PARTIES,
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    STATUS_ORDER,
    STATUS_PENDING,
    RentalAgreement,
)
from campus_market.utils.errors import ApiError, InvalidTransition, VerificationFailed


HANDOVER = "handover"
RETURN = "return"


def other_party(party: str) -> str:
    return "seller" if party == "buyer" else "buyer"


def _advance_status(agreement: RentalAgreement, new_status: str) -> None:
    if STATUS_ORDER.index(new_status) <= STATUS_ORDER.index(agreement.status):
        raise InvalidTransition(f"Status cannot move from '{agreement.status}' to '{new_status}'.")
    agreement.status = new_status


class AgreementEvent:
    kind: str = ""

    def __init__(self, party: str | None):
        self.party = party

    def payload(self) -> dict:
        return {}

    def apply(self, agreement: RentalAgreement, now: datetime) -> bool:
        raise NotImplementedError

    def _set_own_flag(self, agreement: RentalAgreement, name: str) -> bool:
        attr = f"{self.party}_{name}"
        if getattr(agreement, attr):
            return False
        setattr(agreement, attr, True)
        return True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} party={self.party} {self.payload()}>"


class DateProposed(AgreementEvent):
    kind = "date_proposed"

    def __init__(self, party: str, date: datetime):
        super().__init__(party)
        self.date = date

    def payload(self) -> dict:
        return {"date": self.date.isoformat()}

    def apply(self, agreement, now):
        if agreement.status != STATUS_PENDING:
            raise InvalidTransition("The return date can only change before the handover.")

        if agreement.date_agreed:
            if self.date == agreement.return_date:
                return False
            raise InvalidTransition(
                "Both parties already agreed on the return date. Reject it to renegotiate.",
                code="DATE_LOCKED",
            )

        if self.date != agreement.return_date:
            # The other party agreed to a date that no longer exists.
            setattr(agreement, f"{other_party(self.party)}_agreed_date", False)
            agreement.return_date = self.date
        elif agreement.agreed_flag(self.party):
            return False

        setattr(agreement, f"{self.party}_agreed_date", True)
        return True


class DateRejected(AgreementEvent):
    kind = "date_rejected"

    def __init__(self, party: str, date: datetime):
        super().__init__(party)
        self.date = date

    def payload(self) -> dict:
        return {"date": self.date.isoformat()}

    def apply(self, agreement, now):
        if agreement.status != STATUS_PENDING:
            raise InvalidTransition("The return date can only change before the handover.")
        if not (agreement.buyer_agreed_date or agreement.seller_agreed_date):
            raise InvalidTransition("There is no agreed date to reject yet.")

        agreement.buyer_agreed_date = False
        agreement.seller_agreed_date = False
        agreement.return_date = self.date
        return True


class OtpVerified(AgreementEvent):
    """Proof of a physical hand-off.

    The handover code is shown by the seller and typed in by the buyer; the
    return code is shown by the buyer and typed in by the seller. The code is
    never stored in the event payload.
    """

    kind = "otp_verified"

    ENTERED_BY = {HANDOVER: "buyer", RETURN: "seller"}

    def __init__(self, party: str, otp: str, direction: str):
        super().__init__(party)
        self.otp = otp
        self.direction = direction

    @classmethod
    def for_agreement(cls, agreement: RentalAgreement, party: str, otp: str) -> "OtpVerified":
        if agreement.status == STATUS_PENDING:
            return cls(party, otp, HANDOVER)
        if agreement.status == STATUS_ACTIVE:
            return cls(party, otp, RETURN)
        raise InvalidTransition("This rental is already completed.")

    def payload(self) -> dict:
        return {"direction": self.direction}

    def apply(self, agreement, now):
        if self.direction == HANDOVER:
            if agreement.status != STATUS_PENDING:
                raise InvalidTransition("The handover was already verified.")
            if not agreement.date_agreed:
                raise InvalidTransition(
                    "Both parties must agree on the return date before the handover.",
                    code="DATE_NOT_AGREED",
                )
            expected = agreement.handover_otp
        else:
            if agreement.status != STATUS_ACTIVE:
                raise InvalidTransition("The rental is not active.")
            expected = agreement.return_otp

        # Strings on both sides: "0482" must never match 482.
        if not expected or str(self.otp) != str(expected):
            raise VerificationFailed(
                f"Wrong code for the {self.direction}.",
                payload={"direction": self.direction},
            )

        entered_by = self.ENTERED_BY[self.direction]
        if self.party != entered_by:
            raise InvalidTransition(
                f"The {self.direction} code must be entered by the {entered_by}.",
                code="WRONG_PARTY",
            )

        if self.direction == HANDOVER:
            agreement.handover_otp_verified = True
            agreement.start_date = now
            _advance_status(agreement, STATUS_ACTIVE)
        else:
            agreement.return_otp_verified = True
            agreement.completed_at = now
            agreement.is_late = False
            _advance_status(agreement, STATUS_COMPLETED)
        return True


class HandoverConfirmed(AgreementEvent):
    kind = "handover_confirmed"

    def apply(self, agreement, now):
        if not agreement.date_agreed:
            raise InvalidTransition(
                "Both parties must agree on the return date first.",
                code="DATE_NOT_AGREED",
            )
        if not agreement.handover_otp_verified:
            raise InvalidTransition("The handover code has not been verified yet.")
        return self._set_own_flag(agreement, "started")


class ReturnConfirmed(AgreementEvent):
    kind = "return_confirmed"

    def apply(self, agreement, now):
        if agreement.status == STATUS_PENDING:
            raise InvalidTransition("The rental has not started yet.")
        if not agreement.return_otp_verified:
            raise InvalidTransition("The return code has not been verified yet.")
        return self._set_own_flag(agreement, "confirmed")


class LatenessObserved(AgreementEvent):
    """Raised by the system the first time an overdue return is seen."""

    kind = "lateness_observed"

    def __init__(self, amount: int):
        super().__init__(None)
        self.amount = amount

    def payload(self) -> dict:
        return {"penalty": self.amount}

    def apply(self, agreement, now):
        if agreement.late_observed_at is not None:
            return False
        agreement.late_observed_at = now
        agreement.penalty = self.amount
        return True


ACTIONS = ("date", "reject_date", "verify_otp", "start", "end")


def _require(data: dict, key: str, action: str):
    value = data.get(key)
    if value is None or value == "":
        raise ApiError(
            f"'{key}' is required for action '{action}'.",
            400,
            errors={key: ["Missing data for required field."]},
            code="VALIDATION_ERROR",
        )
    return value


def build_event(agreement: RentalAgreement, party: str, action: str, data: dict) -> AgreementEvent:
    if party not in PARTIES:
        raise ApiError("confirmedBy must be 'buyer' or 'seller'.", 400, code="VALIDATION_ERROR")

    if action == "date":
        return DateProposed(party, _require(data, "date", action))
    if action == "reject_date":
        return DateRejected(party, _require(data, "date", action))
    if action == "verify_otp":
        return OtpVerified.for_agreement(agreement, party, str(_require(data, "otp", action)))
    if action == "start":
        return HandoverConfirmed(party)
    if action == "end":
        return ReturnConfirmed(party)

    raise ApiError(f"Unknown action '{action}'.", 400, code="VALIDATION_ERROR")
