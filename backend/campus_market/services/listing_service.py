from flask import current_app

from campus_market.extensions.db import db
from campus_market.models.listing import LISTING_STATUSES, Listing
from campus_market.utils.errors import ApiError, NotFound


def get_listing(listing_id: int) -> Listing:
    listing: Listing | None = db.session.get(Listing, listing_id)
    if not listing:
        raise NotFound("Listing not found.")
    return listing


def update_listing(listing_id: int, *, status: str, commit: bool = True) -> Listing:
    """Set the listing status. With ``commit=False`` the caller owns the transaction."""

    if status not in LISTING_STATUSES:
        raise ApiError(f"Invalid listing status '{status}'.", 400, code="VALIDATION_ERROR")

    listing = get_listing(listing_id)
    if listing.status != status:
        current_app.logger.info("[listings] listing=%s status %s -> %s", listing.id, listing.status, status)
        listing.status = status

    if commit:
        db.session.commit()
    return listing
