from flask_jwt_extended import get_jwt_identity

from campus_market.utils.errors import ApiError


def current_user_id() -> int:
	"""User id carried by the access token (issued as a string)."""

	identity = get_jwt_identity()
	try:
		return int(identity)
	except (TypeError, ValueError):
		raise ApiError("Invalid token", 401)
