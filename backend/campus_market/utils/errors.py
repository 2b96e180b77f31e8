from flask import jsonify
from werkzeug.exceptions import HTTPException
from marshmallow import ValidationError


class ApiError(Exception):
    """
    Generic business error. Carries the HTTP status and a machine readable
    ``code`` inside ``payload`` so clients can branch without parsing text.
    """
    status_code = 400
    code = None

    def __init__(self, message, status_code=None, errors=None, payload=None, code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors or {}
        self.payload = dict(payload or {})
        code = code or self.code
        if code:
            self.payload.setdefault("code", code)


class NotFound(ApiError):
    status_code = 404
    code = "NOT_FOUND"


class Forbidden(ApiError):
    status_code = 403
    code = "FORBIDDEN"


class InvalidTransition(ApiError):
    """The action is not legal for the agreement's current state."""
    status_code = 409
    code = "INVALID_TRANSITION"


class ConcurrentUpdate(ApiError):
    """Someone else wrote the record first; re-fetch and try again."""
    status_code = 409
    code = "CONCURRENT_UPDATE"


class VerificationFailed(ApiError):
    """Wrong one-time code. Recoverable: the client re-prompts for input."""
    status_code = 422
    code = "VERIFICATION_FAILED"


def register_error_handlers(app):

    @app.errorhandler(ApiError)
    def handle_api_error(err: ApiError):
        response = {
            "success": False,
            "message": err.message,
        }
        if err.errors:
            response["errors"] = err.errors
        if getattr(err, "payload", None):
            response["payload"] = err.payload

        return jsonify(response), err.status_code

    @app.errorhandler(ValidationError)
    def handle_marshmallow_validation(err: ValidationError):
        response = {
            "success": False,
            "message": "Invalid data",
            "errors": err.messages if hasattr(err, "messages") else str(err),
            "payload": {"code": "VALIDATION_ERROR"},
        }
        return jsonify(response), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(err: HTTPException):
        response = {
            "success": False,
            "message": err.description or "HTTP error",
        }
        return jsonify(response), err.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(err: Exception):
        app.logger.exception(err)

        response = {
            "success": False,
            "message": "Internal server error",
        }
        return jsonify(response), 500
