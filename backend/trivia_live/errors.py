"""Error taxonomy shared by the coordinator, the ledger and the HTTP layer.

Every error carries the HTTP status it is reported with; the handler
registered in ``create_app`` renders them as ``{"error": message}`` the same
way routes report their own validation problems.
"""
from flask import jsonify


class TriviaError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(TriviaError):
    status_code = 404


class Unauthorized(TriviaError):
    status_code = 403


class ValidationFailed(TriviaError):
    status_code = 400


class InvalidTransition(ValidationFailed):
    """A host control that is not legal in the room's current phase."""


class Conflict(TriviaError):
    """A write against a judged row or a closed submission gate."""
    status_code = 409


class GenerationFailed(TriviaError):
    """The question service returned nothing usable. Always retryable."""
    status_code = 502


def register_error_handlers(flask_app) -> None:
    @flask_app.errorhandler(TriviaError)
    def handle_trivia_error(exc: TriviaError):
        return jsonify({'error': exc.message}), exc.status_code
