"""JSON error responses shared by every blueprint."""
from __future__ import annotations

from flask import Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    """Raised inside a request to abort with a JSON ``{"error": ...}`` body."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NotFoundError(ApiError):
    def __init__(self, message: str = "Not found") -> None:
        super().__init__(message, 404)


class UnauthorizedError(ApiError):
    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message, 401)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def handle_api_error(exc: ApiError):
        return jsonify({"error": exc.message}), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        return jsonify({"error": exc.description or exc.name}), exc.code or 500

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        current_app.logger.exception("Unhandled error while processing request")
        return jsonify({"error": "Internal server error"}), 500


def json_object(*text_keys: str) -> dict:
    """Return the JSON body of the current request as a dict.

    A missing or unparseable body reads as empty.  Any other JSON value, or a
    non-string under one of ``text_keys``, is rejected with a 400.
    """

    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ApiError("Request body must be a JSON object", 400)
    for key in text_keys:
        value = payload.get(key)
        if value is not None and not isinstance(value, str):
            raise ApiError(f"{key} must be a string", 400)
    return payload


def form_error_message(form) -> str:
    """Return the first validation message of a WTForms form."""

    for field_errors in form.errors.values():
        if field_errors:
            return str(field_errors[0])
    return "Invalid request"
