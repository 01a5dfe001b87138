# crm/errors.py
"""
Domain error taxonomy and the JSON error handlers that render it.

Every API failure leaves the service as ``{"success": false, "message": ...}``.
Unhandled failures carry ``error`` (the exception text) only outside production.
"""
from __future__ import annotations

from flask import Flask, current_app, jsonify
from werkzeug.exceptions import HTTPException


class CRMError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str | None = None, *, details=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details


class ValidationError(CRMError):
    """Missing or malformed input (due date, amount, email shape, ...)."""

    status_code = 400
    default_message = "Validation failed"


class InvalidStatusError(ValidationError):
    default_message = "Invalid status"


class NotFoundError(CRMError):
    status_code = 404
    default_message = "Not found"


class ForbiddenError(CRMError):
    status_code = 403
    default_message = "Access denied"


class InvalidStateError(CRMError):
    """Operation not permitted in the record's current lifecycle state."""

    status_code = 400
    default_message = "Operation not allowed in the current state"


class NoBillableExpensesError(CRMError):
    status_code = 400
    default_message = (
        "No uninvoiced expenses found for this client. "
        "All expenses have already been invoiced."
    )


def _expose_details() -> bool:
    return (current_app.config.get("APP_ENV") or "production") != "production"


def error_response(message: str, status: int, *, error=None, errors=None):
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    if error is not None and _expose_details():
        body["error"] = error
    return jsonify(body), status


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(CRMError)
    def handle_crm_error(exc: CRMError):
        if exc.status_code >= 500:
            current_app.logger.error("%s: %s", type(exc).__name__, exc.message)
        else:
            current_app.logger.info("%s (%s): %s", type(exc).__name__, exc.status_code, exc.message)
        return error_response(exc.message, exc.status_code, errors=exc.details)

    @app.errorhandler(404)
    def not_found(e):
        return error_response("Route not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(e):
        return error_response("Method not allowed", 405)

    # ======================
    # Rate limit error handler
    # ======================
    @app.errorhandler(429)
    def ratelimit_handler(e):
        return error_response("Too many requests. Please try again later.", 429)

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        return error_response(e.description or e.name, e.code or 500)

    @app.errorhandler(Exception)
    def unhandled(e: Exception):
        current_app.logger.exception("Unhandled error")
        return error_response("Server error", 500, error=str(e))
