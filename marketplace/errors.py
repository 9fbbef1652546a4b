"""Error taxonomy shared by services and the HTTP layer.

Services raise these; ``register_error_handlers`` renders them as
``{"success": false, "error": {"kind": ..., "message": ...}}`` with the
matching status code.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class MarketplaceError(Exception):
    status_code = 500
    kind = "Internal"
    default_message = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(MarketplaceError):
    status_code = 400
    kind = "ValidationError"
    default_message = "The request is missing or has invalid fields."


class AmountMismatch(ValidationError):
    kind = "AmountMismatch"
    default_message = "The submitted total does not match the current product prices."


class Unauthenticated(MarketplaceError):
    status_code = 401
    kind = "Unauthenticated"
    default_message = "Authentication is required."


class InvalidCredentials(Unauthenticated):
    kind = "InvalidCredentials"
    default_message = "Invalid username or password."


class TokenInvalid(Unauthenticated):
    kind = "TokenInvalid"
    default_message = "The session token is malformed or has an invalid signature."


class TokenExpired(Unauthenticated):
    kind = "TokenExpired"
    default_message = "The session token has expired."


class AccountNotFound(Unauthenticated):
    kind = "AccountNotFound"
    default_message = "The account for this session no longer exists."


class Forbidden(MarketplaceError):
    status_code = 403
    kind = "Forbidden"
    default_message = "You do not have permission to perform this action."


class NotFound(MarketplaceError):
    status_code = 404
    kind = "NotFound"
    default_message = "The requested resource was not found."


class UnknownOrder(NotFound):
    kind = "UnknownOrder"
    default_message = "No order matches this transaction identifier."


class Conflict(MarketplaceError):
    status_code = 409
    kind = "Conflict"
    default_message = "The resource already exists."


class GatewayUnavailable(MarketplaceError):
    status_code = 502
    kind = "GatewayUnavailable"
    default_message = "The payment gateway is currently unavailable."


class Internal(MarketplaceError):
    pass


_HTTP_KINDS = {
    400: "ValidationError",
    401: "Unauthenticated",
    403: "Forbidden",
    404: "NotFound",
    405: "MethodNotAllowed",
    409: "Conflict",
    413: "ValidationError",
}


def error_response(kind: str, message: str, status_code: int, details: Optional[Dict[str, Any]] = None):
    error: Dict[str, Any] = {"kind": kind, "message": message}
    if details:
        error["details"] = details
    return jsonify({"success": False, "error": error}), status_code


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(MarketplaceError)
    def handle_marketplace_error(exc: MarketplaceError):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.kind, exc.message)
        else:
            logger.info("Request rejected with %s", exc.kind)
        return error_response(exc.kind, exc.message, exc.status_code, exc.details)

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        status = exc.code or 500
        kind = _HTTP_KINDS.get(status, "Internal" if status >= 500 else "HTTPError")
        return error_response(kind, exc.description or exc.name, status)

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(exc: SQLAlchemyError):
        logger.exception("Database failure while handling request")
        return error_response("Internal", Internal.default_message, 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        logger.exception("Unhandled error while handling request")
        return error_response("Internal", Internal.default_message, 500)
