from __future__ import annotations

import logging

from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError
from werkzeug.exceptions import HTTPException


logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base for failures surfaced to API callers with a readable message."""

    status_code = 400

    def __init__(self, message: str, *, details=None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"message": self.message}
        if self.details is not None:
            body["errors"] = self.details
        return body


class Unauthorized(ServiceError):
    status_code = 401


class Forbidden(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class BadRequest(ServiceError):
    status_code = 400


class Conflict(ServiceError):
    status_code = 409


class DeliveryFailed(ServiceError):
    status_code = 502


class TooManyRequests(ServiceError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ServiceError)
    def handle_service_error(err: ServiceError):
        response = jsonify(err.to_dict())
        response.status_code = err.status_code
        if isinstance(err, TooManyRequests):
            response.headers["Retry-After"] = str(err.retry_after)
        return response

    @app.errorhandler(CSRFError)
    def handle_csrf_error(err: CSRFError):
        return jsonify({"message": err.description}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(err: HTTPException):
        return jsonify({"message": err.description}), err.code

    @app.errorhandler(Exception)
    def handle_unexpected(err: Exception):
        logger.exception("Unhandled error while serving request")
        return jsonify({"message": "Something went wrong. Please try again shortly."}), 500
