"""
Error handling
--------------
Operational errors raised by models and routes, and the centralized handlers
that turn every failure into a ``{"message": ...}`` JSON response.
"""

import logging
import traceback

import jwt
from flask import jsonify, request
from flask_wtf.csrf import CSRFError
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from extensions import db

logger = logging.getLogger(__name__)


class AppError(Exception):
    """An expected failure with a fixed HTTP status."""

    status_code = 400

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self):
        data = dict(self.payload)
        data['message'] = self.message
        return data


class ValidationError(AppError):
    status_code = 400


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


def form_error_message(form):
    """Flatten WTForms errors into a single readable message."""
    messages = []
    for field, errors in form.errors.items():
        for error in errors:
            messages.append(error if isinstance(error, str) else f"{field}: {error}")
    return ', '.join(messages) or 'Invalid form data'


def register_error_handlers(app):

    @app.errorhandler(AppError)
    def handle_app_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error):
        db.session.rollback()
        logger.warning(f"Integrity error on {request.method} {request.path}: {error.orig}")
        return jsonify({'message': 'Duplicate field value entered'}), 400

    @app.errorhandler(jwt.ExpiredSignatureError)
    def handle_expired_token(error):
        return jsonify({'message': 'Token expired'}), 401

    @app.errorhandler(jwt.InvalidTokenError)
    def handle_invalid_token(error):
        return jsonify({'message': 'Invalid token'}), 401

    @app.errorhandler(CSRFError)
    def handle_csrf_error(error):
        logger.warning(f"CSRF validation failed on {request.method} {request.path}: {error.description}")
        return jsonify({'message': 'Invalid CSRF token'}), 403

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        if error.code == 404 and request.url_rule is None:
            message = 'API Route not found' if request.path.startswith('/api') else 'Route not found'
        else:
            message = error.description
        return jsonify({'message': message}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        logger.error(f"Unhandled error on {request.method} {request.path}: {error}", exc_info=True)
        response = {'message': str(error) or 'Server Error'}
        if app.config.get('APP_ENV') != 'production':
            response['stack'] = traceback.format_exc()
        return jsonify(response), 500
