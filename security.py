"""
Authentication helpers
----------------------
JWT issuing/decoding, the Flask-Login request loader that resolves the
current user from the ``jwt`` cookie (or a Bearer header), role checks and
one-time code generation.
"""

import logging
import secrets
from datetime import timedelta
from functools import wraps

import jwt
from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from errors import AppError, ForbiddenError
from extensions import db, login_manager
from models.models import Session, User, utcnow

logger = logging.getLogger(__name__)


def create_token(user):
    """Return ``(token, expires_at)`` for a login session."""
    expires_at = utcnow() + timedelta(days=current_app.config['JWT_EXPIRES_DAYS'])
    payload = {
        'id': user.id,
        'jti': secrets.token_hex(8),
        'iat': utcnow(),
        'exp': expires_at,
    }
    token = jwt.encode(
        payload, current_app.config['JWT_SECRET_KEY'], algorithm=current_app.config['JWT_ALGORITHM']
    )
    return token, expires_at


def decode_token(token):
    return jwt.decode(
        token, current_app.config['JWT_SECRET_KEY'], algorithms=[current_app.config['JWT_ALGORITHM']]
    )


def create_reset_token(user):
    expires_at = utcnow() + timedelta(minutes=current_app.config['RESET_TOKEN_MINUTES'])
    payload = {'id': user.id, 'type': 'password-reset', 'exp': expires_at}
    return jwt.encode(
        payload, current_app.config['JWT_SECRET_KEY'], algorithm=current_app.config['JWT_ALGORITHM']
    )


def decode_reset_token(token):
    try:
        payload = decode_token(token)
    except jwt.InvalidTokenError:
        raise AppError('Invalid or expired reset token', 401)
    if payload.get('type') != 'password-reset':
        raise AppError('Invalid token type', 401)
    return payload


def token_from_request(req=None):
    req = req or request
    token = req.cookies.get(current_app.config['JWT_COOKIE_NAME'])
    if not token:
        header = req.headers.get('Authorization', '')
        if header.startswith('Bearer '):
            token = header.split(' ', 1)[1].strip()
    return token or None


def authenticate_token(token):
    """Resolve an active user from a JWT that still has a live session row."""
    if not token:
        return None
    try:
        payload = decode_token(token)
    except jwt.InvalidTokenError as e:
        logger.debug(f"Rejected token: {e}")
        return None

    if Session.find_valid(token) is None:
        return None

    user = db.session.get(User, payload.get('id'))
    if user is None or not user.is_active:
        return None
    return user


@login_manager.request_loader
def load_user_from_request(req):
    return authenticate_token(token_from_request(req))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'message': 'Not authorized, no token'}), 401


def roles_required(*roles):
    """Allow the view only for authenticated users holding one of ``roles``."""
    def decorator(view):
        @wraps(view)
        @login_required
        def wrapped(*args, **kwargs):
            if current_user.role not in roles:
                logger.warning(f"User {current_user.id} ({current_user.role}) refused on {request.path}")
                raise ForbiddenError(f"Role '{current_user.role}' is not authorized to access this route")
            return view(*args, **kwargs)
        return wrapped
    return decorator


def generate_otp():
    return f"{secrets.randbelow(1000000):06d}"


def escape_like(value):
    """Escape LIKE wildcards so user input is matched literally (use with ``escape='\\\\'``)."""
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
