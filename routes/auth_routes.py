"""
Authentication Blueprint
------------------------
Handles OTP-verified signup, login/logout with JWT session cookies,
profile management and the password-reset flow.
"""

# =========================
# 📦 Standard Library Imports
# =========================
import logging

# =========================
# 🌐 Third-party Imports
# =========================
from flask import Blueprint, jsonify, request, current_app as app
from flask_login import login_required, current_user

# =========================
# 🧱 Project Imports
# =========================
from extensions import db
from errors import AppError, NotFoundError, ValidationError, form_error_message
from models.models import User, Company, OTP, PendingUser, Session
from notifications import send_otp_email
from routes.forms import (
    SignupForm, OTPForm, EmailForm, LoginForm, ProfileForm, ResetPasswordForm
)
from security import (
    create_token, create_reset_token, decode_reset_token, generate_otp, token_from_request
)
from utils import request_data, user_to_dict

# =========================
# 📝 Logging Setup
# =========================
logger = logging.getLogger(__name__)

# =========================
# 📍 Blueprint Declaration
# =========================
auth_bp = Blueprint('auth', __name__, url_prefix='/auth')


# =========================
# 🍪 Cookie Helpers
# =========================
def _cookie_options(max_age):
    return {
        'max_age': max_age,
        'secure': app.config['APP_ENV'] == 'production',
        'samesite': 'Strict',
    }


def _set_auth_cookies(response, token):
    max_age = app.config['JWT_EXPIRES_DAYS'] * 24 * 60 * 60
    response.set_cookie(app.config['JWT_COOKIE_NAME'], token, httponly=True, **_cookie_options(max_age))
    response.set_cookie('logged_in', 'true', httponly=False, **_cookie_options(max_age))
    return response


def _clear_auth_cookies(response):
    response.set_cookie(app.config['JWT_COOKIE_NAME'], '', httponly=True, **_cookie_options(0))
    response.set_cookie('logged_in', '', httponly=False, **_cookie_options(0))
    return response


def _login_response(user):
    """Open a session for ``user`` and answer with the profile plus auth cookies."""
    token, expires_at = create_token(user)
    Session.open(
        user, token,
        user_agent=request.headers.get('User-Agent'),
        ip_address=request.remote_addr,
        expires_at=expires_at,
    )
    db.session.commit()
    response = jsonify(user_to_dict(user))
    return _set_auth_cookies(response, token)


def _validate(form):
    if not form.validate():
        raise ValidationError(form_error_message(form))


# =========================
# 🔐 Signup with OTP
# =========================
@auth_bp.route('/signup', methods=['POST'])
def signup():
    form = SignupForm()
    _validate(form)

    email = form.email.data.strip().lower()
    role = 'provider' if form.role.data == 'provider' else 'user'

    if User.query.filter_by(email=email).first():
        raise ValidationError('User already exists')

    otp = generate_otp()
    PendingUser.query.filter_by(email=email).delete(synchronize_session=False)

    pending = PendingUser(
        name=form.name.data.strip(),
        email=email,
        role=role,
        phone=form.phone.data,
        city=form.city.data,
        state=form.state.data,
        avatar=form.avatar.data,
    )
    pending.set_password(form.password.data)
    pending.set_otp(otp)
    if role == 'provider' and form.company_name.data:
        pending.company_name = form.company_name.data.strip()
        pending.company_description = form.description.data
        pending.company_service_type = form.service_type.data
        pending.company_logo = form.logo.data
    db.session.add(pending)
    db.session.commit()

    if not send_otp_email(email, otp, pending.name):
        return jsonify({'message': 'Failed to send verification email. Please try again.'}), 500

    logger.info(f"Signup pending verification for {email}")
    return jsonify({
        'message': 'Verification code sent to your email',
        'email': email,
        'requires_verification': True,
    })


@auth_bp.route('/verify-otp', methods=['POST'])
def verify_otp():
    form = OTPForm()
    _validate(form)

    pending = PendingUser.find_valid(form.email.data)
    if pending is None:
        raise ValidationError('Invalid or expired verification request. Please sign up again.')
    if pending.attempts >= app.config['OTP_MAX_ATTEMPTS']:
        db.session.delete(pending)
        db.session.commit()
        raise ValidationError('Too many attempts. Please sign up again.')
    if not pending.verify_otp(form.otp.data.strip()):
        pending.attempts += 1
        db.session.commit()
        raise ValidationError('Invalid verification code')
    if User.query.filter_by(email=pending.email).first():
        raise ValidationError('User already exists')

    user = pending.to_user()
    db.session.add(user)
    db.session.flush()

    if user.role == 'provider' and pending.company_name:
        db.session.add(Company(
            name=pending.company_name,
            description=pending.company_description,
            email=user.email,
            phone=user.phone,
            owner_id=user.id,
            is_verified=True,
            service_type=pending.company_service_type or 'General',
            logo=pending.company_logo,
        ))

    db.session.delete(pending)
    db.session.commit()
    logger.info(f"User {user.id} ({user.role}) verified and created")
    return _login_response(user)


@auth_bp.route('/resend-otp', methods=['POST'])
def resend_otp():
    form = EmailForm()
    _validate(form)

    pending = PendingUser.find_valid(form.email.data)
    if pending is None:
        raise ValidationError('No pending registration found. Please sign up again.')

    otp = generate_otp()
    pending.set_otp(otp)
    db.session.commit()

    if not send_otp_email(pending.email, otp, pending.name):
        return jsonify({'message': 'Failed to send email'}), 500
    return jsonify({'message': 'Verification code resent'})


# =========================
# 🔑 Login / Logout
# =========================
@auth_bp.route('/login', methods=['POST'])
def login():
    form = LoginForm()
    _validate(form)

    user = User.query.filter_by(email=form.email.data.strip().lower()).first()
    if user is None:
        raise AppError('Invalid credentials', 401)

    if not user.is_active:
        if user.lift_expired_ban():
            db.session.commit()
            logger.info(f"Expired ban lifted for user {user.id}")
        else:
            if user.banned_expires_at:
                message = (
                    f"Account suspended until {user.banned_expires_at.strftime('%Y-%m-%d')}. "
                    f"Reason: {user.deactivation_reason or 'Admin Action'}"
                )
            else:
                message = 'Account is deactivated. Contact support.'
            raise AppError(message, 403)

    if not user.check_password(form.password.data):
        logger.warning(f"Failed login for {user.email}")
        raise AppError('Invalid credentials', 401)

    Session.invalidate_device(user.id, request.headers.get('User-Agent'))
    logger.info(f"User {user.id} logged in")
    return _login_response(user)


@auth_bp.route('/logout', methods=['POST'])
def logout():
    token = token_from_request()
    if token:
        Session.invalidate(token)
        db.session.commit()
    response = jsonify({'message': 'Logged out successfully'})
    return _clear_auth_cookies(response)


@auth_bp.route('/logout-all', methods=['POST'])
@login_required
def logout_all():
    Session.query.filter_by(user_id=current_user.id).delete(synchronize_session=False)
    db.session.commit()
    logger.info(f"User {current_user.id} logged out from all devices")
    response = jsonify({'message': 'Logged out from all devices successfully'})
    return _clear_auth_cookies(response)


# =========================
# 👤 Profile
# =========================
@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify(user_to_dict(current_user))


@auth_bp.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    form = ProfileForm()
    _validate(form)
    data = request_data()
    user = current_user

    if form.email.data:
        email = form.email.data.strip().lower()
        if email != user.email and User.query.filter_by(email=email).first():
            raise ValidationError('Email already in use')
        user.email = email

    for field in ('name', 'phone', 'city', 'state', 'avatar'):
        if data.get(field):
            setattr(user, field, getattr(form, field).data)

    if form.current_password.data and form.new_password.data:
        if not user.check_password(form.current_password.data):
            raise ValidationError('Current password is incorrect')
        user.set_password(form.new_password.data)

    db.session.commit()
    return jsonify(user_to_dict(user))


# =========================
# 🔁 Password Reset
# =========================
@auth_bp.route('/forgot-password', methods=['POST'])
def forgot_password():
    form = EmailForm()
    _validate(form)

    email = form.email.data.strip().lower()
    user = User.query.filter_by(email=email).first()
    if user is None:
        raise NotFoundError('No account found with this email address.')

    otp = generate_otp()
    OTP.issue(email, otp, user.name, purpose='password-reset')
    db.session.commit()
    send_otp_email(email, otp, user.name)

    return jsonify({'message': 'If the email exists, a verification code has been sent.'})


@auth_bp.route('/verify-reset-otp', methods=['POST'])
def verify_reset_otp():
    form = OTPForm()
    _validate(form)

    entry = OTP.find_valid(form.email.data, 'password-reset')
    if entry is None:
        raise ValidationError('Invalid or expired verification code')

    if entry.attempts >= app.config['OTP_MAX_ATTEMPTS']:
        db.session.delete(entry)
        db.session.commit()
        raise ValidationError('Too many attempts. Request a new code.')

    if not entry.verify(form.otp.data.strip()):
        entry.attempts += 1
        db.session.commit()
        raise ValidationError('Invalid verification code')

    user = User.query.filter_by(email=entry.email).first()
    if user is None:
        raise ValidationError('User not found')

    reset_token = create_reset_token(user)
    db.session.delete(entry)
    db.session.commit()
    return jsonify({'message': 'OTP verified successfully', 'reset_token': reset_token})


@auth_bp.route('/reset-password', methods=['POST'])
@auth_bp.route('/reset-password/<token>', methods=['POST'])
def reset_password(token=None):
    form = ResetPasswordForm()
    _validate(form)

    token = token or form.reset_token.data
    if not token:
        raise ValidationError('Token and a valid new password (min 6 chars) are required')

    payload = decode_reset_token(token)
    user = db.session.get(User, payload.get('id'))
    if user is None:
        raise NotFoundError('User not found')

    user.set_password(form.new_password.data)
    Session.query.filter_by(user_id=user.id).delete(synchronize_session=False)
    db.session.commit()
    logger.info(f"Password reset for user {user.id}")
    return jsonify({'message': 'Password reset successful. Please login with your new password.'})
