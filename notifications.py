"""
Notifications
-------------
Socket.IO pushes to user rooms and plain-text email through Flask-Mail.
Every call here is fire-and-forget: a failed push or email is logged and
never interrupts the request that triggered it.
"""

import logging
import smtplib

from flask import current_app
from flask_mail import Message

from extensions import mail, socketio

logger = logging.getLogger(__name__)

ADMINS_ROOM = 'admins'


def notify_user(user_id, event, payload):
    if user_id is None:
        return
    socketio.emit(event, payload, to=str(user_id))


def notify_admins(event, payload):
    socketio.emit(event, payload, to=ADMINS_ROOM)


def broadcast(event, payload):
    socketio.emit(event, payload)


def send_email(to, subject, body):
    """Send a plain-text email. Returns True when handed to the mail server."""
    try:
        msg = Message(subject=subject, recipients=[to], body=body)
        mail.send(msg)
        logger.info(f"Email '{subject}' sent to {to}")
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Email '{subject}' to {to} failed: {e}", exc_info=True)
        return False


def send_otp_email(email, otp, name='User'):
    ttl = current_app.config.get('OTP_TTL_MINUTES', 10)
    body = (
        f"Hello {name},\n\n"
        f"Your Phantom Agency verification code is: {otp}\n\n"
        f"It expires in {ttl} minutes. If you did not request it, ignore this email."
    )
    return send_email(email, 'Verification Code - Phantom Agency', body)


def send_complaint_status_email(email, complaint, name='User'):
    status_text = complaint.status.replace('-', ' ').upper()
    lines = [
        f"Hello {name},",
        '',
        f"Your complaint \"{complaint.subject}\" is now: {status_text}",
    ]
    if complaint.admin_response:
        lines += ['', f"Admin response: {complaint.admin_response}"]
    if complaint.service_provider_response:
        lines += ['', f"Provider response: {complaint.service_provider_response}"]
    return send_email(email, f"Complaint Update: {status_text} - Phantom Agency", '\n'.join(lines))


def send_service_removed_email(email, service_name, action, reason=None, name='Provider'):
    lines = [
        f"Hello {name},",
        '',
        f"Your service \"{service_name}\" was {action} by a moderator.",
    ]
    if reason:
        lines += ['', f"Reason: {reason}"]
    support = current_app.config.get('SUPPORT_EMAIL')
    lines += ['', f"Questions? Contact {support}."]
    return send_email(email, f"Service {action.title()} - Phantom Agency", '\n'.join(lines))
