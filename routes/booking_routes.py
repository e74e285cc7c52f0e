import logging

from flask import Blueprint, jsonify
from flask_login import login_required, current_user

from extensions import db
from errors import AppError, ForbiddenError, NotFoundError, ValidationError, form_error_message
from models.models import Booking, Company, Service
from notifications import notify_user
from routes.forms import BookingForm, BookingStatusForm
from security import roles_required
from utils import booking_to_dict

logger = logging.getLogger(__name__)

booking_bp = Blueprint('bookings', __name__, url_prefix='/api/bookings')


@booking_bp.route('', methods=['POST'])
@login_required
def create_booking():
    form = BookingForm()
    if not form.validate():
        raise ValidationError(form_error_message(form))

    service = db.session.get(Service, form.service.data)
    if service is None or not service.is_active:
        raise NotFoundError('Service not found')
    if service.company is None:
        raise ValidationError('This service is not offered by any company')

    # Company always follows the service, never the client
    booking = Booking(
        user_id=current_user.id,
        service_id=service.id,
        company_id=service.company_id,
        date=form.date.data,
        notes=form.notes.data or None,
        address=form.address.data or current_user.city,
    )
    db.session.add(booking)
    db.session.commit()

    logger.info(f"Booking {booking.id} created by user {current_user.id} for service {service.id}")
    notify_user(service.company.owner_id, 'booking:new', booking_to_dict(booking, hide_contact=True))
    return jsonify(booking_to_dict(booking)), 201


@booking_bp.route('/my-bookings', methods=['GET'])
@login_required
def my_bookings():
    bookings = (
        Booking.query.filter_by(user_id=current_user.id)
        .order_by(Booking.created_at.desc())
        .all()
    )
    return jsonify([booking_to_dict(b) for b in bookings])


@booking_bp.route('/company-bookings', methods=['GET'])
@roles_required('provider')
def company_bookings():
    company = Company.query.filter_by(owner_id=current_user.id).first()
    if company is None:
        raise NotFoundError('Company not found')

    bookings = Booking.query.filter_by(company_id=company.id).order_by(Booking.date.asc()).all()
    # Contact details stay private until the provider accepts
    return jsonify([booking_to_dict(b, hide_contact=b.status == 'pending') for b in bookings])


@booking_bp.route('/<int:booking_id>', methods=['PUT'])
@login_required
def update_booking_status(booking_id):
    form = BookingStatusForm()
    if not form.validate():
        raise ValidationError(form_error_message(form))

    booking = db.get_or_404(Booking, booking_id, description='Booking not found')
    new_status = form.status.data

    company = booking.company
    as_provider = (
        current_user.role == 'provider'
        and company is not None
        and company.owner_id == current_user.id
    )
    if not as_provider and booking.user_id != current_user.id:
        raise ForbiddenError('Not authorized')

    if not booking.can_transition(new_status, as_provider):
        raise AppError(f"Cannot change booking from {booking.status} to {new_status}", 400)

    old_status = booking.status
    booking.status = new_status
    db.session.commit()

    logger.info(f"Booking {booking.id}: {old_status} -> {new_status} by user {current_user.id}")
    payload = {'booking_id': booking.id, 'status': booking.status}
    if as_provider:
        notify_user(booking.user_id, 'booking:updated', payload)
    elif company is not None:
        notify_user(company.owner_id, 'booking:updated', payload)
    return jsonify(booking_to_dict(booking))
