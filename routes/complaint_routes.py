import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from sqlalchemy import func

from extensions import db
from errors import AppError, ForbiddenError, NotFoundError, ValidationError, form_error_message
from models.models import Booking, Complaint, Service, MODERATOR_ROLES, COMPLAINT_TRANSITIONS, utcnow
from notifications import notify_user, notify_admins, send_complaint_status_email
from routes.forms import ComplaintForm, ComplaintResponseForm, ComplaintStatusForm
from routes.upload_routes import save_image, delete_image, IMAGE_MAX_BYTES, MAX_COMPLAINT_IMAGES
from security import roles_required
from utils import complaint_to_dict, paginate, request_data, is_truthy

logger = logging.getLogger(__name__)

complaint_bp = Blueprint('complaints', __name__, url_prefix='/api/complaints')

PROVIDER_VISIBLE_STATUSES = ('pending', 'in-progress', 'awaiting-confirmation')


def _get_complaint(complaint_id):
    return db.get_or_404(Complaint, complaint_id, description='Complaint not found')


def _announce_update(complaint, email=True):
    payload = complaint_to_dict(complaint)
    notify_user(complaint.user_id, 'complaint:updated', payload)
    notify_user(complaint.service_owner_id, 'complaint:updated', payload)
    if email and complaint.user is not None:
        send_complaint_status_email(complaint.user.email, complaint, complaint.user.name)


@complaint_bp.route('', methods=['POST'])
@login_required
def create_complaint():
    form = ComplaintForm()
    if not form.validate():
        raise ValidationError(form_error_message(form))

    files = [f for f in request.files.getlist('images') if f and f.filename]
    if len(files) > MAX_COMPLAINT_IMAGES:
        raise ValidationError(f"You can attach at most {MAX_COMPLAINT_IMAGES} images")

    booking = db.session.get(Booking, form.booking.data)
    if booking is None:
        raise NotFoundError('Booking not found')
    if booking.user_id != current_user.id:
        raise ForbiddenError('Not authorized')
    if booking.status not in ('accepted', 'completed'):
        raise ValidationError('You can only file complaints for accepted or completed bookings')
    if booking.service is None or not booking.service.is_active:
        raise NotFoundError('Service not found or inactive')

    images = []
    try:
        for file in files:
            images.append(save_image(file, 'complaints', IMAGE_MAX_BYTES))
        complaint = Complaint.file(
            current_user, booking,
            subject=form.subject.data,
            message=form.message.data,
            images=images,
        )
        db.session.commit()
    except AppError:
        db.session.rollback()
        for image in images:
            delete_image(image['public_id'])
        raise

    logger.info(f"Complaint {complaint.id} filed by user {current_user.id} on booking {booking.id}")
    payload = {'complaint_id': complaint.id, 'user_name': current_user.name, 'subject': complaint.subject}
    notify_user(complaint.service_owner_id, 'complaint:new', payload)
    notify_admins('complaint:new', payload)
    return jsonify(complaint_to_dict(complaint)), 201


@complaint_bp.route('/me', methods=['GET'])
@login_required
def my_complaints():
    complaints = (
        Complaint.query.filter_by(user_id=current_user.id)
        .order_by(Complaint.created_at.desc())
        .all()
    )
    return jsonify([complaint_to_dict(c) for c in complaints])


@complaint_bp.route('/my-services', methods=['GET'])
@roles_required('provider', 'admin', 'superuser')
def service_complaints():
    service_ids = [s.id for s in Service.query.with_entities(Service.id).filter_by(created_by_id=current_user.id)]
    if not service_ids:
        return jsonify([])

    complaints = (
        Complaint.query.filter(
            Complaint.service_id.in_(service_ids),
            Complaint.status.in_(PROVIDER_VISIBLE_STATUSES),
        )
        .order_by(Complaint.created_at.desc())
        .all()
    )
    return jsonify([complaint_to_dict(c) for c in complaints])


@complaint_bp.route('/<int:complaint_id>/respond', methods=['PUT'])
@login_required
def respond_to_complaint(complaint_id):
    complaint = _get_complaint(complaint_id)
    if complaint.service_owner_id != current_user.id and current_user.role not in MODERATOR_ROLES:
        raise ForbiddenError('Not authorized')
    if not COMPLAINT_TRANSITIONS.get(complaint.status):
        raise ValidationError('This complaint is already closed')

    form = ComplaintResponseForm()
    if not form.validate():
        raise ValidationError(form_error_message(form))

    complaint.service_provider_response = form.response.data.strip()
    complaint.service_provider_responded_at = utcnow()
    if is_truthy(request_data().get('mark_resolved')):
        complaint.move_to('awaiting-confirmation', current_user)
    elif complaint.status == 'pending':
        complaint.move_to('in-progress', current_user)
    db.session.commit()

    logger.info(f"Complaint {complaint.id} answered by user {current_user.id}, now {complaint.status}")
    _announce_update(complaint)
    return jsonify(complaint_to_dict(complaint))


@complaint_bp.route('/<int:complaint_id>/confirm', methods=['PUT'])
@login_required
def confirm_resolution(complaint_id):
    complaint = _get_complaint(complaint_id)
    if complaint.user_id != current_user.id:
        raise ForbiddenError('Not authorized')
    if complaint.status != 'awaiting-confirmation':
        raise ValidationError('This complaint is not awaiting your confirmation')

    if is_truthy(request_data().get('confirmed', True)):
        complaint.move_to('resolved', current_user)
    else:
        complaint.move_to('in-progress', current_user)
    db.session.commit()

    logger.info(f"Complaint {complaint.id} {complaint.status} after customer confirmation")
    _announce_update(complaint, email=False)
    return jsonify(complaint_to_dict(complaint))


@complaint_bp.route('', methods=['GET'])
@roles_required('admin', 'superuser')
def list_complaints():
    query = Complaint.query
    status = request.args.get('status')
    if status:
        query = query.filter(Complaint.status == status)
    complaints, meta = paginate(query.order_by(Complaint.created_at.desc()), 20)
    return jsonify({'complaints': [complaint_to_dict(c) for c in complaints], **meta})


@complaint_bp.route('/stats', methods=['GET'])
@roles_required('admin', 'superuser')
def complaint_stats():
    rows = db.session.query(Complaint.status, func.count(Complaint.id)).group_by(Complaint.status).all()
    by_status = [{'status': status, 'count': count} for status, count in rows]
    total = sum(item['count'] for item in by_status)
    resolved = next((item['count'] for item in by_status if item['status'] == 'resolved'), 0)

    durations = [
        (c.resolved_at - c.created_at).total_seconds()
        for c in Complaint.query.filter(Complaint.status == 'resolved', Complaint.resolved_at.isnot(None))
        if c.created_at
    ]
    avg_hours = round(sum(durations) / len(durations) / 3600) if durations else 0

    return jsonify({
        'total': total,
        'by_status': by_status,
        'resolution_rate': f"{resolved / total * 100:.1f}%" if total else '0%',
        'avg_resolution_hours': avg_hours,
    })


@complaint_bp.route('/<int:complaint_id>', methods=['PUT'])
@roles_required('admin', 'superuser')
def update_complaint_status(complaint_id):
    form = ComplaintStatusForm()
    if not form.validate():
        raise ValidationError(form_error_message(form))

    complaint = _get_complaint(complaint_id)
    changed = complaint.move_to(form.status.data, current_user)
    if form.admin_response.data:
        complaint.admin_response = form.admin_response.data.strip()
    db.session.commit()

    logger.info(f"Complaint {complaint.id} set to {complaint.status} by admin {current_user.id}")
    if changed:
        _announce_update(complaint)
    return jsonify(complaint_to_dict(complaint))


@complaint_bp.route('/<int:complaint_id>', methods=['DELETE'])
@roles_required('superuser')
def delete_complaint(complaint_id):
    complaint = _get_complaint(complaint_id)
    if complaint.status == 'in-progress' and not is_truthy(request.args.get('force')):
        raise ValidationError('Cannot delete in-progress complaint. Add ?force=true')

    for image in complaint.images or []:
        delete_image(image.get('public_id'))
    db.session.delete(complaint)
    db.session.commit()

    logger.info(f"Complaint {complaint_id} deleted by superuser {current_user.id}")
    return jsonify({'message': 'Complaint removed'})
