import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from sqlalchemy import func

from extensions import db
from errors import AppError, ForbiddenError, NotFoundError, ValidationError, form_error_message
from models.models import Service, Company, Rating, MODERATOR_ROLES
from notifications import broadcast, send_service_removed_email
from routes.forms import ServiceForm, ServiceUpdateForm, RatingForm
from routes.upload_routes import save_image, delete_image, IMAGE_MAX_BYTES
from security import roles_required, escape_like
from utils import paginate, request_data, is_truthy, service_to_dict, format_date

logger = logging.getLogger(__name__)

service_bp = Blueprint('services', __name__, url_prefix='/api/services')

SERVICE_FIELDS = ('name', 'description', 'price', 'price_type', 'location', 'state', 'city', 'category', 'duration')


def _average_rating_column():
    return (
        db.select(func.coalesce(func.avg(Rating.value), 0))
        .where(Rating.service_id == Service.id)
        .correlate(Service)
        .scalar_subquery()
    )


def _get_service(service_id):
    return db.get_or_404(Service, service_id, description='Service not found')


# ---------------------------
# Public catalog
# ---------------------------
@service_bp.route('', methods=['GET'])
def list_services():
    args = request.args
    query = Service.query.filter(Service.is_active.is_(True))

    for field in ('state', 'city', 'category'):
        if args.get(field):
            query = query.filter(getattr(Service, field) == args[field])
    if args.get('company', type=int):
        query = query.filter(Service.company_id == args.get('company', type=int))
    if args.get('min_price', type=float) is not None:
        query = query.filter(Service.price >= args.get('min_price', type=float))
    if args.get('max_price', type=float) is not None:
        query = query.filter(Service.price <= args.get('max_price', type=float))

    average = _average_rating_column()
    if args.get('min_rating', type=float) is not None:
        query = query.filter(average >= args.get('min_rating', type=float))

    search = args.get('search', '').strip()
    if search:
        pattern = f"%{escape_like(search)}%"
        query = query.filter(
            Service.name.ilike(pattern, escape='\\')
            | Service.description.ilike(pattern, escape='\\')
            | Service.location.ilike(pattern, escape='\\')
        )

    sort = args.get('sort_by', 'newest')
    if sort == 'price-asc':
        query = query.order_by(Service.price.asc())
    elif sort == 'price-desc':
        query = query.order_by(Service.price.desc())
    elif sort == 'rating':
        query = query.order_by(average.desc(), Service.created_at.desc())
    else:
        query = query.order_by(Service.created_at.desc())

    services, meta = paginate(query, 12)
    return jsonify({'services': [service_to_dict(s) for s in services], **meta})


@service_bp.route('/featured', methods=['GET'])
def featured_services():
    services = (
        Service.query.filter(Service.is_active.is_(True))
        .order_by(_average_rating_column().desc(), Service.created_at.desc())
        .limit(6)
        .all()
    )
    return jsonify([service_to_dict(s) for s in services])


@service_bp.route('/locations', methods=['GET'])
def list_locations():
    rows = (
        db.session.query(Service.location)
        .filter(Service.is_active.is_(True), Service.location.isnot(None), Service.location != '')
        .distinct()
        .order_by(Service.location)
        .all()
    )
    return jsonify([row[0] for row in rows])


@service_bp.route('/my-reviews', methods=['GET'])
@login_required
def my_reviews():
    ratings = (
        Rating.query.filter_by(user_id=current_user.id)
        .order_by(Rating.created_at.desc())
        .all()
    )
    reviews = []
    for rating in ratings:
        service = rating.service
        reviews.append({
            'service_id': service.id,
            'service_name': service.name,
            'company': {'id': service.company.id, 'name': service.company.name, 'logo': service.company.logo}
            if service.company else None,
            'value': rating.value,
            'review': rating.review,
            'created_at': format_date(rating.created_at),
        })
    return jsonify(reviews)


@service_bp.route('/<int:service_id>', methods=['GET'])
def get_service(service_id):
    service = db.session.get(Service, service_id)
    if service is None or not service.is_active:
        raise NotFoundError('Service not found')
    return jsonify(service_to_dict(service, include_ratings=True))


# ---------------------------
# Provider / moderator management
# ---------------------------
@service_bp.route('', methods=['POST'])
@roles_required('provider', 'admin', 'superuser')
def create_service():
    form = ServiceForm()
    if not form.validate():
        raise ValidationError(form_error_message(form))

    if current_user.role == 'provider':
        company = Company.query.filter_by(owner_id=current_user.id).first()
        if company is None:
            raise ValidationError('Please create a company profile first')
    elif form.company.data:
        company = db.get_or_404(Company, form.company.data, description='Company not found')
    else:
        company = None

    service = Service(
        name=form.name.data,
        description=form.description.data,
        price=form.price.data,
        price_type=form.price_type.data or 'fixed',
        category=form.category.data or 'other',
        location=form.location.data,
        state=form.state.data,
        city=form.city.data,
        duration=form.duration.data,
        company_id=company.id if company else None,
        created_by_id=current_user.id,
    )
    db.session.add(service)
    db.session.commit()

    logger.info(f"Service {service.id} created by user {current_user.id}")
    broadcast('service:created', {'service_id': service.id, 'name': service.name})
    return jsonify(service_to_dict(service)), 201


@service_bp.route('/<int:service_id>/image', methods=['POST'])
@login_required
def upload_service_image(service_id):
    service = _get_service(service_id)
    if service.created_by_id != current_user.id and current_user.role not in MODERATOR_ROLES:
        raise ForbiddenError('Not authorized')

    file = request.files.get('image')
    if file is None:
        raise ValidationError('Please upload an image')
    stored = save_image(file, 'services', IMAGE_MAX_BYTES)

    if service.image_public_id:
        delete_image(service.image_public_id)
    service.image = stored['url']
    service.image_public_id = stored['public_id']
    db.session.commit()

    return jsonify({'image': service.image, 'message': 'Image uploaded successfully'})


@service_bp.route('/<int:service_id>', methods=['PUT'])
@login_required
def update_service(service_id):
    service = _get_service(service_id)

    # Moderators may delete but never edit someone else's listing
    if service.created_by_id != current_user.id:
        if current_user.role in MODERATOR_ROLES:
            raise ForbiddenError('Admins are not authorized to edit services. Only deletions are allowed.')
        raise ForbiddenError('Not authorized')

    form = ServiceUpdateForm()
    if not form.validate():
        raise ValidationError(form_error_message(form))

    data = request_data()
    for field in SERVICE_FIELDS:
        if field in data and data[field] is not None:
            setattr(service, field, getattr(form, field).data)
    if 'is_active' in data:
        service.is_active = is_truthy(data['is_active'])
    db.session.commit()

    broadcast('service:updated', {'service_id': service.id, 'name': service.name})
    return jsonify(service_to_dict(service))


@service_bp.route('/<int:service_id>', methods=['DELETE'])
@login_required
def delete_service(service_id):
    service = _get_service(service_id)
    is_owner = service.created_by_id == current_user.id
    if not is_owner and current_user.role not in MODERATOR_ROLES:
        raise ForbiddenError('Not authorized')

    soft = is_truthy(request.args.get('soft'))
    force = is_truthy(request.args.get('force'))

    # Captured up front, the row may be gone by the time the email goes out
    creator = None if is_owner else service.creator
    notice = (creator.email, creator.name, service.name) if creator is not None else None

    def notify_creator(action):
        if notice is None:
            return
        email, name, service_name = notice
        reason = request.args.get('reason') or 'Violation of terms of service'
        send_service_removed_email(email, service_name, action, reason, name)

    if soft:
        Service.soft_delete(service.id)
        notify_creator('suspended')
        logger.info(f"Service {service.id} deactivated by user {current_user.id}")
        broadcast('service:updated', {'service_id': service.id, 'name': service.name})
        return jsonify({'message': 'Service deactivated successfully'})

    check = Service.can_delete(service.id)
    image_public_id = service.image_public_id

    if not check['can_delete']:
        if not force:
            raise AppError(check['message'], 400, {
                'options': {
                    'soft_delete': '?soft=true to deactivate',
                    'force_delete': '?force=true to force delete',
                },
            })
        Service.force_delete(service)
        delete_image(image_public_id)
        notify_creator('deleted')
        logger.info(f"Service {service_id} force deleted by user {current_user.id}")
        broadcast('service:deleted', {'service_id': service_id})
        return jsonify({
            'message': 'Service force deleted',
            'affected_complaints': check['active_complaints_count'],
        })

    service.delete()
    delete_image(image_public_id)
    notify_creator('deleted')
    logger.info(f"Service {service_id} deleted by user {current_user.id}")
    broadcast('service:deleted', {'service_id': service_id})
    return jsonify({'message': 'Service removed successfully'})


@service_bp.route('/<int:service_id>/rate', methods=['POST'])
@login_required
def rate_service(service_id):
    form = RatingForm()
    if not form.validate():
        raise ValidationError(form_error_message(form))

    service = db.session.get(Service, service_id)
    if service is None or not service.is_active:
        raise NotFoundError('Service not found')

    service.rate(current_user, form.value.data, form.review.data or None)
    db.session.commit()
    return jsonify(service_to_dict(service, include_ratings=True))
