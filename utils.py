from datetime import date, datetime

from flask import request

HIDDEN_CONTACT = 'Hidden (Accept to view)'


def format_date(d):
    if isinstance(d, (date, datetime)):
        return d.isoformat()
    elif isinstance(d, str):
        return d  # Already a string
    return None


def request_data():
    """Request body as a dict, whether it came in as JSON or as a form."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def is_truthy(value):
    return str(value).lower() in ('1', 'true', 'yes', 'on')


def paginate(query, default_limit):
    """Paginate ``query`` from ``?page=&limit=`` and return ``(items, meta)``."""
    page = max(request.args.get('page', 1, type=int) or 1, 1)
    limit = max(min(request.args.get('limit', default_limit, type=int) or default_limit, 100), 1)
    pagination = query.paginate(page=page, per_page=limit, error_out=False)
    meta = {
        'page': pagination.page,
        'pages': pagination.pages,
        'total': pagination.total,
    }
    return pagination.items, meta


def user_summary(user):
    if user is None:
        return None
    return {'id': user.id, 'name': user.name, 'email': user.email, 'avatar': user.avatar}


def user_to_dict(user, admin_view=False):
    data = {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'role': user.role,
        'phone': user.phone,
        'city': user.city,
        'state': user.state,
        'avatar': user.avatar,
        'company_id': user.company.id if user.company else None,
        'created_at': format_date(user.created_at),
    }
    if admin_view:
        data.update({
            'is_active': user.is_active,
            'deactivated_at': format_date(user.deactivated_at),
            'deactivation_reason': user.deactivation_reason,
            'banned_expires_at': format_date(user.banned_expires_at),
        })
    return data


def company_to_dict(company):
    return {
        'id': company.id,
        'name': company.name,
        'description': company.description,
        'logo': company.logo,
        'email': company.email,
        'phone': company.phone,
        'website': company.website,
        'service_type': company.service_type,
        'address': company.address,
        'social_links': company.social_links or {},
        'owner': user_summary(company.owner),
        'is_verified': company.is_verified,
        'is_active': company.is_active,
        'created_at': format_date(company.created_at),
    }


def rating_to_dict(rating):
    return {
        'id': rating.id,
        'user': {'id': rating.user.id, 'name': rating.user.name} if rating.user else None,
        'value': rating.value,
        'review': rating.review,
        'created_at': format_date(rating.created_at),
    }


def service_to_dict(service, include_ratings=False):
    company = service.company
    data = {
        'id': service.id,
        'name': service.name,
        'description': service.description,
        'price': service.price,
        'price_type': service.price_type,
        'location': service.location,
        'state': service.state,
        'city': service.city,
        'category': service.category,
        'image': service.image,
        'duration': service.duration,
        'is_active': service.is_active,
        'company': {
            'id': company.id,
            'name': company.name,
            'logo': company.logo,
            'is_verified': company.is_verified,
        } if company else None,
        'created_by': service.created_by_id,
        'average_rating': service.average_rating,
        'total_reviews': service.total_reviews,
        'created_at': format_date(service.created_at),
        'updated_at': format_date(service.updated_at),
    }
    if include_ratings:
        data['ratings'] = [rating_to_dict(r) for r in service.ratings]
    return data


def booking_to_dict(booking, hide_contact=False):
    user = booking.user
    service = booking.service
    customer = None
    if user is not None:
        customer = {
            'id': user.id,
            'name': user.name,
            'email': HIDDEN_CONTACT if hide_contact else user.email,
            'phone': HIDDEN_CONTACT if hide_contact else user.phone,
        }
    return {
        'id': booking.id,
        'status': booking.status,
        'date': format_date(booking.date),
        'notes': booking.notes,
        'address': HIDDEN_CONTACT if hide_contact else booking.address,
        'user': customer,
        'service': {
            'id': service.id,
            'name': service.name,
            'price': service.price,
            'image': service.image,
        } if service else None,
        'company': {'id': booking.company.id, 'name': booking.company.name} if booking.company else None,
        'created_at': format_date(booking.created_at),
        'updated_at': format_date(booking.updated_at),
    }


def complaint_to_dict(complaint):
    booking = complaint.booking
    return {
        'id': complaint.id,
        'subject': complaint.subject,
        'message': complaint.message,
        'images': complaint.images or [],
        'status': complaint.status,
        'user': user_summary(complaint.user),
        'booking': {
            'id': booking.id,
            'date': format_date(booking.date),
            'status': booking.status,
        } if booking else None,
        'service_id': complaint.service_id,
        'service_name': complaint.service_name,
        'service_snapshot': complaint.service_snapshot,
        'admin_response': complaint.admin_response,
        'service_provider_response': complaint.service_provider_response,
        'service_provider_responded_at': format_date(complaint.service_provider_responded_at),
        'has_response': complaint.has_response,
        'resolved_by': user_summary(complaint.resolved_by),
        'resolved_at': format_date(complaint.resolved_at),
        'created_at': format_date(complaint.created_at),
        'updated_at': format_date(complaint.updated_at),
    }


def bookmark_to_dict(bookmark):
    return {
        'id': bookmark.id,
        'service': service_to_dict(bookmark.service) if bookmark.service else None,
        'created_at': format_date(bookmark.created_at),
    }


def message_to_dict(msg):
    sender = msg.sender
    return {
        'id': msg.id,
        'sender': {'id': sender.id, 'name': sender.name, 'avatar': sender.avatar} if sender else None,
        'receiver_id': msg.receiver_id,
        'message': msg.message,
        'read': msg.read,
        'created_at': format_date(msg.created_at),
    }
