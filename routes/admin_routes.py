from flask import Blueprint, jsonify
from flask_login import current_user
from sqlalchemy import func

from extensions import db, login_manager
from errors import ForbiddenError
from models.models import User, Service, Company, Complaint, Booking, MODERATOR_ROLES
from utils import format_date

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


# --- Helpers ---
def is_admin():
    return current_user.is_authenticated and current_user.role in MODERATOR_ROLES


@admin_bp.before_request
def restrict_to_admin():
    if not current_user.is_authenticated:
        return login_manager.unauthorized()
    if not is_admin():
        raise ForbiddenError(f"Role '{current_user.role}' is not authorized to access this route")


def recent_activity(limit=10):
    """Latest bookings, complaints, signups and companies merged into one feed."""
    activities = []
    for b in Booking.query.order_by(Booking.created_at.desc()).limit(5):
        activities.append({
            'id': b.id,
            'user': b.user.name if b.user else 'Unknown User',
            'action': f"Booked {b.service.name if b.service else 'a service'}",
            'time': b.created_at,
            'type': 'booking',
        })
    for c in Complaint.query.order_by(Complaint.created_at.desc()).limit(5):
        activities.append({
            'id': c.id,
            'user': c.user.name if c.user else 'Unknown User',
            'action': f"Reported an issue: {c.subject}",
            'time': c.created_at,
            'type': 'complaint',
        })
    for u in User.query.filter_by(role='user').order_by(User.created_at.desc()).limit(5):
        activities.append({
            'id': u.id,
            'user': u.name,
            'action': 'Joined the platform',
            'time': u.created_at,
            'type': 'user_signup',
        })
    for co in Company.query.order_by(Company.created_at.desc()).limit(5):
        activities.append({
            'id': co.id,
            'user': co.name,
            'action': 'Registered a new company',
            'time': co.created_at,
            'type': 'company_registered',
        })

    activities.sort(key=lambda a: a['time'], reverse=True)
    for item in activities:
        item['time'] = format_date(item['time'])
    return activities[:limit]


def get_stats():
    """Return the dashboard counters."""
    customers = User.query.filter_by(role='user').count()
    providers = User.query.filter_by(role='provider').count()
    revenue = (
        db.session.query(func.coalesce(func.sum(Service.price), 0))
        .select_from(Booking)
        .join(Service, Booking.service_id == Service.id)
        .filter(Booking.status == 'completed')
        .scalar()
    )
    return {
        'users': {'total': customers + providers, 'customers': customers, 'providers': providers},
        'services': {'total': Service.query.count()},
        'companies': {'total': Company.query.count()},
        'complaints': {
            'total': Complaint.query.count(),
            'pending': Complaint.query.filter_by(status='pending').count(),
        },
        'bookings': {'total': Booking.query.count()},
        'revenue': {'total': float(revenue or 0)},
        'recent_activity': recent_activity(),
    }


# --- Dashboard ---
@admin_bp.route('/stats', methods=['GET'])
def dashboard_stats():
    return jsonify({'success': True, 'data': get_stats()})
