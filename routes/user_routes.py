import logging
from datetime import timedelta

from flask import Blueprint, jsonify, request
from flask_login import current_user

from extensions import db
from errors import AppError, ForbiddenError, ValidationError, form_error_message
from models.models import User, MODERATOR_ROLES, utcnow
from routes.forms import UserRoleForm, DeactivateForm
from security import roles_required
from utils import is_truthy, user_to_dict

logger = logging.getLogger(__name__)

user_bp = Blueprint('users', __name__, url_prefix='/api/users')


def _get_user(user_id):
    return db.get_or_404(User, user_id, description='User not found')


@user_bp.route('', methods=['GET'])
@roles_required('admin', 'superuser')
def list_users():
    query = User.query
    if not is_truthy(request.args.get('include_inactive')):
        query = query.filter(User.is_active.is_(True))
    users = query.order_by(User.created_at.desc()).all()
    return jsonify([user_to_dict(u, admin_view=True) for u in users])


@user_bp.route('/<int:user_id>', methods=['GET'])
@roles_required('admin', 'superuser')
def get_user(user_id):
    return jsonify(user_to_dict(_get_user(user_id), admin_view=True))


@user_bp.route('/<int:user_id>', methods=['PUT'])
@roles_required('superuser')
def update_user_role(user_id):
    form = UserRoleForm()
    if not form.validate():
        raise ValidationError(form_error_message(form))

    user = _get_user(user_id)
    if user.id == current_user.id:
        raise ValidationError('Cannot change your own role')
    user.role = form.role.data
    db.session.commit()

    logger.info(f"User {user.id} role set to {user.role} by superuser {current_user.id}")
    return jsonify(user_to_dict(user, admin_view=True))


@user_bp.route('/<int:user_id>/deactivate', methods=['PUT'])
@roles_required('admin', 'superuser')
def deactivate_user(user_id):
    form = DeactivateForm()
    if not form.validate():
        raise ValidationError(form_error_message(form))

    user = _get_user(user_id)
    if user.id == current_user.id:
        raise ValidationError('Cannot deactivate yourself')
    if user.role in MODERATOR_ROLES and current_user.role != 'superuser':
        raise ForbiddenError('Only a superuser can deactivate administrators')
    if not user.is_active:
        raise ValidationError('User is already deactivated')

    until = utcnow() + timedelta(days=form.days.data) if form.days.data else None
    User.soft_delete(user.id, form.reason.data or 'Account deactivated by admin', until)

    logger.info(f"User {user.id} deactivated by {current_user.id} until {until or 'further notice'}")
    return jsonify({'message': 'User deactivated successfully', 'user': user_to_dict(user, admin_view=True)})


@user_bp.route('/<int:user_id>/reactivate', methods=['PUT'])
@roles_required('superuser')
def reactivate_user(user_id):
    user = _get_user(user_id)
    if user.is_active:
        raise ValidationError('User is already active')

    user.is_active = True
    user.deactivated_at = None
    user.deactivation_reason = None
    user.banned_expires_at = None
    db.session.commit()

    logger.info(f"User {user.id} reactivated by superuser {current_user.id}")
    return jsonify({'message': 'User reactivated successfully', 'user': user_to_dict(user, admin_view=True)})


@user_bp.route('/<int:user_id>', methods=['DELETE'])
@roles_required('superuser')
def delete_user(user_id):
    user = _get_user(user_id)
    if user.id == current_user.id:
        raise ValidationError('Cannot delete yourself')

    if is_truthy(request.args.get('soft')):
        User.soft_delete(user.id, request.args.get('reason') or 'Account deactivated by admin')
        logger.info(f"User {user_id} soft deleted by superuser {current_user.id}")
        return jsonify({
            'message': 'User account has been deactivated (soft deleted). Active complaints preserved.',
        })

    check = User.can_delete(user.id)
    if not check['can_delete']:
        if is_truthy(request.args.get('force')):
            User.force_delete(user.id)
            logger.info(f"User {user_id} force deleted by superuser {current_user.id}")
            return jsonify({
                'message': 'User force deleted. Active complaints were closed and kept for records.',
                'affected_complaints': check['active_complaints_count'],
            })
        raise AppError(check['message'], 400, {
            'active_complaints': check['active_complaints_count'],
            'options': {
                'soft_delete': 'Add ?soft=true to deactivate the user instead of deleting',
                'force_delete': 'Add ?force=true to delete anyway and close their complaints',
            },
        })

    user.delete()
    logger.info(f"User {user_id} deleted by superuser {current_user.id}")
    return jsonify({'message': 'User removed successfully'})
