from flask import Blueprint, jsonify
from flask_login import login_required, current_user

from extensions import db
from errors import NotFoundError, ValidationError, form_error_message
from models.models import Bookmark
from routes.forms import BookmarkForm
from utils import bookmark_to_dict

bookmark_bp = Blueprint('bookmarks', __name__, url_prefix='/api/bookmarks')


@bookmark_bp.route('', methods=['POST'])
@login_required
def add_bookmark():
    form = BookmarkForm()
    if not form.validate():
        raise ValidationError(form_error_message(form))

    bookmark = Bookmark.add(current_user, form.service_id.data)
    db.session.commit()
    return jsonify(bookmark_to_dict(bookmark)), 201


@bookmark_bp.route('', methods=['GET'])
@login_required
def list_bookmarks():
    bookmarks = (
        Bookmark.query.filter_by(user_id=current_user.id)
        .order_by(Bookmark.created_at.desc())
        .all()
    )
    return jsonify([bookmark_to_dict(b) for b in bookmarks])


@bookmark_bp.route('/check/<int:service_id>', methods=['GET'])
@login_required
def check_bookmark(service_id):
    exists = Bookmark.query.filter_by(user_id=current_user.id, service_id=service_id).first() is not None
    return jsonify({'is_bookmarked': exists})


@bookmark_bp.route('/<int:service_id>', methods=['DELETE'])
@login_required
def remove_bookmark(service_id):
    bookmark = Bookmark.query.filter_by(user_id=current_user.id, service_id=service_id).first()
    if bookmark is None:
        raise NotFoundError('Bookmark not found')
    db.session.delete(bookmark)
    db.session.commit()
    return jsonify({'message': 'Bookmark removed'})
