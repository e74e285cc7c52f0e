import os
import logging
import uuid

from flask import Blueprint, current_app as app, jsonify, request, send_from_directory
from werkzeug.utils import secure_filename

from errors import ValidationError

logger = logging.getLogger(__name__)

upload_bp = Blueprint('upload', __name__)

LOGO_MAX_BYTES = 2 * 1024 * 1024
IMAGE_MAX_BYTES = 5 * 1024 * 1024
MAX_COMPLAINT_IMAGES = 3


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in app.config['ALLOWED_EXTENSIONS']


def _file_size(file):
    stream = file.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def save_image(file, folder, max_bytes=IMAGE_MAX_BYTES):
    """Store an uploaded image under UPLOAD_FOLDER/<folder>/ and return ``{url, public_id}``."""
    if file is None or file.filename == '':
        raise ValidationError('No file uploaded')
    if not allowed_file(file.filename):
        raise ValidationError('Only image files are allowed (jpg, jpeg, png, webp)')
    if _file_size(file) > max_bytes:
        raise ValidationError(f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB")

    filename = f"{uuid.uuid4().hex}_{secure_filename(file.filename)}"
    target_dir = os.path.join(app.config['UPLOAD_FOLDER'], folder)
    os.makedirs(target_dir, exist_ok=True)
    file.save(os.path.join(target_dir, filename))

    public_id = f"{folder}/{filename}"
    logger.info(f"Stored upload {public_id}")
    return {'url': f"{app.config['UPLOAD_URL_PREFIX']}/{public_id}", 'public_id': public_id}


def delete_image(public_id):
    """Remove a stored image. Missing files are ignored."""
    if not public_id:
        return False
    root = os.path.abspath(app.config['UPLOAD_FOLDER'])
    path = os.path.abspath(os.path.join(root, public_id))
    if not path.startswith(root + os.sep):
        logger.warning(f"Refused to delete outside upload folder: {public_id}")
        return False
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False


@upload_bp.route('/api/upload/logo', methods=['POST'])
def upload_logo():
    """Signup-time logo upload; the returned URL is sent back with the signup form."""
    stored = save_image(request.files.get('logo'), 'logos', LOGO_MAX_BYTES)
    return jsonify({'url': stored['url'], 'public_id': stored['public_id']}), 201


@upload_bp.route('/uploads/<path:filename>')
def uploaded_file(filename):
    return send_from_directory(app.config['UPLOAD_FOLDER'], filename)
