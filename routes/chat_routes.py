import logging

from flask import Blueprint, jsonify, request, current_app as app
from flask_login import login_required, current_user
from flask_socketio import emit, join_room, ConnectionRefusedError
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from errors import ValidationError
from models.models import User, ChatMessage
from notifications import ADMINS_ROOM
from security import authenticate_token
from utils import message_to_dict, paginate, user_summary, format_date

logger = logging.getLogger(__name__)

chat_bp = Blueprint('chat', __name__, url_prefix='/api/chat')

# Presence for this process only: sid -> user_id and user_id -> {sid}
_socket_users = {}
_user_sockets = {}


def online_user_ids():
    return sorted(_user_sockets)


def _track(sid, user_id):
    """Register a socket. Returns True if it is the user's first one."""
    _socket_users[sid] = user_id
    sockets = _user_sockets.setdefault(user_id, set())
    first = not sockets
    sockets.add(sid)
    return first


def _untrack(sid):
    """Forget a socket. Returns the user_id if that was their last one."""
    user_id = _socket_users.pop(sid, None)
    if user_id is None:
        return None
    sockets = _user_sockets.get(user_id, set())
    sockets.discard(sid)
    if not sockets:
        _user_sockets.pop(user_id, None)
        return user_id
    return None


def _between(a, b):
    return (
        ((ChatMessage.sender_id == a) & (ChatMessage.receiver_id == b))
        | ((ChatMessage.sender_id == b) & (ChatMessage.receiver_id == a))
    )


def _as_id(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def mark_read(reader_id, sender_id):
    count = ChatMessage.query.filter_by(
        sender_id=sender_id, receiver_id=reader_id, read=False
    ).update({'read': True}, synchronize_session=False)
    db.session.commit()
    return count


# ---------------------------
# REST
# ---------------------------
@chat_bp.route('/conversations', methods=['GET'])
@login_required
def conversations():
    me = current_user.id
    messages = (
        ChatMessage.query.filter((ChatMessage.sender_id == me) | (ChatMessage.receiver_id == me))
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .all()
    )

    threads = {}
    for msg in messages:
        other_id = msg.receiver_id if msg.sender_id == me else msg.sender_id
        thread = threads.get(other_id)
        if thread is None:
            # Newest first, so the first hit is the last message
            other = msg.receiver if msg.sender_id == me else msg.sender
            thread = threads[other_id] = {
                'user': dict(user_summary(other), role=other.role) if other else None,
                'last_message': msg.message,
                'last_message_at': format_date(msg.created_at),
                'unread_count': 0,
            }
        if msg.receiver_id == me and not msg.read:
            thread['unread_count'] += 1

    return jsonify(list(threads.values()))


@chat_bp.route('/admins', methods=['GET'])
@login_required
def admins():
    users = User.query.filter(User.role == 'admin', User.is_active.is_(True)).order_by(User.name).all()
    return jsonify([user_summary(u) for u in users])


@chat_bp.route('/history/<int:user_id>', methods=['GET'])
@login_required
def history(user_id):
    query = ChatMessage.query.filter(_between(current_user.id, user_id)).order_by(
        ChatMessage.created_at.desc(), ChatMessage.id.desc()
    )
    messages, meta = paginate(query, 50)
    # Chronological for display
    return jsonify({'messages': [message_to_dict(m) for m in reversed(messages)], **meta})


@chat_bp.route('/read/<int:user_id>', methods=['PUT'])
@login_required
def read(user_id):
    count = mark_read(current_user.id, user_id)
    return jsonify({'message': 'Messages marked as read', 'modified_count': count})


@chat_bp.route('/online', methods=['GET'])
@login_required
def online():
    return jsonify({'user_ids': online_user_ids()})


# ---------------------------
# Socket.IO events
# ---------------------------
def register_socket_handlers(socketio):

    def _current_user_id():
        return _socket_users.get(request.sid)

    @socketio.on('connect')
    def handle_connect(auth=None):
        token = auth.get('token') if isinstance(auth, dict) else None
        token = token or request.cookies.get(app.config['JWT_COOKIE_NAME'])
        user = authenticate_token(token)
        if user is None:
            logger.warning('Socket connection refused: invalid or missing token')
            raise ConnectionRefusedError('Authentication error: Invalid token')

        join_room(str(user.id))
        if user.is_moderator:
            join_room(ADMINS_ROOM)
        if _track(request.sid, user.id):
            socketio.emit('user:online', {'user_id': user.id, 'name': user.name})
        logger.info(f"User connected: {user.name} ({user.id})")

    @socketio.on('disconnect')
    def handle_disconnect(*args):
        user_id = _untrack(request.sid)
        if user_id is not None:
            socketio.emit('user:offline', {'user_id': user_id})
            logger.info(f"User disconnected: {user_id}")

    @socketio.on('chat:send')
    def handle_chat_send(data):
        sender_id = _current_user_id()
        data = data if isinstance(data, dict) else {}
        text = (data.get('message') or '').strip() if isinstance(data.get('message'), str) else ''
        receiver_id = _as_id(data.get('receiver_id'))

        if sender_id is None or not receiver_id or not text:
            emit('chat:error', {'message': 'Invalid message data'})
            return

        receiver = db.session.get(User, receiver_id)
        if receiver is None or not receiver.is_active or receiver.id == sender_id:
            emit('chat:error', {'message': 'Recipient not available'})
            return

        try:
            msg = ChatMessage(sender_id=sender_id, receiver_id=receiver.id, message=text)
            db.session.add(msg)
            db.session.commit()
        except ValidationError as e:
            db.session.rollback()
            emit('chat:error', {'message': e.message})
            return
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f"Failed to store message from user {sender_id}")
            emit('chat:error', {'message': 'Failed to send message'})
            return

        payload = message_to_dict(msg)
        socketio.emit('chat:receive', payload, to=str(receiver.id))
        emit('chat:sent', payload)

    @socketio.on('chat:typing')
    def handle_typing(data):
        user_id = _current_user_id()
        receiver_id = _as_id(data.get('receiver_id')) if isinstance(data, dict) else None
        if user_id and receiver_id:
            user = db.session.get(User, user_id)
            socketio.emit('chat:typing', {'user_id': user_id, 'name': user.name if user else None},
                          to=str(receiver_id))

    @socketio.on('chat:stop-typing')
    def handle_stop_typing(data):
        user_id = _current_user_id()
        receiver_id = _as_id(data.get('receiver_id')) if isinstance(data, dict) else None
        if user_id and receiver_id:
            socketio.emit('chat:stop-typing', {'user_id': user_id}, to=str(receiver_id))

    @socketio.on('chat:read')
    def handle_read(data):
        user_id = _current_user_id()
        sender_id = _as_id(data.get('sender_id')) if isinstance(data, dict) else None
        if user_id and sender_id:
            mark_read(user_id, sender_id)
            socketio.emit('chat:messages-read', {'read_by': user_id}, to=str(sender_id))
