import pytest
from sqlalchemy.exc import SQLAlchemyError

from extensions import db, socketio
from models.models import ChatMessage

from conftest import make_user, token_of


def events(socket_client, name):
    return [e['args'][0] for e in socket_client.get_received() if e['name'] == name]


@pytest.fixture
def sockets(app, customer, admin):
    customer_socket = socketio.test_client(app, auth={'token': token_of(customer)})
    admin_socket = socketio.test_client(app, auth={'token': token_of(admin)})
    yield customer_socket, admin_socket
    for socket_client in (customer_socket, admin_socket):
        if socket_client.is_connected():
            socket_client.disconnect()


def add_message(app, sender_id, receiver_id, text, read=False):
    with app.app_context():
        msg = ChatMessage(sender_id=sender_id, receiver_id=receiver_id, message=text, read=read)
        db.session.add(msg)
        db.session.commit()
        return msg.id


def test_connection_requires_valid_token(app, marketplace):
    anonymous = socketio.test_client(app)
    assert not anonymous.is_connected()

    forged = socketio.test_client(app, auth={'token': 'not-a-jwt'})
    assert not forged.is_connected()


def test_token_can_come_from_cookie(app, customer):
    socket_client = socketio.test_client(app, flask_test_client=customer)
    assert socket_client.is_connected()
    socket_client.disconnect()


def test_presence_events_and_online_list(app, customer, marketplace, sockets):
    customer_socket, admin_socket = sockets
    online = [e['user_id'] for e in events(customer_socket, 'user:online')]
    assert marketplace['admin'] in online

    body = customer.get('/api/chat/online').get_json()
    assert sorted(body['user_ids']) == sorted([marketplace['customer'], marketplace['admin']])

    # A second tab does not announce the user again
    admin_socket.get_received()
    second_tab = socketio.test_client(app, auth={'token': token_of(customer)})
    assert events(admin_socket, 'user:online') == []
    second_tab.disconnect()
    assert events(admin_socket, 'user:offline') == []

    customer_socket.disconnect()
    assert events(admin_socket, 'user:offline') == [{'user_id': marketplace['customer']}]


def test_send_message_delivers_and_persists(app, marketplace, sockets):
    customer_socket, admin_socket = sockets
    customer_socket.get_received()
    admin_socket.get_received()

    customer_socket.emit('chat:send', {'receiver_id': marketplace['admin'], 'message': '  My house is haunted  '})

    received = events(admin_socket, 'chat:receive')
    assert len(received) == 1
    assert received[0]['message'] == 'My house is haunted'
    assert received[0]['sender']['id'] == marketplace['customer']

    sent = events(customer_socket, 'chat:sent')
    assert sent[0]['id'] == received[0]['id']

    with app.app_context():
        assert ChatMessage.query.count() == 1


def test_send_message_errors(app, marketplace, sockets):
    customer_socket, _ = sockets
    customer_socket.get_received()

    customer_socket.emit('chat:send', {'receiver_id': marketplace['admin'], 'message': '   '})
    assert events(customer_socket, 'chat:error') == [{'message': 'Invalid message data'}]

    customer_socket.emit('chat:send', {'receiver_id': 9999, 'message': 'Anyone there?'})
    assert events(customer_socket, 'chat:error') == [{'message': 'Recipient not available'}]

    customer_socket.emit('chat:send', {'receiver_id': marketplace['admin'], 'message': 'x' * 2001})
    assert events(customer_socket, 'chat:error') == [{'message': 'Message cannot exceed 2000 characters'}]

    customer_socket.emit('chat:send', {'receiver_id': {'id': marketplace['admin']}, 'message': 'hello there'})
    assert events(customer_socket, 'chat:error') == [{'message': 'Invalid message data'}]

    customer_socket.emit('chat:send', {'receiver_id': 'warden', 'message': 'hello there'})
    assert events(customer_socket, 'chat:error') == [{'message': 'Invalid message data'}]


def test_receiver_id_may_arrive_as_string(app, marketplace, sockets):
    customer_socket, admin_socket = sockets
    admin_socket.get_received()

    customer_socket.emit('chat:send', {'receiver_id': str(marketplace['admin']), 'message': 'Boo'})
    assert events(admin_socket, 'chat:receive')[0]['message'] == 'Boo'


def test_failed_write_reports_error(app, marketplace, sockets, monkeypatch):
    customer_socket, admin_socket = sockets
    customer_socket.get_received()
    admin_socket.get_received()

    def broken_commit():
        raise SQLAlchemyError('database is locked')

    monkeypatch.setattr(db.session, 'commit', broken_commit)
    customer_socket.emit('chat:send', {'receiver_id': marketplace['admin'], 'message': 'Anyone home?'})
    monkeypatch.undo()

    assert events(customer_socket, 'chat:error') == [{'message': 'Failed to send message'}]
    assert events(admin_socket, 'chat:receive') == []
    with app.app_context():
        assert ChatMessage.query.count() == 0


def test_typing_indicators_reach_receiver_only(app, marketplace, sockets):
    customer_socket, admin_socket = sockets
    customer_socket.get_received()
    admin_socket.get_received()

    customer_socket.emit('chat:typing', {'receiver_id': marketplace['admin']})
    assert events(admin_socket, 'chat:typing')[0]['user_id'] == marketplace['customer']
    assert events(customer_socket, 'chat:typing') == []

    customer_socket.emit('chat:stop-typing', {'receiver_id': marketplace['admin']})
    assert events(admin_socket, 'chat:stop-typing') == [{'user_id': marketplace['customer']}]


def test_read_receipt_over_socket(app, marketplace, sockets):
    customer_socket, admin_socket = sockets
    add_message(app, marketplace['customer'], marketplace['admin'], 'Hello?')
    customer_socket.get_received()

    admin_socket.emit('chat:read', {'sender_id': marketplace['customer']})
    assert events(customer_socket, 'chat:messages-read') == [{'read_by': marketplace['admin']}]
    with app.app_context():
        assert ChatMessage.query.filter_by(read=False).count() == 0


def test_conversations_summarise_threads(app, customer, marketplace):
    me, admin_id, provider_id = marketplace['customer'], marketplace['admin'], marketplace['provider']
    add_message(app, me, admin_id, 'First to admin')
    add_message(app, admin_id, me, 'Admin reply one')
    add_message(app, admin_id, me, 'Admin reply two')
    add_message(app, provider_id, me, 'Provider says hi', read=True)

    threads = customer.get('/api/chat/conversations').get_json()
    by_user = {t['user']['id']: t for t in threads}
    assert by_user[admin_id]['last_message'] == 'Admin reply two'
    assert by_user[admin_id]['unread_count'] == 2
    assert by_user[admin_id]['user']['role'] == 'admin'
    assert by_user[provider_id]['unread_count'] == 0


def test_history_is_chronological_and_read_marks(app, customer, marketplace):
    me, admin_id = marketplace['customer'], marketplace['admin']
    for n in range(3):
        add_message(app, admin_id, me, f'Message {n}')
    make_user(app, 'stranger@mail.com')

    body = customer.get(f'/api/chat/history/{admin_id}').get_json()
    assert [m['message'] for m in body['messages']] == ['Message 0', 'Message 1', 'Message 2']
    assert body['total'] == 3

    body = customer.get(f'/api/chat/history/{admin_id}?limit=2').get_json()
    assert [m['message'] for m in body['messages']] == ['Message 1', 'Message 2']

    resp = customer.put(f'/api/chat/read/{admin_id}')
    assert resp.get_json() == {'message': 'Messages marked as read', 'modified_count': 3}


def test_admin_directory(app, customer, marketplace):
    make_user(app, 'retired-admin@mail.com', role='admin', is_active=False)
    admins = customer.get('/api/chat/admins').get_json()
    assert [a['email'] for a in admins] == ['warden@mail.com']


def test_chat_requires_login(client):
    assert client.get('/api/chat/conversations').status_code == 401
