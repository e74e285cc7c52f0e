from extensions import db
from models.models import User, Company, Session, PendingUser, utcnow

from conftest import PASSWORD, make_user, login, otp_from, days_from_now


def signup(client, **overrides):
    payload = {'name': 'Wanda', 'email': 'Wanda@Mail.com', 'password': PASSWORD}
    payload.update(overrides)
    return client.post('/auth/signup', json=payload)


def test_signup_sends_code_and_verify_creates_user(app, client, outbox):
    resp = signup(client)
    assert resp.status_code == 200
    assert resp.get_json()['email'] == 'wanda@mail.com'
    assert len(outbox) == 1
    assert outbox[0].recipients == ['wanda@mail.com']

    resp = client.post('/auth/verify-otp', json={'email': 'wanda@mail.com', 'otp': otp_from(outbox[0])})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['email'] == 'wanda@mail.com'
    assert body['role'] == 'user'
    assert client.get_cookie('jwt') is not None

    assert client.get('/auth/me').get_json()['email'] == 'wanda@mail.com'
    with app.app_context():
        assert PendingUser.query.count() == 0
        assert Session.query.count() == 1


def test_provider_signup_creates_verified_company(app, client, outbox):
    signup(client, role='provider', company_name='Haunt Busters', service_type='exorcism')
    resp = client.post('/auth/verify-otp', json={'email': 'wanda@mail.com', 'otp': otp_from(outbox[0])})
    assert resp.status_code == 200

    with app.app_context():
        user = User.query.filter_by(email='wanda@mail.com').one()
        assert user.role == 'provider'
        company = Company.query.filter_by(owner_id=user.id).one()
        assert company.name == 'Haunt Busters'
        assert company.is_verified is True


def test_signup_cannot_self_assign_admin(app, client, outbox):
    signup(client, role='superuser')
    client.post('/auth/verify-otp', json={'email': 'wanda@mail.com', 'otp': otp_from(outbox[0])})
    with app.app_context():
        assert User.query.filter_by(email='wanda@mail.com').one().role == 'user'


def test_signup_rejects_existing_email_and_short_password(app, client):
    make_user(app, 'wanda@mail.com')
    resp = signup(client)
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'User already exists'

    resp = signup(client, email='other@mail.com', password='123')
    assert resp.status_code == 400
    assert 'at least 6 characters' in resp.get_json()['message']


def test_verify_otp_with_wrong_code(client, outbox):
    signup(client)
    code = otp_from(outbox[0])
    wrong = '000000' if code != '000000' else '111111'
    resp = client.post('/auth/verify-otp', json={'email': 'wanda@mail.com', 'otp': wrong})
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Invalid verification code'


def test_signup_code_locks_after_too_many_attempts(app, client, outbox):
    signup(client)
    code = otp_from(outbox[0])
    wrong = '000000' if code != '000000' else '111111'

    for _ in range(app.config['OTP_MAX_ATTEMPTS']):
        resp = client.post('/auth/verify-otp', json={'email': 'wanda@mail.com', 'otp': wrong})
        assert resp.get_json()['message'] == 'Invalid verification code'

    resp = client.post('/auth/verify-otp', json={'email': 'wanda@mail.com', 'otp': code})
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Too many attempts. Please sign up again.'
    with app.app_context():
        assert PendingUser.query.count() == 0
        assert User.query.filter_by(email='wanda@mail.com').first() is None


def test_resend_otp_resets_attempts(app, client, outbox):
    signup(client)
    wrong = '000000' if otp_from(outbox[0]) != '000000' else '111111'
    for _ in range(app.config['OTP_MAX_ATTEMPTS'] - 1):
        client.post('/auth/verify-otp', json={'email': 'wanda@mail.com', 'otp': wrong})

    client.post('/auth/resend-otp', json={'email': 'wanda@mail.com'})
    with app.app_context():
        assert PendingUser.query.one().attempts == 0


def test_resend_otp_replaces_code(client, outbox):
    signup(client)
    resp = client.post('/auth/resend-otp', json={'email': 'wanda@mail.com'})
    assert resp.status_code == 200
    assert len(outbox) == 2

    resp = client.post('/auth/verify-otp', json={'email': 'wanda@mail.com', 'otp': otp_from(outbox[1])})
    assert resp.status_code == 200


def test_login_rejects_bad_credentials(app, client):
    make_user(app, 'casper@mail.com')
    resp = client.post('/auth/login', json={'email': 'casper@mail.com', 'password': 'wrong-pass'})
    assert resp.status_code == 401
    resp = client.post('/auth/login', json={'email': 'nobody@mail.com', 'password': PASSWORD})
    assert resp.status_code == 401


def test_login_refused_while_suspended_and_lifted_after_expiry(app, client):
    user_id = make_user(app, 'casper@mail.com')
    with app.app_context():
        User.soft_delete(user_id, 'Spamming', until=days_from_now(3))

    resp = client.post('/auth/login', json={'email': 'casper@mail.com', 'password': PASSWORD})
    assert resp.status_code == 403
    assert 'Account suspended until' in resp.get_json()['message']
    assert 'Spamming' in resp.get_json()['message']

    with app.app_context():
        user = db.session.get(User, user_id)
        user.banned_expires_at = days_from_now(-1)
        db.session.commit()

    resp = client.post('/auth/login', json={'email': 'casper@mail.com', 'password': PASSWORD})
    assert resp.status_code == 200
    with app.app_context():
        assert db.session.get(User, user_id).is_active is True


def test_login_refused_for_permanent_deactivation(app, client):
    user_id = make_user(app, 'casper@mail.com')
    with app.app_context():
        User.soft_delete(user_id)
    resp = client.post('/auth/login', json={'email': 'casper@mail.com', 'password': PASSWORD})
    assert resp.status_code == 403
    assert resp.get_json()['message'] == 'Account is deactivated. Contact support.'


def test_me_requires_authentication(client):
    resp = client.get('/auth/me')
    assert resp.status_code == 401


def test_bearer_token_is_accepted(app):
    make_user(app, 'casper@mail.com')
    token = login(app, 'casper@mail.com').get_cookie('jwt').value
    resp = app.test_client().get('/auth/me', headers={'Authorization': f'Bearer {token}'})
    assert resp.status_code == 200


def test_logout_revokes_session(app):
    make_user(app, 'casper@mail.com')
    client = login(app, 'casper@mail.com')
    token = client.get_cookie('jwt').value

    assert client.post('/auth/logout').status_code == 200
    resp = app.test_client().get('/auth/me', headers={'Authorization': f'Bearer {token}'})
    assert resp.status_code == 401


def test_logout_all_revokes_every_device(app):
    make_user(app, 'casper@mail.com')
    phone = login(app, 'casper@mail.com', user_agent='phone')
    laptop = login(app, 'casper@mail.com', user_agent='laptop')
    assert phone.get('/auth/me').status_code == 200

    assert laptop.post('/auth/logout-all').status_code == 200
    assert phone.get('/auth/me').status_code == 401


def test_login_on_same_device_replaces_old_session(app):
    make_user(app, 'casper@mail.com')
    first = login(app, 'casper@mail.com', user_agent='same-browser')
    login(app, 'casper@mail.com', user_agent='same-browser')
    assert first.get('/auth/me').status_code == 401


def test_update_profile_and_password(app):
    make_user(app, 'casper@mail.com')
    make_user(app, 'taken@mail.com')
    client = login(app, 'casper@mail.com')

    resp = client.put('/auth/profile', json={'name': 'Casper Friendly', 'city': 'Boo Town'})
    assert resp.status_code == 200
    assert resp.get_json()['name'] == 'Casper Friendly'
    assert resp.get_json()['city'] == 'Boo Town'

    resp = client.put('/auth/profile', json={'email': 'taken@mail.com'})
    assert resp.status_code == 400

    resp = client.put('/auth/profile', json={'current_password': 'nope-nope', 'new_password': 'newsecret'})
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Current password is incorrect'

    resp = client.put('/auth/profile', json={'current_password': PASSWORD, 'new_password': 'newsecret'})
    assert resp.status_code == 200
    login(app, 'casper@mail.com', password='newsecret', user_agent='other')


def test_password_reset_flow(app, client, outbox):
    make_user(app, 'casper@mail.com')
    old_session = login(app, 'casper@mail.com')

    resp = client.post('/auth/forgot-password', json={'email': 'casper@mail.com'})
    assert resp.status_code == 200
    code = otp_from(outbox[-1])

    resp = client.post('/auth/verify-reset-otp', json={'email': 'casper@mail.com', 'otp': code})
    assert resp.status_code == 200
    reset_token = resp.get_json()['reset_token']

    resp = client.post(f'/auth/reset-password/{reset_token}', json={'new_password': 'brandnew1'})
    assert resp.status_code == 200

    # Existing sessions are revoked and the new password works
    assert old_session.get('/auth/me').status_code == 401
    login(app, 'casper@mail.com', password='brandnew1', user_agent='after-reset')

    # Codes are single use
    resp = client.post('/auth/verify-reset-otp', json={'email': 'casper@mail.com', 'otp': code})
    assert resp.status_code == 400


def test_forgot_password_unknown_email(client):
    resp = client.post('/auth/forgot-password', json={'email': 'ghost@mail.com'})
    assert resp.status_code == 404


def test_reset_password_rejects_session_token(app, client):
    make_user(app, 'casper@mail.com')
    session_token = login(app, 'casper@mail.com').get_cookie('jwt').value
    resp = client.post('/auth/reset-password', json={'reset_token': session_token, 'new_password': 'brandnew1'})
    assert resp.status_code == 401
    assert resp.get_json()['message'] == 'Invalid token type'


def test_reset_otp_locks_after_too_many_attempts(app, client, outbox):
    make_user(app, 'casper@mail.com')
    client.post('/auth/forgot-password', json={'email': 'casper@mail.com'})
    code = otp_from(outbox[-1])
    wrong = '000000' if code != '000000' else '111111'

    for _ in range(app.config['OTP_MAX_ATTEMPTS']):
        resp = client.post('/auth/verify-reset-otp', json={'email': 'casper@mail.com', 'otp': wrong})
        assert resp.get_json()['message'] == 'Invalid verification code'

    resp = client.post('/auth/verify-reset-otp', json={'email': 'casper@mail.com', 'otp': code})
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Too many attempts. Request a new code.'


def test_expired_session_row_is_not_honored(app):
    make_user(app, 'casper@mail.com')
    client = login(app, 'casper@mail.com')
    with app.app_context():
        Session.query.update({'expires_at': utcnow()})
        db.session.commit()
    assert client.get('/auth/me').status_code == 401
