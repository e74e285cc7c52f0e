from app import create_app
from conftest import TestingConfig, make_booking, make_complaint, login
from extensions import db
from models.models import User


def test_dashboard_stats(app, admin, marketplace):
    make_booking(app, marketplace['customer'], marketplace['service'], status='completed')
    booking_id = make_booking(app, marketplace['customer'], marketplace['service'], status='accepted')
    make_complaint(app, marketplace['customer'], booking_id)

    body = admin.get('/api/admin/stats').get_json()
    assert body['success'] is True
    data = body['data']
    assert data['users'] == {'total': 2, 'customers': 1, 'providers': 1}
    assert data['services']['total'] == 1
    assert data['companies']['total'] == 1
    assert data['complaints'] == {'total': 1, 'pending': 1}
    assert data['bookings']['total'] == 2
    assert data['revenue']['total'] == 100.0

    types = {item['type'] for item in data['recent_activity']}
    assert types == {'booking', 'complaint', 'user_signup', 'company_registered'}


def test_dashboard_is_for_moderators(client, customer):
    assert client.get('/api/admin/stats').status_code == 401
    resp = customer.get('/api/admin/stats')
    assert resp.status_code == 403
    assert resp.get_json()['message'] == "Role 'user' is not authorized to access this route"


def test_unknown_routes(client):
    resp = client.get('/api/nowhere')
    assert resp.status_code == 404
    assert resp.get_json() == {'message': 'API Route not found'}

    resp = client.get('/nowhere')
    assert resp.get_json() == {'message': 'Route not found'}


def test_root_and_health(client):
    assert client.get('/').get_json()['status'] == 'running'
    assert client.get('/health').get_json() == {'status': 'healthy'}


def test_csrf_is_enforced_when_enabled(tmp_path):
    config = type('Config', (TestingConfig,), {
        'WTF_CSRF_ENABLED': True,
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
    })
    app = create_app(config)
    with app.app_context():
        db.create_all()
    client = app.test_client()

    resp = client.post('/auth/login', json={'email': 'casper@mail.com', 'password': 'whatever'})
    assert resp.status_code == 403
    assert resp.get_json()['message'] == 'Invalid CSRF token'

    token = client.get('/api/csrf-token').get_json()['csrf_token']
    resp = client.post('/auth/login', json={'email': 'casper@mail.com', 'password': 'whatever'},
                       headers={'X-CSRF-Token': token})
    assert resp.status_code == 401

    with app.app_context():
        db.drop_all()


def test_create_superuser_command(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['create-superuser', '--email', 'Boss@Mail.com', '--name', 'Boss',
                                 '--password', 'secret123'])
    assert result.exit_code == 0
    assert 'Superuser boss@mail.com created.' in result.output

    login(app, 'boss@mail.com')
    result = runner.invoke(args=['create-superuser', '--email', 'boss@mail.com', '--name', 'Boss',
                                 '--password', 'secret123'])
    assert 'promoted to superuser' in result.output
    with app.app_context():
        assert User.query.filter_by(email='boss@mail.com').one().role == 'superuser'


def test_purge_expired_command(app):
    result = app.test_cli_runner().invoke(args=['purge-expired'])
    assert result.exit_code == 0
    assert 'sessions: 0' in result.output
