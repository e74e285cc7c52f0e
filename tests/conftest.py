import re
from datetime import datetime, timedelta

import pytest

from app import create_app
from config import Config
from extensions import db, mail
from models.models import User, Company, Service, Booking, Complaint, utcnow
from routes.chat_routes import _socket_users, _user_sockets

PASSWORD = 'secret123'


class TestingConfig(Config):
    TESTING = True
    APP_ENV = 'testing'
    SECRET_KEY = 'test-secret'
    JWT_SECRET_KEY = 'test-jwt-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    WTF_CSRF_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = 'no-reply@phantom.agency'


@pytest.fixture
def app(tmp_path):
    config = type('Config', (TestingConfig,), {'UPLOAD_FOLDER': str(tmp_path / 'uploads')})
    app = create_app(config)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
    # Socket presence is process-wide
    _socket_users.clear()
    _user_sockets.clear()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def outbox(app):
    with mail.record_messages() as outbox:
        yield outbox


def otp_from(message):
    return re.search(r'\b(\d{6})\b', message.body).group(1)


# --- data builders (each runs in its own app context and returns ids) ---

def make_user(app, email, role='user', name=None, password=PASSWORD, **fields):
    with app.app_context():
        user = User(name=name or email.split('@')[0].title(), email=email, role=role, **fields)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user.id


def make_company(app, owner_id, name='Spectral Cleaners', **fields):
    fields.setdefault('email', 'contact@spectral.com')
    with app.app_context():
        company = Company(name=name, owner_id=owner_id, **fields)
        db.session.add(company)
        db.session.commit()
        return company.id


def make_service(app, created_by_id, company_id=None, name='Ghost Removal', price=100.0, **fields):
    fields.setdefault('description', 'We remove ghosts from houses, quietly and thoroughly.')
    with app.app_context():
        service = Service(name=name, price=price, created_by_id=created_by_id, company_id=company_id, **fields)
        db.session.add(service)
        db.session.commit()
        return service.id


def make_booking(app, user_id, service_id, status='pending', **fields):
    with app.app_context():
        service = db.session.get(Service, service_id)
        booking = Booking(
            user_id=user_id,
            service_id=service_id,
            company_id=service.company_id,
            date=fields.pop('date', datetime(2030, 1, 1, 10, 0)),
            status=status,
            **fields,
        )
        db.session.add(booking)
        db.session.commit()
        return booking.id


def make_complaint(app, user_id, booking_id, status='pending'):
    with app.app_context():
        user = db.session.get(User, user_id)
        booking = db.session.get(Booking, booking_id)
        complaint = Complaint.file(
            user, booking,
            subject='Noisy spirits remain',
            message='The service left three spirits still rattling chains at night.',
        )
        complaint.status = status
        db.session.commit()
        return complaint.id


def login(app, email, password=PASSWORD, user_agent='pytest'):
    client = app.test_client()
    resp = client.post('/auth/login', json={'email': email, 'password': password},
                       headers={'User-Agent': user_agent})
    assert resp.status_code == 200, resp.get_json()
    return client


def token_of(client):
    return client.get_cookie('jwt').value


@pytest.fixture
def marketplace(app):
    """A customer, a provider with a company and one service, an admin and a superuser."""
    ids = {
        'customer': make_user(app, 'casper@mail.com', city='Salem'),
        'provider': make_user(app, 'ectoplasm@mail.com', role='provider', phone='555-0100'),
        'admin': make_user(app, 'warden@mail.com', role='admin'),
        'superuser': make_user(app, 'overlord@mail.com', role='superuser'),
    }
    ids['company'] = make_company(app, ids['provider'])
    ids['service'] = make_service(app, ids['provider'], ids['company'], location='Salem', city='Salem')
    return ids


@pytest.fixture
def customer(app, marketplace):
    return login(app, 'casper@mail.com')


@pytest.fixture
def provider(app, marketplace):
    return login(app, 'ectoplasm@mail.com')


@pytest.fixture
def admin(app, marketplace):
    return login(app, 'warden@mail.com')


@pytest.fixture
def superuser(app, marketplace):
    return login(app, 'overlord@mail.com')


def days_from_now(days):
    return utcnow() + timedelta(days=days)
