import hashlib
import re
from datetime import datetime, timedelta, timezone

from flask import current_app
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from extensions import db
from errors import AppError, NotFoundError, ValidationError


USER_ROLES = ('user', 'provider', 'admin', 'superuser')
MODERATOR_ROLES = ('admin', 'superuser')

BOOKING_STATUSES = ('pending', 'accepted', 'rejected', 'completed', 'cancelled')

PROVIDER_BOOKING_TRANSITIONS = {
    'pending': {'accepted', 'rejected'},
    'accepted': {'completed', 'cancelled'},
}
CUSTOMER_BOOKING_TRANSITIONS = {
    'pending': {'cancelled'},
}

COMPLAINT_STATUSES = (
    'pending', 'in-progress', 'awaiting-confirmation',
    'resolved', 'rejected', 'service-unavailable',
)
ACTIVE_COMPLAINT_STATUSES = ('pending', 'in-progress')
CLOSED_COMPLAINT_STATUSES = ('resolved', 'rejected')

COMPLAINT_TRANSITIONS = {
    'pending': {'in-progress', 'awaiting-confirmation', 'resolved', 'rejected'},
    'in-progress': {'pending', 'awaiting-confirmation', 'resolved', 'rejected'},
    'awaiting-confirmation': {'in-progress', 'resolved', 'rejected'},
    'resolved': set(),
    'rejected': set(),
    'service-unavailable': set(),
}

SERVICE_CATEGORIES = (
    'cleaning', 'repair', 'beauty', 'tech', 'moving', 'events', 'plumbing',
    'electrical', 'painting', 'gardening', 'other', 'ritual', 'cleansing',
    'exorcism', 'divination', 'astrology',
)
PRICE_TYPES = ('fixed', 'hourly', 'starting-from', 'quote')

EMAIL_RE = re.compile(r'^\S+@\S+\.\S+$')


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _check_length(field, value, maximum, label):
    if value is not None and len(value) > maximum:
        raise ValidationError(f"{label} cannot exceed {maximum} characters")
    return value


def _clean_email(value):
    value = (value or '').strip().lower()
    if not EMAIL_RE.match(value):
        raise ValidationError('Please use a valid email address')
    return value


# ----------------- User -----------------
class User(db.Model, UserMixin):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(30))
    avatar = db.Column(db.String(255), default='default-avatar.png')
    city = db.Column(db.String(100))
    state = db.Column(db.String(100))
    role = db.Column(db.String(20), nullable=False, default='user')

    # UserMixin.is_active is replaced by the stored flag
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    deactivated_at = db.Column(db.DateTime)
    deactivation_reason = db.Column(db.String(255))
    banned_expires_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    company = db.relationship('Company', back_populates='owner', uselist=False)

    @db.validates('email')
    def validate_email(self, key, value):
        return _clean_email(value)

    @db.validates('role')
    def validate_role(self, key, value):
        if value not in USER_ROLES:
            raise ValidationError(f"{value} is not a valid role")
        return value

    @db.validates('name')
    def validate_name(self, key, value):
        value = (value or '').strip()
        if not value:
            raise ValidationError('Please add a name')
        return _check_length(key, value, 100, 'Name')

    # Password utils
    def set_password(self, password):
        if not password or len(password) < 6:
            raise ValidationError('Password must be at least 6 characters')
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password or '')

    @property
    def is_moderator(self):
        return self.role in MODERATOR_ROLES

    def lift_expired_ban(self):
        """Reactivate a suspended account whose ban has run out. Returns True if lifted."""
        if not self.is_active and self.banned_expires_at and utcnow() > self.banned_expires_at:
            self.is_active = True
            self.banned_expires_at = None
            self.deactivated_at = None
            self.deactivation_reason = None
            return True
        return False

    @classmethod
    def can_delete(cls, user_id):
        active = Complaint.query.filter(
            Complaint.user_id == user_id,
            Complaint.status.in_(ACTIVE_COMPLAINT_STATUSES),
        ).count()
        return {
            'can_delete': active == 0,
            'active_complaints_count': active,
            'message': (
                f"User has {active} active complaint(s). Resolve them first or use soft delete."
                if active else 'User can be deleted safely.'
            ),
        }

    @classmethod
    def soft_delete(cls, user_id, reason='Account deactivated', until=None):
        user = db.session.get(cls, user_id)
        if user is None:
            return None
        user.is_active = False
        user.deactivated_at = utcnow()
        user.deactivation_reason = reason
        user.banned_expires_at = until
        Session.query.filter_by(user_id=user.id).delete(synchronize_session=False)
        db.session.commit()
        return user

    @classmethod
    def force_delete(cls, user_id):
        """Delete despite active complaints; complaints stay on record without an owner."""
        user = db.session.get(cls, user_id)
        if user is None:
            return None
        Complaint.query.filter(
            Complaint.user_id == user.id,
            Complaint.status.in_(ACTIVE_COMPLAINT_STATUSES),
        ).update({'status': 'rejected', 'resolved_at': utcnow()}, synchronize_session=False)
        Complaint.query.filter(Complaint.user_id == user.id).update(
            {'user_id': None, 'admin_response': 'User account has been deleted.'},
            synchronize_session=False,
        )
        user._purge()
        db.session.commit()
        return user

    def delete(self):
        check = User.can_delete(self.id)
        if not check['can_delete']:
            raise AppError(check['message'], 400, {'active_complaints': check['active_complaints_count']})
        Complaint.query.filter(Complaint.user_id == self.id).delete(synchronize_session=False)
        self._purge()
        db.session.commit()

    def _purge(self):
        Bookmark.query.filter_by(user_id=self.id).delete(synchronize_session=False)
        Rating.query.filter_by(user_id=self.id).delete(synchronize_session=False)

        booking_ids = [b.id for b in Booking.query.with_entities(Booking.id).filter_by(user_id=self.id)]
        if booking_ids:
            Complaint.query.filter(Complaint.booking_id.in_(booking_ids)).update(
                {'booking_id': None}, synchronize_session=False)
            Booking.query.filter(Booking.id.in_(booking_ids)).delete(synchronize_session=False)

        ChatMessage.query.filter(
            (ChatMessage.sender_id == self.id) | (ChatMessage.receiver_id == self.id)
        ).delete(synchronize_session=False)
        Session.query.filter_by(user_id=self.id).delete(synchronize_session=False)
        Complaint.query.filter_by(resolved_by_id=self.id).update(
            {'resolved_by_id': None}, synchronize_session=False)

        if self.company is not None:
            self.company.remove()
        Service.query.filter_by(created_by_id=self.id).update(
            {'created_by_id': None}, synchronize_session=False)

        db.session.flush()
        db.session.delete(self)

    def __repr__(self):
        return f'<User {self.email}>'


# ----------------- Company -----------------
class Company(db.Model):
    __tablename__ = 'companies'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500))
    logo = db.Column(db.String(255))
    logo_public_id = db.Column(db.String(255))
    email = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(30))
    website = db.Column(db.String(255))
    service_type = db.Column(db.String(100))

    # Address
    street = db.Column(db.String(255))
    city = db.Column(db.String(100))
    state = db.Column(db.String(100))
    zip_code = db.Column(db.String(20))
    country = db.Column(db.String(100), default='India')

    social_links = db.Column(db.JSON, default=dict)

    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False, index=True)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    owner = db.relationship('User', back_populates='company')
    services = db.relationship(
        'Service', viewonly=True, order_by='Service.created_at.desc()', lazy=True,
    )

    ADDRESS_FIELDS = ('street', 'city', 'state', 'zip_code', 'country')

    @db.validates('name')
    def validate_name(self, key, value):
        value = (value or '').strip()
        if not value:
            raise ValidationError('Please add a company name')
        return _check_length(key, value, 100, 'Company name')

    @db.validates('description')
    def validate_description(self, key, value):
        return _check_length(key, value, 500, 'Description')

    @db.validates('email')
    def validate_email(self, key, value):
        return _clean_email(value)

    @property
    def address(self):
        return {field: getattr(self, field) for field in self.ADDRESS_FIELDS}

    @address.setter
    def address(self, value):
        for field, item in (value or {}).items():
            if field in self.ADDRESS_FIELDS:
                setattr(self, field, item)

    @property
    def service_count(self):
        return Service.query.filter_by(company_id=self.id).count()

    def stats(self, services=None):
        services = self.services if services is None else services
        completed = Booking.query.filter_by(company_id=self.id, status='completed').count()
        values = [r.value for s in services for r in s.ratings]
        overall = round(sum(values) / len(values), 2) if values else 0
        return {
            'completed_bookings': completed,
            'overall_rating': overall,
            'total_reviews': len(values),
        }

    def remove(self):
        """Delete the company; its services are deactivated and detached."""
        Service.query.filter_by(company_id=self.id).update(
            {'is_active': False, 'company_id': None}, synchronize_session=False)
        Booking.query.filter_by(company_id=self.id).update(
            {'company_id': None}, synchronize_session=False)
        db.session.delete(self)

    def __repr__(self):
        return f'<Company {self.name}>'


# ----------------- Service -----------------
class Service(db.Model):
    __tablename__ = 'services'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False)
    price = db.Column(db.Float, nullable=False)
    price_type = db.Column(db.String(20), nullable=False, default='fixed')
    location = db.Column(db.String(255))
    state = db.Column(db.String(100))
    city = db.Column(db.String(100))
    category = db.Column(db.String(30), nullable=False, default='other', index=True)
    image = db.Column(db.String(255))
    image_public_id = db.Column(db.String(255))
    duration = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=True, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    company = db.relationship('Company')
    creator = db.relationship('User', foreign_keys=[created_by_id])
    ratings = db.relationship(
        'Rating', back_populates='service', cascade='all, delete-orphan',
        order_by='Rating.created_at', lazy=True,
    )

    __table_args__ = (
        db.Index('ix_services_category_price', 'category', 'price'),
    )

    @db.validates('name')
    def validate_name(self, key, value):
        value = (value or '').strip()
        if not value:
            raise ValidationError('Please add a service name')
        return _check_length(key, value, 100, 'Name')

    @db.validates('description')
    def validate_description(self, key, value):
        if not value or not value.strip():
            raise ValidationError('Please add a description')
        return _check_length(key, value, 2000, 'Description')

    @db.validates('price')
    def validate_price(self, key, value):
        if value is None or float(value) < 0:
            raise ValidationError('Price must be a positive number')
        return float(value)

    @db.validates('price_type')
    def validate_price_type(self, key, value):
        if value not in PRICE_TYPES:
            raise ValidationError(f"{value} is not a valid price type")
        return value

    @db.validates('category')
    def validate_category(self, key, value):
        if value not in SERVICE_CATEGORIES:
            raise ValidationError(f"{value} is not a valid category")
        return value

    @property
    def average_rating(self):
        if not self.ratings:
            return 0
        return round(sum(r.value for r in self.ratings) / len(self.ratings), 1)

    @property
    def total_reviews(self):
        return len(self.ratings)

    @property
    def bookmark_count(self):
        return Bookmark.query.filter_by(service_id=self.id).count()

    def rate(self, user, value, review=None):
        """Add or update ``user``'s rating. Requires a completed booking of this service."""
        has_booking = Booking.query.filter_by(
            user_id=user.id, service_id=self.id, status='completed'
        ).first()
        if not has_booking:
            raise AppError('You can only rate services you have booked and completed', 403)

        rating = Rating.query.filter_by(service_id=self.id, user_id=user.id).first()
        if rating:
            rating.value = value
            if review:
                rating.review = review
        else:
            rating = Rating(user_id=user.id, value=value, review=review)
            self.ratings.append(rating)
        return rating

    @classmethod
    def can_delete(cls, service_id):
        active = Complaint.query.filter(
            Complaint.service_id == service_id,
            Complaint.status.in_(ACTIVE_COMPLAINT_STATUSES),
        ).count()
        return {
            'can_delete': active == 0,
            'active_complaints_count': active,
            'message': (
                f"Cannot delete: {active} active complaint(s) exist."
                if active else 'Service can be deleted safely.'
            ),
        }

    @classmethod
    def soft_delete(cls, service_id):
        service = db.session.get(cls, service_id)
        if service is None:
            return None
        service.is_active = False
        db.session.commit()
        return service

    @classmethod
    def force_delete(cls, service):
        """Delete despite active complaints, leaving those complainants a support notice."""
        support_email = current_app.config.get('SUPPORT_EMAIL')
        notice = (
            'The service you complained about has been removed. Please contact our support team.'
            f"\n\nService: {service.name}\nSupport: {support_email}"
        )
        Complaint.query.filter(
            Complaint.service_id == service.id,
            Complaint.status.in_(ACTIVE_COMPLAINT_STATUSES),
        ).update({'status': 'service-unavailable', 'admin_response': notice}, synchronize_session=False)
        Complaint.query.filter(
            Complaint.service_id == service.id,
            Complaint.status.in_(CLOSED_COMPLAINT_STATUSES),
        ).delete(synchronize_session=False)
        # Whatever remains keeps its snapshot
        Complaint.query.filter(Complaint.service_id == service.id).update(
            {'service_id': None}, synchronize_session=False)
        service._purge()
        db.session.commit()

    def delete(self):
        check = Service.can_delete(self.id)
        if not check['can_delete']:
            raise AppError(check['message'], 400, {
                'options': {
                    'soft_delete': '?soft=true to deactivate',
                    'force_delete': '?force=true to force delete',
                },
            })
        Complaint.query.filter(Complaint.service_id == self.id).delete(synchronize_session=False)
        self._purge()
        db.session.commit()

    def _purge(self):
        Bookmark.query.filter_by(service_id=self.id).delete(synchronize_session=False)
        booking_ids = [b.id for b in Booking.query.with_entities(Booking.id).filter_by(service_id=self.id)]
        if booking_ids:
            Complaint.query.filter(Complaint.booking_id.in_(booking_ids)).update(
                {'booking_id': None}, synchronize_session=False)
            Booking.query.filter(Booking.id.in_(booking_ids)).delete(synchronize_session=False)
        db.session.flush()
        db.session.delete(self)

    def __repr__(self):
        return f'<Service {self.name}>'


class Rating(db.Model):
    __tablename__ = 'ratings'

    id = db.Column(db.Integer, primary_key=True)
    service_id = db.Column(db.Integer, db.ForeignKey('services.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    value = db.Column(db.Integer, nullable=False)
    review = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    service = db.relationship('Service', back_populates='ratings')
    user = db.relationship('User')

    __table_args__ = (
        db.UniqueConstraint('service_id', 'user_id', name='uq_rating_service_user'),
    )

    @db.validates('value')
    def validate_value(self, key, value):
        if value is None or not 1 <= int(value) <= 5:
            raise ValidationError('Rating must be between 1 and 5')
        return int(value)

    @db.validates('review')
    def validate_review(self, key, value):
        return _check_length(key, value, 500, 'Review')


# ----------------- Booking -----------------
class Booking(db.Model):
    __tablename__ = 'bookings'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=True, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey('services.id'), nullable=False)
    date = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')
    notes = db.Column(db.String(500))
    # Address snapshot in case the user moves
    address = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship('User')
    company = db.relationship('Company')
    service = db.relationship('Service')

    __table_args__ = (
        db.Index('ix_bookings_user_service_status', 'user_id', 'service_id', 'status'),
    )

    @db.validates('status')
    def validate_status(self, key, value):
        if value not in BOOKING_STATUSES:
            raise ValidationError(f"{value} is not a valid status")
        return value

    @db.validates('notes')
    def validate_notes(self, key, value):
        return _check_length(key, value, 500, 'Notes')

    def can_transition(self, new_status, as_provider):
        table = PROVIDER_BOOKING_TRANSITIONS if as_provider else CUSTOMER_BOOKING_TRANSITIONS
        return new_status in table.get(self.status, set())


# ----------------- Complaint -----------------
class Complaint(db.Model):
    __tablename__ = 'complaints'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=True, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey('services.id'), nullable=True, index=True)
    subject = db.Column(db.String(100), nullable=False)
    message = db.Column(db.String(1000), nullable=False)
    images = db.Column(db.JSON, default=list)
    status = db.Column(db.String(30), nullable=False, default='pending', index=True)
    admin_response = db.Column(db.String(1000))
    service_provider_response = db.Column(db.String(1000))
    service_provider_responded_at = db.Column(db.DateTime)
    resolved_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    resolved_at = db.Column(db.DateTime)
    service_snapshot = db.Column(db.JSON)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship('User', foreign_keys=[user_id])
    booking = db.relationship('Booking')
    service = db.relationship('Service')
    resolved_by = db.relationship('User', foreign_keys=[resolved_by_id])

    @db.validates('status')
    def validate_status(self, key, value):
        if value not in COMPLAINT_STATUSES:
            raise ValidationError(f"{value} is not a valid status")
        return value

    @db.validates('subject')
    def validate_subject(self, key, value):
        value = (value or '').strip()
        if not value:
            raise ValidationError('Please add a subject')
        return _check_length(key, value, 100, 'Subject')

    @db.validates('message')
    def validate_message(self, key, value):
        value = (value or '').strip()
        if not value:
            raise ValidationError('Please add a message')
        return _check_length(key, value, 1000, 'Message')

    @db.validates('admin_response')
    def validate_admin_response(self, key, value):
        return _check_length(key, value, 1000, 'Admin response')

    @db.validates('service_provider_response')
    def validate_provider_response(self, key, value):
        return _check_length(key, value, 1000, 'Service provider response')

    @classmethod
    def file(cls, user, booking, subject, message, images=None):
        """Open a complaint about ``booking``, snapshotting its service."""
        existing = cls.query.filter_by(booking_id=booking.id, status='pending').first()
        if existing:
            raise AppError('You already have a pending complaint for this booking', 400)

        service = booking.service
        complaint = cls(
            user_id=user.id,
            booking_id=booking.id,
            service_id=service.id,
            subject=subject,
            message=message,
            images=images or [],
            service_snapshot={
                'name': service.name,
                'location': service.location,
                'category': service.category,
                'created_by': service.created_by_id,
            },
        )
        db.session.add(complaint)
        return complaint

    def can_transition(self, new_status):
        return new_status in COMPLAINT_TRANSITIONS.get(self.status, set())

    def move_to(self, new_status, actor=None):
        if new_status == self.status:
            return False
        if not self.can_transition(new_status):
            raise AppError(f"Cannot move complaint from {self.status} to {new_status}", 400)
        self.status = new_status
        if new_status in CLOSED_COMPLAINT_STATUSES:
            self.resolved_by_id = actor.id if actor else None
            self.resolved_at = utcnow()
        return True

    @property
    def service_name(self):
        if self.service is not None:
            return self.service.name
        return (self.service_snapshot or {}).get('name') or 'Unknown Service'

    @property
    def has_response(self):
        return bool(self.admin_response or self.service_provider_response)

    @property
    def service_owner_id(self):
        if self.service is not None:
            return self.service.created_by_id
        return (self.service_snapshot or {}).get('created_by')


# ----------------- Bookmark -----------------
class Bookmark(db.Model):
    __tablename__ = 'bookmarks'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey('services.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship('User')
    service = db.relationship('Service')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'service_id', name='uq_bookmark_user_service'),
    )

    @classmethod
    def add(cls, user, service_id):
        if not user.is_active:
            raise AppError('Referenced user does not exist or is inactive', 400)
        service = db.session.get(Service, service_id)
        if service is None or not service.is_active:
            raise NotFoundError('Referenced service does not exist or is inactive')
        if cls.query.filter_by(user_id=user.id, service_id=service.id).first():
            raise AppError('Already bookmarked', 400)
        bookmark = cls(user_id=user.id, service_id=service.id)
        db.session.add(bookmark)
        return bookmark


# ----------------- ChatMessage -----------------
class ChatMessage(db.Model):
    __tablename__ = 'chat_messages'

    id = db.Column(db.Integer, primary_key=True)
    sender_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    receiver_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    message = db.Column(db.String(2000), nullable=False)
    read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    sender = db.relationship('User', foreign_keys=[sender_id])
    receiver = db.relationship('User', foreign_keys=[receiver_id])

    __table_args__ = (
        db.Index('ix_chat_sender_receiver_created', 'sender_id', 'receiver_id', 'created_at'),
        db.Index('ix_chat_receiver_read', 'receiver_id', 'read'),
    )

    @db.validates('message')
    def validate_message(self, key, value):
        value = (value or '').strip()
        if not value:
            raise ValidationError('Message cannot be empty')
        return _check_length(key, value, 2000, 'Message')


# ----------------- OTP -----------------
class OTP(db.Model):
    __tablename__ = 'otps'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), nullable=False, index=True)
    otp_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    purpose = db.Column(db.String(20), nullable=False, default='signup')
    attempts = db.Column(db.Integer, nullable=False, default=0)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    @classmethod
    def issue(cls, email, otp, name, purpose='signup'):
        email = email.strip().lower()
        cls.query.filter_by(email=email, purpose=purpose).delete(synchronize_session=False)
        ttl = current_app.config.get('OTP_TTL_MINUTES', 10)
        entry = cls(
            email=email,
            otp_hash=generate_password_hash(otp),
            name=name,
            purpose=purpose,
            expires_at=utcnow() + timedelta(minutes=ttl),
        )
        db.session.add(entry)
        return entry

    @classmethod
    def find_valid(cls, email, purpose):
        return cls.query.filter(
            cls.email == email.strip().lower(),
            cls.purpose == purpose,
            cls.expires_at > utcnow(),
        ).first()

    def verify(self, otp):
        return check_password_hash(self.otp_hash, otp or '')


# ----------------- PendingUser -----------------
class PendingUser(db.Model):
    __tablename__ = 'pending_users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='user')
    otp_hash = db.Column(db.String(255), nullable=False)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    avatar = db.Column(db.String(255))
    phone = db.Column(db.String(30))
    city = db.Column(db.String(100))
    state = db.Column(db.String(100))

    # Company draft for provider signups
    company_name = db.Column(db.String(100))
    company_description = db.Column(db.String(500))
    company_service_type = db.Column(db.String(100))
    company_logo = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    def set_password(self, password):
        if not password or len(password) < 6:
            raise ValidationError('Password must be at least 6 characters')
        self.password_hash = generate_password_hash(password)

    def set_otp(self, otp):
        self.otp_hash = generate_password_hash(otp)
        self.attempts = 0
        ttl = current_app.config.get('PENDING_USER_TTL_HOURS', 24)
        self.expires_at = utcnow() + timedelta(hours=ttl)

    def verify_otp(self, otp):
        return check_password_hash(self.otp_hash, otp or '')

    @classmethod
    def find_valid(cls, email):
        return cls.query.filter(
            cls.email == email.strip().lower(),
            cls.expires_at > utcnow(),
        ).first()

    def to_user(self):
        user = User(
            name=self.name,
            email=self.email,
            role=self.role,
            phone=self.phone,
            city=self.city,
            state=self.state,
            avatar=self.avatar or 'default-avatar.png',
            is_active=True,
        )
        # Already hashed at signup
        user.password_hash = self.password_hash
        return user


# ----------------- Session -----------------
class Session(db.Model):
    __tablename__ = 'sessions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    token_hash = db.Column(db.String(64), unique=True, nullable=False)
    user_agent = db.Column(db.String(255))
    ip_address = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    user = db.relationship('User')

    @staticmethod
    def hash_token(token):
        return hashlib.sha256(token.encode('utf-8')).hexdigest()

    @classmethod
    def open(cls, user, token, user_agent=None, ip_address=None, expires_at=None):
        session = cls(
            user_id=user.id,
            token_hash=cls.hash_token(token),
            user_agent=(user_agent or 'Unknown')[:255],
            ip_address=ip_address,
            expires_at=expires_at,
        )
        db.session.add(session)
        return session

    @classmethod
    def find_valid(cls, token):
        return cls.query.filter(
            cls.token_hash == cls.hash_token(token),
            cls.expires_at > utcnow(),
        ).first()

    @classmethod
    def invalidate(cls, token):
        return cls.query.filter_by(token_hash=cls.hash_token(token)).delete(synchronize_session=False)

    @classmethod
    def invalidate_device(cls, user_id, user_agent):
        return cls.query.filter_by(
            user_id=user_id, user_agent=(user_agent or 'Unknown')[:255]
        ).delete(synchronize_session=False)


def purge_expired():
    """Delete expired one-time codes, pending signups and sessions. Returns counts."""
    now = utcnow()
    counts = {
        'otps': OTP.query.filter(OTP.expires_at <= now).delete(synchronize_session=False),
        'pending_users': PendingUser.query.filter(PendingUser.expires_at <= now).delete(synchronize_session=False),
        'sessions': Session.query.filter(Session.expires_at <= now).delete(synchronize_session=False),
    }
    db.session.commit()
    return counts
