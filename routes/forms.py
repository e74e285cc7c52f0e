from flask_wtf import FlaskForm
from wtforms import (
    StringField, PasswordField, IntegerField, FloatField, DateTimeField,
    TextAreaField
)
from wtforms.validators import DataRequired, Email, Length, NumberRange, Optional, AnyOf

from models.models import (
    SERVICE_CATEGORIES, PRICE_TYPES, USER_ROLES, BOOKING_STATUSES
)

DATE_FORMATS = ['%Y-%m-%dT%H:%M:%S.%fZ', '%Y-%m-%dT%H:%M:%SZ', '%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M', '%Y-%m-%d']


class ApiForm(FlaskForm):
    """Base for JSON/multipart API forms; CSRF is checked globally by CSRFProtect."""

    class Meta:
        csrf = False


# -------- Auth --------
class SignupForm(ApiForm):
    name = StringField('Name', validators=[DataRequired(message='Please add all fields'), Length(max=100)])
    email = StringField('Email', validators=[
        DataRequired(message='Please add all fields'),
        Email(message='Please use a valid email address'),
    ])
    password = PasswordField('Password', validators=[
        DataRequired(message='Please add all fields'),
        Length(min=6, message='Password must be at least 6 characters'),
    ])
    role = StringField('Role', validators=[Optional()])
    phone = StringField('Phone', validators=[Optional(), Length(max=30)])
    city = StringField('City', validators=[Optional(), Length(max=100)])
    state = StringField('State', validators=[Optional(), Length(max=100)])
    avatar = StringField('Avatar', validators=[Optional(), Length(max=255)])

    # Provider company draft
    company_name = StringField('Company Name', validators=[Optional(), Length(max=100)])
    description = TextAreaField('Description', validators=[Optional(), Length(max=500)])
    service_type = StringField('Service Type', validators=[Optional(), Length(max=100)])
    logo = StringField('Logo', validators=[Optional(), Length(max=255)])


class OTPForm(ApiForm):
    email = StringField('Email', validators=[DataRequired(message='Email and OTP are required')])
    otp = StringField('OTP', validators=[DataRequired(message='Email and OTP are required')])


class EmailForm(ApiForm):
    email = StringField('Email', validators=[DataRequired(message='Email is required')])


class LoginForm(ApiForm):
    email = StringField('Email', validators=[DataRequired(message='Invalid credentials')])
    password = PasswordField('Password', validators=[DataRequired(message='Invalid credentials')])


class ProfileForm(ApiForm):
    name = StringField('Name', validators=[Optional(), Length(max=100)])
    email = StringField('Email', validators=[Optional(), Email(message='Please use a valid email address')])
    phone = StringField('Phone', validators=[Optional(), Length(max=30)])
    city = StringField('City', validators=[Optional(), Length(max=100)])
    state = StringField('State', validators=[Optional(), Length(max=100)])
    avatar = StringField('Avatar', validators=[Optional(), Length(max=255)])
    current_password = PasswordField('Current Password', validators=[Optional()])
    new_password = PasswordField('New Password', validators=[
        Optional(), Length(min=6, message='Password must be at least 6 characters'),
    ])


class ResetPasswordForm(ApiForm):
    reset_token = StringField('Reset Token', validators=[Optional()])
    new_password = PasswordField('New Password', validators=[
        DataRequired(message='Token and a valid new password (min 6 chars) are required'),
        Length(min=6, message='Token and a valid new password (min 6 chars) are required'),
    ])


# -------- Services --------
class ServiceForm(ApiForm):
    name = StringField('Name', validators=[DataRequired(message='Please add a service name'), Length(max=100)])
    description = TextAreaField('Description', validators=[
        DataRequired(message='Please add a description'), Length(max=2000),
    ])
    price = FloatField('Price', validators=[NumberRange(min=0, message='Price must be a positive number')])
    price_type = StringField('Price Type', validators=[Optional(), AnyOf(PRICE_TYPES, message='Invalid price type')])
    category = StringField('Category', validators=[Optional(), AnyOf(SERVICE_CATEGORIES, message='Invalid category')])
    location = StringField('Location', validators=[Optional(), Length(max=255)])
    state = StringField('State', validators=[Optional(), Length(max=100)])
    city = StringField('City', validators=[Optional(), Length(max=100)])
    duration = StringField('Duration', validators=[Optional(), Length(max=100)])
    company = IntegerField('Company', validators=[Optional()])


class ServiceUpdateForm(ApiForm):
    name = StringField('Name', validators=[Optional(), Length(max=100)])
    description = TextAreaField('Description', validators=[Optional(), Length(max=2000)])
    price = FloatField('Price', validators=[Optional(), NumberRange(min=0, message='Price must be a positive number')])
    price_type = StringField('Price Type', validators=[Optional(), AnyOf(PRICE_TYPES, message='Invalid price type')])
    category = StringField('Category', validators=[Optional(), AnyOf(SERVICE_CATEGORIES, message='Invalid category')])
    location = StringField('Location', validators=[Optional(), Length(max=255)])
    state = StringField('State', validators=[Optional(), Length(max=100)])
    city = StringField('City', validators=[Optional(), Length(max=100)])
    duration = StringField('Duration', validators=[Optional(), Length(max=100)])


class RatingForm(ApiForm):
    value = IntegerField('Rating', validators=[
        DataRequired(message='Rating must be between 1 and 5'),
        NumberRange(min=1, max=5, message='Rating must be between 1 and 5'),
    ])
    review = TextAreaField('Review', validators=[Optional(), Length(max=500)])


# -------- Bookings --------
class BookingForm(ApiForm):
    service = IntegerField('Service', validators=[DataRequired(message='Service is required')])
    date = DateTimeField('Date', format=DATE_FORMATS, validators=[DataRequired(message='A valid date is required')])
    notes = TextAreaField('Notes', validators=[Optional(), Length(max=500, message='Notes cannot exceed 500 characters')])
    address = StringField('Address', validators=[Optional(), Length(max=255)])


class BookingStatusForm(ApiForm):
    status = StringField('Status', validators=[
        DataRequired(message='Status is required'),
        AnyOf(BOOKING_STATUSES, message='Invalid status'),
    ])


# -------- Complaints --------
class ComplaintForm(ApiForm):
    booking = IntegerField('Booking', validators=[DataRequired(message='Booking is required')])
    subject = StringField('Subject', validators=[
        DataRequired(message='Subject must be at least 5 characters'),
        Length(min=5, message='Subject must be at least 5 characters'),
        Length(max=100, message='Subject cannot exceed 100 characters'),
    ])
    message = TextAreaField('Message', validators=[
        DataRequired(message='Message must be at least 20 characters'),
        Length(min=20, message='Message must be at least 20 characters'),
        Length(max=1000, message='Message cannot exceed 1000 characters'),
    ])


class ComplaintResponseForm(ApiForm):
    response = TextAreaField('Response', validators=[
        DataRequired(message='Response must be at least 10 characters'),
        Length(min=10, max=1000, message='Response must be between 10 and 1000 characters'),
    ])


class ComplaintStatusForm(ApiForm):
    status = StringField('Status', validators=[
        DataRequired(message='Invalid status'),
        AnyOf(['pending', 'in-progress', 'resolved', 'rejected'], message='Invalid status'),
    ])
    admin_response = TextAreaField('Admin Response', validators=[
        Optional(), Length(max=1000, message='Admin response cannot exceed 1000 characters'),
    ])


# -------- Companies --------
class CompanyForm(ApiForm):
    name = StringField('Name', validators=[DataRequired(message='Please add a company name'), Length(max=100)])
    description = TextAreaField('Description', validators=[
        Optional(), Length(max=500, message='Description cannot exceed 500 characters'),
    ])
    email = StringField('Email', validators=[
        DataRequired(message='Please add an email'), Email(message='Please use a valid email address'),
    ])
    phone = StringField('Phone', validators=[Optional(), Length(max=30)])
    website = StringField('Website', validators=[Optional(), Length(max=255)])
    service_type = StringField('Service Type', validators=[Optional(), Length(max=100)])


class CompanyUpdateForm(ApiForm):
    name = StringField('Name', validators=[Optional(), Length(max=100)])
    description = TextAreaField('Description', validators=[
        Optional(), Length(max=500, message='Description cannot exceed 500 characters'),
    ])
    email = StringField('Email', validators=[Optional(), Email(message='Please use a valid email address')])
    phone = StringField('Phone', validators=[Optional(), Length(max=30)])
    website = StringField('Website', validators=[Optional(), Length(max=255)])
    service_type = StringField('Service Type', validators=[Optional(), Length(max=100)])


# -------- Users --------
class UserRoleForm(ApiForm):
    role = StringField('Role', validators=[
        DataRequired(message='Invalid role'), AnyOf(USER_ROLES, message='Invalid role'),
    ])


class DeactivateForm(ApiForm):
    reason = StringField('Reason', validators=[Optional(), Length(max=255)])
    days = IntegerField('Days', validators=[Optional(), NumberRange(min=1, message='Ban length must be at least 1 day')])


class BookmarkForm(ApiForm):
    service_id = IntegerField('Service', validators=[DataRequired(message='Service ID is required')])
