# config.py
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    APP_ENV = os.getenv('APP_ENV', 'development')

    # Secret key for sessions and CSRF protection
    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me-in-production')

    # Database URL, supports both DATABASE_URL or SQLALCHEMY_DATABASE_URI
    SQLALCHEMY_DATABASE_URI = (
        os.getenv('SQLALCHEMY_DATABASE_URI')
        or os.getenv('DATABASE_URL')
        or 'sqlite:///' + os.path.join(BASE_DIR, 'phantom_agency.db')
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # JWT session cookie
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY') or SECRET_KEY
    JWT_ALGORITHM = 'HS256'
    JWT_EXPIRES_DAYS = int(os.getenv('JWT_EXPIRES_DAYS', 30))
    JWT_COOKIE_NAME = 'jwt'
    RESET_TOKEN_MINUTES = 15

    # One-time codes
    OTP_TTL_MINUTES = 10
    OTP_MAX_ATTEMPTS = 5
    PENDING_USER_TTL_HOURS = 24

    # CSRF: the SPA sends the token back in a header
    WTF_CSRF_HEADERS = ['X-CSRF-Token', 'X-CSRFToken']
    WTF_CSRF_TIME_LIMIT = None

    # CORS
    FRONTEND_URL = os.getenv('FRONTEND_URL', 'http://localhost:5173')
    CORS_ORIGINS = [origin.strip() for origin in os.getenv('CORS_ORIGINS', FRONTEND_URL).split(',') if origin.strip()]

    # File uploads
    UPLOAD_FOLDER = os.getenv('UPLOAD_FOLDER', os.path.join(BASE_DIR, 'static', 'uploads'))
    UPLOAD_URL_PREFIX = os.getenv('UPLOAD_URL_PREFIX', '/uploads')
    ALLOWED_EXTENSIONS = {'jpg', 'jpeg', 'png', 'webp'}
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024

    # Flask-Mail
    MAIL_SERVER = os.getenv('MAIL_SERVER', 'smtp.gmail.com')
    MAIL_PORT = int(os.getenv('MAIL_PORT', 587))
    MAIL_USE_TLS = os.getenv('MAIL_USE_TLS', 'true').lower() == 'true'
    MAIL_USERNAME = os.getenv('MAIL_USERNAME')
    MAIL_PASSWORD = os.getenv('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.getenv('MAIL_DEFAULT_SENDER', os.getenv('MAIL_USERNAME') or 'no-reply@phantom.agency')

    # Support contact shown when a complained-about service disappears
    SUPPORT_EMAIL = os.getenv('SUPPORT_EMAIL', 'support@phantom.agency')
    SUPPORT_PHONE = os.getenv('SUPPORT_PHONE', '+1-800-SERVICE')
