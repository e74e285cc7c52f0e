from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_wtf import CSRFProtect
from flask_socketio import SocketIO
from flask_mail import Mail

# Database
db = SQLAlchemy()

# Migrations
migrate = Migrate()

# Authentication (users are loaded from the JWT cookie, see security.py)
login_manager = LoginManager()

# CSRF protection
csrf = CSRFProtect()

# WebSockets (real-time notifications and chat)
socketio = SocketIO()

# Outgoing email (OTP codes, status notices)
mail = Mail()
