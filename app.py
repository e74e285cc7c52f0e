import os
import logging
from datetime import datetime, timezone

import click
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_wtf.csrf import generate_csrf

from config import Config
from extensions import db, migrate, login_manager, csrf, socketio, mail
from errors import register_error_handlers


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Logging
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)

    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    mail.init_app(app)
    socketio.init_app(app, cors_allowed_origins=app.config['CORS_ORIGINS'])
    CORS(app, supports_credentials=True, origins=app.config['CORS_ORIGINS'])

    # Registers the JWT request loader on login_manager
    import security  # noqa: F401

    # Blueprints
    from routes.auth_routes import auth_bp
    from routes.service_routes import service_bp
    from routes.booking_routes import booking_bp
    from routes.complaint_routes import complaint_bp
    from routes.company_routes import company_bp
    from routes.user_routes import user_bp
    from routes.bookmark_routes import bookmark_bp
    from routes.chat_routes import chat_bp, register_socket_handlers
    from routes.admin_routes import admin_bp
    from routes.upload_routes import upload_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(service_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(complaint_bp)
    app.register_blueprint(company_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(bookmark_bp)
    app.register_blueprint(chat_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(upload_bp)

    register_socket_handlers(socketio)
    register_error_handlers(app)
    register_commands(app)

    if app.config['APP_ENV'] != 'production' and not app.testing:
        @app.before_request
        def log_request():
            logger.info(f"{request.method} {request.path}")

    @app.route('/api/csrf-token')
    def csrf_token():
        return jsonify({'csrf_token': generate_csrf()})

    @app.route('/')
    def root():
        return jsonify({
            'status': 'running',
            'message': 'Phantom Agency Backend',
            'version': '1.0.0',
            'timestamp': datetime.now(timezone.utc).isoformat(),
        })

    @app.route('/health')
    def health():
        return jsonify({'status': 'healthy'})

    return app


def register_commands(app):
    from models.models import User, purge_expired

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables."""
        db.create_all()
        click.echo('Database tables created.')

    @app.cli.command('create-superuser')
    @click.option('--email', required=True)
    @click.option('--name', required=True)
    @click.option('--password', required=True, prompt=True, hide_input=True)
    def create_superuser(email, name, password):
        """Create a superuser account, or promote an existing one."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if user is None:
            user = User(name=name, email=email, role='superuser')
            user.set_password(password)
            db.session.add(user)
            click.echo(f"Superuser {user.email} created.")
        else:
            user.role = 'superuser'
            click.echo(f"{user.email} promoted to superuser.")
        db.session.commit()

    @app.cli.command('purge-expired')
    def purge_expired_command():
        """Delete expired one-time codes, pending signups and sessions."""
        counts = purge_expired()
        click.echo(', '.join(f"{name}: {count}" for name, count in counts.items()))


# Run
if __name__ == '__main__':
    app = create_app()
    with app.app_context():
        try:
            db.create_all()
        except Exception as e:
            app.logger.error(f"Error creating database tables: {str(e)}")
    socketio.run(app, debug=True, use_reloader=False)
