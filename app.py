import logging

import click
from flask import Flask, request
from flask_cors import CORS
from werkzeug.middleware.proxy_fix import ProxyFix

from activity import ActivityLogger
from admin import admin_bp
from api import api_bp
from config import Config
from errors import register_error_handlers
from image_service import GeneratorClient
from models import ROLE_ADMIN, User, db
from storage import build_storage_client

logger = logging.getLogger(__name__)

_REDACTED_HEADERS = {'authorization', 'cookie'}


def _configure_logging(level):
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _mask(value):
    return 'set' if value else 'Not set'


def create_app(config_object=Config, storage=None, generator=None):
    """
    Build the Flask application.

    Args:
        config_object: Config class (or object) to load settings from
        storage: Optional StorageClient; built from config when omitted
        generator: Optional generator client; built from config when omitted

    Returns:
        Flask: the configured application
    """
    app = Flask(__name__)
    app.config.from_object(config_object)
    _configure_logging(app.config.get('LOG_LEVEL', 'INFO'))

    # Log configuration on startup
    logger.info("=" * 80)
    logger.info("APPLICATION STARTING")
    logger.info("=" * 80)
    logger.info(f"Debug mode: {app.config.get('DEBUG')}")
    logger.info(f"Database URI: {_mask(app.config.get('SQLALCHEMY_DATABASE_URI'))}")
    logger.info(f"Storage endpoint: {app.config.get('STORAGE_ENDPOINT') or 'in-memory'}")
    logger.info(f"Generator URL: {app.config.get('GENERATOR_API_URL')}")
    logger.info(f"JWT secret: {_mask(app.config.get('JWT_SECRET'))}")
    logger.info("=" * 80)

    # Trust X-Forwarded-* when running behind the hosting platform's proxy
    if app.config.get('BEHIND_PROXY'):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    CORS(app, origins=app.config['CORS_ORIGINS'])

    db.init_app(app)

    # Dependencies live on the app so handlers never reach for module globals
    app.extensions['storage'] = storage if storage is not None else build_storage_client(app.config)
    app.extensions['generator'] = generator if generator is not None else GeneratorClient(
        app.config['GENERATOR_API_URL'], timeout=app.config['GENERATOR_TIMEOUT']
    )
    ActivityLogger(app)

    if app.config.get('AUTO_CREATE_TABLES'):
        with app.app_context():
            db.create_all()
            logger.info("Database tables created/verified")

    register_error_handlers(app)
    app.register_blueprint(api_bp)
    app.register_blueprint(admin_bp)

    @app.before_request
    def log_request_info():
        """Log all incoming requests."""
        headers = {
            k: ('<redacted>' if k.lower() in _REDACTED_HEADERS else v)
            for k, v in request.headers.items()
        }
        logger.info(f"INCOMING REQUEST: {request.method} {request.path} from {request.remote_addr}")
        logger.debug(f"Headers: {headers}")

    @app.after_request
    def log_response_info(response):
        """Log all outgoing responses."""
        logger.info(f"OUTGOING RESPONSE: {request.method} {request.path} -> {response.status_code}")
        return response

    @app.cli.command('promote-admin')
    @click.argument('email')
    def promote_admin(email):
        """Grant the admin role to an existing user."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if user is None:
            raise click.ClickException(f"No user with email {email}")
        user.role = ROLE_ADMIN
        db.session.commit()
        click.echo(f"{user.email} is now an admin")

    return app


if __name__ == '__main__':
    app = create_app()
    port = app.config['PORT']
    debug_mode = app.config.get('DEBUG', False)
    logger.info(f"Starting Flask app in {'DEBUG' if debug_mode else 'PRODUCTION'} mode on port {port}")
    app.run(debug=debug_mode, host='0.0.0.0', port=port)
