import logging
from dataclasses import dataclass

from flask import Flask, current_app, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .auth import AuthenticationManager
from .config import SecurityConfig, get_config
from .crypto import CryptoManager
from .database import Database
from .email_service import EmailService
from .errors import AuthServiceError, InternalError
from .logging_config import setup_logging
from .rate_limiter import RateLimiter, RateLimitPolicy
from .tokens import TokenService

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'igrotrend_auth'


@dataclass
class AuthComponents:
    """Process-wide collaborators, built once per application."""
    settings: SecurityConfig
    database: Database
    crypto: CryptoManager
    tokens: TokenService
    email: EmailService
    rate_limiter: RateLimiter
    rate_limits: RateLimitPolicy


def components() -> AuthComponents:
    return current_app.extensions[EXTENSION_KEY]


def get_db():
    """Per-request SQLAlchemy session, closed on teardown."""
    if 'db' not in g:
        g.db = components().database.session()
    return g.db


def get_auth() -> AuthenticationManager:
    c = components()
    return AuthenticationManager(get_db(), c.settings, c.crypto, c.tokens, c.email, c.rate_limits)


def client_ip() -> str:
    """Rate-limit identity. Behind trusted proxies ProxyFix has already rewritten remote_addr."""
    return request.remote_addr or 'unknown'


def create_app(config=None, rate_limiter=None) -> Flask:
    settings = config or get_config()
    settings.validate()

    setup_logging(settings.LOG_LEVEL)

    app = Flask(__name__)
    app.config.from_object(settings)
    if settings.TRUSTED_PROXY_COUNT > 0:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=settings.TRUSTED_PROXY_COUNT)

    database = Database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    database.create_all()

    limiter = rate_limiter if rate_limiter is not None else RateLimiter()
    app.extensions[EXTENSION_KEY] = AuthComponents(
        settings=settings,
        database=database,
        crypto=CryptoManager(settings),
        tokens=TokenService.from_config(settings),
        email=EmailService.from_config(settings),
        rate_limiter=limiter,
        rate_limits=RateLimitPolicy(limiter, settings.RATE_LIMITS),
    )

    if not app.extensions[EXTENSION_KEY].email.configured:
        logger.warning("SMTP config incomplete; emails will not be sent")

    from .routes import auth_bp, two_factor_bp, security_key_bp
    app.register_blueprint(auth_bp)
    app.register_blueprint(two_factor_bp)
    app.register_blueprint(security_key_bp)

    from .cli import register_commands
    register_commands(app)

    @app.teardown_appcontext
    def close_db(exc):
        db = g.pop('db', None)
        if db is not None:
            if exc is not None:
                db.rollback()
            db.close()

    @app.after_request
    def add_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Content-Security-Policy'] = "default-src 'self'"

        origin = request.headers.get('Origin', '')
        allowed = settings.ALLOWED_ORIGINS
        if '*' in allowed or origin in allowed:
            response.headers['Access-Control-Allow-Origin'] = origin or '*'
            response.headers['Access-Control-Allow-Methods'] = 'GET,POST,PUT,PATCH,DELETE,OPTIONS'
            response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Authorization'
            response.headers['Access-Control-Allow-Credentials'] = 'true'
            response.headers['Vary'] = 'Origin'
        return response

    @app.errorhandler(AuthServiceError)
    def handle_service_error(error: AuthServiceError):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({'error': error.name.lower().replace(' ', '_'), 'message': error.description}), error.code

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(error):
        logger.exception("Database error on %s %s", request.method, request.path)
        internal = InternalError()
        return jsonify(internal.to_dict()), internal.status_code

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        internal = InternalError()
        return jsonify(internal.to_dict()), internal.status_code

    return app
