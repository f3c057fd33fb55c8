import os
import logging
import uuid
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from flask import Flask, g, request, jsonify
from flask.json.provider import DefaultJSONProvider
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_compress import Compress
from sqlalchemy.orm import DeclarativeBase
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from timezone_utils import get_ist_time_naive

logger = logging.getLogger(__name__)

class Base(DeclarativeBase):
    pass

db = SQLAlchemy(model_class=Base)
compress = Compress()


class STMSJSONProvider(DefaultJSONProvider):
    """JSON provider rendering dates as ISO-8601, money as numbers and enums by name"""

    @staticmethod
    def default(o):
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, Enum):
            return o.name
        return DefaultJSONProvider.default(o)


def _int_env(name, default):
    value = os.environ.get(name)
    try:
        return int(value) if value else default
    except ValueError:
        logger.warning(f"Ignoring non-integer value for {name}: {value!r}")
        return default


def create_app(config_overrides=None):
    # Create the app
    app = Flask(__name__)
    app.json = STMSJSONProvider(app)

    # Enforce SESSION_SECRET requirement
    app.secret_key = os.environ.get("SESSION_SECRET")
    if not app.secret_key:
        raise RuntimeError("SESSION_SECRET environment variable is required but not set")

    # x_for/x_proto/x_host: trust one reverse proxy
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    # CORS for the JSON API
    production_origins = os.environ.get('ALLOWED_ORIGINS', '').split(',')
    allowed_origins = [origin.strip() for origin in production_origins if origin.strip()]
    if not allowed_origins:
        allowed_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

    CORS(app, resources={r"/api/*": {"origins": allowed_origins}},
         supports_credentials=False,
         allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Correlation-ID"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"])

    app.config['COMPRESS_MIMETYPES'] = ['application/json', 'text/plain']
    app.config['COMPRESS_LEVEL'] = 6
    app.config['COMPRESS_MIN_SIZE'] = 500
    compress.init_app(app)

    # Configure the database - use PostgreSQL in production, SQLite for development
    database_url = os.environ.get("DATABASE_URL") or "sqlite:///stms.db"

    if database_url.startswith(("postgresql://", "postgres://")):
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        database_url = database_url.replace("postgresql://", "postgresql+psycopg2://", 1)

        app.config["SQLALCHEMY_DATABASE_URI"] = database_url
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_size": 10,
            "pool_recycle": 280,
            "pool_pre_ping": True,
            "max_overflow": 15,
            "pool_timeout": 20,
            "connect_args": {
                "connect_timeout": 10,
                "application_name": "stms",
            }
        }
    else:
        # Fallback to SQLite for local development
        app.config["SQLALCHEMY_DATABASE_URI"] = database_url
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_recycle": 300,
            "pool_pre_ping": True,
        }

    # Business settings
    app.config['STMS_DEFAULT_PAGE_SIZE'] = _int_env('STMS_DEFAULT_PAGE_SIZE', 20)
    app.config['STMS_MAX_PAGE_SIZE'] = _int_env('STMS_MAX_PAGE_SIZE', 100)
    app.config['STMS_PAYMENT_TERMS_DAYS'] = _int_env('STMS_PAYMENT_TERMS_DAYS', 30)
    app.config['STMS_DEFAULT_AVERAGE_SPEED_KMPH'] = _int_env('STMS_DEFAULT_AVERAGE_SPEED_KMPH', 50)
    app.config['STMS_DOCUMENT_EXPIRY_WARNING_DAYS'] = _int_env('STMS_DOCUMENT_EXPIRY_WARNING_DAYS', 30)

    if config_overrides:
        app.config.update(config_overrides)

    from utils.logging_config import setup_logging, log_request_start, log_request_end
    setup_logging(app)

    db.init_app(app)

    @app.before_request
    def assign_correlation_id():
        g.correlation_id = request.headers.get('X-Correlation-ID') or str(uuid.uuid4())
        log_request_start()

    @app.after_request
    def finish_request(response):
        response.headers['X-Correlation-ID'] = getattr(g, 'correlation_id', '')
        return log_request_end(response)

    register_error_handlers(app)

    # Register blueprints
    from client_routes import client_bp
    from driver_routes import driver_bp
    from truck_routes import truck_bp
    from trip_routes import trip_bp
    from builty_routes import builty_bp
    from income_routes import income_bp
    from maintenance_routes import maintenance_bp
    from report_routes import report_bp

    app.register_blueprint(client_bp, url_prefix='/api/clients')
    app.register_blueprint(driver_bp, url_prefix='/api/drivers')
    app.register_blueprint(truck_bp, url_prefix='/api/trucks')
    app.register_blueprint(trip_bp, url_prefix='/api/trips')
    app.register_blueprint(builty_bp, url_prefix='/api/builties')
    app.register_blueprint(income_bp, url_prefix='/api/incomes')
    app.register_blueprint(maintenance_bp, url_prefix='/api/maintenances')
    app.register_blueprint(report_bp, url_prefix='/api/dashboard')

    from utils.config_validator import check_production_readiness
    check_production_readiness()

    with app.app_context():
        import models  # noqa: F401
        db.create_all()

    # Health check endpoint for deployment
    @app.route('/health')
    def health():
        """Simple health check endpoint for deployment readiness"""
        return {'status': 'ok', 'timestamp': get_ist_time_naive().isoformat()}, 200

    return app


def register_error_handlers(app):
    """Map domain and HTTP errors onto the JSON error envelope"""
    from exceptions import STMSError

    @app.errorhandler(STMSError)
    def handle_domain_error(error):
        if error.status_code >= 500:
            logger.error(f"{error.error_code}: {error.message}")
        else:
            logger.warning(f"{error.error_code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({
            'success': False,
            'error': error.name.upper().replace(' ', '_'),
            'message': error.description
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        logger.exception(f"Unhandled error: {str(error)}")
        return jsonify({
            'success': False,
            'error': 'INTERNAL_ERROR',
            'message': 'Internal server error'
        }), 500
