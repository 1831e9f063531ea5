"""
ISP diagnostics backend
Main application factory
"""
import logging

from celery import Celery, Task
from flask import Flask, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_mail import Mail
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from prometheus_flask_exporter import PrometheusMetrics

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
mail = Mail()
limiter = Limiter(key_func=get_remote_address)
metrics = PrometheusMetrics.for_app_factory()
celery = Celery(__name__)


def _init_celery(app):
    """Bind the shared Celery instance to the Flask app and its context."""

    class ContextTask(Task):
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return self.run(*args, **kwargs)

    celery.conf.update(
        broker_url=app.config.get('CELERY_BROKER_URL'),
        result_backend=app.config.get('CELERY_RESULT_BACKEND'),
        task_always_eager=bool(app.config.get('TESTING')),
        beat_schedule={
            'sweep-devices': {
                'task': 'ispdiag.tasks.sweep_devices',
                'schedule': float(app.config['DEVICE_SWEEP_INTERVAL_SECONDS']),
            },
            'sweep-users': {
                'task': 'ispdiag.tasks.sweep_users',
                'schedule': float(app.config['USER_SWEEP_INTERVAL_SECONDS']),
            },
            'sweep-routers': {
                'task': 'ispdiag.tasks.sweep_routers',
                'schedule': float(app.config['ROUTER_SWEEP_INTERVAL_SECONDS']),
            },
        },
    )
    celery.Task = ContextTask
    app.extensions['celery'] = celery
    return celery


def create_app(config_class='default'):
    """Application factory"""
    from ispdiag.config import config as config_map

    app = Flask(__name__)

    # Load configuration
    if isinstance(config_class, str) and config_class in config_map:
        config_class = config_map[config_class]
    if hasattr(config_class, 'validate'):
        config_class.validate()
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    mail.init_app(app)
    limiter.init_app(app)
    if app.config.get('METRICS_ENABLED'):
        metrics.init_app(app)
    CORS(app, resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}})
    _init_celery(app)

    # Configure logging
    if not app.debug and not app.testing:
        gunicorn_logger = logging.getLogger('gunicorn.error')
        if gunicorn_logger.handlers:
            app.logger.handlers = gunicorn_logger.handlers
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Register blueprints
    from ispdiag.routes.diagnostics import diagnostics_bp
    from ispdiag.routes.devices import devices_bp
    from ispdiag.routes.monitoring import monitoring_bp
    from ispdiag.routes.hotspot import hotspot_bp
    from ispdiag.routes.webhooks import webhooks_bp

    app.register_blueprint(diagnostics_bp, url_prefix='/api')
    app.register_blueprint(devices_bp, url_prefix='/api/devices')
    app.register_blueprint(monitoring_bp, url_prefix='/api/monitoring')
    app.register_blueprint(hotspot_bp, url_prefix='/api/hotspot')
    app.register_blueprint(webhooks_bp, url_prefix='/api/webhooks')

    from ispdiag.seed import register_commands
    register_commands(app)

    # Health check endpoint
    @app.route('/health')
    def health():
        return jsonify({'status': 'healthy', 'service': 'ispdiag-backend'})

    # Error handlers
    from ispdiag.errors import ServiceError
    from ispdiag.tenancy import TenantResolutionError

    @app.errorhandler(ServiceError)
    def service_error(error):
        if error.status_code >= 500:
            app.logger.error(f'Service error: {error.message}')
        return jsonify({'error': error.message}), error.status_code

    @app.errorhandler(TenantResolutionError)
    def tenant_error(error):
        return jsonify({'error': str(error)}), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f'Server Error: {error}')
        return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(429)
    def ratelimit_handler(e):
        return jsonify({'error': 'Rate limit exceeded'}), 429

    return app
