"""Flask application factory."""
import os

from flask import Flask, request, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from werkzeug.exceptions import HTTPException

from payables.database import init_db


def _init_sentry(app):
    """Report errors to Sentry in production when a DSN is configured."""
    dsn = os.getenv('SENTRY_DSN')
    environment = os.getenv('FLASK_ENV', 'production')
    if not dsn or environment != 'production' or app.config.get('TESTING'):
        return

    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.1,
        environment=environment,
        release=os.getenv('GIT_COMMIT', 'unknown')
    )


def _register_error_handlers(app):
    from payables.exceptions import PayablesError

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF rejected on {request.path}: {e.description}")
        return jsonify({'status': 'error', 'message': 'Missing or expired CSRF token'}), 400

    @app.errorhandler(PayablesError)
    def handle_payables_error(error):
        level = app.logger.error if error.status_code >= 500 else app.logger.info
        level(f"{type(error).__name__} [{error.status_code}] on {request.path}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        app.logger.exception(f"Unhandled exception on {request.path}: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    csrf = CSRFProtect(app)
    _init_sentry(app)

    from payables.blueprints.metrics import setup_metrics_instrumentation, metrics_bp
    setup_metrics_instrumentation(app)

    if os.getenv('FLASK_ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    init_db(app)

    from payables.middleware import load_current_user
    app.before_request(load_current_user)

    _register_error_handlers(app)

    from payables.blueprints.auth import auth_bp
    from payables.blueprints.invoices import invoices_bp
    from payables.blueprints.settings import settings_bp
    from payables.blueprints.cron import cron_bp

    for blueprint in (auth_bp, invoices_bp, settings_bp, metrics_bp):
        app.register_blueprint(blueprint)

    # Cron callers authenticate with a shared secret, not a session
    csrf.exempt(cron_bp)
    app.register_blueprint(cron_bp)

    from payables.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
