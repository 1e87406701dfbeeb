"""Flask application factory."""
import os

from flask import Flask, jsonify
from farmstore.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize Sentry for error tracking in production
    if os.getenv('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=app.config.get('ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Initialize database
    init_db(app)

    # Local persisted state (cart + recently viewed)
    from farmstore.services.state_store import build_state_store
    from farmstore.services.cart_service import CartLedgerRegistry
    state_store = build_state_store(app.config)
    app.extensions['farmstore_state'] = state_store
    app.extensions['farmstore_carts'] = CartLedgerRegistry(state_store)

    # One M-Pesa client per app, shared by every settlement
    from farmstore.services.mpesa_client import init_mpesa
    init_mpesa(app)

    # Load profile context before each request
    from farmstore.middleware import load_profile

    @app.before_request
    def before_request_handler():
        """Load profile and role for each request."""
        load_profile()

    # Error Handlers
    from farmstore.exceptions import FarmStoreError

    @app.errorhandler(FarmStoreError)
    def handle_farmstore_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"FarmStoreError [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"FarmStoreError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'status': 'error', 'message': 'Method Not Allowed'}), 405

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from farmstore.blueprints.cart import cart_bp
    from farmstore.blueprints.checkout import checkout_bp
    from farmstore.blueprints.orders import orders_bp

    app.register_blueprint(cart_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(orders_bp)

    # CLI commands
    from farmstore.cli_commands import init_cli_commands
    init_cli_commands(app)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    return app
