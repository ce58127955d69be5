"""
Flask application factory.

Creates and configures the Flask app, registers the scan API blueprint.
"""
from flask import Flask


def create_app():
    """Create and configure the Flask application."""
    from app.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    # Register blueprints
    from app.routes.scans import bp as scans_bp

    app.register_blueprint(scans_bp)

    # Initialize circuit breakers for external API services
    from app.extensions import redis_client
    from app.services.circuit_breaker import init_breakers
    init_breakers(redis_client)

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic — no init_db() call.
    import importlib
    for module in ('scan_run', 'monitored_domain', 'site_analysis', 'scan_prompt', 'platform_response',
                   'report', 'frozen', 'score_history', 'web_mention', 'cost_entry'):
        importlib.import_module(f'app.models.{module}')

    return app
