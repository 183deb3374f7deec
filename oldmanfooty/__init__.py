"""Application factory for Old Man Footy."""

from __future__ import annotations

from flask import Flask, jsonify

from oldmanfooty.blueprints.admin import admin_bp
from oldmanfooty.blueprints.carnivals import carnivals_bp
from oldmanfooty.config import Config
from oldmanfooty.extensions import (
    db,
    migrate,
    login_manager,
    csrf,
)
from oldmanfooty.models import User
from oldmanfooty.services.db import configure_sqlite_transactions, ensure_core_tables


def create_app(config_class=Config):
    """Create Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_class)
    # Module loggers (oldmanfooty.services.*) propagate to the app logger
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Initialize Flask extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)

    with app.app_context():
        configure_sqlite_transactions(db.engine)

    # Safety net for development environments without migrations
    if app.config.get('BOOTSTRAP_TABLES', False):
        with app.app_context():
            ensure_core_tables()

    @login_manager.user_loader
    def load_user(user_id: str):
        return db.session.get(User, user_id)

    @login_manager.unauthorized_handler
    def handle_unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    # Ensure models are registered for migrations
    import oldmanfooty.models  # noqa: F401

    # Register blueprints
    app.register_blueprint(admin_bp, url_prefix='/admin')
    app.register_blueprint(carnivals_bp, url_prefix='/carnivals')

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'error': 'Internal server error'}), 500

    # Register CLI commands
    from oldmanfooty.commands import register_commands
    register_commands(app)

    return app
