import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .extensions import db, migrate, login_manager


def configure_logging(app):
    logging.basicConfig(
        level=getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def register_error_handlers(app):
    from .engine.errors import EngineError

    @app.errorhandler(EngineError)
    def engine_error(exc):
        return jsonify(exc.to_dict()), int(exc.status_code)

    @app.errorhandler(HTTPException)
    def http_error(exc):
        return jsonify(success=False, error=exc.name, message=exc.description), exc.code


def create_app(config_object="config.Config"):
    app = Flask(__name__)
    app.config.from_object(config_object)
    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    from . import models
    from .models.user import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify(success=False, error="Unauthorized", message="Login required"), 401

    from .blueprints.auth import bp as auth_bp
    from .blueprints.admin import bp as admin_bp
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    register_error_handlers(app)

    from .cli import records_cli
    app.cli.add_command(records_cli)

    return app
