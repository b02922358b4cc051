import os
from flask import Flask, jsonify
from config import Config
from extensions import db, login_manager, init_extensions
from logger import configure_app_logging
from models import Member


# --------------------------------------------------------------------------------------------------------
#       Application factory
# --------------------------------------------------------------------------------------------------------
def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.config.get("SECRET_KEY"):
        if app.config.get("TESTING"):
            app.config["SECRET_KEY"] = "testing"
        else:
            raise ValueError("SECRET_KEY must be set in production")

    if not app.debug and not app.testing:
        app.config.update(
            SESSION_COOKIE_SECURE=True,
            SESSION_COOKIE_HTTPONLY=True,
            REMEMBER_COOKIE_SECURE=True,
            REMEMBER_COOKIE_HTTPONLY=True,
        )

    # ------------------------------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------------------------------
    configure_app_logging(app)

    # ----------------------------------------------------------------------------------------------------------------------------------
    # Local sqlite needs its instance folder
    # --------------------------------------------------------------------------------------------------------------------------------------------
    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if database_uri.startswith("sqlite:///") and ":memory:" not in database_uri:
        os.makedirs(os.path.dirname(database_uri.replace("sqlite:///", "", 1)), exist_ok=True)

    # --------------------------------------------------------------------------------------------------------------------------
    # Initialize extensions
    # ----------------------------------------------------------------------------------------------------------------------------
    init_extensions(app)

    # ------------------------------------------------------------------------------------------------------------------------
    # Flask-Login: identity comes from the session set by the auth provider
    # ------------------------------------------------------------------------------------------------------------------------
    @login_manager.user_loader
    def load_user(user_id):
        try:
            return db.session.get(Member, int(user_id))
        except (TypeError, ValueError):
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"success": False, "error": "Unauthorized"}), 401

    # ------------------------------------------------------------------------------------------------------------------------
    # Register blueprints, error handlers, CLI
    # -----------------------------------------------------------------------------------------------------------------------
    register_blueprints(app)

    from blueprints.api_helpers import register_error_handlers
    register_error_handlers(app)

    from mlm.cli import mlm_cli
    app.cli.add_command(mlm_cli)

    # ----------------------
    # Basic routes
    # ----------------------
    @app.route("/healthz")
    def healthz():
        return {"status": "ok"}, 200

    app.logger.info("MLM application created (db=%s)", database_uri.split("@")[-1])
    return app


def register_blueprints(app):
    from blueprints.mlm import bp as mlm_bp
    from blueprints.admin import admin_bp

    app.register_blueprint(mlm_bp)
    app.register_blueprint(admin_bp)
