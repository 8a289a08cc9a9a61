from __future__ import annotations

import click
from flask import Flask
from werkzeug.exceptions import HTTPException

from config import Config
from extensions import EXTENSION_KEY, init_extensions
from routes.admin_routes import admin_bp
from routes.auth_routes import auth_bp
from routes.notification_routes import notification_bp
from routes.results_routes import results_bp
from routes.student_routes import student_bp
from routes.teacher_routes import teacher_bp
from routes.user_routes import user_bp
from utils.cors import register_cors
from utils.db import get_db_connection
from utils.dispatchers import ensure_outbox_table
from utils.logging_config import configure_logging
from utils.otp import ensure_otp_tables
from utils.responses import ApiError, failure, internal_error

# HTTP status -> closest envelope code for errors raised by Flask itself
HTTP_ERROR_CODES = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "NOT_FOUND",
    409: "CONFLICT",
    415: "VALIDATION_ERROR",
    422: "VALIDATION_ERROR",
}


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(err: ApiError):
        if err.status >= 500:
            app.logger.error("%s: %s", err.code, err.message)
        return failure(err)

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        status = exc.code or 500
        code = HTTP_ERROR_CODES.get(status, "VALIDATION_ERROR" if status < 500 else "INTERNAL_ERROR")
        if code == "NOT_FOUND":
            message = "Not found"
        elif code == "INTERNAL_ERROR":
            message = "Internal server error"
        else:
            message = exc.description
        # the envelope code decides the status, so a 405 is reported as 404
        return failure(ApiError(code, message))

    @app.errorhandler(Exception)
    def _unexpected(exc: Exception):
        app.logger.exception("Unhandled error: %s", exc)
        return failure(internal_error())


def register_cli(app: Flask) -> None:
    @app.cli.command("init-db")
    def init_db_command():
        """Create the OTP, reset-token and notification outbox tables if missing."""
        db = get_db_connection()
        try:
            ensure_otp_tables(db)
            ensure_outbox_table(db)
        finally:
            db.close()
        click.echo("Auxiliary tables ready.")


def create_app(config_object=Config, **services) -> Flask:
    """Application factory. ``services`` override entries of the service container."""
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.json.sort_keys = False

    configure_logging(app.config.get("LOG_LEVEL") or "INFO")
    init_extensions(app, **services)

    register_cors(app)
    register_error_handlers(app)
    register_cli(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(results_bp)
    app.register_blueprint(student_bp)
    app.register_blueprint(teacher_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(user_bp)

    app.logger.info(
        "%s started (notification driver: %s)",
        app.config.get("APP_NAME"),
        app.extensions[EXTENSION_KEY].notifier.name,
    )
    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000, debug=False)
