import logging

import click
from flask import Flask
from flasgger import Swagger
from flask_cors import CORS

from .config import AuthSettings, get_config
from .errors import register_error_handlers
from .request_logger import configure_request_logging
from models import storage  # DBStorage singleton (scoped_session)
from services.auth_service import AuthService
from services.mailer import BackgroundResetMailer, LogResetMailer, SmtpResetMailer

# Minimal Swagger config: exposes /swagger.json and UI at /apidocs
SWAGGER_TEMPLATE = {
    "swagger": "2.0.0",
    "info": {
        "title": "Blog API",
        "version": "1.0.0",
        "description": "Authentication and session endpoints for the blog platform.",
    },
    "basePath": "/",
    "schemes": ["http"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": "Enter the token with the `Bearer ` prefix, e.g. \"Bearer abcde12345\"."
        }
    }
}

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec_1",
            "route": "/swagger.json",
            "rule_filter": lambda rule: True,   # include all endpoints
            "model_filter": lambda tag: True,   # include all models
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/apidocs/",
}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


def build_mailer(config):
    if config.get("SMTP_HOST"):
        return BackgroundResetMailer(SmtpResetMailer(
            config["PASSWORD_RESET_URL"],
            host=config["SMTP_HOST"],
            port=config["SMTP_PORT"],
            user=config.get("SMTP_USER"),
            password=config.get("SMTP_PASSWORD"),
            from_email=config.get("SMTP_FROM"),
            use_tls=config["SMTP_USE_TLS"],
        ))
    # raw reset tokens only reach the log in development
    reveal = config.get("APP_ENV", "dev").lower() in ("dev", "development")
    return LogResetMailer(config["PASSWORD_RESET_URL"], reveal_token=reveal)


def create_app(config_name: str | None = None, overrides: dict | None = None,
               mailer=None) -> Flask:
    """
    Application factory: creates and configures the Flask app.
    Refuses to start (ConfigurationError) without both signing secrets.
    """
    app = Flask(__name__)

    # Load configuration (reads .env via get_config)
    app.config.from_object(get_config(config_name))
    if overrides:
        app.config.update(overrides)

    configure_logging(app.config["LOG_LEVEL"])

    settings = AuthSettings.from_config(app.config)
    app.extensions["auth_service"] = AuthService.from_settings(
        settings, storage, mailer or build_mailer(app.config)
    )

    # Cross-Origin Resource Sharing: enable for dev, configurable for prod
    CORS(app, resources={r"/*": {"origins": app.config.get("CORS_ORIGINS", "*")}})

    # Swagger UI and JSON
    Swagger(app, template=SWAGGER_TEMPLATE, config=SWAGGER_CONFIG)

    register_error_handlers(app)
    configure_request_logging(app)

    from .health import bp as health_bp
    from .auth import bp as auth_bp
    from .users import bp as users_bp

    app.register_blueprint(health_bp, url_prefix="/api/v1")
    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")
    app.register_blueprint(users_bp, url_prefix="/api/v1")

    # Ensure the DB session is removed at the end of each request/app context
    @app.teardown_appcontext
    def remove_session(exception=None):
        storage.close()

    @app.cli.command("purge-tokens")
    def purge_tokens():
        """Delete expired refresh and password reset tokens."""
        removed = app.extensions["auth_service"].purge_expired_tokens()
        click.echo(f"Removed {removed['refresh_tokens']} refresh and "
                   f"{removed['password_reset_tokens']} password reset tokens")

    @app.route("/")
    def root():
        return {
            "message": "Welcome to Blog API",
            "docs": "/apidocs/",
            "health": "/api/v1/health",
        }, 200

    return app
