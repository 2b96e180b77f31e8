import pymysql
pymysql.install_as_MySQLdb()
from flask import Flask
from flask_cors import CORS

from .config import DevConfig
from .extensions import db, migrate, jwt, ma
from .utils.errors import register_error_handlers
from .api import (
    rental_routes,
    chat_routes,
)


def create_app(config_class=DevConfig) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_class)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # CORS for the web and mobile clients (see CORS_ORIGINS)
    CORS(
        app,
        resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}},
        supports_credentials=True,
    )

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    ma.init_app(app)

    # Models must be imported before create_all / autogenerate
    from . import models  # noqa: F401

    # Blueprints
    app.register_blueprint(rental_routes.bp, url_prefix="/api/rentals")
    app.register_blueprint(chat_routes.bp, url_prefix="/api/chats")

    # Error handlers
    register_error_handlers(app)

    @app.get("/api/health")
    def health_check():
        return {"status": "ok", "service": "campus-market-backend"}

    return app
