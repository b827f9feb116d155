from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify

from .config import Config
from .db_utils import ensure_database_schema
from .errors import register_error_handlers
from .extensions import csrf, db, login_manager, migrate
from .services.llm_gateway import LLMGateway, load_prompt_config
from .services.text_clients import build_text_client, missing_credential_message
from .storage import select_backend


BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def create_app(config_class: type[Config] = Config, gateway: Optional[LLMGateway] = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")), logging.INFO))

    backend = select_backend(app.config.get("DATABASE_URL"), app.config.get("SQLALCHEMY_DATABASE_URI"))
    app.config["SQLALCHEMY_DATABASE_URI"] = backend.database_uri
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
        **backend.engine_options(),
        **app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}),
    }
    app.extensions["storage_backend"] = backend

    register_extensions(app)
    register_error_handlers(app)
    register_blueprints(app)

    if gateway is None:
        gateway = LLMGateway(
            build_text_client(app.config),
            load_prompt_config(app.config["PROMPT_CONFIG_PATH"]),
            missing_credential_message=missing_credential_message(app.config),
        )
    app.extensions["llm_gateway"] = gateway

    with app.app_context():
        backend.prepare_engine(db.engine)
        ensure_database_schema()

    app.logger.info(
        "Inkwell started with %s storage; text generation %s",
        backend.name,
        "configured" if gateway.is_configured else "not configured",
    )
    return app


def register_extensions(app: Flask) -> None:
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)

    @login_manager.unauthorized_handler
    def _unauthorized():
        return jsonify({"error": "Unauthorized"}), 401


def register_blueprints(app: Flask) -> None:
    from .ai import bp as ai_bp
    from .auth import bp as auth_bp
    from .chapters import bp as chapters_bp
    from .projects import bp as projects_bp
    from .storybible import bp as storybible_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(projects_bp)
    app.register_blueprint(chapters_bp)
    app.register_blueprint(ai_bp)
    app.register_blueprint(storybible_bp)
