from __future__ import annotations

import logging
import sys
from pathlib import Path

from flask import Flask
from dotenv import load_dotenv

from .config import Config
from .extensions import db
from .db_utils import ensure_database_schema


BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)

    configure_logging(app)
    register_extensions(app)
    register_blueprints(app)
    register_commands(app)

    with app.app_context():
        ensure_database_schema()

    if not app.config.get("AUTHORIZED_USER_ID"):
        app.logger.warning("AUTHORIZED_USER_ID is not configured; every sender will be denied.")
    app.logger.info(
        "Daily limits: %s messages, $%.2f spending",
        app.config["DAILY_MESSAGE_LIMIT"],
        app.config["DAILY_SPENDING_LIMIT"],
    )
    return app


def configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-5s | %(name)s | %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    app.logger.setLevel(level)


def register_extensions(app: Flask) -> None:
    db.init_app(app)


def register_blueprints(app: Flask) -> None:
    from .main import bp as main_bp
    from .telegram import bp as telegram_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(telegram_bp)


def register_commands(app: Flask) -> None:
    from .cli import export_story_command, poll_command

    app.cli.add_command(poll_command)
    app.cli.add_command(export_story_command)
