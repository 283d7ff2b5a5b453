"""Per-application wiring of the transport, completion client and controller.

Instances are cached in ``app.config`` so every request reuses them; tests
replace them by setting the cache keys directly.
"""
from __future__ import annotations

from typing import Any

from flask import current_app

from .controller import ControllerSettings, SessionController

CLIENT_CACHE_KEY = "_COMPLETION_CLIENT_INSTANCE"
TRANSPORT_CACHE_KEY = "_TRANSPORT_INSTANCE"
CONTROLLER_CACHE_KEY = "_SESSION_CONTROLLER_INSTANCE"


def get_completion_client() -> Any:
    app = current_app
    if app.config.get(CLIENT_CACHE_KEY) is not None:
        return app.config[CLIENT_CACHE_KEY]

    from api_handler import CompletionClient

    client = CompletionClient(
        app.config.get("OPENROUTER_API_KEY", ""),
        model_name=app.config.get("COMPLETION_MODEL", ""),
        base_url=app.config.get("OPENROUTER_BASE_URL", ""),
        default_max_tokens=app.config.get("MAX_OUTPUT_TOKENS", 4000),
        referer=app.config.get("OPENROUTER_REFERER"),
        app_title=app.config.get("OPENROUTER_APP_TITLE"),
    )
    model, key = client.signature()
    app.logger.info("Initialised completion client for model %s (key %s)", model, key)
    app.config[CLIENT_CACHE_KEY] = client
    return client


def get_transport() -> Any:
    app = current_app
    if app.config.get(TRANSPORT_CACHE_KEY) is not None:
        return app.config[TRANSPORT_CACHE_KEY]

    from .transport import TelegramTransport

    transport = TelegramTransport(
        app.config.get("TELEGRAM_TOKEN", ""),
        message_limit=app.config.get("TRANSPORT_MESSAGE_LIMIT", 4000),
        chunk_delay=app.config.get("CHUNK_DELAY_SECONDS", 0.5),
    )
    app.config[TRANSPORT_CACHE_KEY] = transport
    return transport


def get_controller() -> SessionController:
    app = current_app
    if app.config.get(CONTROLLER_CACHE_KEY) is not None:
        return app.config[CONTROLLER_CACHE_KEY]

    controller = SessionController(
        get_transport(),
        get_completion_client,
        ControllerSettings.from_config(app.config),
    )
    app.config[CONTROLLER_CACHE_KEY] = controller
    return controller
