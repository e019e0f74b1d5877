"""
Flask application factory for the serial bridge.
"""

import logging
from typing import Optional

from flask import Flask, abort, current_app, g

from serbridge.core.config import Config, load_config
from serbridge.serial.registry import DeviceRegistry
from serbridge.web.loop import LoopThread

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[Config] = None,
    registry: Optional[DeviceRegistry] = None,
    loop_thread: Optional[LoopThread] = None,
) -> Flask:
    """
    Create and configure Flask application.

    Args:
        config: Optional Config instance. If None, loads from default location.
        registry: Optional device registry. If None, one is built from config.
        loop_thread: Optional running event loop thread. If None, one is started.

    Returns:
        Configured Flask application
    """
    if config is None:
        config = load_config()

    static_dir = config.server.static_dir
    app = Flask(
        __name__,
        static_folder=str(static_dir.resolve()) if static_dir else None,
        static_url_path="",
    )

    if registry is None:
        registry = DeviceRegistry(config)
    if loop_thread is None:
        loop_thread = LoopThread()
        loop_thread.start()

    app.config["SERBRIDGE_CONFIG"] = config
    app.config["SERBRIDGE_REGISTRY"] = registry
    app.config["SERBRIDGE_LOOP"] = loop_thread
    app.config["MAX_CONTENT_LENGTH"] = config.session.max_body_bytes

    from serbridge.web.api import bridge_bp

    app.register_blueprint(bridge_bp)

    @app.route("/")
    def index():
        """Serve index.html from the static directory."""
        if not current_app.has_static_folder:
            abort(404)
        return current_app.send_static_file("index.html")

    @app.before_request
    def before_request():
        """Expose bridge objects to request handlers."""
        g.config = app.config["SERBRIDGE_CONFIG"]
        g.registry = app.config["SERBRIDGE_REGISTRY"]
        g.loop = app.config["SERBRIDGE_LOOP"]

    return app


def shutdown_app(app: Flask) -> None:
    """Close all devices and stop the event loop thread."""
    registry: DeviceRegistry = app.config["SERBRIDGE_REGISTRY"]
    loop_thread: LoopThread = app.config["SERBRIDGE_LOOP"]
    if loop_thread.is_running:
        loop_thread.call(registry.close_all())
        loop_thread.stop()
    logger.info("Bridge shut down")
