"""Flask application factory."""
import atexit
import json
import os

from flask import Flask


def create_app(config_name: str = "default", services=None, **overrides):
    """Create and configure the Flask application.

    Args:
        config_name: Key into ``printproxy.config.config``
        services: Prebuilt ProxyServices to use instead of wiring real transports
        overrides: Extra configuration keys applied last
    """
    app = Flask(__name__)

    # Load configuration
    from printproxy.config import config, ProxySettings
    app.config.from_object(config[config_name])
    settings_file = os.environ.get("PRINTPROXY_SETTINGS")
    if settings_file:
        app.config.from_file(settings_file, load=json.load)
    app.config.update(overrides)

    from printproxy.logging_config import setup_logging
    setup_logging(app.config.get("LOG_FILE"), app.config.get("LOG_LEVEL", "INFO"))

    # Wire the printing core
    if services is None:
        from printproxy.service import build_services
        services = build_services(ProxySettings.from_mapping(app.config))
    app.extensions["printproxy"] = services

    # Register blueprints
    from printproxy.routes.api import api_bp
    app.register_blueprint(api_bp, url_prefix="/api")

    # Root redirect
    @app.route("/")
    def index():
        from flask import redirect, url_for
        return redirect(url_for("api.health"))

    if app.config.get("START_BACKGROUND_REFRESH"):
        services.registry.start()
        atexit.register(services.registry.stop)

    app.logger.info("Auto-discover USB: %s", app.config.get("AUTO_DISCOVER_USB"))
    app.logger.info("Configured network printers: %d", len(services.settings.network_printers))
    app.logger.info("Default encoding: %s", services.settings.print_defaults.encoding)

    return app
