"""
🌐 Local UI API for SpotiSwitch
The menu-bar front end talks to the player service through this small Flask
app; it also serves the OAuth redirect target.
"""

from flask import Flask

from .routes import auth_bp, player_bp, sample_rate_bp
from .routes.errors import register_error_handlers
from .routes.helpers import SERVICE_EXTENSION_KEY
from .services.player_service import PlayerService
from .version import APP_NAME, VERSION


def create_app(service: PlayerService) -> Flask:
    """Return a Flask app bound to ``service``."""
    app = Flask(APP_NAME.lower())
    app.json.sort_keys = False
    app.extensions[SERVICE_EXTENSION_KEY] = service

    app.register_blueprint(player_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(sample_rate_bp)
    register_error_handlers(app)

    @app.route("/healthz", methods=["GET"])
    def healthz():
        return {"status": "ok", "version": VERSION}

    @app.after_request
    def _no_store(response):
        response.headers.setdefault("Cache-Control", "no-store")
        return response

    return app


__all__ = ["create_app"]
