"""
🚨 Error Handlers
JSON error envelopes for unknown routes and unhandled failures.
"""

from flask import Flask

from .helpers import api_error


def register_error_handlers(app: Flask) -> None:
    """Register shared error handlers on the Flask app."""

    @app.errorhandler(404)
    def not_found_error(_error):
        return api_error("Not found", status=404, error_code="not_found")

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return api_error("Method not allowed", status=405, error_code="method_not_allowed")

    @app.errorhandler(500)
    def internal_error(_error):
        return api_error("Internal server error", status=500, error_code="internal_error")
