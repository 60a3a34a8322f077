"""
🛠️ Route Helpers
Shared utilities for all route blueprints.
"""

import datetime
import logging
import uuid
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Optional

from flask import Response, current_app, jsonify

from ..services import ServiceResult

if TYPE_CHECKING:
    from ..services.player_service import PlayerService

logger = logging.getLogger("spotiswitch.routes")

SERVICE_EXTENSION_KEY = "spotiswitch.player"

# ServiceResult.error_code -> HTTP status
_ERROR_STATUS = {
    "AUTH_REQUIRED": 401,
    "AUTH_FAILED": 401,
    "RATE_LIMITED": 429,
    "INVALID_ARGUMENT": 400,
    "UNKNOWN_COMMAND": 404,
    "NOT_AVAILABLE": 404,
    "NETWORK_ERROR": 502,
    "SPOTIFY_ERROR": 502,
    "PARSE_ERROR": 502,
    "COMMAND_FAILED": 409,
}


def _iso_timestamp_now() -> str:
    """Return ISO 8601 timestamp in UTC with a trailing Z."""
    now_utc = datetime.datetime.now(tz=datetime.timezone.utc)
    return now_utc.isoformat(timespec="microseconds").replace("+00:00", "Z")


def get_player_service() -> "PlayerService":
    return current_app.extensions[SERVICE_EXTENSION_KEY]


def api_response(
    success: bool,
    *,
    data: Optional[Any] = None,
    message: str = "",
    status: int = 200,
    error_code: Optional[str] = None
) -> Response:
    """Create a standardized API response with consistent envelope.

    Args:
        success: Whether the operation succeeded
        data: Optional response data
        message: Optional message string
        status: HTTP status code (default 200)
        error_code: Optional error code for failures

    Returns:
        Flask Response object with JSON payload
    """
    req_id = str(uuid.uuid4())
    timestamp = _iso_timestamp_now()
    payload = {
        "success": success,
        "timestamp": timestamp,
        "request_id": req_id
    }
    if message:
        payload["message"] = message
    if data is not None:
        payload["data"] = data
    if error_code:
        payload["error_code"] = error_code
    resp = jsonify(payload)
    resp.status_code = status
    resp.headers['X-Request-ID'] = req_id
    return resp


def api_error(
    message: str,
    *,
    status: int = 400,
    error_code: Optional[str] = None,
    data: Optional[Any] = None,
) -> Response:
    """Convenience wrapper for standardized error responses."""
    return api_response(False, data=data, message=message, status=status, error_code=error_code)


def result_response(result: ServiceResult) -> Response:
    """Render a ServiceResult with the status its error code implies."""
    if result.success:
        return api_response(True, data=result.data, message=result.message or "")
    status = _ERROR_STATUS.get(result.error_code or "", 500)
    return api_error(result.message or "Request failed", status=status, error_code=result.error_code, data=result.data)


def api_error_handler(func: Callable) -> Callable:
    """Decorator turning unexpected exceptions into a JSON 500."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception:
            logger.exception("Error in %s", func.__name__)
            return api_error("An internal error occurred", status=500, error_code="unhandled_exception")
    return wrapper
