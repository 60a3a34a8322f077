"""
🔐 OAuth Routes Blueprint
Consent redirect and the PKCE callback target.
"""

import logging

from flask import Blueprint, redirect, request

from ..core.errors import AuthError
from .helpers import api_error, api_error_handler, api_response, get_player_service, result_response

auth_bp = Blueprint("auth", __name__)
logger = logging.getLogger("spotiswitch.routes.auth")


@auth_bp.route("/authorize", methods=["GET"])
@api_error_handler
def authorize():
    """Redirect the browser to Spotify's consent page."""
    try:
        url = get_player_service().authorize_url()
    except AuthError as e:
        return api_error(str(e), status=503, error_code="NOT_CONFIGURED")
    return redirect(url)


@auth_bp.route("/callback", methods=["GET"])
@api_error_handler
def callback():
    error = request.args.get("error")
    if error:
        logger.warning("OAuth callback reported error: %s", error)
        return api_error(f"Authorization denied: {error}", status=400, error_code="AUTH_DENIED")

    code = request.args.get("code")
    state = request.args.get("state")
    if not code or not state:
        return api_error("Missing code or state", status=400, error_code="INVALID_ARGUMENT")

    result = get_player_service().complete_authorization(code, state)
    if result.success:
        return api_response(True, message="Authorized - you can close this window")
    return result_response(result)
