"""
▶️ Player Routes Blueprint
UI-facing state, commands and menu data.
"""

import logging

from flask import Blueprint, request

from .helpers import api_error, api_error_handler, api_response, get_player_service, result_response

player_bp = Blueprint("player", __name__, url_prefix="/api")
logger = logging.getLogger("spotiswitch.routes.player")


@player_bp.route("/state", methods=["GET"])
@api_error_handler
def state():
    """Current UiSnapshot."""
    return api_response(True, data=get_player_service().snapshot().to_dict())


@player_bp.route("/status", methods=["GET"])
@api_error_handler
def status():
    return api_response(True, data=get_player_service().get_status())


@player_bp.route("/commands", methods=["GET"])
@api_error_handler
def commands():
    return api_response(True, data={"commands": get_player_service().command_names()})


@player_bp.route("/commands/<name>", methods=["POST"])
@api_error_handler
def run_command(name: str):
    args = request.get_json(silent=True)
    if args is None:
        args = {}
    if not isinstance(args, dict):
        return api_error("Command arguments must be a JSON object", status=400, error_code="INVALID_ARGUMENT")
    return result_response(get_player_service().run_command(name, args))


@player_bp.route("/devices", methods=["GET"])
@api_error_handler
def devices():
    return result_response(get_player_service().list_devices())


@player_bp.route("/playlists", methods=["GET"])
@api_error_handler
def playlists():
    return result_response(get_player_service().list_playlists())
