"""
🎚️ Sample Rate Routes Blueprint
Available only when the service was built with a SampleRateSwitcher.
"""

from flask import Blueprint, request

from ..core.sample_rate import SUPPORTED_SAMPLE_RATES
from .helpers import api_error, api_error_handler, api_response, get_player_service

sample_rate_bp = Blueprint("sample_rate", __name__, url_prefix="/api/sample-rate")


def _switcher():
    return get_player_service().sample_rate_switcher


def _status(switcher) -> dict:
    return {
        "display": switcher.display_text(),
        "current_rate": switcher.current_rate,
        "default_rate": switcher.default_rate,
        "supported_rates": list(SUPPORTED_SAMPLE_RATES),
    }


@sample_rate_bp.before_request
def _require_switcher():
    if _switcher() is None:
        return api_error("Sample rate switching is not available", status=404, error_code="NOT_AVAILABLE")
    return None


@sample_rate_bp.route("", methods=["GET"])
@api_error_handler
def status():
    return api_response(True, data=_status(_switcher()))


@sample_rate_bp.route("/auto", methods=["POST"])
@api_error_handler
def auto_update():
    switcher = _switcher()
    applied = switcher.auto_update()
    return api_response(True, data={"applied_rate": applied, **_status(switcher)})


def _rate_from_body():
    body = request.get_json(silent=True) or {}
    rate = body.get("rate") if isinstance(body, dict) else None
    if isinstance(rate, bool) or not isinstance(rate, int) or rate not in SUPPORTED_SAMPLE_RATES:
        return None
    return rate


@sample_rate_bp.route("/track", methods=["POST"])
@api_error_handler
def override_track():
    rate = _rate_from_body()
    if rate is None:
        return api_error(f"rate must be one of {list(SUPPORTED_SAMPLE_RATES)}", status=400, error_code="INVALID_ARGUMENT")
    switcher = _switcher()
    applied = switcher.override_current_track(rate)
    return api_response(True, data={"applied_rate": applied, **_status(switcher)})


@sample_rate_bp.route("/album", methods=["POST"])
@api_error_handler
def tag_album():
    rate = _rate_from_body()
    if rate is None:
        return api_error(f"rate must be one of {list(SUPPORTED_SAMPLE_RATES)}", status=400, error_code="INVALID_ARGUMENT")
    switcher = _switcher()
    applied = switcher.tag_current_album(rate)
    return api_response(True, data={"applied_rate": applied, **_status(switcher)})
