"""
SpotiSwitch Version Information
Central version management for the SpotiSwitch project.
"""

from typing import Dict

# Semantic Versioning: MAJOR.MINOR.PATCH
VERSION = "0.4.0"
__version__ = VERSION

APP_NAME = "SpotiSwitch"
APP_DESCRIPTION = "Menu-bar Spotify companion with sample-rate switching"


def get_version() -> str:
    return VERSION


def get_app_info() -> Dict[str, str]:
    """Application metadata for startup logging."""
    return {
        "name": APP_NAME,
        "version": VERSION,
        "description": APP_DESCRIPTION,
    }
