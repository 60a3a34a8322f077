"""
SpotiSwitch Route Blueprints
"""

from .auth import auth_bp
from .player import player_bp
from .sample_rate import sample_rate_bp

__all__ = ["auth_bp", "player_bp", "sample_rate_bp"]
