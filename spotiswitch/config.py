"""
Centralized configuration management for SpotiSwitch
Layers: config/default_config.json, then <data_dir>/config.json, then
environment variables (a ``.env`` in the data dir or working dir is loaded
first). The merged result is validated against the pydantic schema.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .config_schema import SpotiSwitchConfig, validate_config_dict

logger = logging.getLogger("spotiswitch.config")

# Environment variable -> (config key, caster)
_ENV_OVERRIDES = {
    "SPOTIFY_CLIENT_ID": ("client_id", str),
    "SPOTIFY_REDIRECT_URI": ("redirect_uri", str),
    "SPOTISWITCH_DATA_DIR": ("data_dir", str),
    "SPOTISWITCH_POLL_INTERVAL": ("poll_interval", float),
    "SPOTISWITCH_POLL_COOLDOWN": ("poll_cooldown", float),
    "SPOTISWITCH_SOFT_COOLDOWN": ("soft_cooldown", float),
    "SPOTISWITCH_HISTORY_CAPACITY": ("history_capacity", int),
    "SPOTISWITCH_HOST": ("host", str),
    "SPOTISWITCH_PORT": ("port", int),
    "SPOTISWITCH_LOG_LEVEL": ("log_level", str),
    "SPOTISWITCH_SAMPLE_RATE_COMMAND": ("sample_rate_command", str),
}


def _read_json_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Could not load config file %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: top level is not an object", path)
        return {}
    return data


class ConfigManager:
    """Loads and validates SpotiSwitch configuration."""

    def __init__(self, base_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        self.base_path = Path(base_path) if base_path else Path(__file__).parent.parent
        self.config_dir = self.base_path / "config"
        self._environ = environ

    def _env(self) -> Dict[str, str]:
        return dict(os.environ) if self._environ is None else self._environ

    def _env_overrides(self) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {}
        for env_name, (key, caster) in _ENV_OVERRIDES.items():
            raw = self._env().get(env_name)
            if raw is None or raw == "":
                continue
            try:
                overrides[key] = caster(raw)
            except ValueError:
                logger.warning("Ignoring %s=%r: not a valid %s", env_name, raw, caster.__name__)
        return overrides

    def load_config(self) -> SpotiSwitchConfig:
        """
        Load configuration from all layers.

        Returns:
            Validated configuration; defaults for anything invalid
        """
        if self._environ is None:
            load_dotenv(Path("~/.spotiswitch/.env").expanduser())
            load_dotenv()

        default_config = _read_json_file(self.config_dir / "default_config.json")
        env_overrides = self._env_overrides()

        data_dir = env_overrides.get("data_dir") or default_config.get("data_dir") or "~/.spotiswitch"
        user_config = _read_json_file(Path(data_dir).expanduser() / "config.json")

        merged = {**default_config, **user_config, **env_overrides}
        try:
            return validate_config_dict(merged)
        except ValueError as e:
            logger.error("❌ %s", e)
            logger.warning("Falling back to defaults plus environment overrides")

        try:
            return validate_config_dict(env_overrides)
        except ValueError as e:
            logger.error("❌ Environment overrides invalid too, using built-in defaults: %s", e)
            return SpotiSwitchConfig()


def data_dir_path(config: SpotiSwitchConfig) -> Path:
    """Expanded data directory, created on first use."""
    path = Path(config.data_dir).expanduser()
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_config() -> SpotiSwitchConfig:
    """Load the current configuration."""
    return ConfigManager().load_config()
