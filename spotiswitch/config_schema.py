"""
Pydantic models for SpotiSwitch configuration validation

Every value the poller, governor and history cache are tuned by goes through
this schema, so a malformed config file degrades to defaults instead of
crashing the menu-bar process.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field, field_validator

DEFAULT_SCOPES = [
    "user-read-playback-state",
    "user-read-currently-playing",
    "user-modify-playback-state",
    "user-read-recently-played",
    "user-library-read",
    "user-library-modify",
    "playlist-read-private",
    "playlist-read-collaborative",
    "playlist-modify-public",
    "playlist-modify-private",
]


class SpotiSwitchConfig(BaseModel):
    """Complete SpotiSwitch configuration schema.

    Example:
        >>> cfg = SpotiSwitchConfig(client_id="abc", poll_interval=10)
        >>> cfg.history_capacity
        20
    """

    # OAuth
    client_id: str = Field(default="", description="Spotify app client id (PKCE, no secret)")
    redirect_uri: str = Field(default="http://127.0.0.1:8888/callback", description="OAuth redirect target")
    scopes: List[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))

    # Polling and throttling
    poll_interval: float = Field(default=15.0, ge=1.0, le=300.0, description="Seconds between playback polls")
    poll_cooldown: float = Field(default=60.0, ge=1.0, le=3600.0, description="Pause after a 429 on the poll path")
    soft_cooldown: float = Field(default=3.0, ge=0.5, le=60.0, description="Transient indicator after a 429 on an action")
    refetch_delay: float = Field(default=0.5, ge=0.0, le=10.0, description="Delay before re-polling after an action")
    enrichment_workers: int = Field(default=2, ge=1, le=8)

    # History
    history_capacity: int = Field(default=20, ge=10, le=50)
    recently_played_limit: int = Field(default=20, ge=1, le=50)
    liked_batch_size: int = Field(default=50, ge=1, le=50, description="Web API id ceiling for /me/tracks/contains")

    # Presentation and audio
    artwork_size: int = Field(default=16, ge=8, le=512, description="Edge length of the resized menu-bar artwork")
    default_sample_rate: int = Field(default=44100)
    sample_rate_command: str = Field(default="", description="Command that sets the output rate; {rate} is replaced")
    sample_rate_interval: float = Field(default=5.0, ge=1.0, le=60.0, description="Seconds between sample-rate checks")

    # Runtime
    data_dir: str = Field(default="~/.spotiswitch", description="Encrypted records and override files")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8888, ge=1, le=65535)
    log_level: str = Field(default="INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    model_config = {
        "extra": "ignore",
        "str_strip_whitespace": True,
        "validate_assignment": True,
    }

    @field_validator('default_sample_rate')
    @classmethod
    def validate_sample_rate(cls, v: int) -> int:
        from .core.sample_rate import SUPPORTED_SAMPLE_RATES
        if v not in SUPPORTED_SAMPLE_RATES:
            raise ValueError(f"Unsupported sample rate: {v}. Choose one of {SUPPORTED_SAMPLE_RATES}")
        return v

    @field_validator('sample_rate_command')
    @classmethod
    def validate_sample_rate_command(cls, v: str) -> str:
        if v and "{rate}" not in v:
            raise ValueError("sample_rate_command must contain {rate}")
        return v

    @field_validator('scopes')
    @classmethod
    def validate_scopes(cls, v: List[str]) -> List[str]:
        cleaned = [scope.strip() for scope in v if scope and scope.strip()]
        if not cleaned:
            raise ValueError("at least one OAuth scope is required")
        return cleaned

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode='json')


def validate_config_dict(config_dict: Dict[str, Any]) -> SpotiSwitchConfig:
    """Validate a raw config dictionary.

    Raises:
        ValueError: With pydantic's detailed message when validation fails
    """
    try:
        return SpotiSwitchConfig(**config_dict)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}") from e
