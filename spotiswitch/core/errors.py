"""
Error taxonomy for SpotiSwitch.

Every failure the poller or the action gateway can run into maps to one of
these classes. They are caught at the boundary of each tick or command and
turned into a PlaybackState, an ActionResult or a logged no-op.
"""

from typing import Optional


class SpotiSwitchError(Exception):
    """Base class for all recoverable SpotiSwitch failures."""

    #: Short human-readable status string shown in place of now-playing info.
    status_message: str = "Error"


class AuthError(SpotiSwitchError):
    """Missing, expired or revoked credentials. Recoverable by re-authorization."""

    status_message = "Please authorize"

    def __init__(self, message: str = "authorization required", *, recoverable: bool = True):
        super().__init__(message)
        # False when the refresh token itself was rejected (HTTP 400)
        self.recoverable = recoverable


class RateLimited(SpotiSwitchError):
    """The Web API answered 429."""

    status_message = "Rate Limited"

    def __init__(self, retry_after: Optional[float] = None):
        super().__init__(f"rate limited (retry_after={retry_after})")
        self.retry_after = retry_after


class NetworkError(SpotiSwitchError):
    """Transport failure; retried only by the next natural poll."""

    status_message = "Network Error"


class ParseError(SpotiSwitchError):
    """Unexpected or malformed response body."""

    status_message = "Parse Error"


class StorageCorruption(SpotiSwitchError):
    """A persisted blob could not be decrypted or decoded."""

    status_message = "Storage Error"
