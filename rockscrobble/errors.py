"""Error classes so callers can branch on what failed."""

from __future__ import annotations


class ScrobblerError(Exception):
    """Base class for everything this package raises on purpose."""


class IoError(ScrobblerError):
    """A file could not be opened or read."""


class FormatError(ScrobblerError):
    """A tag cache file has a bad magic, a truncated record or a bad offset."""


class ConfigError(ScrobblerError):
    """The config file exists but cannot be read or parsed."""


class AuthError(ScrobblerError):
    """The mobile session exchange failed for one account."""


class ApiError(ScrobblerError):
    """The service answered with a top-level error field."""

    def __init__(self, code: str, message: str):
        self.code = str(code)
        self.message = message
        super().__init__(f"API error {self.code}: {message}")


class ScrobbleRejected(ScrobblerError):
    """The service ignored one scrobble."""

    def __init__(self, code: str, message: str):
        self.code = str(code)
        self.message = message
        super().__init__(f"Scrobble rejected (code {self.code}): {message}")


class NetworkError(ScrobblerError):
    """The request never produced a usable HTTP response."""
