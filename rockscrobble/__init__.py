"""Scrobble Rockbox playback logs to Last.fm-compatible services."""

__version__ = "0.1.0"
