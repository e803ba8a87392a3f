"""Jukebox: local audio library playback service."""

__version__ = "1.1.0"
