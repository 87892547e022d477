"""creative_sync — rate-limited mirror of creative artifacts and their authors."""

__version__ = "0.1.0"
