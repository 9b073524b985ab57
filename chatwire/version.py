"""Version information for chatwire."""

__version__ = "0.1.0"
