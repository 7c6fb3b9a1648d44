"""VibeChat: local-first conversational assistant core."""

__version__ = "0.1.0"
