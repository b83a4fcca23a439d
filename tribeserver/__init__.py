"""Request handlers for people, organizations, bounty metrics and websocket notifications."""

__version__ = "0.1.0"