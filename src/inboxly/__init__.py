"""Inboxly - unified multi-channel conversation core."""

__version__ = "0.1.0"
