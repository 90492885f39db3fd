"""Signaling relay for peer-to-peer real-time media sessions.

This package provides the room registry, the signaling router, and the
WebSocket transport that lets clients in a named room exchange offers,
answers, and membership events.
"""

__version__ = "0.1.0"
