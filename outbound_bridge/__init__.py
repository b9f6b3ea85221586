"""
Outbound Bridge - voice agent for outbound phone calls.

Bridges Twilio Media Streams with the OpenAI Realtime API, one call session
per media stream.
"""

from .src import (
    load_config,
    Config,
    CallSession,
    SessionManager,
    app,
)

__all__ = [
    "load_config",
    "Config",
    "CallSession",
    "SessionManager",
    "app",
]
