"""
Outbound Bridge source modules.
"""

from .config import (
    load_config,
    Config,
    RealtimeConfig,
    VADConfig,
    ScriptConfig,
    TimerConfig,
    WebhookConfig,
    SummaryConfig,
    ServerConfig,
)
from .protocol import MalformedMessage, parse_telephony_message, parse_dialogue_message
from .instructions import build_instructions, fill_name, render_opening
from .timers import TimerSet, TimerKind, TimerDeadline
from .audio_relay import AudioRelay
from .barge_in import BargeInController
from .lifecycle import CallEnded, CallIdentity, CallStarted, CloseReason, LifecycleNotifier, WebhookTransport
from .dialogue_client import RealtimeConnection, RealtimeConnector
from .session import CallSession, SessionState
from .summarizer import CallSummarizer, deliver_call_log
from .websocket_server import app, init_session_manager, SessionManager

__all__ = [
    # Config
    "load_config",
    "Config",
    "RealtimeConfig",
    "VADConfig",
    "ScriptConfig",
    "TimerConfig",
    "WebhookConfig",
    "SummaryConfig",
    "ServerConfig",
    # Protocol
    "MalformedMessage",
    "parse_telephony_message",
    "parse_dialogue_message",
    "build_instructions",
    "fill_name",
    "render_opening",
    # Session
    "TimerSet",
    "TimerKind",
    "TimerDeadline",
    "AudioRelay",
    "BargeInController",
    "CallSession",
    "SessionState",
    # Notifications
    "CallEnded",
    "CallIdentity",
    "CallStarted",
    "CloseReason",
    "LifecycleNotifier",
    "WebhookTransport",
    "CallSummarizer",
    "deliver_call_log",
    # Server
    "RealtimeConnection",
    "RealtimeConnector",
    "app",
    "init_session_manager",
    "SessionManager",
]
