"""
WebSocket server for Twilio media streams.
Creates one CallSession per stream and bridges it to the OpenAI Realtime API.
"""

import asyncio
import logging
import os
import certifi
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from .config import Config
from .dialogue_client import RealtimeConnector
from .lifecycle import Transport, WebhookTransport
from .session import CallSession, DialogueConnector
from .summarizer import CallSummarizer, deliver_call_log

os.environ.setdefault('SSL_CERT_FILE', certifi.where())

logger = logging.getLogger(__name__)

app = FastAPI(title="Outbound Bridge WebSocket Server")

MEDIA_STREAM_PATH = "/twilio-media-stream"


class SessionManager:
    """Manages active call sessions."""

    def __init__(
        self,
        config: Config,
        connector: Optional[DialogueConnector] = None,
        status_transport: Optional[Transport] = None,
        call_log_transport: Optional[Transport] = None,
        summarizer: Optional[CallSummarizer] = None,
    ):
        self.config = config
        self.connector = connector or RealtimeConnector(config.realtime)
        self.status_transport = status_transport
        self.call_log_transport = call_log_transport
        self.summarizer = summarizer
        self.sessions: set[CallSession] = set()
        self._background: set[asyncio.Task] = set()

    def create_session(self, websocket: WebSocket, query_params: Optional[dict[str, str]] = None) -> CallSession:
        session = CallSession(
            telephony_conn=websocket,
            config=self.config,
            connector=self.connector,
            transport=self.status_transport,
            query_params=query_params,
            on_closed=self._on_session_closed,
        )
        self.sessions.add(session)
        return session

    def _on_session_closed(self, session: CallSession) -> None:
        self.sessions.discard(session)
        logger.info(
            f"Closed session {session.session_id} ({session.close_reason.value if session.close_reason else '-'}), "
            f"{len(self.sessions)} active"
        )
        if self.call_log_transport is None or not session.session_id:
            return
        task = asyncio.create_task(deliver_call_log(
            identity=session.identity,
            close_reason=session.close_reason,
            duration_seconds=session.duration_seconds,
            transcript=list(session.transcript),
            transport=self.call_log_transport,
            summarizer=self.summarizer,
        ))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def handle_connection(self, websocket: WebSocket) -> None:
        """Run one media-stream connection until its session is closed."""
        session = self.create_session(websocket, dict(websocket.query_params))
        runner = asyncio.create_task(session.run())

        try:
            async for raw in websocket.iter_text():
                session.feed_telephony(raw)
                if session.is_closed:
                    break
            session.post_telephony_closed()
        except WebSocketDisconnect:
            session.post_telephony_closed()
        except Exception as e:
            if session.is_closed:
                logger.debug(f"Media stream read after close: {e}")
            else:
                logger.error(f"Media stream error: {e}", exc_info=True)
                session.post_telephony_closed(error=str(e))

        await runner


session_manager: Optional[SessionManager] = None


def init_session_manager(config: Config) -> SessionManager:
    """Initialize the global session manager from configuration."""
    global session_manager
    webhooks = config.webhooks
    status_transport = (
        WebhookTransport(webhooks.status_webhook_url, webhooks.timeout_s)
        if webhooks.status_webhook_url else None
    )
    call_log_transport = (
        WebhookTransport(webhooks.call_log_webhook_url, webhooks.timeout_s)
        if webhooks.call_log_webhook_url else None
    )
    summarizer = CallSummarizer(config.summary, config.realtime.api_key) if config.summary.enabled else None
    session_manager = SessionManager(
        config,
        status_transport=status_transport,
        call_log_transport=call_log_transport,
        summarizer=summarizer,
    )
    return session_manager


@app.websocket(MEDIA_STREAM_PATH)
async def twilio_media_stream(websocket: WebSocket):
    """WebSocket endpoint for Twilio Media Streams."""
    if session_manager is None:
        await websocket.close(code=1013)
        return
    await websocket.accept()
    logger.info(f"Twilio WebSocket connected: {dict(websocket.query_params)}")
    await session_manager.handle_connection(websocket)


@app.get("/", response_class=PlainTextResponse)
async def root():
    return "Outbound bridge is alive"


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    active = len(session_manager.sessions) if session_manager else 0
    return {"status": "healthy", "active_sessions": active}
