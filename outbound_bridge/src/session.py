"""
Call session state machine.

One CallSession owns the Twilio media-stream socket and the Realtime socket of
a single call. Events from both sockets and from the timers are posted onto
one queue and handled strictly in arrival order by ``run()``, so session
state is never mutated concurrently.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Union

from . import protocol
from .audio_relay import AudioRelay
from .barge_in import BargeInController
from .config import Config
from .instructions import build_instructions, fill_name, render_opening
from .lifecycle import CallIdentity, CloseReason, LifecycleNotifier, Transport
from .protocol import (
    DialogueAudio,
    DialogueClosed,
    DialogueFailed,
    DialogueOpened,
    DialogueResponseCompleted,
    DialogueResponseStarted,
    DialogueSpeechStarted,
    DialogueTranscript,
    MalformedMessage,
    TelephonyClosed,
    TelephonyMark,
    TelephonyMedia,
    TelephonyStart,
    TelephonyStop,
)
from .timers import TimerKind, TimerSet

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    AWAITING_START = "awaiting_start"
    NEGOTIATING = "negotiating"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class TimerFired:
    kind: TimerKind


@dataclass
class GraceElapsed:
    pass


class Connection(Protocol):
    async def send_json(self, message: dict) -> None: ...

    async def close(self) -> None: ...


class DialogueConnector(Protocol):
    async def connect(self) -> Any: ...


SessionEvent = Union[protocol.TelephonyEvent, protocol.DialogueEvent, TimerFired, GraceElapsed]


class CallSession:
    """Bridge state for one phone call, from telephony connect to teardown."""

    def __init__(
        self,
        telephony_conn: Connection,
        config: Config,
        connector: DialogueConnector,
        transport: Optional[Transport] = None,
        query_params: Optional[dict[str, str]] = None,
        on_closed: Optional[Callable[["CallSession"], None]] = None,
    ):
        self.config = config
        self.connector = connector
        self.telephony_conn = telephony_conn
        self.dialogue_conn: Optional[Any] = None
        self.query_params = dict(query_params or {})
        self._on_closed = on_closed

        self.session_id: Optional[str] = None
        self.call_id: Optional[str] = None
        self.direction = "outbound"
        self.callee_identity: Optional[str] = None
        self.callee_name: Optional[str] = None
        self.caller_number: Optional[str] = None
        self.campaign_tag: Optional[str] = None
        self.outbound_id: Optional[str] = None
        self.started_at: Optional[datetime] = None
        self._started_monotonic: Optional[float] = None

        self.state = SessionState.AWAITING_START
        self.pending_response_active = False
        self.current_response_id: Optional[str] = None
        self.close_reason: Optional[CloseReason] = None
        self.transcript: list[tuple[str, str]] = []

        self.timers = TimerSet(config.timers, on_fire=lambda kind: self.post(TimerFired(kind)))
        self.relay = AudioRelay()
        self.barge_in = BargeInController(enabled=config.barge_in_enabled)
        self.notifier = LifecycleNotifier(transport)

        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = asyncio.Event()
        self._finalized = False
        self._telephony_broken = False
        self._dialogue_broken = False
        self._connect_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._grace_handle: Optional[asyncio.TimerHandle] = None
        self._deferred_prompt: Optional[str] = None

        self.inbound_count = 0
        self.outbound_count = 0

    # --- public surface ---------------------------------------------------

    @property
    def is_closed(self) -> bool:
        return self.state == SessionState.CLOSED

    @property
    def identity(self) -> CallIdentity:
        return CallIdentity(
            session_id=self.session_id or "",
            call_id=self.call_id or "",
            callee_identity=self.callee_identity,
            campaign_tag=self.campaign_tag,
            outbound_id=self.outbound_id,
            direction=self.direction,
        )

    @property
    def duration_seconds(self) -> float:
        if self._started_monotonic is None:
            return 0.0
        return time.monotonic() - self._started_monotonic

    def post(self, event: SessionEvent) -> None:
        """Enqueue an event for the session; ignored once the session is closed."""
        if self.state == SessionState.CLOSED:
            return
        self._queue.put_nowait(event)

    def feed_telephony(self, raw: Union[str, bytes]) -> None:
        """Parse a raw Twilio frame and enqueue it. Malformed frames are dropped."""
        try:
            event = protocol.parse_telephony_message(raw)
        except MalformedMessage as e:
            logger.warning(f"Discarding malformed telephony frame: {e}")
            return
        if event is not None:
            self.post(event)

    def post_telephony_closed(self, error: Optional[str] = None) -> None:
        self.post(TelephonyClosed(error=error))

    async def run(self) -> None:
        """Process events until the session reaches CLOSED."""
        try:
            while self.state != SessionState.CLOSED:
                event = await self._queue.get()
                await self.handle(event)
        finally:
            if not self._finalized:
                # Cancelled from outside before a close trigger was seen.
                await self._finalize()
            self._cleanup_tasks()
            await self._close_unclaimed_connections()
            if self._on_closed:
                self._on_closed(self)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def handle(self, event: SessionEvent) -> None:
        if self.state == SessionState.CLOSED:
            return

        if isinstance(event, (TelephonyMedia, TelephonyMark)) and self.state in (
            SessionState.NEGOTIATING,
            SessionState.ACTIVE,
        ):
            self.timers.reset_idle()

        if isinstance(event, TelephonyStart):
            await self._on_start(event)
        elif isinstance(event, TelephonyMedia):
            await self._on_telephony_media(event)
        elif isinstance(event, TelephonyMark):
            logger.debug(f"Mark event: {event.name}")
        elif isinstance(event, TelephonyStop):
            logger.info(f"Stream stopped: {self.session_id}")
            await self._begin_close(CloseReason.CALLER_HUNG_UP, urgent=True)
        elif isinstance(event, TelephonyClosed):
            await self._on_telephony_closed(event)
        elif isinstance(event, DialogueOpened):
            await self._on_dialogue_opened(event)
        elif isinstance(event, DialogueAudio):
            await self._on_dialogue_audio(event)
        elif isinstance(event, DialogueSpeechStarted):
            await self._on_speech_started()
        elif isinstance(event, DialogueResponseStarted):
            self.pending_response_active = True
            self.current_response_id = event.response_id
            self.barge_in.on_response_started(event.response_id)
        elif isinstance(event, DialogueResponseCompleted):
            if event.response_id is None or event.response_id == self.current_response_id:
                self.pending_response_active = False
                if self._deferred_prompt and self.state == SessionState.ACTIVE:
                    prompt, self._deferred_prompt = self._deferred_prompt, None
                    await self._speak(prompt)
        elif isinstance(event, DialogueTranscript):
            if event.text:
                self.transcript.append((event.role, event.text))
                logger.info(f"{event.role.capitalize()}: {event.text}")
        elif isinstance(event, DialogueClosed):
            logger.info(f"Realtime connection closed for {self.session_id}")
            self._dialogue_broken = True
            await self._begin_close(CloseReason.DIALOGUE_CLOSED, urgent=True)
        elif isinstance(event, DialogueFailed):
            logger.error(f"Realtime connection error for {self.session_id}: {event.error}")
            self._dialogue_broken = True
            await self._begin_close(CloseReason.DIALOGUE_ERROR, urgent=True)
        elif isinstance(event, TimerFired):
            await self._on_timer(event.kind)
        elif isinstance(event, GraceElapsed):
            if self.state == SessionState.CLOSING:
                await self._finalize()
        else:
            logger.debug(f"Ignoring unknown session event: {event!r}")

    # --- telephony side ---------------------------------------------------

    async def _on_start(self, event: TelephonyStart) -> None:
        if self.state != SessionState.AWAITING_START:
            logger.warning(f"Duplicate start event for {self.session_id}, ignoring")
            return

        params = {**self.query_params, **event.custom_parameters}
        self.session_id = event.stream_id
        self.call_id = event.call_id
        self.callee_name = params.get("calleeIdentity") or params.get("name") or None
        self.caller_number = params.get("from") or None
        self.callee_identity = self.callee_name or params.get("to") or None
        self.campaign_tag = params.get("campaignTag") or params.get("campaign") or None
        self.outbound_id = params.get("outboundId") or params.get("outbound_id") or None
        self.started_at = datetime.now(timezone.utc)
        self._started_monotonic = time.monotonic()

        logger.info(
            f"Stream started: stream_id={self.session_id}, call_id={self.call_id}, "
            f"campaign={self.campaign_tag}, outbound_id={self.outbound_id}"
        )
        self._set_state(SessionState.NEGOTIATING)
        self.timers.reset_idle()
        self.timers.arm_max_duration()
        self._connect_task = asyncio.create_task(self._connect_dialogue())

    async def _on_telephony_media(self, event: TelephonyMedia) -> None:
        self.inbound_count += 1
        if self.inbound_count == 1 or self.inbound_count % 500 == 0:
            logger.info(f"Inbound #{self.inbound_count}: state={self.state.value}")

        message = self.relay.to_dialogue(event.payload, dialogue_ready=self._dialogue_ready)
        if message is not None:
            await self._send_dialogue(message)

    async def _on_telephony_closed(self, event: TelephonyClosed) -> None:
        if event.error:
            logger.error(f"Telephony socket error for {self.session_id}: {event.error}")
            await self._begin_close(CloseReason.TELEPHONY_ERROR, urgent=True)
        else:
            logger.info(f"Telephony socket closed for {self.session_id}")
            await self._begin_close(CloseReason.CALLER_HUNG_UP, urgent=True)

    # --- dialogue side ----------------------------------------------------

    @property
    def _dialogue_ready(self) -> bool:
        return self.state == SessionState.ACTIVE and self.dialogue_conn is not None and not self._dialogue_broken

    async def _connect_dialogue(self) -> None:
        try:
            connection = await self.connector.connect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.post(DialogueFailed(error=f"connect failed: {e}"))
            return
        if self.state != SessionState.NEGOTIATING:
            # Teardown has started and will not pick this connection up.
            await asyncio.shield(self._close_quietly(connection, "late realtime connection"))
            return
        self.post(DialogueOpened(connection=connection))

    async def _read_dialogue(self, connection: Any) -> None:
        try:
            async for raw in connection.messages():
                try:
                    event = protocol.parse_dialogue_message(raw)
                except MalformedMessage as e:
                    logger.warning(f"Discarding malformed realtime event: {e}")
                    continue
                if event is not None:
                    self.post(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.post(DialogueFailed(error=str(e)))
            return
        self.post(DialogueClosed())

    async def _on_dialogue_opened(self, event: DialogueOpened) -> None:
        if self.state != SessionState.NEGOTIATING:
            await self._close_quietly(event.connection, "realtime connection opened after close")
            return

        self.dialogue_conn = event.connection
        self._reader_task = asyncio.create_task(self._read_dialogue(event.connection))

        realtime = self.config.realtime
        vad = self.config.vad
        await self._send_dialogue(protocol.session_update(
            instructions=build_instructions(self.config.scripts, self.callee_name),
            voice=realtime.voice,
            audio_format=realtime.audio_format,
            vad_threshold=vad.threshold,
            prefix_padding_ms=vad.prefix_padding_ms,
            silence_duration_ms=vad.silence_duration_ms,
            transcription_model=realtime.transcription_model,
        ))
        if self._dialogue_broken:
            return

        self._set_state(SessionState.ACTIVE)
        opening = render_opening(self.config.scripts, self.callee_name)
        logger.info(f"Opening line: {opening}")
        await self._speak(opening)
        self.notifier.call_started(self.identity)

    async def _on_dialogue_audio(self, event: DialogueAudio) -> None:
        if self.state not in (SessionState.ACTIVE, SessionState.CLOSING) or not self.session_id:
            return
        if not self.barge_in.should_forward(event.response_id):
            return
        self.outbound_count += 1
        if self.outbound_count == 1 or self.outbound_count % 100 == 0:
            logger.info(f"Agent audio #{self.outbound_count} -> {self.session_id}")
        await self._send_telephony(self.relay.to_telephony(self.session_id, event.payload))

    async def _on_speech_started(self) -> None:
        if self.state != SessionState.ACTIVE:
            return
        if not self.barge_in.on_speech_started(self.pending_response_active, self.current_response_id):
            return
        await self._interrupt_response()

    async def _interrupt_response(self) -> None:
        """Cancel the in-flight response and flush its audio buffered at Twilio."""
        if not self.pending_response_active:
            return
        self.pending_response_active = False
        self.barge_in.suppress(self.current_response_id)
        await self._send_dialogue(protocol.cancel_response())
        if self.session_id:
            await self._send_telephony(protocol.telephony_clear(self.session_id))

    async def _speak(self, text: str) -> None:
        if not text:
            return
        await self._send_dialogue(protocol.inject_utterance(text))
        await self._send_dialogue(protocol.request_response(protocol.verbatim_instructions(text)))

    async def _speak_after_response(self, text: str) -> None:
        """Speak now, or once the in-flight response is done."""
        if self.pending_response_active:
            self._deferred_prompt = text
            return
        await self._speak(text)

    # --- timers -----------------------------------------------------------

    async def _on_timer(self, kind: TimerKind) -> None:
        scripts = self.config.scripts
        if kind == TimerKind.IDLE_WARNING:
            if self.state == SessionState.ACTIVE:
                logger.info(f"Caller idle on {self.session_id}, checking in")
                await self._speak_after_response(scripts.idle_warning_prompt)
        elif kind == TimerKind.MAX_DURATION_WARNING:
            if self.state == SessionState.ACTIVE:
                logger.info(f"Call {self.session_id} nearing max duration")
                await self._speak_after_response(scripts.max_call_warning_prompt)
        elif kind == TimerKind.IDLE_HANGUP:
            await self._begin_close(CloseReason.CALLER_IDLE, speak_closing=True)
        elif kind == TimerKind.MAX_DURATION_HANGUP:
            await self._begin_close(CloseReason.MAX_DURATION, speak_closing=True)

    # --- teardown ---------------------------------------------------------

    async def _begin_close(self, reason: CloseReason, speak_closing: bool = False, urgent: bool = False) -> None:
        """
        Enter CLOSING. The first trigger records the close reason; a later
        urgent trigger (a peer went away) cuts a pending grace period short.
        """
        if self.state == SessionState.CLOSED:
            return
        if self.state == SessionState.CLOSING:
            if urgent:
                await self._finalize()
            return

        was_active = self.state == SessionState.ACTIVE
        self.close_reason = reason
        self._set_state(SessionState.CLOSING)
        self.timers.cancel_all()
        logger.info(f"Closing session {self.session_id}: {reason.value}")

        closing = self.config.scripts.closing_script
        if speak_closing and closing and was_active and not self._dialogue_broken:
            # The service rejects a new response while one is in flight.
            await self._interrupt_response()
            await self._speak(fill_name(closing, self.callee_name, self.config.scripts.name_filler).strip())
            grace = self.config.timers.hangup_grace_ms / 1000
            loop = asyncio.get_running_loop()
            self._grace_handle = loop.call_later(grace, self.post, GraceElapsed())
            return

        await self._finalize()

    async def _finalize(self) -> None:
        """CLOSING -> CLOSED. Runs its body at most once."""
        if self._finalized:
            return
        self._finalized = True
        if self.close_reason is None:
            self.close_reason = CloseReason.TELEPHONY_ERROR
        self.timers.cancel_all()
        if self._grace_handle:
            self._grace_handle.cancel()
            self._grace_handle = None

        await asyncio.gather(
            self._close_quietly(self.telephony_conn, "telephony socket"),
            self._close_quietly(self.dialogue_conn, "realtime socket"),
        )

        if self.session_id:
            self.notifier.call_ended(self.identity, self.close_reason, self.duration_seconds)

        self._set_state(SessionState.CLOSED)
        self._closed.set()

    async def _close_quietly(self, connection: Optional[Any], label: str) -> None:
        if connection is None:
            return
        try:
            await connection.close()
        except Exception as e:
            logger.debug(f"Error closing {label}: {e}")

    async def _close_unclaimed_connections(self) -> None:
        """Close Realtime connections still queued when the session closed."""
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if isinstance(event, DialogueOpened):
                await self._close_quietly(event.connection, "unclaimed realtime connection")

    def _cleanup_tasks(self) -> None:
        current = asyncio.current_task()
        for task in (self._connect_task, self._reader_task):
            if task and task is not current and not task.done():
                task.cancel()

    # --- helpers ----------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        logger.debug(f"Session {self.session_id}: {self.state.value} -> {state.value}")
        self.state = state

    async def _send_telephony(self, message: dict) -> None:
        if self._telephony_broken:
            return
        try:
            await self.telephony_conn.send_json(message)
        except Exception as e:
            logger.error(f"Error sending to telephony: {e}")
            self._telephony_broken = True
            self.post(TelephonyClosed(error=str(e)))

    async def _send_dialogue(self, message: dict) -> None:
        if self.dialogue_conn is None or self._dialogue_broken:
            return
        try:
            await self.dialogue_conn.send_json(message)
        except Exception as e:
            logger.error(f"Error sending to Realtime: {e}")
            self._dialogue_broken = True
            self.post(DialogueFailed(error=str(e)))
