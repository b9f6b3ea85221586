"""
Lifecycle notifications: call started / call ended status payloads.

The notifier decides when a payload is produced and what it contains;
delivery is handed to a transport and never awaited by the session.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol, Union

import aiohttp

logger = logging.getLogger(__name__)


class CloseReason(str, Enum):
    CALLER_HUNG_UP = "caller_hung_up"
    CALLER_IDLE = "caller_idle"
    MAX_DURATION = "max_duration_exceeded"
    DIALOGUE_CLOSED = "dialogue_service_closed"
    DIALOGUE_ERROR = "dialogue_service_error"
    TELEPHONY_ERROR = "telephony_transport_error"


@dataclass
class CallIdentity:
    """Identifiers shared by every notification of one call."""
    session_id: str
    call_id: str
    callee_identity: Optional[str] = None
    campaign_tag: Optional[str] = None
    outbound_id: Optional[str] = None
    direction: str = "outbound"

    def to_dict(self) -> dict[str, Any]:
        return {
            "direction": self.direction,
            "stream_sid": self.session_id,
            "call_sid": self.call_id,
            "outbound_id": self.outbound_id,
            "campaign": self.campaign_tag,
            "callee": self.callee_identity,
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CallStarted:
    identity: CallIdentity
    timestamp: datetime = field(default_factory=_now)
    kind: str = "call_started"

    def to_payload(self) -> dict[str, Any]:
        return {"event": self.kind, **self.identity.to_dict(), "timestamp": self.timestamp.isoformat()}


@dataclass
class CallEnded:
    identity: CallIdentity
    close_reason: CloseReason
    duration_seconds: float
    timestamp: datetime = field(default_factory=_now)
    kind: str = "call_ended"

    def to_payload(self) -> dict[str, Any]:
        return {
            "event": self.kind,
            **self.identity.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "close_reason": self.close_reason.value,
        }


LifecycleEvent = Union[CallStarted, CallEnded]


class Transport(Protocol):
    async def send(self, payload: dict[str, Any]) -> None: ...


class WebhookTransport:
    """POSTs JSON payloads to a webhook URL."""

    def __init__(self, url: str, timeout_s: float = 5.0):
        self.url = url
        self.timeout_s = timeout_s

    async def send(self, payload: dict[str, Any]) -> None:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout_s),
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise aiohttp.ClientResponseError(
                        response.request_info,
                        response.history,
                        status=response.status,
                        message=text[:200],
                    )


class LifecycleNotifier:
    """Builds lifecycle payloads and dispatches each kind at most once."""

    def __init__(self, transport: Optional[Transport] = None):
        self.transport = transport
        self._sent: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    def call_started(self, identity: CallIdentity) -> Optional[CallStarted]:
        return self._emit(CallStarted(identity=identity))

    def call_ended(
        self,
        identity: CallIdentity,
        close_reason: CloseReason,
        duration_seconds: float,
    ) -> Optional[CallEnded]:
        return self._emit(
            CallEnded(identity=identity, close_reason=close_reason, duration_seconds=duration_seconds)
        )

    def _emit(self, event: LifecycleEvent) -> Optional[LifecycleEvent]:
        if event.kind in self._sent:
            logger.debug(f"Lifecycle {event.kind} already sent for {event.identity.session_id}")
            return None
        self._sent.add(event.kind)
        logger.info(f"Lifecycle {event.kind} for stream {event.identity.session_id}")
        if self.transport is not None:
            task = asyncio.create_task(self._deliver(event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return event

    async def _deliver(self, event: LifecycleEvent) -> None:
        try:
            await self.transport.send(event.to_payload())
        except Exception as e:
            logger.warning(f"Lifecycle {event.kind} delivery failed: {e}")

    async def drain(self) -> None:
        """Wait for in-flight deliveries."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
