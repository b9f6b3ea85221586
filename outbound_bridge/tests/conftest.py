"""
Shared test configuration, fakes and fixtures.
"""

import asyncio
import json
import os
import sys
from dataclasses import replace

import pytest

# Add project root to path for imports
_tests_dir = os.path.dirname(os.path.abspath(__file__))
_package_dir = os.path.dirname(_tests_dir)
_project_root = os.path.dirname(_package_dir)
sys.path.insert(0, _project_root)

from outbound_bridge.src.config import (  # noqa: E402
    Config,
    RealtimeConfig,
    ScriptConfig,
    ServerConfig,
    SummaryConfig,
    TimerConfig,
    VADConfig,
    WebhookConfig,
)


class FakeTelephonySocket:
    """Records messages sent TO Twilio."""

    def __init__(self, fail_sends: bool = False):
        self.sent: list[dict] = []
        self.closed = False
        self.close_calls = 0
        self.fail_sends = fail_sends

    async def send_json(self, message):
        if self.fail_sends:
            raise RuntimeError("telephony socket gone")
        self.sent.append(message)

    async def close(self):
        self.close_calls += 1
        self.closed = True

    def media_frames(self) -> list[dict]:
        return [m for m in self.sent if m.get("event") == "media"]


class FakeRealtimeConnection:
    """In-memory stand-in for a Realtime socket."""

    def __init__(self, fail_sends: bool = False):
        self.sent: list[dict] = []
        self.closed = False
        self.close_calls = 0
        self.fail_sends = fail_sends
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send_json(self, message):
        if self.fail_sends:
            raise RuntimeError("realtime socket gone")
        self.sent.append(message)

    def push(self, event: dict) -> None:
        """Queue a server event as if it arrived from the service."""
        self._inbox.put_nowait(json.dumps(event))

    def push_raw(self, raw: str) -> None:
        self._inbox.put_nowait(raw)

    def fail(self, error: Exception) -> None:
        self._inbox.put_nowait(error)

    def end(self) -> None:
        """Simulate the service closing the socket cleanly."""
        self._inbox.put_nowait(None)

    async def messages(self):
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self):
        self.close_calls += 1
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]

    def of_type(self, event_type: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == event_type]


class FakeConnector:
    """Hands out a prepared connection, fails, or blocks until released."""

    def __init__(self, connection=None, error: Exception = None, block: bool = False):
        self.connection = connection
        self.error = error
        self.block = block
        self.release = asyncio.Event()
        self.calls = 0

    async def connect(self):
        self.calls += 1
        if self.block:
            await self.release.wait()
        if self.error:
            raise self.error
        return self.connection


class RecordingTransport:
    """Collects delivered payloads; optionally fails every send."""

    def __init__(self, error: Exception = None):
        self.payloads: list[dict] = []
        self.error = error

    async def send(self, payload):
        if self.error:
            raise self.error
        self.payloads.append(payload)

    def events(self) -> list[str]:
        return [p["event"] for p in self.payloads]


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll the event loop until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.002)


def start_frame(stream_sid="MZ-stream-1", call_sid="CA-call-1", **params) -> str:
    return json.dumps({
        "event": "start",
        "streamSid": stream_sid,
        "start": {"streamSid": stream_sid, "callSid": call_sid, "customParameters": params},
    })


def media_frame(payload: str, track: str = "inbound") -> str:
    return json.dumps({"event": "media", "media": {"payload": payload, "track": track}})


def stop_frame() -> str:
    return json.dumps({"event": "stop", "stop": {}})


@pytest.fixture
def bridge_config() -> Config:
    """Config with timers long enough to never fire unless a test shortens them."""
    return Config(
        realtime=RealtimeConfig(api_key="test-key"),
        vad=VADConfig(threshold=0.6, prefix_padding_ms=250, silence_duration_ms=600),
        scripts=ScriptConfig(
            opening_script="Hi {name}, this is Maya from Acme.",
            general_prompt="Be polite.",
            business_prompt="Acme sells solar panels.",
            closing_script="Thank you {name}, goodbye.",
            languages=("he", "en"),
            idle_warning_prompt="Are you still there?",
            max_call_warning_prompt="We need to wrap up soon.",
        ),
        timers=TimerConfig(
            idle_warning_ms=60000,
            idle_hangup_ms=60000,
            max_call_ms=600000,
            max_call_warning_ms=30000,
            hangup_grace_ms=50,
        ),
        webhooks=WebhookConfig(),
        summary=SummaryConfig(enabled=False),
        server=ServerConfig(),
        barge_in_enabled=True,
    )


def with_timers(config: Config, **overrides) -> Config:
    return replace(config, timers=replace(config.timers, **overrides))
