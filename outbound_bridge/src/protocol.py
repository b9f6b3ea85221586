"""
Wire vocabulary for both peers.

Parses Twilio Media Streams frames and OpenAI Realtime server events into
session events, and builds the outbound messages for each side. Audio
payloads are base64 strings and are never decoded here.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


class MalformedMessage(ValueError):
    """An inbound frame could not be parsed or lacks required fields."""


# --- Telephony inbound -----------------------------------------------------

@dataclass
class TelephonyStart:
    stream_id: str
    call_id: str
    custom_parameters: dict[str, str] = field(default_factory=dict)


@dataclass
class TelephonyMedia:
    payload: str


@dataclass
class TelephonyMark:
    name: str = ""


@dataclass
class TelephonyStop:
    pass


@dataclass
class TelephonyClosed:
    """The media-stream socket closed (error is set when it failed)."""
    error: Optional[str] = None


# --- Dialogue-service inbound ----------------------------------------------

@dataclass
class DialogueOpened:
    connection: Any


@dataclass
class DialogueAudio:
    payload: str
    response_id: Optional[str] = None


@dataclass
class DialogueSpeechStarted:
    pass


@dataclass
class DialogueResponseStarted:
    response_id: Optional[str] = None


@dataclass
class DialogueResponseCompleted:
    response_id: Optional[str] = None


@dataclass
class DialogueTranscript:
    role: str
    text: str


@dataclass
class DialogueClosed:
    pass


@dataclass
class DialogueFailed:
    error: str


TelephonyEvent = Union[TelephonyStart, TelephonyMedia, TelephonyMark, TelephonyStop, TelephonyClosed]
DialogueEvent = Union[
    DialogueOpened,
    DialogueAudio,
    DialogueSpeechStarted,
    DialogueResponseStarted,
    DialogueResponseCompleted,
    DialogueTranscript,
    DialogueClosed,
    DialogueFailed,
]


def _load(raw: Union[str, bytes]) -> dict:
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"Invalid JSON: {e}") from None
    if not isinstance(message, dict):
        raise MalformedMessage("Frame is not a JSON object")
    return message


def parse_telephony_message(raw: Union[str, bytes]) -> Optional[TelephonyEvent]:
    """
    Parse one Twilio Media Streams frame.

    Returns None for frames the bridge does not act on (``connected``,
    outbound-track media, unknown events).

    Raises:
        MalformedMessage: if the frame is not JSON or misses required fields
    """
    message = _load(raw)
    event = message.get("event")

    if event == "start":
        start = message.get("start")
        if not isinstance(start, dict):
            raise MalformedMessage("start event without start block")
        stream_id = start.get("streamSid") or message.get("streamSid")
        if not stream_id:
            raise MalformedMessage("start event without streamSid")
        params = start.get("customParameters") or {}
        if not isinstance(params, dict):
            raise MalformedMessage("customParameters is not an object")
        return TelephonyStart(
            stream_id=stream_id,
            call_id=start.get("callSid", ""),
            custom_parameters={str(k): str(v) for k, v in params.items()},
        )

    if event == "media":
        media = message.get("media")
        if not isinstance(media, dict) or not isinstance(media.get("payload"), str):
            raise MalformedMessage("media event without payload")
        if media.get("track", "inbound") != "inbound":
            return None
        return TelephonyMedia(payload=media["payload"])

    if event == "mark":
        mark = message.get("mark") or {}
        return TelephonyMark(name=mark.get("name", "") if isinstance(mark, dict) else "")

    if event == "stop":
        return TelephonyStop()

    if event is None:
        raise MalformedMessage("Frame without event field")

    return None


_AUDIO_DELTA_TYPES = ("response.audio.delta", "response.output_audio.delta")
_ASSISTANT_TRANSCRIPT_TYPES = ("response.audio_transcript.done", "response.output_audio_transcript.done")
# Service-side errors that describe races rather than failures.
_BENIGN_ERROR_CODES = {"response_cancel_not_active"}


def parse_dialogue_message(raw: Union[str, bytes]) -> Optional[DialogueEvent]:
    """
    Parse one OpenAI Realtime server event.

    Returns None for events the bridge only logs or ignores.

    Raises:
        MalformedMessage: if the event is not JSON or misses required fields
    """
    message = _load(raw)
    event_type = message.get("type")
    if not event_type:
        raise MalformedMessage("Event without type field")

    if event_type in _AUDIO_DELTA_TYPES:
        delta = message.get("delta")
        if not isinstance(delta, str):
            raise MalformedMessage(f"{event_type} without delta")
        return DialogueAudio(payload=delta, response_id=message.get("response_id"))

    if event_type == "input_audio_buffer.speech_started":
        return DialogueSpeechStarted()

    if event_type == "response.created":
        response = message.get("response") or {}
        return DialogueResponseStarted(response_id=response.get("id"))

    if event_type == "response.done":
        response = message.get("response") or {}
        return DialogueResponseCompleted(response_id=response.get("id"))

    if event_type in _ASSISTANT_TRANSCRIPT_TYPES:
        return DialogueTranscript(role="assistant", text=message.get("transcript", ""))

    if event_type == "conversation.item.input_audio_transcription.completed":
        return DialogueTranscript(role="user", text=message.get("transcript", ""))

    if event_type == "error":
        error = message.get("error") or {}
        if error.get("code") in _BENIGN_ERROR_CODES:
            logger.debug(f"Realtime race (harmless): {error.get('message')}")
        else:
            logger.error(f"Realtime service error: {error}")
        return None

    if event_type in ("session.created", "session.updated"):
        logger.info(f"Realtime {event_type}")

    return None


# --- Outbound builders -----------------------------------------------------

def telephony_media(stream_id: str, payload: str) -> dict:
    return {"event": "media", "streamSid": stream_id, "media": {"payload": payload}}


def telephony_clear(stream_id: str) -> dict:
    return {"event": "clear", "streamSid": stream_id}


def session_update(
    instructions: str,
    voice: str,
    audio_format: str,
    vad_threshold: float,
    prefix_padding_ms: int,
    silence_duration_ms: int,
    transcription_model: Optional[str] = None,
) -> dict:
    session: dict[str, Any] = {
        "modalities": ["text", "audio"],
        "instructions": instructions,
        "voice": voice,
        "input_audio_format": audio_format,
        "output_audio_format": audio_format,
        "turn_detection": {
            "type": "server_vad",
            "threshold": vad_threshold,
            "prefix_padding_ms": prefix_padding_ms,
            "silence_duration_ms": silence_duration_ms,
            "create_response": True,
        },
    }
    if transcription_model:
        session["input_audio_transcription"] = {"model": transcription_model}
    return {"type": "session.update", "session": session}


def inject_utterance(text: str) -> dict:
    """Conversation item asking the agent to say ``text`` as its next turn."""
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": verbatim_instructions(text)}],
        },
    }


def verbatim_instructions(text: str) -> str:
    return f'Say exactly this to the caller: "{text}"'


def request_response(instructions: Optional[str] = None) -> dict:
    if instructions:
        return {"type": "response.create", "response": {"instructions": instructions}}
    return {"type": "response.create"}


def append_audio(payload: str) -> dict:
    return {"type": "input_audio_buffer.append", "audio": payload}


def cancel_response() -> dict:
    return {"type": "response.cancel"}
