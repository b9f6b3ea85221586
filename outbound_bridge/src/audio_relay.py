"""
Pass-through of opaque audio payloads between the two peers.
"""

from typing import Optional

from . import protocol


class AudioRelay:
    """Stateless framing of audio payloads; payloads are never decoded."""

    @staticmethod
    def to_dialogue(payload: str, dialogue_ready: bool) -> Optional[dict]:
        """
        Frame caller audio for the dialogue service.

        Returns None (drop) until the dialogue connection is open and
        configured.
        """
        if not dialogue_ready:
            return None
        return protocol.append_audio(payload)

    @staticmethod
    def to_telephony(stream_id: str, payload: str) -> dict:
        """Frame agent audio as a media message for the caller's stream."""
        return protocol.telephony_media(stream_id, payload)
