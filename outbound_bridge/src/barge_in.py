"""
Barge-in: the caller starts talking over the agent's in-flight response.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class BargeInController:
    """
    Decides when a speech-started signal cancels the agent's response.

    After a cancellation, audio deltas still arriving for the cancelled
    response are suppressed until a new response starts.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.interruptions = 0
        self._suppressing = False
        self._suppressed_response_id: Optional[str] = None

    def on_speech_started(self, response_active: bool, response_id: Optional[str] = None) -> bool:
        """
        Returns True when the active response must be cancelled.

        The caller is responsible for sending the cancellation and clearing
        its response-active flag.
        """
        if not self.enabled or not response_active:
            return False
        self.interruptions += 1
        self.suppress(response_id)
        logger.info(f"Barge-in #{self.interruptions}: cancelling response {response_id or '?'}")
        return True

    def suppress(self, response_id: Optional[str] = None) -> None:
        """Drop the remaining audio of a response cancelled by the session."""
        self._suppressing = True
        self._suppressed_response_id = response_id

    def on_response_started(self, response_id: Optional[str] = None) -> None:
        self._suppressing = False
        self._suppressed_response_id = None

    def should_forward(self, response_id: Optional[str] = None) -> bool:
        """Whether an agent audio chunk should reach the caller."""
        if not self._suppressing:
            return True
        if self._suppressed_response_id and response_id and response_id != self._suppressed_response_id:
            return True
        return False
