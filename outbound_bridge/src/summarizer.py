"""
Post-call summary and call-log delivery.
Runs after a session is closed, outside the call's critical path.
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from .config import SummaryConfig
from .lifecycle import CallIdentity, CloseReason, Transport

logger = logging.getLogger(__name__)


SUMMARY_PROMPT = """You are summarizing an outbound sales phone call for a CRM entry.

Write 2-4 short sentences in the language the conversation was held in:
what the callee said, any request or objection, and any agreed next step.
Do not invent details that are not in the transcript.

Output ONLY the summary text."""


def format_transcript(transcript: list[tuple[str, str]]) -> str:
    return "\n".join(f"{'Agent' if role == 'assistant' else 'Callee'}: {text}" for role, text in transcript)


class CallSummarizer:
    """One-shot chat completion that turns a transcript into free text."""

    def __init__(self, config: SummaryConfig, api_key: str):
        self.config = config
        self.api_key = api_key

    async def summarize(
        self,
        transcript: list[tuple[str, str]],
        identity: CallIdentity,
        timeout: int = 30,
    ) -> Optional[str]:
        """
        Summarize a finished call.

        Returns None when there is nothing to summarize or the request fails.
        """
        if not transcript:
            return None

        header = f"Callee: {identity.callee_identity or 'unknown'}; campaign: {identity.campaign_tag or '-'}"
        payload = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "messages": [
                {"role": "system", "content": SUMMARY_PROMPT},
                {"role": "user", "content": f"{header}\n\n{format_transcript(transcript)}"},
            ],
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.config.url,
                    json=payload,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=timeout),
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"Summary API error {response.status}: {error_text[:200]}")
                        return None
                    result = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Summary request error: {e}")
            return None

        choices = result.get("choices") or []
        if not choices:
            return None
        text = (choices[0].get("message") or {}).get("content", "")
        return text.strip() or None


def build_call_log(
    identity: CallIdentity,
    close_reason: Optional[CloseReason],
    duration_seconds: float,
    transcript: list[tuple[str, str]],
    summary: Optional[str],
) -> dict[str, Any]:
    return {
        "event": "call_log",
        **identity.to_dict(),
        "close_reason": close_reason.value if close_reason else None,
        "duration_seconds": round(duration_seconds, 3),
        "transcript": [{"role": role, "text": text} for role, text in transcript],
        "summary": summary,
    }


async def deliver_call_log(
    identity: CallIdentity,
    close_reason: Optional[CloseReason],
    duration_seconds: float,
    transcript: list[tuple[str, str]],
    transport: Transport,
    summarizer: Optional[CallSummarizer] = None,
) -> None:
    """Summarize (if configured) and post the call log. Never raises."""
    summary = None
    try:
        if summarizer is not None:
            summary = await summarizer.summarize(transcript, identity)
        await transport.send(build_call_log(identity, close_reason, duration_seconds, transcript, summary))
        logger.info(f"Call log delivered for {identity.session_id}")
    except Exception as e:
        logger.warning(f"Call log delivery failed for {identity.session_id}: {e}")
