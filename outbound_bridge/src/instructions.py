"""
Builds the agent's system instructions and the opening utterance.
"""

import re
from typing import Optional

from .config import ScriptConfig

# Matches {name} and {{name}}, tolerating inner whitespace.
NAME_PLACEHOLDER = re.compile(r"\{\{\s*name\s*\}\}|\{\s*name\s*\}", re.IGNORECASE)

_LANGUAGE_NAMES = {
    "he": "Hebrew",
    "en": "English",
    "ar": "Arabic",
    "ru": "Russian",
    "fr": "French",
    "es": "Spanish",
}


def fill_name(template: str, callee_identity: Optional[str], filler: str = "there") -> str:
    """Replace every name placeholder with the callee's name or a neutral filler."""
    name = (callee_identity or "").strip() or filler
    return NAME_PLACEHOLDER.sub(lambda _: name, template)


def render_opening(scripts: ScriptConfig, callee_identity: Optional[str]) -> str:
    return fill_name(scripts.opening_script, callee_identity, scripts.name_filler).strip()


def _describe_languages(languages: tuple[str, ...]) -> str:
    return ", ".join(_LANGUAGE_NAMES.get(code.lower(), code) for code in languages)


def build_instructions(scripts: ScriptConfig, callee_identity: Optional[str] = None) -> str:
    """
    Assemble the free-text system instructions for one call.

    Sections are emitted in a fixed order and empty sections are skipped:
    opening script, general knowledge, business prompt, languages, closing
    script.
    """
    sections = [
        "You are an AI voice agent placing an outbound phone call. "
        "Keep answers short and natural, one or two sentences at a time."
    ]

    opening = render_opening(scripts, callee_identity)
    if opening:
        sections.append(f"Your opening line (already spoken at the start of the call):\n{opening}")

    if scripts.general_prompt.strip():
        sections.append(f"General guidelines:\n{scripts.general_prompt.strip()}")

    if scripts.business_prompt.strip():
        sections.append(f"Business information:\n{scripts.business_prompt.strip()}")

    if scripts.languages:
        sections.append(
            f"Speak only these languages: {_describe_languages(scripts.languages)}. "
            "Answer in the language the caller uses."
        )

    closing = fill_name(scripts.closing_script, callee_identity, scripts.name_filler).strip()
    if closing:
        sections.append(f"When the conversation ends, close with:\n{closing}")

    return "\n\n".join(sections)
