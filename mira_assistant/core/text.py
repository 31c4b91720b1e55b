"""
Text processing utilities for transcripts and display output.
"""

import re
import textwrap


def clean_transcript(text: str) -> str:
    """
    Normalize a transcript fragment for wake word matching.

    Lowercases and removes punctuation so "Hey, Mira!" matches "hey mira".
    Hyphens are punctuation too, so "hey-mira" becomes "heymira".

    Args:
        text: Raw fragment text

    Returns:
        Cleaned text
    """
    text = text.lower()
    text = re.sub(r"[^\w\s]", "", text)
    return text.strip()


def wrap_text(text: str, width: int = 30) -> str:
    """
    Wrap text into lines of at most ``width`` characters for the HUD.

    Existing line breaks are preserved; words longer than the width are
    left intact rather than split.
    """
    lines = []
    for paragraph in text.splitlines() or [""]:
        if not paragraph.strip():
            lines.append("")
            continue
        lines.extend(
            textwrap.wrap(paragraph, width=width, break_long_words=False, break_on_hyphens=False)
        )
    return "\n".join(lines)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```) if present."""
    text = text.strip()
    if text.startswith("```"):
        text = text.strip("`").strip()
        if text.lower().startswith("json"):
            text = text[4:].strip()
    return text


def clean_text_for_speech(text: str) -> str:
    """
    Clean text for better TTS output.

    Args:
        text: Raw text

    Returns:
        Cleaned text suitable for speech synthesis
    """
    # Remove URLs
    text = re.sub(r"https?://\S+", "", text)

    # Remove special characters except basic punctuation
    text = re.sub(r"[^\w\s.,!?;:'\"°%-]", " ", text)

    # Normalize whitespace
    text = re.sub(r"\s+", " ", text)

    return text.strip()
