"""
Core utilities for transcript and display text handling.
"""

from mira_assistant.core.text import clean_text_for_speech, clean_transcript, strip_code_fences, wrap_text

__all__ = [
    "clean_transcript",
    "clean_text_for_speech",
    "strip_code_fences",
    "wrap_text",
]
