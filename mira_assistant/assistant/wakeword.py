"""
Wake word detection over transcript text.

Speech recognition mishears the assistant's name in many ways, so detection
works against a list of spelled variants rather than a single phrase.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

from mira_assistant.core.text import clean_transcript

logger = logging.getLogger(__name__)

DEFAULT_WAKE_WORDS = [
    "hey mira", "he mira", "hey mara", "he mara", "hey mirror", "he mirror",
    "hey miara", "he miara", "hey mia", "he mia", "hey mural", "he mural",
    "hey amira", "hey myra", "he myra", "hay mira", "hai mira", "hey-mira",
    "he-mira", "heymira", "heymara", "hey mirah", "he mirah", "hey meera",
    "he meera", "Amira", "amira", "a mira", "a mirror",
]


class WakeWordDetector(ABC):
    """Abstract base class for wake word detectors."""

    @abstractmethod
    def detect(self, text: str) -> bool:
        """
        Check if a wake word is present in a transcript fragment.

        Args:
            text: Raw fragment text

        Returns:
            True if wake word detected
        """
        pass

    @abstractmethod
    def ends_with_wake_word(self, text: str) -> bool:
        """True if the fragment ends exactly in a wake word."""
        pass

    @abstractmethod
    def strip(self, text: str) -> str:
        """Remove everything up to and including the first wake word."""
        pass


class PhraseWakeWordDetector(WakeWordDetector):
    """Match a list of wake word spellings against cleaned transcript text."""

    def __init__(self, variants: Optional[list[str]] = None):
        variants = variants if variants is not None else DEFAULT_WAKE_WORDS

        # Longest first so "hey amira" wins over "amira"
        self.variants = sorted(
            {v for v in (clean_transcript(v) for v in variants) if v},
            key=len,
            reverse=True,
        )
        if not self.variants:
            raise ValueError("At least one wake word is required")

        alternation = "|".join(re.escape(v) for v in self.variants)
        self._contains = re.compile(rf"\b(?:{alternation})\b")
        self._ends = re.compile(rf"\b(?:{alternation})$")

        # Raw text keeps recognizer punctuation, which may sit between or after the words
        raw_patterns = sorted(
            {
                r"[\W_]*".join(re.escape(w) for w in re.findall(r"[^\W_]+", v))
                for v in variants
                if clean_transcript(v)
            },
            key=len,
            reverse=True,
        )
        self._strip = re.compile(
            rf".*?\b(?:{'|'.join(raw_patterns)})\b[\W_]*",
            re.IGNORECASE | re.DOTALL,
        )

        logger.debug("Wake word detector ready with %d variants", len(self.variants))

    def detect(self, text: str) -> bool:
        return bool(self._contains.search(clean_transcript(text)))

    def ends_with_wake_word(self, text: str) -> bool:
        return bool(self._ends.search(clean_transcript(text)))

    def strip(self, text: str) -> str:
        return self._strip.sub("", text, count=1).strip()


def create_wakeword_detector(
    backend: str = "phrase",
    variants: Optional[list[str]] = None,
) -> WakeWordDetector:
    """
    Factory function to create wake word detector.

    Args:
        backend: "phrase"
        variants: Wake word spellings (defaults to DEFAULT_WAKE_WORDS)

    Returns:
        WakeWordDetector instance
    """
    if backend == "phrase":
        return PhraseWakeWordDetector(variants)
    else:
        raise ValueError(f"Unknown wake word backend: {backend}")
