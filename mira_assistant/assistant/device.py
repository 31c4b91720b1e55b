"""
Device interface: what the assistant can ask of the glasses.

The server implements this over a WebSocket; the CLI implements it on the
terminal.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """The device could not be reached for a request."""


class Device(ABC):
    """Abstract base class for a connected device session."""

    has_display: bool = True

    @abstractmethod
    async def show_text(self, text: str, duration_ms: Optional[int] = None) -> None:
        """Show text on the head-up display."""
        pass

    @abstractmethod
    async def speak(self, text: str) -> None:
        """Speak text through the device speaker."""
        pass

    @abstractmethod
    async def play_audio(self, url: str) -> None:
        pass

    @abstractmethod
    async def capture_photo(self) -> Optional[str]:
        """Take a photo; returns base64 JPEG or None."""
        pass

    @abstractmethod
    async def fetch_transcript(self, seconds: int) -> dict:
        """
        Fetch the transcript of the last ``seconds`` seconds.

        Returns:
            ``{"segments": [{"text": ..., ...}, ...]}``

        Raises:
            TransportError: If the transcript could not be fetched
        """
        pass

    def record_transcript(self, text: str, is_final: bool) -> None:
        """Remember a fragment for later window fetches (devices without their own store)."""
        return None

    def resolve_photo(self, request_id: str, image: Optional[str]) -> None:
        """Deliver a photo that arrived after ``capture_photo`` asked for it."""
        return None

    def close(self) -> None:
        return None


class TranscriptStore:
    """
    Final transcript segments kept in memory with their arrival time.

    Serves transcript-window fetches for devices that do not keep their own.
    """

    def __init__(self, max_age_s: float = 300.0, clock=time.monotonic):
        self.max_age_s = max_age_s
        self._clock = clock
        self._segments: list[tuple[float, dict]] = []

    def add(self, text: str, is_final: bool = True) -> None:
        if not is_final or not text.strip():
            return
        now = self._clock()
        self._segments.append((now, {"text": text, "is_final": True}))
        cutoff = now - self.max_age_s
        self._segments = [(t, s) for t, s in self._segments if t >= cutoff]

    def window(self, seconds: int) -> dict:
        cutoff = self._clock() - seconds
        return {"segments": [s for t, s in self._segments if t >= cutoff]}

    def clear(self) -> None:
        self._segments.clear()
