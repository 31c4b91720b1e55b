"""
Assistant core - the per-session listening state machine.

Ties together:
- Wake word detection on transcript fragments
- Debounce and hard cutoff timers deciding when a query is complete
- The proactive gate (always-listening mode)
- Context assembly, the tool-calling loop and response dispatch
"""

import asyncio
import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from mira_assistant.assistant.agent import ToolCallingAgent
from mira_assistant.assistant.context import ContextAssembler
from mira_assistant.assistant.device import Device, TransportError
from mira_assistant.assistant.dispatcher import ERROR_MESSAGE, ResponseDispatcher
from mira_assistant.assistant.head_gate import HeadPositionTracker
from mira_assistant.assistant.proactive import ProactiveGate
from mira_assistant.assistant.wakeword import DEFAULT_WAKE_WORDS, WakeWordDetector, create_wakeword_detector
from mira_assistant.core.text import clean_transcript

logger = logging.getLogger(__name__)

LISTENING_MESSAGE = "Listening..."
NO_QUERY_MESSAGE = "No query provided"
RETRY_MESSAGE = "Sorry, I couldn't hear that. Please try again."


def _segment_texts(transcript: object) -> list[str]:
    """Segment texts from a transcript window reply, rejecting malformed replies."""
    if not isinstance(transcript, dict):
        raise TransportError("Malformed transcript window")
    segments = transcript.get("segments", [])
    if not isinstance(segments, list):
        raise TransportError("Malformed transcript window: segments is not a list")

    texts = []
    for segment in segments:
        text = segment.get("text", "") if isinstance(segment, dict) else None
        if not isinstance(text, str):
            raise TransportError(f"Malformed transcript segment: {segment!r}")
        texts.append(text.strip())
    return texts


class AssistantState(Enum):
    """Assistant state machine states."""

    IDLE = "idle"  # Waiting for wake word
    LISTENING = "listening"  # Collecting the query
    PROCESSING = "processing"  # Gate -> context -> loop -> dispatch


@dataclass
class AssistantConfig:
    """Configuration for one assistant session."""

    # Wake word settings
    wake_words: list[str] = field(default_factory=lambda: list(DEFAULT_WAKE_WORDS))
    wake_word_backend: str = "phrase"

    # Device settings (changed live by the device)
    always_listening: bool = False
    speak_responses: bool = False
    head_up_wake: bool = False
    head_up_window_s: float = 10.0

    # Timing
    hard_cutoff_ms: int = 15000
    interim_debounce_ms: int = 3000  # Non-final fragment
    wake_word_only_debounce_ms: int = 8000  # Final fragment ending in the wake word
    final_debounce_ms: int = 1500  # Any other final fragment
    grace_ms: int = 1500  # After a query before listening again

    # Loop and context
    max_turns: int = 5
    conversation_history: int = 5  # Number of queries to remember
    notification_limit: int = 5
    capture_photos: bool = True
    photo_ttl_s: float = 60.0
    photo_wait_s: float = 2.0
    gate_window: int = 6  # Transcript segments shown to the proactive gate

    # Display
    line_width: int = 30
    live_display_ms: int = 10000
    listen_cue_url: Optional[str] = None

    @classmethod
    def from_yaml(cls, path: str) -> dict:
        """Load config values from a YAML file.

        Returns a dict of config keys → values (not an AssistantConfig instance).
        Only keys that correspond to AssistantConfig fields are returned;
        unknown keys are silently ignored.
        """
        import yaml

        yaml_path = Path(path).expanduser()
        with open(yaml_path) as f:
            raw = yaml.safe_load(f) or {}

        valid_keys = {f.name for f in fields(cls)}
        return {k: v for k, v in raw.items() if k in valid_keys}


@dataclass
class ListeningState:
    """Mutable listening state. Only the controller touches it."""

    is_processing_query: bool = False
    is_listening: bool = False
    started_at: float = 0.0
    pending_timer: Optional[asyncio.Task] = None
    hard_cutoff_timer: Optional[asyncio.Task] = None


class WakeWindowController:
    """
    Decides, fragment by fragment, when a query starts and ends.

    IDLE → LISTENING on a wake word (or any speech when always listening),
    LISTENING → PROCESSING when the debounce or hard cutoff timer fires,
    PROCESSING → IDLE after the response plus a short grace delay.
    """

    def __init__(
        self,
        device: Device,
        agent: ToolCallingAgent,
        dispatcher: ResponseDispatcher,
        assembler: ContextAssembler,
        config: Optional[AssistantConfig] = None,
        wakeword: Optional[WakeWordDetector] = None,
        gate: Optional[ProactiveGate] = None,
        head_tracker: Optional[HeadPositionTracker] = None,
        refresh_location: Optional[Callable[[], Awaitable[None]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.device = device
        self.agent = agent
        self.dispatcher = dispatcher
        self.assembler = assembler
        self.config = config or AssistantConfig()
        self.wakeword = wakeword or create_wakeword_detector(
            self.config.wake_word_backend, self.config.wake_words
        )
        self.gate = gate
        self.head_tracker = head_tracker or HeadPositionTracker()
        self.refresh_location = refresh_location
        self._clock = clock

        self.state = AssistantState.IDLE
        self.listening = ListeningState()
        self.dispatcher.speak_responses = self.config.speak_responses

        self._recent_segments: deque[str] = deque(maxlen=self.config.gate_window)
        self._gate_context: list[str] = []
        self._woke_by_wake_word = False
        self._last_fragment = ""
        self._query_task: Optional[asyncio.Task] = None
        self._grace_task: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    async def handle_transcription(self, text: str, is_final: bool = True) -> None:
        """Feed one transcript fragment through the state machine."""
        if self._closed:
            return
        if self.listening.is_processing_query:
            logger.debug("Query in progress, ignoring fragment: %s", text)
            return

        cleaned = clean_transcript(text)

        if not self.listening.is_listening:
            if not self._should_start(text, cleaned):
                if is_final and cleaned:
                    self._recent_segments.append(text)
                return
            self._start_listening(text)

        if is_final and cleaned:
            self._recent_segments.append(text)
        self._last_fragment = text
        self._reset_debounce(text, is_final)
        await self._show_live(text)

    def handle_head_position(self, event) -> None:
        self.head_tracker.update(event)

    def apply_settings(
        self,
        always_listening: Optional[bool] = None,
        speak_responses: Optional[bool] = None,
        head_up_wake: Optional[bool] = None,
    ) -> None:
        """Apply device settings to the running session."""
        if always_listening is not None:
            self.config.always_listening = always_listening
        if speak_responses is not None:
            self.config.speak_responses = speak_responses
            self.dispatcher.speak_responses = speak_responses
        if head_up_wake is not None:
            self.config.head_up_wake = head_up_wake
        logger.info(
            "Settings: always_listening=%s speak_responses=%s head_up_wake=%s",
            self.config.always_listening, self.config.speak_responses, self.config.head_up_wake,
        )

    # ------------------------------------------------------------------
    # IDLE → LISTENING
    # ------------------------------------------------------------------

    def _should_start(self, text: str, cleaned: str) -> bool:
        if self.config.always_listening:
            return bool(cleaned)

        if not self.wakeword.detect(text):
            return False
        if self.config.head_up_wake and not self.head_tracker.is_head_up_recent(
            self.config.head_up_window_s
        ):
            logger.debug("Wake word ignored, head not raised recently")
            return False
        return True

    def _start_listening(self, text: str) -> None:
        self.state = AssistantState.LISTENING
        self.listening.is_listening = True
        self.listening.started_at = self._clock()
        self._woke_by_wake_word = self.wakeword.detect(text)
        self._gate_context = list(self._recent_segments)
        logger.info("Listening (wake word: %s)", self._woke_by_wake_word)

        self.listening.hard_cutoff_timer = asyncio.create_task(
            self._fire_after(self.config.hard_cutoff_ms, "hard cutoff")
        )

        if self.refresh_location is not None:
            self._spawn(self.refresh_location(), "location refresh")
        if self.config.capture_photos:
            self.assembler.photos.start_capture(self.device.capture_photo)
        if self.config.listen_cue_url:
            self._spawn(self.device.play_audio(self.config.listen_cue_url), "listening cue")

    def _spawn(self, coro: Awaitable, what: str) -> None:
        async def _best_effort():
            try:
                await coro
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("%s failed: %s", what.capitalize(), e)

        task = asyncio.create_task(_best_effort())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _debounce_ms(self, text: str, is_final: bool) -> int:
        if not is_final:
            return self.config.interim_debounce_ms
        if not self.config.always_listening and self.wakeword.ends_with_wake_word(text):
            return self.config.wake_word_only_debounce_ms
        return self.config.final_debounce_ms

    def _reset_debounce(self, text: str, is_final: bool) -> None:
        if self.listening.pending_timer is not None:
            self.listening.pending_timer.cancel()
        self.listening.pending_timer = asyncio.create_task(
            self._fire_after(self._debounce_ms(text, is_final), "debounce")
        )

    async def _fire_after(self, delay_ms: int, reason: str) -> None:
        await asyncio.sleep(delay_ms / 1000)
        logger.debug("Listening window closed by %s", reason)
        self._end_listening()

    def _cancel_listening_timers(self) -> None:
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in (self.listening.pending_timer, self.listening.hard_cutoff_timer):
            if task is not None and task is not current:
                task.cancel()
        self.listening.pending_timer = None
        self.listening.hard_cutoff_timer = None

    # ------------------------------------------------------------------
    # LISTENING → PROCESSING → IDLE
    # ------------------------------------------------------------------

    def _end_listening(self) -> None:
        if not self.listening.is_listening:
            return
        self._cancel_listening_timers()

        elapsed = self._clock() - self.listening.started_at
        seconds = max(1, math.ceil(elapsed))

        self.listening.is_listening = False
        self.listening.is_processing_query = True
        self.state = AssistantState.PROCESSING
        self._query_task = asyncio.create_task(self._process(seconds))

    async def _process(self, seconds: int) -> None:
        try:
            query = await self._collect_query(seconds)
            if not query:
                logger.info("Empty query")
                if not self.config.always_listening:
                    await self.dispatcher.show(NO_QUERY_MESSAGE, self.dispatcher.notice_ms)
                return

            if not self._woke_by_wake_word and self.gate is not None:
                decision = await self.gate.evaluate(query, self._gate_context)
                if not decision.should_respond:
                    logger.info("Gate declined (%s): %s", decision.trigger, decision.reason)
                    return

            await self.dispatcher.show(f"Processing query: {query}", self.dispatcher.display_ms)
            bundle = await self.assembler.assemble()
            result = await self.agent.run(query, bundle)
            await self.dispatcher.dispatch(result)
        except asyncio.CancelledError:
            raise
        except TransportError as e:
            logger.warning("Device transport error: %s", e)
            await self._notify(RETRY_MESSAGE)
        except Exception:
            logger.exception("Error processing query")
            await self._notify(ERROR_MESSAGE)
        finally:
            if not self._closed:
                self._grace_task = asyncio.create_task(self._release_after_grace())

    async def _collect_query(self, seconds: int) -> str:
        transcript = await self.device.fetch_transcript(seconds)
        text = " ".join(t for t in _segment_texts(transcript) if t)
        if not text:
            # Only interim fragments arrived before the window closed
            text = self._last_fragment
        logger.debug("Transcript window (%ds): %s", seconds, text)
        return self._query_text(text)

    def _query_text(self, text: str) -> str:
        """Drop the wake word when it opened the window; punctuation alone is no query."""
        query = self.wakeword.strip(text) if self._woke_by_wake_word else text.strip()
        return query if clean_transcript(query) else ""

    async def _notify(self, message: str) -> None:
        try:
            await self.dispatcher.show(message, self.dispatcher.notice_ms)
        except Exception as e:
            logger.warning("Could not show notice: %s", e)

    async def _release_after_grace(self) -> None:
        await asyncio.sleep(self.config.grace_ms / 1000)
        self.listening.is_processing_query = False
        self._last_fragment = ""
        self.state = AssistantState.IDLE
        logger.debug("Ready for the next query")

    async def _show_live(self, text: str) -> None:
        shown = self._query_text(text)
        try:
            await self.dispatcher.show(shown or LISTENING_MESSAGE, self.config.live_display_ms)
        except Exception as e:
            logger.debug("Live display update failed: %s", e)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        """Cancel every outstanding timer and task for this session."""
        self._closed = True
        self._cancel_listening_timers()
        for task in (self._query_task, self._grace_task, *self._background):
            if task is not None and not task.done():
                task.cancel()
        self._background.clear()
        self.dispatcher.cancel_timers()
        self.assembler.photos.discard()
        self.listening = ListeningState()
        self.state = AssistantState.IDLE
        logger.debug("Controller shut down")
