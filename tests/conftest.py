"""
Shared fakes for assistant tests: a scripted model and an in-memory device.
"""

import asyncio
from typing import Optional

import pytest

from mira_assistant.assistant.agent import ConversationMemory, ToolCallingAgent
from mira_assistant.assistant.context import ContextAssembler, LocationContext, NotificationBuffer, PhotoCache
from mira_assistant.assistant.core import AssistantConfig, WakeWindowController
from mira_assistant.assistant.device import Device, TranscriptStore, TransportError
from mira_assistant.assistant.dispatcher import ResponseDispatcher
from mira_assistant.assistant.llm import AIMessage, LLMBackend
from mira_assistant.assistant.proactive import ProactiveGate
from mira_assistant.assistant.tools import ToolRegistry


class ScriptedLLM(LLMBackend):
    """Returns queued responses in order; exceptions in the queue are raised."""

    def __init__(self, responses=None, default="Final Answer: done"):
        self.model = "scripted"
        self.responses = list(responses or [])
        self.default = default
        self.calls = []
        self.release: Optional[asyncio.Event] = None

    async def invoke(self, messages, tools=None):
        self.calls.append({"messages": list(messages), "tools": tools})
        if self.release is not None:
            await self.release.wait()
        if not self.responses:
            return AIMessage(content=self.default)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, AIMessage):
            return response
        return AIMessage(content=response)


class FakeDevice(Device):
    """Records render commands and serves transcripts from memory."""

    def __init__(self, has_display: bool = True):
        self.has_display = has_display
        self.shown: list[str] = []
        self.spoken: list[str] = []
        self.played: list[str] = []
        self.fetches: list[int] = []
        self.transcripts = TranscriptStore()
        self.photo: Optional[str] = None
        self.fail_fetch = False
        self.fail_speak = False

    async def show_text(self, text, duration_ms=None):
        self.shown.append(text)

    async def speak(self, text):
        if self.fail_speak:
            raise RuntimeError("speaker unavailable")
        self.spoken.append(text)

    async def play_audio(self, url):
        self.played.append(url)

    async def capture_photo(self):
        return self.photo

    async def fetch_transcript(self, seconds):
        self.fetches.append(seconds)
        if self.fail_fetch:
            raise TransportError("transcript service unreachable")
        return self.transcripts.window(seconds)

    def record_transcript(self, text, is_final):
        self.transcripts.add(text, is_final)


# Millisecond timings so controller tests finish quickly
FAST_TIMINGS = dict(
    hard_cutoff_ms=1000,
    interim_debounce_ms=120,
    wake_word_only_debounce_ms=400,
    final_debounce_ms=30,
    grace_ms=30,
    photo_wait_s=0.05,
)


def build_controller(
    device: FakeDevice,
    llm: LLMBackend,
    registry: Optional[ToolRegistry] = None,
    gate_llm: Optional[LLMBackend] = None,
    location: Optional[LocationContext] = None,
    **overrides,
) -> WakeWindowController:
    config = AssistantConfig(**{**FAST_TIMINGS, **overrides})
    agent = ToolCallingAgent(llm, registry or ToolRegistry(), max_turns=config.max_turns, memory=ConversationMemory())
    dispatcher = ResponseDispatcher(device, speak_responses=config.speak_responses)
    assembler = ContextAssembler(
        location or LocationContext(),
        NotificationBuffer(),
        PhotoCache(ttl_s=config.photo_ttl_s),
        "user-1",
        photo_wait_s=config.photo_wait_s,
    )
    return WakeWindowController(
        device,
        agent,
        dispatcher,
        assembler,
        config=config,
        gate=ProactiveGate(gate_llm) if gate_llm is not None else None,
    )


async def say(controller: WakeWindowController, text: str, is_final: bool = True) -> None:
    """Deliver a fragment the way the server does: record it, then handle it."""
    controller.device.record_transcript(text, is_final)
    await controller.handle_transcription(text, is_final)


@pytest.fixture
def device():
    return FakeDevice()
