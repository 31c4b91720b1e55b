"""
Device sessions and the registry that owns them.

A session is everything the assistant holds for one connected pair of
glasses. All of it lives in memory and is dropped on disconnect.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Optional

import httpx

from mira_assistant.assistant.agent import ConversationMemory, ToolCallingAgent
from mira_assistant.assistant.builtin_tools import register_builtin_tools
from mira_assistant.assistant.context import ContextAssembler, LocationContext, NotificationBuffer, PhotoCache
from mira_assistant.assistant.core import AssistantConfig, WakeWindowController
from mira_assistant.assistant.device import Device
from mira_assistant.assistant.dispatcher import ResponseDispatcher
from mira_assistant.assistant.geocoding import LocationResolver
from mira_assistant.assistant.llm import LLMBackend
from mira_assistant.assistant.proactive import ProactiveGate
from mira_assistant.assistant.remote_tools import fetch_user_tools
from mira_assistant.assistant.tools import ToolRegistry
from mira_assistant.config import ToolsConfig
from mira_assistant.server.schemas import (
    ClearNotificationsEvent,
    HeadPositionEvent,
    LocationEvent,
    NotificationEvent,
    PhotoEvent,
    SettingsEvent,
    TranscriptionEvent,
    parse_device_event,
)

logger = logging.getLogger(__name__)

WELCOME_TITLE = "Mira AI"
WELCOME_TEXT = "Virtual assistant connected"


class Session:
    """One connected device and its assistant pipeline."""

    def __init__(
        self,
        session_id: str,
        user_id: str,
        device: Device,
        llm: LLMBackend,
        http: httpx.AsyncClient,
        notifications: NotificationBuffer,
        tools_config: ToolsConfig,
        config: AssistantConfig,
        resolver: Optional[LocationResolver] = None,
    ):
        self.session_id = session_id
        self.user_id = user_id
        self.device = device
        self.http = http
        self.notifications = notifications
        self.tools_config = tools_config
        self.config = config
        self.resolver = resolver or LocationResolver(http)

        self.location = LocationContext()
        self._coords: Optional[tuple[float, float]] = None
        self._resolved_coords: Optional[tuple[float, float]] = None
        self._tasks: set[asyncio.Task] = set()

        self.registry = ToolRegistry()
        register_builtin_tools(
            self.registry, {"http": http, "tools": tools_config, "user_id": user_id}
        )

        self.agent = ToolCallingAgent(
            llm,
            self.registry,
            max_turns=config.max_turns,
            memory=ConversationMemory(config.conversation_history),
        )
        self.dispatcher = ResponseDispatcher(
            device, speak_responses=config.speak_responses, line_width=config.line_width
        )
        self.assembler = ContextAssembler(
            self.location,
            notifications,
            PhotoCache(ttl_s=config.photo_ttl_s),
            user_id,
            notification_limit=config.notification_limit,
            photo_wait_s=config.photo_wait_s,
        )
        self.controller = WakeWindowController(
            device,
            self.agent,
            self.dispatcher,
            self.assembler,
            config=config,
            gate=ProactiveGate(llm),
            refresh_location=self.refresh_location,
        )

    async def start(self) -> None:
        """Show the welcome card and load the user's app tools in the background."""
        await self.dispatcher.show(f"{WELCOME_TITLE}\n{WELCOME_TEXT}", 3000)
        if self.tools_config.fetch_remote_tools:
            self._spawn(self._load_remote_tools())

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _load_remote_tools(self) -> None:
        tools = await fetch_user_tools(
            self.http,
            self.tools_config.cloud_url,
            self.user_id,
            timeout_s=self.tools_config.remote_tool_timeout_s,
        )
        for tool in tools:
            self.registry.add(tool)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def handle_raw_event(self, raw: str) -> None:
        """Parse and apply one device message (raises ValidationError if malformed)."""
        await self.handle_event(parse_device_event(raw))

    async def handle_event(self, event) -> None:
        if isinstance(event, TranscriptionEvent):
            self.device.record_transcript(event.text, event.is_final)
            await self.controller.handle_transcription(event.text, event.is_final)
        elif isinstance(event, HeadPositionEvent):
            self.controller.handle_head_position(event.position)
        elif isinstance(event, LocationEvent):
            self._coords = (event.lat, event.lng)
            self._spawn(self.refresh_location())
        elif isinstance(event, NotificationEvent):
            self.notifications.add(self.user_id, event.notification)
        elif isinstance(event, ClearNotificationsEvent):
            self.notifications.clear(self.user_id)
        elif isinstance(event, SettingsEvent):
            self.controller.apply_settings(
                always_listening=event.always_listening,
                speak_responses=event.speak_responses,
                head_up_wake=event.head_up_wake,
            )
        elif isinstance(event, PhotoEvent):
            self.device.resolve_photo(event.request_id, event.image)

    async def refresh_location(self) -> None:
        """Resolve the latest coordinates if they have not been resolved yet."""
        coords = self._coords
        if coords is None or coords == self._resolved_coords:
            return
        resolved = await self.resolver.resolve(*coords)
        if resolved == LocationContext():
            # Nothing resolved, so the next refresh tries these coordinates again
            logger.debug("Session %s could not resolve %s", self.session_id, coords)
            return
        self._resolved_coords = coords
        self.location.merge(resolved)
        logger.info(
            "Session %s location: %s, %s, %s",
            self.session_id, self.location.city, self.location.state, self.location.country,
        )

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.controller.shutdown()
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
        self.device.close()


class SessionRegistry:
    """Creates, looks up and tears down sessions."""

    def __init__(
        self,
        llm: LLMBackend,
        http: httpx.AsyncClient,
        tools_config: ToolsConfig,
        config: Optional[AssistantConfig] = None,
    ):
        self.llm = llm
        self.http = http
        self.tools_config = tools_config
        self.config = config or AssistantConfig()
        # Notifications are per user and outlive a single session
        self.notifications = NotificationBuffer()
        self._sessions: dict[str, Session] = {}

    async def open(self, session_id: str, user_id: str, device: Device) -> Session:
        if session_id in self._sessions:
            logger.info("Session %s reconnected, replacing old session", session_id)
            await self.close(session_id)

        session = Session(
            session_id,
            user_id,
            device,
            llm=self.llm,
            http=self.http,
            notifications=self.notifications,
            tools_config=self.tools_config,
            # Settings change per session, so each gets its own copy
            config=replace(self.config, wake_words=list(self.config.wake_words)),
        )
        self._sessions[session_id] = session
        logger.info("Session %s started for user %s", session_id, user_id)
        try:
            await session.start()
        except Exception:
            await self.close(session_id)
            raise
        return session

    async def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        session.close()
        logger.info("Session %s stopped", session_id)

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def __len__(self) -> int:
        return len(self._sessions)
