"""
Tests for device sessions and the FastAPI server.
"""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FAST_TIMINGS, FakeDevice, ScriptedLLM

from mira_assistant import __version__
from mira_assistant.assistant.context import LocationContext, NotificationBuffer
from mira_assistant.assistant.core import AssistantConfig, AssistantState
from mira_assistant.assistant.device import TransportError
from mira_assistant.config import Config, ToolsConfig
from mira_assistant.server.app import create_app
from mira_assistant.server.session import Session, SessionRegistry


class FakeResolver:
    def __init__(self):
        self.calls = []

    async def resolve(self, lat, lng):
        self.calls.append((lat, lng))
        return LocationContext(city="Lisbon", state="Lisbon", country="Portugal")


def unreachable(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


def make_session(device, **overrides) -> Session:
    http = httpx.AsyncClient(transport=httpx.MockTransport(unreachable))
    return Session(
        "s-1",
        "user-1",
        device,
        llm=ScriptedLLM(),
        http=http,
        notifications=NotificationBuffer(),
        tools_config=ToolsConfig(fetch_remote_tools=False),
        config=AssistantConfig(**{**FAST_TIMINGS, "capture_photos": False, **overrides}),
        resolver=FakeResolver(),
    )


class TestSession:
    def test_start_shows_welcome(self):
        device = FakeDevice()

        async def run():
            session = make_session(device)
            await session.start()
            session.close()

        asyncio.run(run())
        assert device.shown == ["Mira AI\nVirtual assistant connected"]

    def test_builtin_tools_registered(self):
        session = make_session(FakeDevice())
        assert session.registry.names() == ["Search_Engine", "Timer", "TPA_Commands", "Internal_Thinking"]

    def test_notifications_and_settings(self):
        async def run():
            session = make_session(FakeDevice())
            await session.handle_raw_event(
                '{"type": "notification", "notification": {"title": "Mom", "text": "Call me"}}'
            )
            assert session.notifications.count("user-1") == 1

            await session.handle_raw_event('{"type": "clear_notifications"}')
            assert session.notifications.count("user-1") == 0

            await session.handle_raw_event('{"type": "settings", "speak_responses": true}')
            assert session.controller.config.speak_responses is True
            assert session.dispatcher.speak_responses is True
            assert session.controller.config.always_listening is False
            session.close()

        asyncio.run(run())

    def test_location_resolved_once_per_coordinate(self):
        async def run():
            session = make_session(FakeDevice())
            await session.handle_raw_event('{"type": "location", "lat": 38.72, "lng": -9.14}')
            await asyncio.sleep(0.01)
            await session.refresh_location()
            await session.handle_raw_event('{"type": "location", "lat": 38.72, "lng": -9.14}')
            await asyncio.sleep(0.01)
            session.close()
            return session

        session = asyncio.run(run())
        assert session.resolver.calls == [(38.72, -9.14)]
        assert session.location.city == "Lisbon"

    def test_failed_lookup_is_retried(self):
        class FlakyResolver(FakeResolver):
            async def resolve(self, lat, lng):
                self.calls.append((lat, lng))
                if len(self.calls) == 1:
                    return LocationContext()
                return LocationContext(city="Lisbon", state="Lisbon", country="Portugal")

        async def run():
            session = make_session(FakeDevice())
            session.resolver = FlakyResolver()
            await session.handle_raw_event('{"type": "location", "lat": 38.72, "lng": -9.14}')
            await asyncio.sleep(0.01)
            assert session.location.city == "unknown"

            await session.refresh_location()
            await session.refresh_location()
            session.close()
            return session

        session = asyncio.run(run())
        assert session.resolver.calls == [(38.72, -9.14), (38.72, -9.14)]
        assert session.location.city == "Lisbon"

    def test_transcription_event_reaches_controller(self):
        async def run():
            session = make_session(FakeDevice())
            await session.handle_raw_event('{"type": "transcription", "text": "hey mira hello", "is_final": true}')
            state = session.controller.state
            session.close()
            return state

        assert asyncio.run(run()) == AssistantState.LISTENING

    def test_invalid_event_raises(self):
        from pydantic import ValidationError

        async def run():
            session = make_session(FakeDevice())
            try:
                await session.handle_raw_event('{"type": "teleport"}')
            finally:
                session.close()

        with pytest.raises(ValidationError):
            asyncio.run(run())


class TestSessionRegistry:
    def test_sessions_get_their_own_settings(self):
        async def run():
            http = httpx.AsyncClient(transport=httpx.MockTransport(unreachable))
            registry = SessionRegistry(
                ScriptedLLM(), http, ToolsConfig(fetch_remote_tools=False), AssistantConfig(capture_photos=False)
            )
            first = await registry.open("a", "user-1", FakeDevice())
            second = await registry.open("b", "user-1", FakeDevice())
            first.controller.apply_settings(always_listening=True)

            result = (
                len(registry),
                second.controller.config.always_listening,
                first.notifications is second.notifications,
            )
            await registry.close_all()
            await http.aclose()
            return result, len(registry)

        (count, second_always, shared), after = asyncio.run(run())
        assert count == 2
        assert second_always is False
        assert shared
        assert after == 0

    def test_reconnect_replaces_session(self):
        async def run():
            http = httpx.AsyncClient(transport=httpx.MockTransport(unreachable))
            registry = SessionRegistry(ScriptedLLM(), http, ToolsConfig(fetch_remote_tools=False))
            old = await registry.open("a", "user-1", FakeDevice())
            new = await registry.open("a", "user-1", FakeDevice())
            result = (len(registry), registry.get("a") is new, old.controller._closed)
            await registry.close_all()
            await http.aclose()
            return result

        assert asyncio.run(run()) == (1, True, True)

    def test_failed_start_leaves_no_session(self):
        class BrokenDevice(FakeDevice):
            async def show_text(self, text, duration_ms=None):
                raise TransportError("device went away")

        async def run():
            http = httpx.AsyncClient(transport=httpx.MockTransport(unreachable))
            registry = SessionRegistry(ScriptedLLM(), http, ToolsConfig(fetch_remote_tools=False))
            try:
                with pytest.raises(TransportError):
                    await registry.open("a", "user-1", BrokenDevice())
                return len(registry), registry.get("a")
            finally:
                await http.aclose()

        assert asyncio.run(run()) == (0, None)


@pytest.fixture
def client():
    app = create_app(
        config=Config(tools=ToolsConfig(fetch_remote_tools=False)),
        llm=ScriptedLLM(["Final Answer: It is noon"]),
        assistant_config=AssistantConfig(**FAST_TIMINGS, capture_photos=False),
    )
    with TestClient(app) as client:
        yield client


def receive_until(websocket, text: str, limit: int = 10) -> list[dict]:
    messages = []
    for _ in range(limit):
        message = websocket.receive_json()
        messages.append(message)
        if message.get("text") == text:
            return messages
    raise AssertionError(f"{text!r} never arrived in {messages}")


class TestServer:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": __version__, "sessions": 0}

    def test_session_answers_wake_word_query(self, client):
        with client.websocket_connect("/session/glasses-1?user_id=user-1") as websocket:
            welcome = websocket.receive_json()
            assert welcome == {
                "type": "show_text",
                "text": "Mira AI\nVirtual assistant connected",
                "duration_ms": 3000,
            }
            assert client.get("/health").json()["sessions"] == 1

            websocket.send_json({"type": "transcription", "text": "Hey Mira, what time is it?", "is_final": True})
            messages = receive_until(websocket, "It is noon")

        texts = [m["text"] for m in messages]
        assert texts[0] == "what time is it?"
        assert any(t.startswith("Processing query:") for t in texts)
        assert all(m["type"] == "show_text" for m in messages)

    def test_display_less_device_gets_speech(self, client):
        with client.websocket_connect("/session/glasses-2?has_display=false") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "transcription", "text": "hey mira what time is it", "is_final": True})
            for _ in range(10):
                message = websocket.receive_json()
                if message["type"] == "speak":
                    break
            else:
                raise AssertionError("no speech received")

        assert message == {"type": "speak", "text": "It is noon"}

    def test_invalid_event_returns_error(self, client):
        with client.websocket_connect("/session/glasses-3") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "teleport"})
            error = websocket.receive_json()
            assert error["type"] == "error"
            assert error["error"].startswith("Invalid event")
