"""
Tests for response rendering and timer notifications.
"""

import asyncio

from conftest import FakeDevice

from mira_assistant.assistant.agent import AgentResult
from mira_assistant.assistant.dispatcher import ERROR_MESSAGE, NO_ANSWER, ResponseDispatcher
from mira_assistant.assistant.events import TimerSet
from mira_assistant.assistant.tools import ExecutionHandoff
from mira_assistant.core.text import wrap_text


class TestDispatch:
    def test_answer_is_wrapped_and_shown(self):
        device = FakeDevice()
        dispatcher = ResponseDispatcher(device)
        asyncio.run(dispatcher.dispatch(AgentResult(text="Sunny and 21 degrees with a light breeze")))
        assert device.shown == ["Sunny and 21 degrees with a\nlight breeze"]
        assert device.spoken == []

    def test_speaks_when_configured(self):
        device = FakeDevice()
        dispatcher = ResponseDispatcher(device, speak_responses=True)
        asyncio.run(dispatcher.dispatch(AgentResult(text="Visit https://example.com today")))
        assert device.spoken == ["Visit today"]

    def test_speaks_without_display(self):
        device = FakeDevice(has_display=False)
        asyncio.run(ResponseDispatcher(device).dispatch(AgentResult(text="Hello")))
        assert device.spoken == ["Hello"]

    def test_empty_result(self):
        device = FakeDevice()
        asyncio.run(ResponseDispatcher(device).dispatch(AgentResult()))
        assert device.shown == [wrap_text(NO_ANSWER)]

    def test_failed_result(self):
        device = FakeDevice()
        asyncio.run(ResponseDispatcher(device).dispatch(AgentResult(text="Error processing query.", failed=True)))
        assert device.shown == [wrap_text(ERROR_MESSAGE)]

    def test_handoff_renders_nothing(self):
        device = FakeDevice()
        result = AgentResult(handoff=ExecutionHandoff("Successfully started app com.example.nav"))
        asyncio.run(ResponseDispatcher(device, speak_responses=True).dispatch(result))
        assert device.shown == []
        assert device.spoken == []

    def test_speech_failure_is_not_fatal(self):
        device = FakeDevice()
        device.fail_speak = True
        asyncio.run(ResponseDispatcher(device, speak_responses=True).dispatch(AgentResult(text="Hi")))
        assert device.shown == ["Hi"]


class TestTimers:
    def test_timer_confirmation_and_notification(self):
        async def run():
            device = FakeDevice()
            dispatcher = ResponseDispatcher(device)
            await dispatcher.dispatch(AgentResult(event=TimerSet(duration=1, timer_id="t-1")))
            assert device.shown == ["Timer set for 1 second"]
            assert dispatcher.pending_timers == ["t-1"]

            await asyncio.wait_for(dispatcher.wait_for_timers(), timeout=3)
            return device, dispatcher

        device, dispatcher = asyncio.run(run())
        assert device.shown[-1] == "Time's up! Your 1 second timer\nis done."
        assert dispatcher.pending_timers == []

    def test_timer_event_parsed_from_text(self):
        async def run():
            device = FakeDevice()
            dispatcher = ResponseDispatcher(device)
            await dispatcher.dispatch(
                AgentResult(text='{"event": "timer_set", "duration": 90, "timerId": "abc"}')
            )
            pending = dispatcher.pending_timers
            dispatcher.cancel_timers()
            return device, pending

        device, pending = asyncio.run(run())
        assert device.shown == ["Timer set for 90 seconds"]
        assert pending == ["abc"]

    def test_same_timer_id_replaces_previous(self):
        async def run():
            dispatcher = ResponseDispatcher(FakeDevice())
            dispatcher.schedule_timer(TimerSet(duration=60, timer_id="t"))
            first = dispatcher._timers["t"]
            dispatcher.schedule_timer(TimerSet(duration=30, timer_id="t"))
            await asyncio.sleep(0.01)
            cancelled = first.cancelled()
            pending = dispatcher.pending_timers
            dispatcher.cancel_timers()
            return cancelled, pending

        cancelled, pending = asyncio.run(run())
        assert cancelled
        assert pending == ["t"]
