"""
Tests for the wake window controller (listening state machine).
"""

import asyncio

from conftest import ScriptedLLM, build_controller, say

from mira_assistant.assistant.core import (
    NO_QUERY_MESSAGE,
    RETRY_MESSAGE,
    AssistantConfig,
    AssistantState,
)
from mira_assistant.assistant.dispatcher import ERROR_MESSAGE
from mira_assistant.core.text import wrap_text

GATE_DECLINE = '{"should_respond": false, "trigger": "fallback", "confidence": 0.9, "reason": "chit-chat"}'


async def wait_idle(controller, timeout: float = 3.0) -> None:
    """Wait until the controller is back in IDLE with the lock released."""
    deadline = asyncio.get_running_loop().time() + timeout
    while controller.state != AssistantState.IDLE or controller.listening.is_processing_query:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"controller stuck in {controller.state}")
        await asyncio.sleep(0.01)


async def wait_for_calls(llm, count: int, timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while len(llm.calls) < count:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"expected {count} model calls, got {len(llm.calls)}")
        await asyncio.sleep(0.01)


def last_query(llm) -> str:
    return llm.calls[-1]["messages"][-1].content


class TestWakeWordMode:
    """Queries started by a wake word."""

    def test_fragment_without_wake_word_never_listens(self, device):
        async def run():
            llm = ScriptedLLM()
            controller = build_controller(device, llm)
            for text in ["what's the weather", "tell me a joke", "hello there", "remember the milk"]:
                await say(controller, text)
                assert controller.state == AssistantState.IDLE
                assert not controller.listening.is_listening
            await asyncio.sleep(0.1)
            assert llm.calls == []
            assert device.shown == []
            controller.shutdown()

        asyncio.run(run())

    def test_wake_word_query_is_answered(self, device):
        async def run():
            llm = ScriptedLLM(["Final Answer: Sunny, 21C"])
            controller = build_controller(device, llm)

            await say(controller, "Hey Mira, what's the weather?")
            assert controller.state == AssistantState.LISTENING

            await wait_idle(controller)
            assert last_query(llm) == "what's the weather?"
            assert device.shown[0] == "what's the weather?"
            assert device.shown[-1] == "Sunny, 21C"
            assert device.spoken == []
            controller.shutdown()

        asyncio.run(run())

    def test_debounce_resets_instead_of_stacking(self, device):
        async def run():
            llm = ScriptedLLM(["Final Answer: Noon"])
            controller = build_controller(device, llm)

            await say(controller, "hey mira what's", is_final=False)
            first_timer = controller.listening.pending_timer
            await asyncio.sleep(0.05)
            await say(controller, "hey mira what's the time", is_final=True)
            await asyncio.sleep(0.01)
            assert first_timer.cancelled()

            await wait_idle(controller)
            await asyncio.sleep(0.2)
            assert len(llm.calls) == 1
            assert last_query(llm) == "what's the time"
            controller.shutdown()

        asyncio.run(run())

    def test_fragments_during_processing_are_dropped(self, device):
        async def run():
            llm = ScriptedLLM(["Final Answer: One", "Final Answer: Two"])
            llm.release = asyncio.Event()
            controller = build_controller(device, llm)

            await say(controller, "hey mira first question")
            await wait_for_calls(llm, 1)
            assert controller.state == AssistantState.PROCESSING

            shown_before = list(device.shown)
            await say(controller, "hey mira second question")
            assert controller.state == AssistantState.PROCESSING
            assert not controller.listening.is_listening
            assert controller.listening.pending_timer is None
            assert device.shown == shown_before

            llm.release.set()
            await wait_idle(controller)
            await asyncio.sleep(0.1)
            assert len(llm.calls) == 1
            controller.shutdown()

        asyncio.run(run())

    def test_hard_cutoff_ends_listening(self, device):
        async def run():
            llm = ScriptedLLM(["Final Answer: ok"])
            controller = build_controller(device, llm, interim_debounce_ms=2000, hard_cutoff_ms=100)

            await say(controller, "hey mira what is", is_final=False)
            await asyncio.sleep(0.05)
            await say(controller, "hey mira what is the", is_final=False)

            await wait_for_calls(llm, 1, timeout=1.0)
            # No final segments arrived, so the last fragment is used
            assert last_query(llm) == "what is the"
            await wait_idle(controller)
            controller.shutdown()

        asyncio.run(run())

    def test_wake_word_only_waits_longer_then_reports_no_query(self, device):
        async def run():
            llm = ScriptedLLM()
            controller = build_controller(
                device, llm, wake_word_only_debounce_ms=400, hard_cutoff_ms=150
            )

            await say(controller, "hey mira")
            assert controller._debounce_ms("hey mira", True) == 400
            assert device.shown == ["Listening..."]

            await wait_idle(controller)
            assert llm.calls == []
            assert NO_QUERY_MESSAGE in device.shown
            controller.shutdown()

        asyncio.run(run())

    def test_wake_word_with_trailing_punctuation_is_no_query(self, device):
        async def run():
            llm = ScriptedLLM()
            controller = build_controller(device, llm, hard_cutoff_ms=150)

            await say(controller, "Hey Mira?")
            assert device.shown == ["Listening..."]

            await wait_idle(controller)
            assert llm.calls == []
            assert NO_QUERY_MESSAGE in device.shown
            assert not any(t.startswith("Processing query:") for t in device.shown)
            controller.shutdown()

        asyncio.run(run())

    def test_transcript_window_rounds_up_to_whole_seconds(self, device):
        async def run():
            controller = build_controller(device, ScriptedLLM())
            await say(controller, "hey mira what time is it")
            await wait_idle(controller)
            assert device.fetches == [1]
            controller.shutdown()

        asyncio.run(run())

    def test_model_error_shows_generic_message_and_recovers(self, device):
        async def run():
            llm = ScriptedLLM([RuntimeError("model down"), "Final Answer: Back online"])
            controller = build_controller(device, llm)

            await say(controller, "hey mira are you there")
            await wait_idle(controller)
            assert device.shown[-1] == wrap_text(ERROR_MESSAGE)

            await say(controller, "hey mira are you there now")
            await wait_idle(controller)
            assert device.shown[-1] == "Back online"
            controller.shutdown()

        asyncio.run(run())

    def test_transport_error_shows_retry_notice(self, device):
        async def run():
            llm = ScriptedLLM()
            device.fail_fetch = True
            controller = build_controller(device, llm)

            await say(controller, "hey mira what time is it")
            await wait_idle(controller)
            assert llm.calls == []
            assert device.shown[-1] == wrap_text(RETRY_MESSAGE)
            controller.shutdown()

        asyncio.run(run())

    def test_malformed_transcript_window_shows_retry_notice(self, device):
        async def malformed(seconds):
            device.fetches.append(seconds)
            return {"segments": ["hey mira what time is it"]}

        device.fetch_transcript = malformed

        async def run():
            llm = ScriptedLLM()
            controller = build_controller(device, llm)

            await say(controller, "hey mira what time is it")
            await wait_idle(controller)
            assert llm.calls == []
            assert device.shown[-1] == wrap_text(RETRY_MESSAGE)
            assert wrap_text(ERROR_MESSAGE) not in device.shown
            controller.shutdown()

        asyncio.run(run())

    def test_listening_entry_side_effects(self, device):
        async def run():
            refreshed = []

            async def refresh():
                refreshed.append(True)

            controller = build_controller(
                device, ScriptedLLM(), listen_cue_url="https://cdn.example.com/listen.mp3"
            )
            controller.refresh_location = refresh

            await say(controller, "hey mira what's up")
            await asyncio.sleep(0)
            await wait_idle(controller)
            assert refreshed == [True]
            assert device.played == ["https://cdn.example.com/listen.mp3"]
            controller.shutdown()

        asyncio.run(run())

    def test_speak_responses_setting_applies_live(self, device):
        async def run():
            llm = ScriptedLLM(["Final Answer: Quiet", "Final Answer: Loud"])
            controller = build_controller(device, llm)

            await say(controller, "hey mira first")
            await wait_idle(controller)
            assert device.spoken == []

            controller.apply_settings(speak_responses=True)
            await say(controller, "hey mira second")
            await wait_idle(controller)
            assert device.spoken == ["Loud"]
            controller.shutdown()

        asyncio.run(run())


class TestHeadUpGating:
    def test_wake_word_requires_recent_head_raise(self, device):
        async def run():
            controller = build_controller(device, ScriptedLLM(), head_up_wake=True)

            await say(controller, "hey mira what time is it")
            assert controller.state == AssistantState.IDLE

            controller.handle_head_position("down")
            controller.handle_head_position({"position": "up"})
            await say(controller, "hey mira what time is it")
            assert controller.state == AssistantState.LISTENING

            await wait_idle(controller)
            controller.shutdown()

        asyncio.run(run())

    def test_head_position_ignored_when_flag_off(self, device):
        async def run():
            controller = build_controller(device, ScriptedLLM())
            controller.handle_head_position("down")
            await say(controller, "hey mira what time is it")
            assert controller.state == AssistantState.LISTENING
            await wait_idle(controller)
            controller.shutdown()

        asyncio.run(run())


class TestAlwaysListening:
    """Queries without a wake word go through the proactive gate."""

    def test_gate_decline_returns_to_idle_silently(self, device):
        async def run():
            llm = ScriptedLLM()
            gate_llm = ScriptedLLM([GATE_DECLINE])
            controller = build_controller(device, llm, gate_llm=gate_llm, always_listening=True)

            await say(controller, "did you feed the dog")
            assert controller.state == AssistantState.LISTENING

            await wait_idle(controller)
            assert len(gate_llm.calls) == 1
            assert llm.calls == []
            assert not any(s.startswith("Processing query") for s in device.shown)
            controller.shutdown()

        asyncio.run(run())

    def test_gate_failure_fails_open(self, device):
        async def run():
            llm = ScriptedLLM(["Final Answer: Paris"])
            gate_llm = ScriptedLLM(["I think you should answer"])
            controller = build_controller(device, llm, gate_llm=gate_llm, always_listening=True)

            await say(controller, "what is the capital of france")
            await wait_idle(controller)
            assert last_query(llm) == "what is the capital of france"
            assert device.shown[-1] == "Paris"
            controller.shutdown()

        asyncio.run(run())

    def test_wake_word_skips_gate(self, device):
        async def run():
            llm = ScriptedLLM(["Final Answer: 42"])
            gate_llm = ScriptedLLM([GATE_DECLINE])
            controller = build_controller(device, llm, gate_llm=gate_llm, always_listening=True)

            await say(controller, "hey mira what is six times seven")
            await wait_idle(controller)
            assert gate_llm.calls == []
            assert last_query(llm) == "what is six times seven"
            controller.shutdown()

        asyncio.run(run())

    def test_empty_query_is_silent(self, device):
        async def run():
            llm = ScriptedLLM()
            controller = build_controller(device, llm, always_listening=True)

            await say(controller, "hey mira")
            await wait_idle(controller)
            assert llm.calls == []
            assert NO_QUERY_MESSAGE not in device.shown
            controller.shutdown()

        asyncio.run(run())

    def test_final_fragment_ending_in_wake_word_uses_short_debounce(self, device):
        controller = build_controller(device, ScriptedLLM(), always_listening=True)
        assert controller._debounce_ms("hey mira", True) == controller.config.final_debounce_ms


class TestDebounceDurations:
    def test_durations_follow_fragment_kind(self, device):
        controller = build_controller(device, ScriptedLLM(), **{
            "interim_debounce_ms": 3000,
            "wake_word_only_debounce_ms": 8000,
            "final_debounce_ms": 1500,
        })
        assert controller._debounce_ms("hey mira what", False) == 3000
        assert controller._debounce_ms("okay hey mira", True) == 8000
        assert controller._debounce_ms("hey mira what time is it", True) == 1500

    def test_defaults(self):
        config = AssistantConfig()
        assert config.hard_cutoff_ms == 15000
        assert config.interim_debounce_ms == 3000
        assert config.wake_word_only_debounce_ms == 8000
        assert config.final_debounce_ms == 1500
        assert 1000 <= config.grace_ms <= 2000


class TestShutdown:
    def test_shutdown_cancels_listening_timers(self, device):
        async def run():
            llm = ScriptedLLM()
            controller = build_controller(device, llm)

            await say(controller, "hey mira what")
            debounce = controller.listening.pending_timer
            cutoff = controller.listening.hard_cutoff_timer
            controller.shutdown()
            await asyncio.sleep(0.1)

            assert debounce.cancelled()
            assert cutoff.cancelled()
            assert llm.calls == []
            assert controller.state == AssistantState.IDLE

            # Fragments after shutdown are ignored
            await say(controller, "hey mira hello")
            assert controller.state == AssistantState.IDLE

        asyncio.run(run())

    def test_shutdown_cancels_timer_notifications(self, device):
        async def run():
            from mira_assistant.assistant.events import TimerSet

            controller = build_controller(device, ScriptedLLM())
            controller.dispatcher.schedule_timer(TimerSet(duration=30, timer_id="t-1"))
            task = controller.dispatcher._timers["t-1"]

            controller.shutdown()
            await asyncio.sleep(0.01)
            assert task.cancelled()
            assert controller.dispatcher.pending_timers == []

        asyncio.run(run())
