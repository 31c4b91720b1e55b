"""
Response dispatcher: turns a loop outcome into display and speech output.
"""

import asyncio
import logging
from typing import Optional

from mira_assistant.assistant.agent import AgentResult
from mira_assistant.assistant.device import Device
from mira_assistant.assistant.events import TimerSet, ToolEvent, parse_tool_event
from mira_assistant.core.text import clean_text_for_speech, wrap_text

logger = logging.getLogger(__name__)

NO_ANSWER = "Sorry, I couldn't find an answer to that."
ERROR_MESSAGE = "Sorry, there was an error processing your request."


class ResponseDispatcher:
    """Renders exactly one response per query and owns timer notifications."""

    def __init__(
        self,
        device: Device,
        speak_responses: bool = False,
        line_width: int = 30,
        display_ms: int = 8000,
        notice_ms: int = 5000,
    ):
        self.device = device
        self.speak_responses = speak_responses
        self.line_width = line_width
        self.display_ms = display_ms
        self.notice_ms = notice_ms
        self._timers: dict[str, asyncio.Task] = {}

    async def dispatch(self, result: AgentResult) -> None:
        if result.failed:
            await self.show(ERROR_MESSAGE, self.notice_ms)
            return
        if result.handoff is not None:
            logger.info("Handed off to another app, nothing to render")
            return

        event = result.event or parse_tool_event(result.text)
        if event is not None:
            await self._dispatch_event(event)
            return

        if not result.text:
            await self.show(NO_ANSWER, self.notice_ms)
            return

        await self.respond(result.text)

    async def respond(self, text: str) -> None:
        """Show an answer and speak it when configured or display-less."""
        await self.show(text, self.display_ms)
        if self.speak_responses or not self.device.has_display:
            await self.say(text)

    async def show(self, text: str, duration_ms: Optional[int] = None) -> None:
        await self.device.show_text(wrap_text(text, self.line_width), duration_ms)

    async def say(self, text: str) -> None:
        try:
            await self.device.speak(clean_text_for_speech(text))
        except Exception as e:
            logger.warning("Speech failed: %s", e)

    async def _dispatch_event(self, event: ToolEvent) -> None:
        if isinstance(event, TimerSet):
            await self.respond(event.message())
            self.schedule_timer(event)

    def schedule_timer(self, event: TimerSet) -> None:
        """Notify the user when the timer runs out."""
        previous = self._timers.pop(event.timer_id, None)
        if previous is not None:
            previous.cancel()
        task = asyncio.create_task(self._timer_elapsed(event))
        self._timers[event.timer_id] = task
        logger.info("Timer %s set for %ds", event.timer_id, event.duration)

    async def _timer_elapsed(self, event: TimerSet) -> None:
        try:
            await asyncio.sleep(event.duration)
            await self.respond(f"Time's up! Your {event.duration} second timer is done.")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Timer notification failed: %s", e)
        finally:
            if self._timers.get(event.timer_id) is asyncio.current_task():
                del self._timers[event.timer_id]

    @property
    def pending_timers(self) -> list[str]:
        return list(self._timers)

    async def wait_for_timers(self) -> None:
        """Block until every scheduled timer notification has fired."""
        while self._timers:
            await asyncio.gather(*self._timers.values(), return_exceptions=True)

    def cancel_timers(self) -> None:
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()
