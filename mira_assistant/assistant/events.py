"""
Structured events that tools can return instead of plain text.

Events are a closed set. Anything that does not parse as a known event is
treated as ordinary text by the caller.
"""

import json
from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class TimerSet:
    """A countdown was started; notify the user after ``duration`` seconds."""

    duration: int
    timer_id: str

    def message(self) -> str:
        unit = "second" if self.duration == 1 else "seconds"
        return f"Timer set for {self.duration} {unit}"


ToolEvent = Union[TimerSet]


def parse_tool_event(text: Optional[str]) -> Optional[ToolEvent]:
    """
    Parse a tool result into a ToolEvent.

    Returns:
        The event, or None if ``text`` is not JSON carrying a recognised
        ``event`` tag with valid fields.
    """
    if not text:
        return None
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None

    if data.get("event") == "timer_set":
        duration = data.get("duration")
        if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration <= 0:
            return None
        return TimerSet(duration=int(duration), timer_id=str(data.get("timerId", "")))

    return None
