"""
Head-position tracking for head-up wake gating.

The glasses report "up" and "down". A recent down-to-up transition is taken
as the user looking up to address the assistant.
"""

import logging
import time
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)


def parse_head_position(event: Union[str, dict, None]) -> Optional[str]:
    """Accept a bare string or ``{"position": ...}``; return "up", "down" or None."""
    if isinstance(event, dict):
        event = event.get("position")
    if not isinstance(event, str):
        return None
    position = event.strip().lower()
    return position if position in ("up", "down") else None


class HeadPositionTracker:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.position: Optional[str] = None
        self.last_up_transition: Optional[float] = None

    def update(self, event: Union[str, dict, None]) -> None:
        position = parse_head_position(event)
        if position is None:
            logger.debug("Ignoring head position event: %r", event)
            return
        if self.position == "down" and position == "up":
            self.last_up_transition = self._clock()
        elif position == "down":
            self.last_up_transition = None
        self.position = position

    def is_head_up_recent(self, window_s: float = 10.0) -> bool:
        """True if the latest transition was down to up within ``window_s``."""
        if self.position != "up" or self.last_up_transition is None:
            return False
        return self._clock() - self.last_up_transition <= window_s
