"""
Situational context for queries: location, notifications, photos.

The assembler turns whatever the session knows at query time into a
``ContextBundle``; the tool-calling loop only ever sees the bundle.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, fields
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"


def _is_unknown(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.lower() == UNKNOWN)


@dataclass
class TimezoneInfo:
    name: str = UNKNOWN
    short_name: str = UNKNOWN
    full_name: str = UNKNOWN
    offset_secs: Any = UNKNOWN
    is_dst: Any = UNKNOWN


@dataclass
class LocationContext:
    """Last known location. Every field defaults to ``"unknown"``."""

    city: str = UNKNOWN
    state: str = UNKNOWN
    country: str = UNKNOWN
    timezone: TimezoneInfo = field(default_factory=TimezoneInfo)

    def merge(self, update: "LocationContext") -> "LocationContext":
        """
        Fold ``update`` into this context field by field.

        Unknown values in ``update`` never overwrite known ones, so merging a
        failed lookup is a no-op.
        """
        for f in fields(self):
            if f.name == "timezone":
                continue
            value = getattr(update, f.name)
            if not _is_unknown(value):
                setattr(self, f.name, value)
        for f in fields(self.timezone):
            value = getattr(update.timezone, f.name)
            if not _is_unknown(value):
                setattr(self.timezone, f.name, value)
        return self

    @property
    def has_city(self) -> bool:
        return not _is_unknown(self.city)


def describe_location(location: LocationContext) -> str:
    """Location sentence for the system prompt, empty when the city is unknown."""
    if not location.has_city:
        return ""
    text = (
        f"For context the User is currently in "
        f"{location.city}, {location.state}, {location.country}."
    )
    tz = location.timezone
    if not _is_unknown(tz.name):
        text += f" Their timezone is {tz.name}"
        if not _is_unknown(tz.short_name):
            text += f" ({tz.short_name})"
        text += "."
    return text + "\n\n"


def format_notification(notification: dict, index: int) -> str:
    summary = notification.get("summary")
    title = notification.get("title")
    text = notification.get("text")
    if summary:
        return f"- {summary}"
    if title and text:
        return f"- {title}: {text}"
    if title:
        return f"- {title}"
    if text:
        return f"- {text}"
    return f"- Notification {index + 1}"


def format_notifications(notifications: list[dict]) -> str:
    """Bulleted notification block, empty when there are none."""
    if not notifications:
        return ""
    lines = "\n".join(format_notification(n, i) for i, n in enumerate(notifications))
    return f"Recent notifications:\n{lines}\n\n"


class NotificationBuffer:
    """Notifications per user. Appends are unbounded; reads are truncated."""

    def __init__(self):
        self._by_user: dict[str, list[dict]] = {}

    def add(self, user_id: str, notification: dict) -> None:
        self._by_user.setdefault(user_id, []).append(notification)

    def recent(self, user_id: str, limit: int = 5) -> list[dict]:
        items = self._by_user.get(user_id, [])
        if limit <= 0:
            return []
        return items[-limit:]

    def clear(self, user_id: str) -> None:
        self._by_user.pop(user_id, None)

    def count(self, user_id: str) -> int:
        return len(self._by_user.get(user_id, []))


class PhotoCache:
    """
    At most one photo per session, captured when listening starts.

    The photo may still be in flight when the query is assembled, so the
    cache holds either a pending task or a resolved base64 image. Entries
    expire ``ttl_s`` after capture whether or not they were used.
    """

    def __init__(self, ttl_s: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self._clock = clock
        self._captured_at: Optional[float] = None
        self._pending: Optional[asyncio.Task] = None
        self._image: Optional[str] = None

    def start_capture(self, capture: Callable[[], Awaitable[Optional[str]]]) -> None:
        """Begin a capture in the background, replacing any previous photo."""
        self.discard()
        self._captured_at = self._clock()
        self._pending = asyncio.create_task(capture())

    def put(self, image: str) -> None:
        """Store an already captured photo."""
        self.discard()
        self._captured_at = self._clock()
        self._image = image

    def is_expired(self) -> bool:
        return self._captured_at is None or self._clock() - self._captured_at > self.ttl_s

    async def get(self, wait_s: float = 2.0) -> Optional[str]:
        """Return the photo if present and unexpired, waiting briefly on a pending capture."""
        if self.is_expired():
            self.discard()
            return None

        if self._pending is not None:
            try:
                self._image = await asyncio.wait_for(asyncio.shield(self._pending), timeout=wait_s)
            except asyncio.TimeoutError:
                logger.debug("Photo not ready after %.1fs, continuing without it", wait_s)
                return None
            except Exception as e:
                logger.warning("Photo capture failed: %s", e)
                self._image = None
            self._pending = None
        return self._image

    def discard(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        self._image = None
        self._captured_at = None


@dataclass
class ContextBundle:
    """Everything the loop knows about the user's situation for one query."""

    location_text: str = ""
    notifications_text: str = ""
    image: Optional[str] = None


class ContextAssembler:
    """Builds a ``ContextBundle`` from session state at query time."""

    def __init__(
        self,
        location: LocationContext,
        notifications: NotificationBuffer,
        photos: PhotoCache,
        user_id: str,
        notification_limit: int = 5,
        photo_wait_s: float = 2.0,
    ):
        self.location = location
        self.notifications = notifications
        self.photos = photos
        self.user_id = user_id
        self.notification_limit = notification_limit
        self.photo_wait_s = photo_wait_s

    async def assemble(self) -> ContextBundle:
        image = await self.photos.get(wait_s=self.photo_wait_s)
        recent = self.notifications.recent(self.user_id, self.notification_limit)
        return ContextBundle(
            location_text=describe_location(self.location),
            notifications_text=format_notifications(recent),
            image=image,
        )
