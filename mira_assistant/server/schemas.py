"""
Pydantic schemas for API responses and device session events.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


# === General ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str
    sessions: int = 0


# === Device → server events ===


class TranscriptionEvent(BaseModel):
    """A transcript fragment from the device's speech recognizer."""

    type: Literal["transcription"]
    text: str
    is_final: bool = True


class HeadPositionEvent(BaseModel):
    type: Literal["head_position"]
    position: str


class LocationEvent(BaseModel):
    type: Literal["location"]
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class NotificationEvent(BaseModel):
    """A phone notification forwarded by the device."""

    type: Literal["notification"]
    notification: dict[str, Any] = Field(default_factory=dict)


class ClearNotificationsEvent(BaseModel):
    type: Literal["clear_notifications"]


class SettingsEvent(BaseModel):
    """Settings changed on the device. Unset fields are left as they are."""

    type: Literal["settings"]
    always_listening: bool | None = None
    speak_responses: bool | None = None
    head_up_wake: bool | None = None


class PhotoEvent(BaseModel):
    """Answer to a photo_request. ``image`` is base64 JPEG, None if capture failed."""

    type: Literal["photo"]
    request_id: str
    image: str | None = None


DeviceEvent = Annotated[
    Union[
        TranscriptionEvent,
        HeadPositionEvent,
        LocationEvent,
        NotificationEvent,
        ClearNotificationsEvent,
        SettingsEvent,
        PhotoEvent,
    ],
    Field(discriminator="type"),
]

_device_event_adapter = TypeAdapter(DeviceEvent)


def parse_device_event(raw: str | bytes) -> DeviceEvent:
    """
    Parse one JSON message from the device.

    Raises:
        pydantic.ValidationError: If the message is not a valid event
    """
    return _device_event_adapter.validate_json(raw)
