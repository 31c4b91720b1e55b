"""
WebSocket endpoint for device sessions.
"""

import asyncio
import logging
import uuid
from typing import Any, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from mira_assistant.assistant.device import Device, TranscriptStore, TransportError

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketDevice(Device):
    """
    Device reached over a WebSocket.

    Render commands go out as JSON messages. Photos are requested with a
    ``photo_request`` and arrive later as a ``photo`` event.
    """

    def __init__(
        self,
        websocket: WebSocket,
        has_display: bool = True,
        photo_timeout_s: float = 5.0,
        transcripts: Optional[TranscriptStore] = None,
    ):
        self.websocket = websocket
        self.has_display = has_display
        self.photo_timeout_s = photo_timeout_s
        self.transcripts = transcripts or TranscriptStore()
        self._photo_requests: dict[str, asyncio.Future] = {}

    async def _send(self, message: dict[str, Any]) -> None:
        try:
            await self.websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError) as e:
            raise TransportError(f"Could not send {message.get('type')}: {e}") from e

    async def show_text(self, text: str, duration_ms: Optional[int] = None) -> None:
        await self._send({"type": "show_text", "text": text, "duration_ms": duration_ms})

    async def speak(self, text: str) -> None:
        await self._send({"type": "speak", "text": text})

    async def play_audio(self, url: str) -> None:
        await self._send({"type": "play_audio", "url": url})

    async def capture_photo(self) -> Optional[str]:
        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._photo_requests[request_id] = future
        try:
            await self._send({"type": "photo_request", "request_id": request_id})
            return await asyncio.wait_for(future, timeout=self.photo_timeout_s)
        except asyncio.TimeoutError:
            logger.debug("Photo %s not received in time", request_id)
            return None
        finally:
            self._photo_requests.pop(request_id, None)

    def resolve_photo(self, request_id: str, image: Optional[str]) -> None:
        future = self._photo_requests.get(request_id)
        if future is None or future.done():
            logger.debug("Ignoring photo for unknown request %s", request_id)
            return
        future.set_result(image)

    async def fetch_transcript(self, seconds: int) -> dict:
        return self.transcripts.window(seconds)

    def record_transcript(self, text: str, is_final: bool) -> None:
        self.transcripts.add(text, is_final)

    def close(self) -> None:
        for future in self._photo_requests.values():
            if not future.done():
                future.cancel()
        self._photo_requests.clear()


@router.websocket("/session/{session_id}")
async def device_session(
    websocket: WebSocket,
    session_id: str,
    user_id: str = "anonymous",
    has_display: bool = True,
):
    """
    WebSocket endpoint for one glasses session.

    Protocol:
    1. Device connects to /session/{session_id}?user_id=...
    2. Server sends: {"type": "show_text", "text": "Mira AI ...", "duration_ms": 3000}
    3. Device sends events: {"type": "transcription", "text": "hey mira ...", "is_final": true}
       (also head_position, location, notification, clear_notifications, settings, photo)
    4. Server sends render commands: show_text, speak, play_audio, photo_request
    5. Invalid events are answered with {"type": "error", "error": "..."}
    """
    await websocket.accept()

    sessions = websocket.app.state.sessions
    device = WebSocketDevice(websocket, has_display=has_display)
    try:
        session = await sessions.open(session_id, user_id, device)
        while True:
            raw = await websocket.receive_text()
            try:
                await session.handle_raw_event(raw)
            except ValidationError as e:
                await websocket.send_json({"type": "error", "error": f"Invalid event: {e.errors()[0]['msg']}"})

    except WebSocketDisconnect:
        pass
    except TransportError as e:
        logger.info("Session %s lost its device: %s", session_id, e)
    except Exception as e:
        logger.exception("Session %s failed", session_id)
        try:
            await websocket.send_json({"type": "error", "error": str(e)})
        except Exception:
            pass
    finally:
        await sessions.close(session_id)
