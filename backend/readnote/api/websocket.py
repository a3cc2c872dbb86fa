import asyncio
import base64
import binascii
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from readnote.config import AppConfig, create_store
from readnote.session.manager import (
    ConfigurationError,
    PracticeSession,
    create_session,
    end_session,
    get_session,
)
from readnote.tools.pitch_detection import decode_audio_chunk, describe_frequency

logger = logging.getLogger(__name__)


class PracticeEvent(BaseModel):
    type: str  # "answer", "midi_message", "audio_chunk", "next", "outcome", "target", ...
    data: Dict = {}
    timestamp: str


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def make_event(event_type: str, data: Optional[Dict] = None) -> PracticeEvent:
    return PracticeEvent(type=event_type, data=data or {}, timestamp=_now())


class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}

    async def connect(self, session_id: str, websocket: WebSocket):
        await websocket.accept()
        self.active_connections[session_id] = websocket

    def disconnect(self, session_id: str):
        if session_id in self.active_connections:
            del self.active_connections[session_id]

    async def send_event(self, session_id: str, event: PracticeEvent):
        if session_id in self.active_connections:
            ws = self.active_connections[session_id]
            await ws.send_json(event.model_dump())


manager = ConnectionManager()


def _target_data(session: PracticeSession) -> Dict:
    target = session.current_target
    return {
        "target": target.model_dump() if target else None,
        "label": session.target_label(),
        "candidates": session.candidates,
        "clef": session.settings.clef.value if session.settings.clef else None,
        "key_sig": session.settings.key_sig_id,
        "show_hints": session.settings.show_hints,
    }


def handle_event(session: PracticeSession, event: PracticeEvent) -> PracticeEvent:
    """
    Apply one client event to the session and build the reply.

    The endpoint awaits each reply before reading the next event, so session
    state is never touched by two events at once.
    """
    try:
        if event.type == "answer":
            outcome = session.submit_answer(int(event.data["midi"]))
            return make_event("outcome", outcome.model_dump())

        if event.type == "midi_message":
            outcome = session.submit_midi_message(
                int(event.data["status"]),
                int(event.data["note"]),
                int(event.data.get("velocity", 0)),
            )
            if outcome is None:
                return make_event("event_received", {"status": "ignored", "original_type": event.type})
            return make_event("outcome", outcome.model_dump())

        if event.type == "audio_chunk":
            audio_b64 = event.data.get("audio")
            if not audio_b64:
                return make_event("error", {"message": "No audio data provided"})
            sample_rate = int(event.data.get("sample_rate", 44100))
            if sample_rate <= 0:
                raise ValueError(f"sample_rate must be positive, got {sample_rate}")
            samples = decode_audio_chunk(base64.b64decode(audio_b64))
            frequency, outcome = session.submit_audio(samples, sample_rate=sample_rate)
            result = describe_frequency(frequency)
            if outcome is None:
                return make_event("pitch_detected", result)
            return make_event("outcome", {**outcome.model_dump(), "detection": result})

        if event.type == "next":
            session.next_card()
            return make_event("target", _target_data(session))

        if event.type == "reset_stats":
            session.reset_stats()
            return make_event("target", _target_data(session))

        if event.type == "update_settings":
            session.update_settings(**event.data)
            return make_event("target", _target_data(session))

        if event.type == "get_session_summary":
            return make_event("session_summary", session.get_session_summary())

    except ConfigurationError as e:
        return make_event("error", {"message": str(e), "kind": "configuration"})
    except (KeyError, TypeError, ValueError, binascii.Error, ValidationError) as e:
        return make_event("error", {"message": f"Invalid {event.type} event: {e}"})

    # Echo back for other event types
    return make_event("event_received", {"status": "unknown", "original_type": event.type})


async def websocket_endpoint(websocket: WebSocket, session_id: str, config: Optional[AppConfig] = None):
    """WebSocket endpoint for practice answers, audio chunks and settings."""
    await manager.connect(session_id, websocket)
    config = config or AppConfig.from_env()

    practice_session = get_session(session_id)
    if not practice_session:
        practice_session = create_session(session_id, store=create_store(config, student_id=session_id))

    start_data = {"session_id": session_id, "message": "Practice session started!"}
    start_data.update(_target_data(practice_session))
    await manager.send_event(session_id, make_event("session_started", start_data))

    if practice_session.current_target is None:
        await manager.send_event(session_id, make_event("error", {
            "message": "No valid note to practise with the current range",
            "kind": "configuration",
        }))

    loop = asyncio.get_running_loop()
    try:
        while True:
            data = await websocket.receive_json()
            try:
                event = PracticeEvent(**data)
            except (TypeError, ValidationError) as e:
                await manager.send_event(session_id, make_event("error", {"message": f"Malformed event: {e}"}))
                continue

            if event.type == "audio_chunk":
                # Pitch detection is CPU-bound; keep it off the event loop
                reply = await loop.run_in_executor(None, handle_event, practice_session, event)
            else:
                reply = handle_event(practice_session, event)
            await manager.send_event(session_id, reply)

    except WebSocketDisconnect:
        # Clean up session on disconnect
        end_session(session_id)
        manager.disconnect(session_id)
