"""
MIDI keyboard input.

Only note-on events with non-zero velocity are forwarded; everything else
(note-off, controllers, clock) is dropped here.
"""

import logging
from typing import Callable, Optional, Sequence

try:
    import mido
except Exception:  # pragma: no cover - optional dependency
    mido = None

MIDO_AVAILABLE = mido is not None

logger = logging.getLogger(__name__)

NOTE_ON = 0x90


def note_on_number(status: int, note: int, velocity: int) -> Optional[int]:
    """Note number for a note-on message (any channel), else None."""
    if (status & 0xF0) == NOTE_ON and velocity > 0:
        return note
    return None


def note_on_from_bytes(data: Sequence[int]) -> Optional[int]:
    if len(data) < 3:
        return None
    status, note, velocity = data[0], data[1], data[2]
    return note_on_number(status, note, velocity)


class MidiInput:
    """
    Listens on the first available MIDI input port (or a named one) and calls
    on_note(midi) for every note-on.
    """

    def __init__(self, on_note: Callable[[int], None], port_name: Optional[str] = None) -> None:
        self.on_note = on_note
        self.port_name = port_name
        self.status = "MIDI: not connected"
        self._port = None

    @property
    def is_open(self) -> bool:
        return self._port is not None

    def open(self) -> bool:
        if self._port is not None:
            return True

        if mido is None:
            self.status = "MIDI: not supported (mido not installed)"
            logger.warning(self.status)
            return False

        try:
            name = self.port_name
            if name is None:
                names = mido.get_input_names()
                if not names:
                    self.status = "MIDI: no input device found"
                    logger.warning(self.status)
                    return False
                name = names[0]
            self._port = mido.open_input(name, callback=self._on_message)
        except Exception as e:
            # Backend missing (e.g. no python-rtmidi) or device refused
            self.status = "MIDI: permission denied / unavailable"
            logger.warning(f"{self.status}: {e}")
            return False

        self.status = f"MIDI: connected ({name})"
        logger.info(self.status)
        return True

    def close(self) -> None:
        port, self._port = self._port, None
        if port is not None:
            port.close()
            logger.info("MIDI input closed")
        self.status = "MIDI: not connected"

    def _on_message(self, message) -> None:
        midi = note_on_from_bytes(message.bytes())
        if midi is not None:
            self.on_note(midi)
