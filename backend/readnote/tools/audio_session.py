"""
Microphone audio sessions.

An AudioSession owns the capture device for one PitchDetector. It keeps the
most recent analysis window and hands out copies on read(). Sessions are
created by the caller and injected into the detector; there is no shared
module-level audio state.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

import numpy as np

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - PortAudio missing on headless hosts
    sd = None

SOUNDDEVICE_AVAILABLE = sd is not None

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 44100
DEFAULT_WINDOW_SIZE = 2048


class MicrophoneUnavailable(RuntimeError):
    """Raised when microphone access is denied or unsupported."""


@dataclass
class AudioSampleBuffer:
    """One analysis window of mono float samples in [-1, 1]."""
    samples: np.ndarray
    sample_rate: int

    def __len__(self) -> int:
        return len(self.samples)


class BufferedAudioSession:
    """
    Audio session fed programmatically via feed().

    Used directly for audio that arrives over the network, and as the base
    for device-backed sessions whose capture callback calls feed().
    """

    def __init__(self, sample_rate: int = DEFAULT_SAMPLE_RATE, window_size: int = DEFAULT_WINDOW_SIZE) -> None:
        self.sample_rate = sample_rate
        self.window_size = window_size

        self._lock = threading.Lock()
        self._window = np.zeros(window_size, dtype=np.float32)
        self._filled = 0
        self._fresh = False
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        with self._lock:
            self._window[:] = 0.0
            self._filled = 0
            self._fresh = False
        self._open = True

    def close(self) -> None:
        self._open = False

    def feed(self, chunk: np.ndarray) -> None:
        """Append samples, keeping only the newest window_size of them."""
        chunk = np.asarray(chunk, dtype=np.float32).ravel()
        if not self._open or len(chunk) == 0:
            return

        with self._lock:
            if len(chunk) >= self.window_size:
                self._window[:] = chunk[-self.window_size:]
            else:
                self._window = np.roll(self._window, -len(chunk))
                self._window[-len(chunk):] = chunk
            self._filled = min(self.window_size, self._filled + len(chunk))
            self._fresh = True

    def read(self) -> Optional[AudioSampleBuffer]:
        """
        Latest full window, or None if the session is closed, the window has
        not filled yet, or nothing new arrived since the previous read.
        """
        if not self._open:
            return None
        with self._lock:
            if self._filled < self.window_size or not self._fresh:
                return None
            self._fresh = False
            samples = self._window.copy()
        return AudioSampleBuffer(samples=samples, sample_rate=self.sample_rate)


class SoundDeviceSession(BufferedAudioSession):
    """Microphone capture through PortAudio (sounddevice)."""

    def __init__(
        self,
        device: Optional[int] = None,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        window_size: int = DEFAULT_WINDOW_SIZE,
        blocksize: int = 512,
    ) -> None:
        super().__init__(sample_rate=sample_rate, window_size=window_size)
        self.device = device
        self.blocksize = blocksize
        self._stream = None

    def open(self) -> None:
        """Open the input stream. Blocks until the host grants or refuses access."""
        if sd is None:
            raise MicrophoneUnavailable("sounddevice / PortAudio is not installed")
        if self._stream is not None:
            return

        super().open()
        try:
            stream = sd.InputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.blocksize,
                callback=self._audio_callback,
            )
            stream.start()
        except Exception as e:
            super().close()
            raise MicrophoneUnavailable(f"Failed to open microphone: {e}") from e

        self._stream = stream
        logger.info(f"Microphone stream opened (device={self.device}, rate={self.sample_rate}Hz)")

    def close(self) -> None:
        super().close()
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            if stream.active:
                stream.stop()
            if not stream.closed:
                stream.close()
            logger.info("Microphone stream closed")
        except Exception as e:
            logger.error(f"Error closing microphone stream: {e}", exc_info=True)

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        # Runs on the PortAudio thread
        if status:
            logger.warning(f"Audio status: {status}")
        self.feed(indata[:, 0])
