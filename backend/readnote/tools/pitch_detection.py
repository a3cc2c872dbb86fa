"""
Monophonic pitch detection for note practice.

detect_once() estimates the fundamental of one audio window with a
time-domain autocorrelation (mean absolute difference per lag).
PitchDetector runs it once per tick on a microphone session and reports
newly detected MIDI notes through a callback.
"""

import asyncio
import logging
import math
from enum import Enum
from typing import Callable, Optional

import numpy as np

from readnote.models.note import Note
from readnote.tools.audio_session import AudioSampleBuffer, MicrophoneUnavailable

logger = logging.getLogger(__name__)

# Silence gate
MIN_RMS = 0.01

# A lag qualifies only above this correlation
GOOD_CORRELATION = 0.9

# Piano range: A0 = 27.5 Hz to C8 = 4186 Hz
LOWEST_FREQUENCY = 27.5
HIGHEST_FREQUENCY = 4186.0

DEFAULT_TICK_INTERVAL = 1 / 60


def compute_rms(samples: np.ndarray) -> float:
    if len(samples) == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples))))


def lag_bounds(sample_rate: float, buffer_length: int) -> tuple:
    """
    Lag search range [min_lag, max_lag) in samples.

    min_lag comes from the highest note (C8), max_lag from the lowest (A0).
    Both are clipped so every lag leaves at least one overlapping sample.
    """
    min_lag = max(1, math.floor(sample_rate / HIGHEST_FREQUENCY))
    max_lag = min(math.ceil(sample_rate / LOWEST_FREQUENCY), buffer_length)
    return min_lag, max_lag


def correlation_at_lag(samples: np.ndarray, lag: int) -> float:
    """1 - mean |x[i] - x[i + lag]| over the overlapping part of the window."""
    n = len(samples)
    diff = np.abs(samples[: n - lag] - samples[lag:])
    return 1.0 - float(diff.sum()) / (n - lag)


def detect_once(samples: np.ndarray, sample_rate: float) -> Optional[float]:
    """
    Detect the fundamental frequency of one audio window.

    Lags are scanned upwards from the C8 period. A lag is a candidate when
    its correlation is above 0.9 and higher than at the previous lag. The
    best candidate of the first such rising run is the answer; the scan ends
    when that run ends, so later sub-harmonic lags are never considered.

    Args:
        samples: Mono audio samples in [-1, 1]
        sample_rate: Sample rate in Hz

    Returns:
        Frequency in Hz, or None for silence / no qualifying peak
    """
    samples = np.asarray(samples, dtype=np.float64).ravel()
    n = len(samples)
    if n < 2 or sample_rate <= 0:
        return None

    if compute_rms(samples) < MIN_RMS:
        return None

    min_lag, max_lag = lag_bounds(sample_rate, n)

    best_correlation = 0.0
    best_lag = -1
    last_correlation = 1.0
    in_peak = False

    for lag in range(min_lag, max_lag):
        correlation = correlation_at_lag(samples, lag)

        if correlation > GOOD_CORRELATION and correlation > last_correlation:
            in_peak = True
            if correlation > best_correlation:
                best_correlation = correlation
                best_lag = lag
        elif in_peak:
            break

        last_correlation = correlation

    if best_lag == -1:
        return None

    return sample_rate / best_lag


def frequency_to_midi(frequency: float) -> int:
    """
    Nearest MIDI note number for a frequency (A4 = 440 Hz = 69).

    Halves round up. No clamping: callers discard results outside 0..127.
    """
    return int(math.floor(69 + 12 * math.log2(frequency / 440.0) + 0.5))


def frequency_to_note(frequency: float) -> Optional[str]:
    """Note name like "A4" for a frequency, or None outside MIDI range."""
    if frequency <= 0:
        return None
    midi = frequency_to_midi(frequency)
    if not 0 <= midi <= 127:
        return None
    return Note.from_midi(midi).label


def decode_audio_chunk(audio_data: bytes, dtype: str = "float32") -> np.ndarray:
    """Raw little-endian sample bytes from a client to a mono float array."""
    return np.frombuffer(audio_data, dtype=dtype).astype(np.float32)


def describe_frequency(frequency: Optional[float]) -> dict:
    """
    Summarize one detection result for clients.

    Returns:
        Dictionary with:
        - frequency: Detected frequency in Hz (0.0 if none)
        - midi: Nearest MIDI note number or None
        - note: Note name (e.g., "C4") or None
        - detected: Boolean indicating if a valid pitch was detected
    """
    midi = None
    note = None
    if frequency and frequency > 0:
        midi = frequency_to_midi(frequency)
        if 0 <= midi <= 127:
            note = Note.from_midi(midi).label
        else:
            midi = None

    return {
        "frequency": round(frequency, 2) if midi is not None else 0.0,
        "midi": midi,
        "note": note,
        "detected": midi is not None,
    }


class DetectorState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    LISTENING = "listening"
    UNAVAILABLE = "unavailable"


class PitchDetector:
    """
    Polls an audio session once per tick and reports detected notes.

    A held note is reported once; it is reported again only after a tick
    with a different result (silence or another pitch).

    The session is acquired in start() and released in stop(). stop() is
    safe to call any number of times, also while start() is still waiting
    for microphone permission; in that case the loop never starts.
    """

    def __init__(
        self,
        audio_session,
        on_pitch: Callable[[int, float], None],
        tick_interval: float = DEFAULT_TICK_INTERVAL,
    ) -> None:
        self.audio_session = audio_session
        self.on_pitch = on_pitch
        self.tick_interval = tick_interval

        self.state = DetectorState.IDLE
        self.status_message = "Microphone: not connected"

        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self._last_midi: Optional[int] = None
        self.last_frequency: Optional[float] = None

    @property
    def is_listening(self) -> bool:
        return self.state == DetectorState.LISTENING

    async def start(self) -> DetectorState:
        if self.state in (DetectorState.REQUESTING, DetectorState.LISTENING):
            return self.state

        self.state = DetectorState.REQUESTING
        self.status_message = "Microphone: requesting access..."
        generation = self._generation
        loop = asyncio.get_running_loop()

        try:
            await loop.run_in_executor(None, self.audio_session.open)
        except MicrophoneUnavailable as e:
            logger.warning(f"Microphone unavailable: {e}")
            if generation == self._generation:
                self.state = DetectorState.UNAVAILABLE
                self.status_message = "Microphone: access denied"
            return self.state

        if generation != self._generation:
            # stop() ran while we were waiting for the device
            self.audio_session.close()
            return self.state

        self._last_midi = None
        self.state = DetectorState.LISTENING
        self.status_message = "Microphone: listening..."
        self._task = loop.create_task(self._run())
        self._task.add_done_callback(self._on_loop_done)
        logger.info("Pitch detection started")
        return self.state

    def stop(self) -> None:
        self._generation += 1

        task, self._task = self._task, None
        if task is not None:
            task.cancel()

        self.audio_session.close()
        self._last_midi = None

        if self.state != DetectorState.IDLE:
            logger.info("Pitch detection stopped")
        self.state = DetectorState.IDLE
        self.status_message = "Microphone: not connected"

    async def __aenter__(self) -> "PitchDetector":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.stop()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            buffer = self.audio_session.read()
            if buffer is not None:
                frequency = await loop.run_in_executor(
                    None, detect_once, buffer.samples, buffer.sample_rate
                )
                try:
                    self.handle_frequency(frequency)
                except Exception as e:
                    logger.error(f"Error in pitch callback: {e}", exc_info=True)
            await asyncio.sleep(self.tick_interval)

    def _on_loop_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None or task is not self._task:
            return
        logger.error("Pitch detection loop failed", exc_info=error)
        self._task = None
        self._last_midi = None
        self.audio_session.close()
        self.state = DetectorState.UNAVAILABLE
        self.status_message = f"Microphone: error ({error})"

    def process_buffer(self, buffer: AudioSampleBuffer) -> Optional[int]:
        """Run one detection on `buffer` synchronously; see handle_frequency."""
        return self.handle_frequency(detect_once(buffer.samples, buffer.sample_rate))

    def handle_frequency(self, frequency: Optional[float]) -> Optional[int]:
        """
        Map a detection result to a MIDI note and report it if it is new.

        Returns:
            The reported MIDI note, or None if nothing was reported
        """
        self.last_frequency = frequency
        if not frequency or frequency <= 0:
            self._last_midi = None
            return None

        midi = frequency_to_midi(frequency)
        if midi == self._last_midi:
            return None

        self._last_midi = midi
        logger.debug(f"Pitch: {frequency:.2f} Hz -> MIDI {midi}")
        self.on_pitch(midi, frequency)
        return midi
