"""Microphone capture using PyAudio, delivered as 16 kHz mono PCM chunks."""

import logging
import threading
from typing import Callable, Optional

import numpy as np
import pyaudio

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 16000
CHUNK_SECONDS = 0.05


def resample_pcm(pcm: bytes, from_rate: int, to_rate: int = TARGET_SAMPLE_RATE) -> bytes:
    """Linear-interpolation resample of 16-bit mono PCM."""
    if from_rate == to_rate:
        return pcm
    samples = np.frombuffer(pcm, dtype="<i2").astype(np.float32)
    if samples.size == 0:
        return b""
    target_length = int(round(samples.size * to_rate / from_rate))
    positions = np.linspace(0, samples.size - 1, num=target_length)
    resampled = np.interp(positions, np.arange(samples.size), samples)
    return np.clip(resampled, -32768, 32767).astype("<i2").tobytes()


class AudioRecorder:
    """Streams microphone audio to a callback from a background thread.

    Chunks are 50 ms of 16-bit mono PCM at 16 kHz. Devices that cannot open
    at 16 kHz are recorded at a supported rate and resampled.
    """

    FORMAT = pyaudio.paInt16
    CHANNELS = 1
    # Fallback rates to try, in order of preference
    SAMPLE_RATES = [16000, 48000, 44100, 32000, 22050]
    MAX_CONSECUTIVE_ERRORS = 5

    def __init__(self):
        self.audio = pyaudio.PyAudio()
        self.stream = None
        self.is_recording = False
        self.actual_sample_rate = TARGET_SAMPLE_RATE
        self._record_thread: Optional[threading.Thread] = None
        self._device_index: Optional[int] = None
        self._on_chunk: Optional[Callable[[bytes], None]] = None
        self._lock = threading.Lock()
        # Callback for error notifications (mic disconnect, etc.)
        self.on_error: Optional[Callable[[str], None]] = None
        self.last_error: Optional[str] = None

    def get_input_devices(self) -> list[tuple[int, str]]:
        """Get list of available input devices."""
        devices = []
        for i in range(self.audio.get_device_count()):
            info = self.audio.get_device_info_by_index(i)
            if info["maxInputChannels"] > 0:
                devices.append((i, info["name"]))
        return devices

    def select_device_by_name(self, name: str) -> bool:
        """Use the first input device whose name contains ``name``. Empty name means system default."""
        if not name:
            self._device_index = None
            return True
        for index, device_name in self.get_input_devices():
            if name.lower() in device_name.lower():
                self._device_index = index
                logger.info(f"Using microphone: {device_name}")
                return True
        logger.warning(f"Microphone '{name}' not found, using default")
        self._device_index = None
        return False

    def _test_sample_rate(self, rate: int) -> bool:
        try:
            return self.audio.is_format_supported(
                rate,
                input_device=self._device_index,
                input_channels=self.CHANNELS,
                input_format=self.FORMAT,
            )
        except ValueError:
            return False

    def _get_supported_sample_rate(self) -> int:
        for rate in self.SAMPLE_RATES:
            if self._test_sample_rate(rate):
                return rate
        if self._device_index is not None:
            info = self.audio.get_device_info_by_index(self._device_index)
            return int(info.get("defaultSampleRate", 48000))
        return 48000

    def is_device_available(self) -> bool:
        if self._device_index is None:
            return True
        try:
            info = self.audio.get_device_info_by_index(self._device_index)
            return info.get("maxInputChannels", 0) > 0
        except (IOError, ValueError):
            return False

    def _fail(self, message: str) -> None:
        self.last_error = message
        logger.error(message)
        if self.on_error:
            self.on_error(message)

    def start(self, on_chunk: Callable[[bytes], None]) -> bool:
        """Open the microphone and start streaming. Returns False on error."""
        if self.is_recording:
            return True

        self.last_error = None
        if not self.is_device_available():
            self._fail("Microphone disconnected or unavailable")
            return False

        self.actual_sample_rate = self._get_supported_sample_rate()
        frames_per_chunk = int(self.actual_sample_rate * CHUNK_SECONDS)

        try:
            self.stream = self.audio.open(
                format=self.FORMAT,
                channels=self.CHANNELS,
                rate=self.actual_sample_rate,
                input=True,
                input_device_index=self._device_index,
                frames_per_buffer=frames_per_chunk,
            )
        except OSError as e:
            self._fail(f"Failed to open microphone: {e}")
            return False

        with self._lock:
            self._on_chunk = on_chunk
        self.is_recording = True
        self._record_thread = threading.Thread(
            target=self._record_loop, args=(frames_per_chunk,), daemon=True
        )
        self._record_thread.start()
        if self.actual_sample_rate != TARGET_SAMPLE_RATE:
            logger.info(f"Recording at {self.actual_sample_rate} Hz, resampling to {TARGET_SAMPLE_RATE} Hz")
        return True

    def _record_loop(self, frames_per_chunk: int) -> None:
        """Recording loop running in separate thread."""
        consecutive_errors = 0

        while self.is_recording and self.stream:
            try:
                data = self.stream.read(frames_per_chunk, exception_on_overflow=False)
                consecutive_errors = 0
            except OSError as e:
                # OSError often indicates device disconnect
                consecutive_errors += 1
                if consecutive_errors >= self.MAX_CONSECUTIVE_ERRORS:
                    self.is_recording = False
                    self._fail(f"Microphone disconnected during recording: {e}")
                    break
                continue

            chunk = resample_pcm(data, self.actual_sample_rate)
            with self._lock:
                callback = self._on_chunk
            if callback is not None and chunk:
                callback(chunk)

    def stop(self) -> None:
        """Stop streaming and release the input stream."""
        self.is_recording = False

        # The loop delivers the chunk it is reading before it exits
        if self._record_thread:
            self._record_thread.join(timeout=1.0)
            self._record_thread = None
        with self._lock:
            self._on_chunk = None

        if self.stream:
            self.stream.stop_stream()
            self.stream.close()
            self.stream = None

    def cleanup(self) -> None:
        """Clean up audio resources."""
        self.stop()
        self.audio.terminate()
