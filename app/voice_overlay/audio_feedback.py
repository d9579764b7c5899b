"""Feedback tones for the overlay.

Short sine beeps mark the start of recording, the end of recording and a
clipboard copy. Playback runs on a throwaway thread so the event loop never
waits on the sound device.
"""

import logging
import threading
from typing import Any, Dict, Optional

import numpy as np
import pyaudio
import simpleaudio as sa

from .overlay import UIEvent

logger = logging.getLogger(__name__)

SAMPLE_RATE = 44100
FADE_SECONDS = 0.01


def generate_beep(frequency: int = 880, duration_ms: int = 100, volume: float = 0.3, sample_rate: int = SAMPLE_RATE) -> bytes:
    """One sine tone as 16-bit mono PCM, with a 10 ms ramp at each end so it does not click."""
    count = int(sample_rate * duration_ms / 1000)
    tone = np.sin(2 * np.pi * frequency * np.arange(count) / sample_rate)

    ramp_length = min(int(sample_rate * FADE_SECONDS), count // 2)
    if ramp_length > 0:
        ramp = np.linspace(0.0, 1.0, ramp_length)
        tone[:ramp_length] *= ramp
        tone[-ramp_length:] *= ramp[::-1]

    return (tone * volume * 32767).astype("<i2").tobytes()


def silence(duration_ms: int, sample_rate: int = SAMPLE_RATE) -> bytes:
    return b"\x00\x00" * int(sample_rate * duration_ms / 1000)


def generate_double_beep(freq1: int = 880, freq2: int = 1100, duration_ms: int = 80, gap_ms: int = 50, volume: float = 0.3) -> bytes:
    return generate_beep(freq1, duration_ms, volume) + silence(gap_ms) + generate_beep(freq2, duration_ms, volume)


def build_tones(volume: float) -> Dict[str, bytes]:
    """Tone name -> PCM."""
    click = generate_beep(frequency=1320, duration_ms=50, volume=volume)
    gap = silence(30)
    return {
        "start": generate_beep(frequency=880, duration_ms=100, volume=volume),  # A5
        "stop": generate_double_beep(freq1=880, freq2=660, duration_ms=80, volume=volume),  # A5 falling to E5
        "clipboard": click + gap + click + gap + click,
    }


class AudioFeedback:
    """Plays the named feedback tones."""

    def __init__(self, volume: float = 0.12):
        self.enabled = True
        self.tones = build_tones(volume)

    def play(self, name: str) -> None:
        pcm = self.tones.get(name)
        if not self.enabled or pcm is None:
            return
        threading.Thread(target=self._play_blocking, args=(pcm,), name=f"beep-{name}", daemon=True).start()

    def _play_blocking(self, pcm: bytes) -> None:
        try:
            sa.WaveObject(pcm, 1, 2, SAMPLE_RATE).play().wait_done()
            return
        except Exception as e:
            logger.debug(f"simpleaudio playback failed, trying PyAudio: {e}")

        try:
            audio = pyaudio.PyAudio()
            try:
                out = audio.open(format=pyaudio.paInt16, channels=1, rate=SAMPLE_RATE, output=True)
                out.write(pcm)
                out.stop_stream()
                out.close()
            finally:
                audio.terminate()
        except Exception as e:
            logger.debug(f"No audio output available: {e}")


# Overlay event -> tone name
EVENT_TONES = {
    UIEvent.SESSION_SHOWN: "start",
    UIEvent.NEW_ROUND_STARTED: "start",
    UIEvent.FINALIZING_STARTED: "stop",
    UIEvent.AUTO_COPIED: "clipboard",
}


class SoundEffects:
    """Overlay listener that beeps on recording start and stop and on copies."""

    def __init__(self, feedback: AudioFeedback, enabled: bool = True):
        self.feedback = feedback
        self.enabled = enabled

    def handle(self, event: UIEvent, payload: Any = None) -> None:
        tone = EVENT_TONES.get(event)
        if self.enabled and tone is not None:
            self.feedback.play(tone)


_feedback: Optional[AudioFeedback] = None
_feedback_lock = threading.Lock()


def get_feedback(volume: float = 0.12) -> AudioFeedback:
    """Shared AudioFeedback, created on first use."""
    global _feedback
    if _feedback is None:
        with _feedback_lock:
            if _feedback is None:
                _feedback = AudioFeedback(volume)
    return _feedback
