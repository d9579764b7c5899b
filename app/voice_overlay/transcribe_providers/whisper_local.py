"""On-device transcription with faster-whisper.

Whisper is not a streaming model, so audio is accumulated and the whole
buffer is re-transcribed on a fixed cadence. Two things keep it from
hallucinating on silence:

- an energy gate that drops quiet chunks before they reach the buffer,
  keeping only a short tail after speech so sentences close cleanly;
- a filter for the filler phrases small models produce on near-silence.
"""

import asyncio
import logging
import re
from typing import List, Optional

import numpy as np
from faster_whisper import WhisperModel

from ..config import MODELS_DIR
from ..errors import ErrorKind, TranscriptionError
from .base import SAMPLE_RATE, TranscriptionProvider

logger = logging.getLogger(__name__)

INFERENCE_INTERVAL = 1.5  # seconds between passes
MIN_DURATION = 1.5  # seconds of buffered audio before a regular pass
INFERENCE_WAIT_TIMEOUT = 5.0

# ~-46 dB float RMS, well above typical mic noise (~-70 dB)
SILENCE_RMS_THRESHOLD = 0.005
SPEECH_TAIL_CHUNKS = 10  # 10 x 50 ms

HALLUCINATION_PATTERNS = [
    re.compile(r"^\s*\.+\s*$"),
    re.compile(r"^(you|the|a|I|we|he|she|it)\.?$", re.IGNORECASE),
    re.compile(r"thank(s| you)( for (watching|listening))?", re.IGNORECASE),
    re.compile(r"please (like|subscribe)", re.IGNORECASE),
    re.compile(r"\[(music|applause)\]", re.IGNORECASE),
]

# Biases the decoder toward the kind of thing people say to the overlay
BASE_PROMPT = (
    "What is going on in this window? Explain this error. Reply to this message. "
    "What does this code do? Summarize this. Draft a response."
)


def pcm_to_float32(pcm: bytes) -> np.ndarray:
    """16-bit little-endian PCM to float32 in [-1, 1)."""
    return np.frombuffer(pcm, dtype="<i2").astype(np.float32) / 32768.0


def rms(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))


def is_hallucination(text: str) -> bool:
    stripped = (text or "").strip()
    if len(stripped) <= 1:
        return True
    return any(pattern.search(stripped) for pattern in HALLUCINATION_PATTERNS)


class WhisperLocalProvider(TranscriptionProvider):
    """Energy-gated, timer-driven faster-whisper transcription."""

    def __init__(self, config, model: Optional[WhisperModel] = None):
        super().__init__(config)
        self._model = model
        self._model_name: Optional[str] = config.whisper_model if model is not None else None

        self._running = False
        self._processing = False
        self._timer_task: Optional[asyncio.Task] = None

        self._pending: List[np.ndarray] = []
        self._pending_samples = 0
        self._has_speech = False
        self._speech_countdown = 0
        self._last_segment_text = ""

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending_samples(self) -> int:
        return self._pending_samples

    @property
    def has_speech(self) -> bool:
        return self._has_speech

    def _language(self) -> str:
        return (self.config.transcribe_language or "en").split("-")[0]

    def _ensure_model(self) -> WhisperModel:
        name = self.config.whisper_model or "base.en"
        if self._model is None or self._model_name != name:
            logger.info(f"Loading Whisper model: {name}")
            MODELS_DIR.mkdir(parents=True, exist_ok=True)
            self._model = WhisperModel(
                name,
                device=self.config.whisper_device or "auto",
                compute_type=self.config.whisper_compute_type or "int8",
                cpu_threads=self.config.whisper_threads,
                download_root=str(MODELS_DIR),
            )
            self._model_name = name
        return self._model

    def _transcribe(self, audio: np.ndarray, prompt: str) -> str:
        model = self._ensure_model()
        segments, _info = model.transcribe(
            audio,
            language=self._language(),
            initial_prompt=prompt,
            beam_size=1,
            condition_on_previous_text=False,
            without_timestamps=True,
            vad_filter=False,
        )
        # segments is a generator; decoding happens while iterating
        return "".join(segment.text for segment in segments).strip()

    async def warmup(self) -> None:
        """Load the model and run a tiny silent pass so the first session starts hot."""
        try:
            await asyncio.to_thread(self._transcribe, np.zeros(SAMPLE_RATE // 10, dtype=np.float32), "")
            logger.info("Whisper model preloaded")
        except Exception as e:
            logger.warning(f"Whisper preload failed (non-fatal): {e}")

    async def start(self) -> None:
        if self._running:
            return
        try:
            await asyncio.to_thread(self._ensure_model)
        except Exception as e:
            raise TranscriptionError(
                f"Could not load Whisper model '{self.config.whisper_model}': {e}",
                ErrorKind.MODEL_UNAVAILABLE,
            ) from e

        self._clear_buffer()
        self._speech_countdown = 0
        self._last_segment_text = ""
        self._processing = False
        self._running = True
        self._timer_task = asyncio.create_task(self._inference_loop())
        logger.info("Whisper local started")

    def send_audio_chunk(self, pcm: bytes) -> None:
        if not self._running:
            return

        samples = pcm_to_float32(pcm)
        if rms(samples) >= SILENCE_RMS_THRESHOLD:
            self._speech_countdown = SPEECH_TAIL_CHUNKS
            self._has_speech = True
        elif self._speech_countdown > 0:
            # Trailing silence after speech, kept as context
            self._speech_countdown -= 1
        else:
            return

        self._pending.append(samples)
        self._pending_samples += samples.size

    def _clear_buffer(self) -> None:
        self._pending = []
        self._pending_samples = 0
        self._has_speech = False

    async def _inference_loop(self) -> None:
        while self._running:
            await asyncio.sleep(INFERENCE_INTERVAL)
            if not self._running:
                break
            await self.run_inference()

    async def run_inference(self, is_final: bool = False) -> None:
        if self._processing or not self._pending:
            return

        if not self._has_speech:
            # Only tail silence slipped through the gate
            self._clear_buffer()
            return

        duration = self._pending_samples / SAMPLE_RATE
        if not is_final and duration < MIN_DURATION:
            return

        audio = np.concatenate(self._pending)
        self._clear_buffer()
        prompt = f"{self._last_segment_text} {BASE_PROMPT}".strip()

        self._processing = True
        try:
            text = await asyncio.to_thread(self._transcribe, audio, prompt)
        except Exception as e:
            self._emit_error(TranscriptionError(f"Whisper inference failed: {e}", ErrorKind.INFERENCE))
            return
        finally:
            self._processing = False

        if not text:
            return
        if is_hallucination(text):
            logger.info(f'Filtered hallucination: "{text}"')
            return

        self._last_segment_text = text
        logger.info(f'Whisper chunk ({duration:.1f}s): "{text}"')
        self._emit_final(text)

    async def drain(self) -> None:
        if not self._running:
            return
        self._running = False

        # A sleeping timer can be cancelled; one mid-inference exits by itself
        if self._timer_task is not None and not self._processing:
            self._timer_task.cancel()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + INFERENCE_WAIT_TIMEOUT
        while self._processing and loop.time() < deadline:
            await asyncio.sleep(0.05)

        if self._processing:
            logger.warning("Whisper inference still running after timeout; skipping final pass")
        elif self._pending:
            await self.run_inference(is_final=True)

    async def close(self) -> None:
        self._running = False
        if self._timer_task is not None and not self._timer_task.done():
            self._timer_task.cancel()
        self._timer_task = None
        self._clear_buffer()
        self._speech_countdown = 0
        logger.info("Whisper local stopped")
