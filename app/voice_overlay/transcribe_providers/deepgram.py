"""Deepgram live transcription over websocket."""

import json
import logging
from typing import Optional
from urllib.parse import urlencode

from ..errors import ErrorKind, ProviderError, TranscriptionError
from .base import SAMPLE_RATE, StreamingTranscriptionProvider, open_websocket

logger = logging.getLogger(__name__)

DEEPGRAM_URL = "wss://api.deepgram.com/v1/listen"
CLOSE_POLICY_VIOLATION = 1008


def build_listen_url(model: str, language: str = "en") -> str:
    params = {
        "model": model,
        "language": language,
        "interim_results": "true",
        "encoding": "linear16",
        "sample_rate": SAMPLE_RATE,
        "channels": 1,
        "punctuate": "true",
    }
    return f"{DEEPGRAM_URL}?{urlencode(params)}"


class DeepgramProvider(StreamingTranscriptionProvider):
    """Sends raw linear16 frames; ``is_final`` results become finals."""

    label = "Deepgram"

    async def _connect(self):
        api_key = self.config.deepgram_api_key
        if not api_key:
            raise TranscriptionError("Deepgram API key not configured", ErrorKind.NOT_CONFIGURED)
        language = (self.config.transcribe_language or "en").split("-")[0]
        url = build_listen_url(self.config.deepgram_model or "nova-3", language)
        return await open_websocket(url, {"Authorization": f"Token {api_key}"})

    def _encode_audio(self, pcm: bytes) -> bytes:
        return pcm

    def _end_of_stream(self) -> Optional[str]:
        return json.dumps({"type": "CloseStream"})

    def _handle_message(self, message) -> None:
        try:
            data = json.loads(message)
        except (json.JSONDecodeError, TypeError):
            logger.debug("Deepgram: skipping unparsable message")
            return

        if data.get("type") != "Results":
            return
        alternatives = (data.get("channel") or {}).get("alternatives") or []
        if not alternatives:
            return
        transcript = alternatives[0].get("transcript", "")
        if not transcript:
            return
        if data.get("is_final"):
            self._emit_final(transcript)
        else:
            self._emit_partial(transcript)

    def _close_error(self, code: Optional[int], reason: str) -> ProviderError:
        if code == CLOSE_POLICY_VIOLATION:
            return TranscriptionError("Deepgram: Invalid API key", ErrorKind.AUTH_FAILED)
        return super()._close_error(code, reason)
