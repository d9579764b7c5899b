"""Owns the active transcription provider and the microphone for one session at a time."""

import asyncio
import logging
from typing import Callable, Dict, Optional, Protocol

from .config import Config
from .errors import ErrorKind, ProviderError, TranscriptionError
from .transcribe_providers import TRANSCRIPTION_PROVIDERS, ProviderEntry, TranscriptionListener, TranscriptionProvider

logger = logging.getLogger(__name__)


class AudioSource(Protocol):
    last_error: Optional[str]
    on_error: Optional[Callable[[str], None]]

    def start(self, on_chunk) -> bool: ...

    def stop(self) -> None: ...


class TranscribeService:
    """Starts and stops transcription for a session.

    ``stop()`` releases the microphone first, then drains the provider so every
    final is delivered, then closes it and detaches the listener. Start and
    stop are serialized so an early stop waits for a slow connect.
    """

    def __init__(
        self,
        config: Config,
        registry: Optional[Dict[str, ProviderEntry]] = None,
        audio_source: Optional[AudioSource] = None,
    ):
        self.config = config
        self._registry = TRANSCRIPTION_PROVIDERS if registry is None else registry
        self.audio_source = audio_source
        self._provider: Optional[TranscriptionProvider] = None
        self._provider_id: Optional[str] = None
        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._active = False
        self._listener: Optional[TranscriptionListener] = None

    @property
    def running(self) -> bool:
        return self._active

    @property
    def provider(self) -> Optional[TranscriptionProvider]:
        return self._provider

    def _entry(self) -> ProviderEntry:
        provider_id = self.config.transcribe_provider or "whisper"
        entry = self._registry.get(provider_id)
        if entry is None:
            raise TranscriptionError(f"Unknown transcription provider: {provider_id}", ErrorKind.NOT_CONFIGURED)
        return entry

    async def _resolve_provider(self) -> TranscriptionProvider:
        entry = self._entry()
        if self._provider_id != entry.descriptor.id:
            if self._provider is not None:
                logger.info(f"Transcription provider changed: {self._provider_id} -> {entry.descriptor.id}")
                await self._provider.close()
                self._provider.unsubscribe()
            self._provider = entry.factory(self.config)
            self._provider_id = entry.descriptor.id
        return self._provider

    async def warmup(self) -> None:
        """Preload the active provider. Failures are logged and retried on start."""
        try:
            provider = await self._resolve_provider()
            await provider.warmup()
        except Exception as e:
            logger.warning(f"Transcription warmup failed: {e}")

    async def reload_credentials(self) -> None:
        provider = self._provider
        if provider is None:
            return
        try:
            await provider.load_credentials()
            logger.info("Transcription credentials reloaded")
        except Exception as e:
            logger.warning(f"Credential reload failed: {e}")

    def send_audio_chunk(self, pcm: bytes) -> None:
        if self._active and self._provider is not None:
            self._provider.send_audio_chunk(pcm)

    def _on_audio(self, pcm: bytes) -> None:
        # Called on the recorder thread
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self.send_audio_chunk, pcm)

    def _on_audio_error(self, message: str) -> None:
        # Called on the recorder thread when the microphone dies mid-session
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._report_audio_error, message)

    def _report_audio_error(self, message: str) -> None:
        listener = self._listener
        if not self._active or listener is None:
            return
        listener.on_error(TranscriptionError(message, ErrorKind.CONNECTION))

    async def start(self, listener: TranscriptionListener) -> None:
        async with self._lock:
            if self._active:
                return
            provider = await self._resolve_provider()
            provider.subscribe(listener)
            self._loop = asyncio.get_running_loop()
            self._active = True
            self._listener = listener

            # Mic first: chunks arriving during the connect are queued by the provider
            if self.audio_source is not None:
                self.audio_source.on_error = self._on_audio_error
                if not self.audio_source.start(self._on_audio):
                    self._active = False
                    self._listener = None
                    provider.unsubscribe()
                    raise TranscriptionError(
                        self.audio_source.last_error or "Could not open microphone", ErrorKind.CONNECTION
                    )

            try:
                await provider.start()
            except Exception as e:
                self._active = False
                self._listener = None
                if self.audio_source is not None:
                    await asyncio.to_thread(self.audio_source.stop)
                provider.unsubscribe()
                if isinstance(e, ProviderError):
                    raise
                raise TranscriptionError(str(e)) from e

    async def stop(self) -> None:
        """Release the mic, drain pending results, then close and detach. Safe to repeat."""
        async with self._lock:
            if not self._active:
                return
            if self.audio_source is not None:
                await asyncio.to_thread(self.audio_source.stop)

            provider = self._provider
            try:
                await provider.drain()
            finally:
                self._active = False
                self._listener = None
                await provider.close()
                provider.unsubscribe()

    async def dispose(self) -> None:
        await self.stop()
        if self._provider is not None:
            await self._provider.close()
        self._provider = None
        self._provider_id = None
