"""Abstract transcription provider and the shared websocket streaming base."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Protocol, Union

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, InvalidStatus

from ..config import Config
from ..errors import ErrorKind, ProviderError, TranscriptionError, kind_for_status

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
SAMPLE_WIDTH = 2  # 16-bit PCM
CONNECT_TIMEOUT = 10.0
DRAIN_TIMEOUT = 5.0


class TranscriptionListener(Protocol):
    def on_partial(self, text: str) -> None: ...

    def on_final(self, text: str) -> None: ...

    def on_error(self, error: Exception) -> None: ...


class TranscriptionProvider(ABC):
    """Event-driven speech recognizer.

    Shutdown is two-phase: ``drain()`` delivers every outstanding final,
    ``close()`` releases the connection or model session. Listeners are only
    detached after both.
    """

    def __init__(self, config: Config):
        self.config = config
        self._listener: Optional[TranscriptionListener] = None

    def subscribe(self, listener: TranscriptionListener) -> None:
        self._listener = listener

    def unsubscribe(self) -> None:
        self._listener = None

    def _emit_partial(self, text: str) -> None:
        if self._listener is not None:
            self._listener.on_partial(text)

    def _emit_final(self, text: str) -> None:
        if self._listener is not None:
            self._listener.on_final(text)

    def _emit_error(self, error: Exception) -> None:
        logger.error(f"{self.__class__.__name__} error: {error}")
        if self._listener is not None:
            self._listener.on_error(error)

    async def warmup(self) -> None:
        """Preload models or credentials ahead of the first session."""

    async def load_credentials(self) -> None:
        """Re-read credentials from disk. No-op for providers without any."""

    @property
    @abstractmethod
    def running(self) -> bool:
        pass

    @abstractmethod
    async def start(self) -> None:
        pass

    @abstractmethod
    def send_audio_chunk(self, pcm: bytes) -> None:
        """Accept 16 kHz mono 16-bit little-endian PCM."""
        pass

    @abstractmethod
    async def drain(self) -> None:
        """Stop accepting audio and wait until every pending result is emitted."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    async def stop(self) -> None:
        try:
            await self.drain()
        finally:
            await self.close()


class StreamingTranscriptionProvider(TranscriptionProvider):
    """Websocket provider: audio goes out through an ordered queue, results come back on a reader task.

    Chunks sent while the socket is still connecting wait in the queue and go
    out in order once it opens.
    """

    label = "Streaming"

    def __init__(self, config: Config):
        super().__init__(config)
        self._ws = None
        self._queue: Optional[asyncio.Queue] = None
        self._sender_task: Optional[asyncio.Task] = None
        self._receiver_task: Optional[asyncio.Task] = None
        self._connecting = False
        self._running = False
        self._draining = False

    @property
    def running(self) -> bool:
        return self._running

    @abstractmethod
    async def _connect(self):
        """Open and return the websocket connection."""
        pass

    @abstractmethod
    def _encode_audio(self, pcm: bytes) -> Union[bytes, str]:
        pass

    @abstractmethod
    def _end_of_stream(self) -> Optional[Union[bytes, str]]:
        """Message telling the server no more audio is coming."""
        pass

    @abstractmethod
    def _handle_message(self, message: Union[bytes, str]) -> None:
        pass

    def _close_error(self, code: Optional[int], reason: str) -> ProviderError:
        return TranscriptionError(
            f"{self.label} connection closed unexpectedly (code {code}): {reason}",
            ErrorKind.CONNECTION,
        )

    def _connect_error(self, error: Exception) -> ProviderError:
        if isinstance(error, InvalidStatus):
            status = error.response.status_code
            return TranscriptionError(
                f"{self.label} rejected the connection (HTTP {status})",
                kind_for_status(status),
                status=status,
            )
        if isinstance(error, ProviderError):
            return error
        return TranscriptionError(f"{self.label} connection failed: {error}", ErrorKind.CONNECTION)

    async def start(self) -> None:
        if self._running or self._connecting:
            return
        self._connecting = True
        self._draining = False
        self._queue = asyncio.Queue()

        try:
            self._ws = await self._connect()
        except Exception as e:
            self._connecting = False
            self._queue = None
            raise self._connect_error(e) from e

        self._connecting = False
        self._running = True
        pending = self._queue.qsize()
        if pending:
            logger.info(f"{self.label}: flushing {pending} buffered chunks")
        self._sender_task = asyncio.create_task(self._send_loop(self._ws, self._queue))
        self._receiver_task = asyncio.create_task(self._receive_loop(self._ws))
        logger.info(f"{self.label}: streaming started")

    def send_audio_chunk(self, pcm: bytes) -> None:
        if self._queue is None or self._draining:
            return
        if not (self._running or self._connecting):
            return
        self._queue.put_nowait(bytes(pcm))

    async def _send_loop(self, ws, queue: asyncio.Queue) -> None:
        while True:
            chunk = await queue.get()
            try:
                if chunk is None:
                    end = self._end_of_stream()
                    if end is not None:
                        await ws.send(end)
                    return
                await ws.send(self._encode_audio(chunk))
            except ConnectionClosed:
                # Reported by the receive loop
                return

    async def _receive_loop(self, ws) -> None:
        try:
            async for message in ws:
                try:
                    self._handle_message(message)
                except ProviderError as e:
                    self._emit_error(e)
        except ConnectionClosedError as e:
            if self._running and not self._draining:
                code = e.rcvd.code if e.rcvd else None
                reason = e.rcvd.reason if e.rcvd else ""
                self._emit_error(self._close_error(code, reason))

    async def drain(self) -> None:
        if not self._running or self._queue is None:
            return
        self._draining = True
        self._queue.put_nowait(None)

        try:
            await asyncio.wait_for(self._sender_task, DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"{self.label}: timed out flushing audio")

        # The server closes the socket once the last results are out
        try:
            await asyncio.wait_for(asyncio.shield(self._receiver_task), DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"{self.label}: timed out waiting for final results")

    async def close(self) -> None:
        self._running = False
        self._connecting = False
        for task in (self._sender_task, self._receiver_task):
            if task is not None and not task.done():
                task.cancel()
        if self._ws is not None:
            await self._ws.close()
        self._ws = None
        self._queue = None
        self._sender_task = None
        self._receiver_task = None
        logger.info(f"{self.label}: streaming stopped")


def open_websocket(url: str, headers: Optional[dict] = None):
    """Connect with the shared timeout; returns an awaitable connection."""
    return websockets.connect(
        url,
        additional_headers=headers,
        open_timeout=CONNECT_TIMEOUT,
        max_size=None,
    )
