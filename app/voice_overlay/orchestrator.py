"""Session orchestrator: the state machine behind the overlay.

One session runs from the first trigger to close or cancel. Within it the
user can record several rounds; each round's transcript becomes a user
message and gets a streamed AI answer.

All state changes happen on the asyncio loop. Any coroutine that awaits
captures the round epoch first and re-checks it afterwards; a mismatch
means the session was reset or a new round began, and the late result is
dropped. Context capture belongs to the whole session, so it checks the
session id instead, which only changes on reset and cancel.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

from .config import Config
from .errors import ErrorKind, classify_error, friendly_error, is_credential_error
from .models import Message, Round, Session
from .overlay import Highlight, NullHighlight, OverlayListener, UIEvent
from .response_parser import clean_code_block, extract_pasteable, parse_buttons

logger = logging.getLogger(__name__)

SERVICE_ERROR_ACTIONS = ["Settings", "Dismiss"]


class SessionState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    CONVERSING = "conversing"
    CANCELLED = "cancelled"


class _NullListener:
    def handle(self, event: UIEvent, payload: Any = None) -> None:
        pass


class _RoundListener:
    """Routes transcription events into the round that was current when it was created."""

    def __init__(self, orchestrator: "SessionOrchestrator", epoch: int):
        self._orchestrator = orchestrator
        self._epoch = epoch

    def _live(self) -> bool:
        o = self._orchestrator
        return o._epoch == self._epoch and o.state in (SessionState.RECORDING, SessionState.CONVERSING)

    def on_partial(self, text: str) -> None:
        if self._live():
            self._orchestrator.current_round.set_partial(text)
            self._orchestrator._emit_transcript()

    def on_final(self, text: str) -> None:
        if self._live() and text.strip():
            self._orchestrator.current_round.add_final(text)
            self._orchestrator._emit_transcript()

    def on_error(self, error: Exception) -> None:
        if self._orchestrator._epoch != self._epoch:
            return
        logger.error(f"Transcription runtime error: {error}")
        self._orchestrator.on_service_error("Transcription error", error)


class SessionOrchestrator:
    """Coordinates transcription, screen context, the AI client and the overlay.

    Collaborators are injected; anything optional may be None.
    """

    def __init__(
        self,
        config: Config,
        transcribe_service,
        ai_service,
        input_monitor=None,
        window_service=None,
        capture_service=None,
        history_store=None,
        clipboard=None,
        listener: Optional[OverlayListener] = None,
        highlight: Optional[Highlight] = None,
        preview: Optional[Highlight] = None,
        config_loader: Optional[Callable[[], bool]] = None,
    ):
        self.config = config
        self.transcribe_service = transcribe_service
        self.ai_service = ai_service
        self.input_monitor = input_monitor
        self.window_service = window_service
        self.capture_service = capture_service
        self.history_store = history_store
        self.clipboard = clipboard
        self.listener = listener or _NullListener()
        self.highlight = highlight or NullHighlight()
        self.preview = preview or NullHighlight()
        self.config_loader = config_loader

        self._state = SessionState.IDLE
        self._session = Session()
        self._round = Round()
        self._epoch = 0
        self._session_id = 0
        self._ai_in_flight = False
        self._finalizing = False
        self._closing = False
        self._context_task: Optional[asyncio.Task] = None
        self._ai_task: Optional[asyncio.Task] = None
        self._tasks: set = set()

        if input_monitor is not None:
            input_monitor.connect(self.on_trigger, self.on_cancel)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Session:
        return self._session

    @property
    def current_round(self) -> Round:
        return self._round

    @property
    def ai_in_flight(self) -> bool:
        return self._ai_in_flight

    @property
    def finalizing(self) -> bool:
        return self._finalizing

    def _emit(self, event: UIEvent, payload: Any = None) -> None:
        try:
            self.listener.handle(event, payload)
        except Exception as e:
            logger.error(f"Overlay listener failed on {event.value}: {e}")

    def _emit_transcript(self) -> None:
        self._emit(UIEvent.TRANSCRIPT_UPDATED, self._round.display_text())

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ----- Triggers -----

    async def on_trigger(self) -> None:
        """Start a session, finalize the current round, or start a new one."""
        if self._state == SessionState.RECORDING:
            await self.finalize_round()
            return

        if self._state == SessionState.CONVERSING:
            if self._ai_in_flight or self._finalizing or self._closing:
                reason = "AI still processing" if self._ai_in_flight else "still finalizing"
                logger.info(f"Ignoring trigger: {reason}")
                return
            self._refresh_config()
            self._epoch += 1
            self._round = Round(number=self._round.number + 1)
            self._state = SessionState.RECORDING
            logger.info(f"New recording round (round {self._round.number})")
            self._emit(UIEvent.NEW_ROUND_STARTED, self._round.number)
            await self._start_transcription(self._epoch)
            return

        if self._state != SessionState.IDLE:
            logger.info(f"Ignoring trigger in state {self._state.value}")
            return

        logger.info("Session starting...")
        self._refresh_config()
        self._reset()
        self._state = SessionState.RECORDING
        epoch = self._epoch
        if self.input_monitor is not None:
            self.input_monitor.set_session_active(True)
        self._emit(UIEvent.SESSION_SHOWN)

        self._context_task = self._spawn(self._capture_context(self._session_id))
        await self._start_transcription(epoch)

    def _refresh_config(self) -> None:
        """Pick up edits made to the settings file while the app was running."""
        if self.config_loader is None:
            return
        try:
            changed = self.config_loader()
        except Exception as e:
            logger.warning(f"Config reload failed: {e}")
            return
        if changed:
            logger.info(f"Settings changed (AI provider: {self.config.ai_provider})")
            self.ai_service.invalidate_client()

    async def _start_transcription(self, epoch: int) -> None:
        try:
            await self.transcribe_service.start(_RoundListener(self, epoch))
            logger.info("Transcription started")
        except Exception as e:
            if epoch != self._epoch:
                return
            logger.error(f"Transcription failed: {e}")
            self.on_service_error("Transcription failed", e)

    async def _stop_transcription(self) -> None:
        try:
            await self.transcribe_service.stop()
        except Exception as e:
            logger.warning(f"Transcription stop error (non-fatal): {e}")

    # ----- Context capture -----

    async def _capture_context(self, session_id: int) -> None:
        """Detect the window, show the highlight, grab the screenshot, reveal the overlay."""
        mode = self.config.capture_mode or "window"
        revealed = False
        try:
            info = None
            if self.window_service is not None:
                info = await self.window_service.get_active_window()
                if session_id != self._session_id:
                    return
                self._session.window_info = info
                if info is not None:
                    logger.info(f"Active window: {info.title or 'unknown'}")

            bounds = info.bounds if (mode == "window" and info is not None) else None
            if bounds is None and self.capture_service is not None:
                bounds = self.capture_service.screen_bounds()
            self.highlight.show(bounds)

            if self.capture_service is None:
                return
            screenshot = await self.capture_service.capture(info, mode)
            if session_id != self._session_id or screenshot is None:
                return

            self._session.screenshot = screenshot
            self._emit(UIEvent.SCREENSHOT_AVAILABLE, screenshot.base64)
            self.preview.show(bounds)
            self._emit(UIEvent.OVERLAY_REVEALED)
            revealed = True

            # The overlay is already visible while the flash plays
            self.highlight.flash()
            await asyncio.sleep(self.config.flash_duration_ms / 1000)
            if session_id != self._session_id:
                return
            self.highlight.hide()
        except Exception as e:
            logger.warning(f"Context capture failed (non-fatal): {e}")
        finally:
            if session_id == self._session_id and not revealed:
                self._emit(UIEvent.OVERLAY_REVEALED)

    # ----- Rounds -----

    async def finalize_round(self) -> None:
        """Stop recording, collect the transcript and hand it to the AI."""
        if self._state != SessionState.RECORDING:
            return
        self._state = SessionState.CONVERSING
        self._finalizing = True
        epoch = self._epoch
        self._emit(UIEvent.FINALIZING_STARTED)

        try:
            if self._context_task is not None:
                await self._context_task
                if epoch != self._epoch:
                    logger.info("Session changed during context capture, aborting finalize")
                    return
            self.highlight.hide()

            # Drains the provider, so every final for this round has arrived
            await self._stop_transcription()
            if epoch != self._epoch:
                logger.info("Session changed during transcription stop, aborting finalize")
                return

            transcript = self._round.transcript()
            if not self._round.segments and transcript:
                logger.info("Using partial transcript (no finals received)")
            if not transcript:
                logger.info("No transcript, closing session")
                await self._save_and_reset()
                return

            await self.respond_to_user(transcript)
        finally:
            if epoch == self._epoch:
                self._finalizing = False

    async def respond_to_user(self, text: str) -> None:
        """Append a user turn and stream the assistant's answer."""
        epoch = self._epoch
        self._session.messages.append(Message(role="user", content=text))
        self._emit(UIEvent.BUTTON_THINKING_STARTED, text)

        def on_chunk(chunk: str) -> None:
            if epoch == self._epoch and self._state == SessionState.CONVERSING:
                self._emit(UIEvent.STREAMING_CHUNK, chunk)

        session = self._session
        self._ai_in_flight = True
        task = asyncio.create_task(
            self.ai_service.converse(list(session.messages), session.screenshot, session.window_info, on_chunk)
        )
        self._ai_task = task
        try:
            ai_text = await task
        except asyncio.CancelledError:
            if epoch != self._epoch:
                logger.info("Session closed during AI call, discarding result")
                return
            raise
        except Exception as e:
            if epoch != self._epoch or self._state != SessionState.CONVERSING:
                return
            logger.error(f"AI error: {e}")
            content = f"**Error:** {friendly_error(e)}"
            buttons = ["Settings", "Try again"] if is_credential_error(e) else ["Try again"]
            session.messages.append(Message(role="assistant", content=content, buttons=buttons, is_error=True))
            self._emit(UIEvent.ROUND_COMPLETE, {"content": content, "buttons": buttons, "is_error": True})
            return
        finally:
            if self._ai_task is task:
                self._ai_task = None
            if epoch == self._epoch:
                self._ai_in_flight = False

        if epoch != self._epoch or self._state != SessionState.CONVERSING:
            logger.info("Session closed during AI call, discarding result")
            return

        session.token_usage.add(self.ai_service.last_usage)
        parsed = parse_buttons(ai_text)
        session.messages.append(Message(role="assistant", content=parsed.content, buttons=parsed.buttons))
        logger.info(f'Round complete: "{text[:60]}" -> buttons={parsed.buttons}')
        self._emit(UIEvent.ROUND_COMPLETE, {"content": parsed.content, "buttons": parsed.buttons})
        self._auto_copy(parsed.content)

    def _auto_copy(self, content: str) -> None:
        if not self.config.auto_copy or self.clipboard is None:
            return
        code = clean_code_block(content, self.config.auto_copy_max_prose_chars)
        if code is None:
            return
        if self.clipboard.copy(code):
            logger.info(f"Auto-copied command to clipboard ({len(code)} chars)")
            self._emit(UIEvent.AUTO_COPIED, code)

    # ----- Overlay actions -----

    async def on_button_click(self, label: str) -> None:
        if label == "Settings":
            self._emit(UIEvent.SETTINGS_REQUESTED)
            return
        if label == "Dismiss":
            await self.on_close()
            return

        if self._state != SessionState.CONVERSING or self._ai_in_flight or self._finalizing or self._closing:
            logger.info(f"Ignoring button click in state {self._state.value}")
            return

        messages = self._session.messages
        if label == "Try again" and messages and messages[-1].is_error:
            self._refresh_config()
            messages.pop()
            if messages and messages[-1].role == "user":
                label = messages.pop().content
        logger.info(f'Button clicked: "{label}"')
        await self.respond_to_user(label)

    def on_copy_action(self) -> bool:
        """Copy the pasteable part of the last answer."""
        last = self._session.last_assistant()
        if last is None or not last.content or self.clipboard is None:
            return False
        pasteable = extract_pasteable(last.content)
        if not self.clipboard.copy(pasteable):
            return False
        logger.info(f"Copied to clipboard ({len(pasteable)} chars)")
        self._emit(UIEvent.AUTO_COPIED, pasteable)
        return True

    async def on_close(self) -> None:
        if self._state in (SessionState.IDLE, SessionState.CANCELLED):
            return
        logger.info("Session closed")
        await self._save_and_reset()

    async def on_cancel(self) -> None:
        if self._state in (SessionState.IDLE, SessionState.CANCELLED):
            return
        logger.info("Session cancelled")
        self._state = SessionState.CANCELLED
        self._epoch += 1
        self._session_id += 1
        if self._ai_task is not None and not self._ai_task.done():
            self._ai_task.cancel()
        self.preview.hide()
        self.highlight.hide()
        await self._stop_transcription()
        self._emit(UIEvent.CANCELLED)
        self._spawn(self._finish_cancel())

    async def _finish_cancel(self) -> None:
        await asyncio.sleep(self.config.cancel_grace_ms / 1000)
        if self._state == SessionState.CANCELLED:
            self._hide_and_reset()

    # ----- Errors -----

    def on_service_error(self, title: str, error: Exception) -> None:
        """Show a recoverable service failure and stop recording."""
        if self._state in (SessionState.IDLE, SessionState.CANCELLED):
            return
        self._state = SessionState.CONVERSING

        if classify_error(error) is ErrorKind.CREDENTIALS_EXPIRED:
            self._spawn(self._refresh_credentials())

        self._emit(UIEvent.ERROR_OCCURRED, {
            "title": title,
            "detail": friendly_error(error),
            "actions": list(SERVICE_ERROR_ACTIONS),
        })
        self._spawn(self._stop_transcription())

    async def _refresh_credentials(self) -> None:
        await self.transcribe_service.reload_credentials()
        self.ai_service.invalidate_client()
        logger.info("Credentials refreshed after expiry")

    # ----- Lifecycle -----

    async def _save_and_reset(self) -> None:
        self._closing = True
        session = self._session
        await self._stop_transcription()
        self.preview.hide()

        if self.history_store is not None and session.messages:
            try:
                record = session.to_record()
                await asyncio.to_thread(self.history_store.save, record, session.screenshot)
            except Exception as e:
                logger.error(f"Failed to save session to history: {e}")
        self._hide_and_reset()

    def _hide_and_reset(self) -> None:
        self._emit(UIEvent.SESSION_HIDDEN)
        self._reset()

    def _reset(self) -> None:
        self.highlight.hide()
        self.preview.hide()
        if self._ai_task is not None and not self._ai_task.done():
            self._ai_task.cancel()
        self._ai_task = None
        self._epoch += 1
        self._session_id += 1
        self._state = SessionState.IDLE
        self._ai_in_flight = False
        self._finalizing = False
        self._closing = False
        self._session = Session()
        self._round = Round()
        self._context_task = None
        if self.input_monitor is not None:
            self.input_monitor.set_session_active(False)
        logger.debug("State reset to IDLE")

    async def dispose(self) -> None:
        """Release every service. Called once at shutdown."""
        if self._state != SessionState.IDLE:
            self._reset()
        for task in list(self._tasks):
            task.cancel()
        await self.transcribe_service.dispose()
        self.ai_service.dispose()
        if self.input_monitor is not None:
            self.input_monitor.stop()
