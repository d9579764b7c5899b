"""Tests for the session orchestrator state machine, driven with fake services."""

import asyncio
from types import SimpleNamespace

from voice_overlay.config import Config
from voice_overlay.errors import ErrorKind, ProviderError, TranscriptionError
from voice_overlay.models import Bounds, Screenshot, TokenUsage, WindowInfo
from voice_overlay.orchestrator import SessionOrchestrator, SessionState
from voice_overlay.overlay import UIEvent


class FakeTranscribeService:
    """Delivers the queued partial and finals when stopped, like a draining provider."""

    def __init__(self, start_error=None):
        self.start_error = start_error
        self.pending_partial = ""
        self.pending_finals = []
        self.listener = None
        self.listeners = []
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0
        self.reloads = 0
        self.disposed = False

    async def start(self, listener):
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        self.listener = listener
        self.listeners.append(listener)
        self.running = True

    async def stop(self):
        if not self.running:
            return
        self.stop_calls += 1
        await asyncio.sleep(0)
        if self.pending_partial:
            self.listener.on_partial(self.pending_partial)
        for text in self.pending_finals:
            self.listener.on_final(text)
        self.pending_partial = ""
        self.pending_finals = []
        self.running = False
        self.listener = None

    async def reload_credentials(self):
        self.reloads += 1

    async def dispose(self):
        self.disposed = True


class FakeAIService:
    def __init__(self, responses=None, errors=None, delay=0.0):
        self.responses = list(responses or [])
        self.errors = list(errors or [])
        self.delay = delay
        self.calls = []
        self.last_usage = None
        self.invalidated = 0
        self.cancelled = False

    async def converse(self, messages, screenshot=None, window_info=None, on_chunk=None):
        self.calls.append(SimpleNamespace(
            texts=[m.content for m in messages], screenshot=screenshot, window_info=window_info
        ))
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.errors:
            raise self.errors.pop(0)
        text = self.responses.pop(0) if self.responses else 'Done.\n[BUTTONS: "More detail", "Simpler"]'
        if on_chunk is not None:
            on_chunk(text[:4])
            on_chunk(text)
        self.last_usage = TokenUsage(input_tokens=10, output_tokens=5)
        return text

    def invalidate_client(self):
        self.invalidated += 1

    def dispose(self):
        pass


class FakeInputMonitor:
    def __init__(self):
        self.active = []
        self.stopped = False

    def connect(self, on_trigger, on_cancel):
        self.on_trigger = on_trigger
        self.on_cancel = on_cancel

    def set_session_active(self, active):
        self.active.append(active)

    def stop(self):
        self.stopped = True


class FakeWindowService:
    def __init__(self):
        self.info = WindowInfo(title="bash", owner="gnome-terminal", bounds=Bounds(0, 0, 800, 600))

    async def get_active_window(self):
        return self.info


class FakeCaptureService:
    def __init__(self, delay=0.0):
        self.calls = 0
        self.delay = delay

    def screen_bounds(self):
        return Bounds(0, 0, 1920, 1080)

    async def capture(self, window_info, mode):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return Screenshot(image_bytes=b"\x89PNG", media_type="image/png")


class FakeHistory:
    def __init__(self):
        self.saved = []

    def save(self, record, screenshot=None):
        self.saved.append((record, screenshot))
        return record.id


class FakeClipboard:
    def __init__(self):
        self.copied = []

    def copy(self, text):
        self.copied.append(text)
        return True


class FakeHighlight:
    def __init__(self):
        self.calls = []

    def show(self, bounds):
        self.calls.append(("show", bounds))

    def hide(self):
        self.calls.append(("hide",))

    def flash(self):
        self.calls.append(("flash",))


class RecordingListener:
    def __init__(self):
        self.events = []

    def handle(self, event, payload=None):
        self.events.append((event, payload))

    def names(self):
        return [event for event, _ in self.events]

    def payloads(self, event):
        return [payload for e, payload in self.events if e == event]


def make_orchestrator(transcribe=None, ai=None, **config_overrides):
    config = Config(**{"cancel_grace_ms": 0, "flash_duration_ms": 0, **config_overrides})
    fakes = SimpleNamespace(
        config=config,
        transcribe=transcribe or FakeTranscribeService(),
        ai=ai or FakeAIService(),
        monitor=FakeInputMonitor(),
        window=FakeWindowService(),
        capture=FakeCaptureService(),
        history=FakeHistory(),
        clipboard=FakeClipboard(),
        listener=RecordingListener(),
        highlight=FakeHighlight(),
    )
    orchestrator = SessionOrchestrator(
        config,
        fakes.transcribe,
        fakes.ai,
        input_monitor=fakes.monitor,
        window_service=fakes.window,
        capture_service=fakes.capture,
        history_store=fakes.history,
        clipboard=fakes.clipboard,
        listener=fakes.listener,
        highlight=fakes.highlight,
    )
    return orchestrator, fakes


async def speak_round(orchestrator, fakes, finals=(), partial=""):
    """Trigger, queue what the recognizer will deliver, trigger again to finalize."""
    await orchestrator.on_trigger()
    fakes.transcribe.pending_finals = list(finals)
    fakes.transcribe.pending_partial = partial
    await orchestrator.on_trigger()


def test_trigger_wires_input_monitor():
    orchestrator, fakes = make_orchestrator()
    assert fakes.monitor.on_trigger == orchestrator.on_trigger
    assert fakes.monitor.on_cancel == orchestrator.on_cancel


def test_first_trigger_starts_recording():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await orchestrator.on_trigger()
        await asyncio.sleep(0.01)
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    assert orchestrator.state == SessionState.RECORDING
    assert fakes.transcribe.running
    assert fakes.monitor.active[-1] is True
    names = fakes.listener.names()
    assert names[0] == UIEvent.SESSION_SHOWN
    assert UIEvent.SCREENSHOT_AVAILABLE in names
    assert names.count(UIEvent.OVERLAY_REVEALED) == 1
    assert ("show", Bounds(0, 0, 800, 600)) in fakes.highlight.calls
    assert orchestrator.session.window_info.owner == "gnome-terminal"


def test_segments_join_into_transcript():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await speak_round(orchestrator, fakes, finals=["find", "files", "bigger", "than", "a", "gig"])
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    assert fakes.ai.calls[0].texts == ["find files bigger than a gig"]
    assert orchestrator.state == SessionState.CONVERSING
    assert [m.role for m in orchestrator.session.messages] == ["user", "assistant"]
    assert orchestrator.session.messages[1].content == "Done."
    assert fakes.listener.payloads(UIEvent.ROUND_COMPLETE) == [
        {"content": "Done.", "buttons": ["More detail", "Simpler"]}
    ]
    assert fakes.listener.payloads(UIEvent.BUTTON_THINKING_STARTED) == ["find files bigger than a gig"]
    assert fakes.transcribe.stop_calls == 1
    assert not orchestrator.ai_in_flight
    assert not orchestrator.finalizing


def test_partial_is_used_when_nothing_finalized():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await speak_round(orchestrator, fakes, partial="find files big")
        return fakes

    fakes = asyncio.run(scenario())
    assert fakes.ai.calls[0].texts == ["find files big"]


def test_first_turn_carries_screen_context():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await speak_round(orchestrator, fakes, finals=["what is this"])
        return fakes

    fakes = asyncio.run(scenario())
    call = fakes.ai.calls[0]
    assert call.screenshot.image_bytes == b"\x89PNG"
    assert call.window_info.title == "bash"


def test_empty_round_closes_without_saving():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await speak_round(orchestrator, fakes)
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    assert orchestrator.state == SessionState.IDLE
    assert orchestrator.session.messages == []
    assert fakes.history.saved == []
    assert fakes.ai.calls == []
    assert fakes.listener.names()[-1] == UIEvent.SESSION_HIDDEN
    assert fakes.monitor.active[-1] is False


def test_double_trigger_during_finalize_calls_converse_once():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await orchestrator.on_trigger()
        fakes.transcribe.pending_finals = ["hello"]
        await asyncio.gather(orchestrator.on_trigger(), orchestrator.on_trigger())
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    assert len(fakes.ai.calls) == 1
    assert orchestrator.state == SessionState.CONVERSING


def test_trigger_during_ai_call_is_dropped():
    async def scenario():
        orchestrator, fakes = make_orchestrator(ai=FakeAIService(delay=0.05))
        await orchestrator.on_trigger()
        fakes.transcribe.pending_finals = ["hello"]
        finalize = asyncio.create_task(orchestrator.on_trigger())
        await asyncio.sleep(0.02)
        in_flight = orchestrator.ai_in_flight
        await orchestrator.on_trigger()
        await finalize
        return orchestrator, fakes, in_flight

    orchestrator, fakes, in_flight = asyncio.run(scenario())
    assert in_flight
    assert fakes.transcribe.start_calls == 1
    assert UIEvent.NEW_ROUND_STARTED not in fakes.listener.names()
    assert orchestrator.state == SessionState.CONVERSING


def test_new_round_reuses_screen_context():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await speak_round(orchestrator, fakes, finals=["find files"])
        await orchestrator.on_trigger()
        state_after_trigger = orchestrator.state
        fakes.transcribe.pending_finals = ["and sort them"]
        await orchestrator.on_trigger()
        return orchestrator, fakes, state_after_trigger

    orchestrator, fakes, state_after_trigger = asyncio.run(scenario())
    assert state_after_trigger == SessionState.RECORDING
    assert fakes.listener.payloads(UIEvent.NEW_ROUND_STARTED) == [1]
    assert fakes.ai.calls[1].texts == ["find files", "Done.", "and sort them"]
    assert fakes.capture.calls == 1
    assert fakes.ai.calls[1].screenshot is fakes.ai.calls[0].screenshot
    assert orchestrator.current_round.number == 1


def test_token_usage_accumulates_across_rounds():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await speak_round(orchestrator, fakes, finals=["one"])
        await speak_round(orchestrator, fakes, finals=["two"])
        return orchestrator

    orchestrator = asyncio.run(scenario())
    usage = orchestrator.session.token_usage
    assert (usage.input_tokens, usage.output_tokens) == (20, 10)


def test_streaming_chunks_are_forwarded():
    async def scenario():
        orchestrator, fakes = make_orchestrator(ai=FakeAIService(responses=["Use ls."]))
        await speak_round(orchestrator, fakes, finals=["list files"])
        return fakes

    fakes = asyncio.run(scenario())
    assert fakes.listener.payloads(UIEvent.STREAMING_CHUNK) == ["Use ", "Use ls."]


def test_cancel_and_close_on_idle_do_nothing():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await orchestrator.on_cancel()
        await orchestrator.on_close()
        await asyncio.sleep(0.01)
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    assert orchestrator.state == SessionState.IDLE
    assert fakes.listener.events == []
    assert fakes.monitor.active == []
    assert fakes.transcribe.start_calls == 0
    assert fakes.transcribe.stop_calls == 0
    assert fakes.highlight.calls == []


def test_cancel_returns_to_idle_after_grace():
    async def scenario():
        orchestrator, fakes = make_orchestrator(cancel_grace_ms=20)
        await orchestrator.on_trigger()
        await orchestrator.on_cancel()
        during_grace = orchestrator.state
        await asyncio.sleep(0.05)
        return orchestrator, fakes, during_grace

    orchestrator, fakes, during_grace = asyncio.run(scenario())
    assert during_grace == SessionState.CANCELLED
    assert orchestrator.state == SessionState.IDLE
    assert not fakes.transcribe.running
    names = fakes.listener.names()
    assert names.index(UIEvent.CANCELLED) < names.index(UIEvent.SESSION_HIDDEN)
    assert fakes.history.saved == []
    assert fakes.monitor.active[-1] is False


def test_trigger_during_cancel_grace_is_ignored():
    async def scenario():
        orchestrator, fakes = make_orchestrator(cancel_grace_ms=20)
        await orchestrator.on_trigger()
        await orchestrator.on_cancel()
        await orchestrator.on_trigger()
        await asyncio.sleep(0.05)
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    assert orchestrator.state == SessionState.IDLE
    assert fakes.transcribe.start_calls == 1


def test_cancel_during_ai_call_discards_result():
    async def scenario():
        orchestrator, fakes = make_orchestrator(ai=FakeAIService(delay=0.05))
        await orchestrator.on_trigger()
        fakes.transcribe.pending_finals = ["hello"]
        finalize = asyncio.create_task(orchestrator.on_trigger())
        await asyncio.sleep(0.02)
        await orchestrator.on_cancel()
        await finalize
        await asyncio.sleep(0.01)
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    assert fakes.ai.cancelled
    assert UIEvent.ROUND_COMPLETE not in fakes.listener.names()
    assert orchestrator.state == SessionState.IDLE
    assert orchestrator.session.messages == []
    assert not orchestrator.ai_in_flight


def test_any_trigger_cancel_sequence_settles():
    sequences = [
        "tc", "ttc", "ttt", "tttt", "ctct", "tctt", "tttc", "tcttc", "ttttt",
    ]

    async def run(sequence):
        orchestrator, fakes = make_orchestrator()
        for step in sequence:
            if step == "t":
                fakes.transcribe.pending_finals = ["again"]
                await orchestrator.on_trigger()
            else:
                await orchestrator.on_cancel()
        await asyncio.sleep(0.01)
        return orchestrator.state

    for sequence in sequences:
        state = asyncio.run(run(sequence))
        assert state in (SessionState.IDLE, SessionState.RECORDING, SessionState.CONVERSING), sequence


def test_close_saves_session_to_history():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await speak_round(orchestrator, fakes, finals=["find files"])
        await speak_round(orchestrator, fakes, finals=["only folders"])
        await orchestrator.on_close()
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    assert orchestrator.state == SessionState.IDLE
    assert len(fakes.history.saved) == 1
    record, screenshot = fakes.history.saved[0]
    assert record.transcript == "find files → only folders"
    assert record.ai_text == "Done."
    assert record.rounds == 2
    assert record.window_title == "bash"
    assert record.token_usage == {"input_tokens": 20, "output_tokens": 10}
    assert screenshot.image_bytes == b"\x89PNG"
    assert fakes.listener.names()[-1] == UIEvent.SESSION_HIDDEN


def test_history_failure_does_not_block_close():
    class BrokenHistory:
        def save(self, record, screenshot=None):
            raise OSError("disk full")

    async def scenario():
        orchestrator, fakes = make_orchestrator()
        orchestrator.history_store = BrokenHistory()
        await speak_round(orchestrator, fakes, finals=["hello"])
        await orchestrator.on_close()
        return orchestrator

    assert asyncio.run(scenario()).state == SessionState.IDLE


def test_late_results_after_close_are_ignored():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await speak_round(orchestrator, fakes, finals=["hello"])
        stale = fakes.transcribe.listeners[0]
        await orchestrator.on_close()
        before = len(fakes.listener.events)
        stale.on_final("late words")
        stale.on_partial("late")
        stale.on_error(TranscriptionError("socket closed", ErrorKind.CONNECTION))
        return orchestrator, fakes, before

    orchestrator, fakes, before = asyncio.run(scenario())
    assert len(fakes.listener.events) == before
    assert orchestrator.current_round.segments == []
    assert orchestrator.state == SessionState.IDLE


def test_credential_error_offers_settings():
    async def scenario():
        ai = FakeAIService(errors=[ProviderError("OpenAI API key not configured", ErrorKind.NOT_CONFIGURED)])
        orchestrator, fakes = make_orchestrator(ai=ai)
        await speak_round(orchestrator, fakes, finals=["hello"])
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    last = orchestrator.session.messages[-1]
    assert last.is_error
    assert last.content == "**Error:** OpenAI API key not configured"
    assert last.buttons == ["Settings", "Try again"]
    assert orchestrator.state == SessionState.CONVERSING
    assert fakes.listener.payloads(UIEvent.ROUND_COMPLETE)[-1]["is_error"] is True


def test_other_errors_offer_retry_only():
    async def scenario():
        orchestrator, fakes = make_orchestrator(ai=FakeAIService(errors=[RuntimeError("upstream 500\ntrace")]))
        await speak_round(orchestrator, fakes, finals=["hello"])
        return orchestrator

    orchestrator = asyncio.run(scenario())
    last = orchestrator.session.messages[-1]
    assert last.content == "**Error:** upstream 500"
    assert last.buttons == ["Try again"]


def test_try_again_resends_failed_turn():
    async def scenario():
        ai = FakeAIService(responses=["Fixed."], errors=[RuntimeError("boom")])
        orchestrator, fakes = make_orchestrator(ai=ai)
        await speak_round(orchestrator, fakes, finals=["find files"])
        await orchestrator.on_button_click("Try again")
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    assert fakes.ai.calls[1].texts == ["find files"]
    assert [(m.role, m.content) for m in orchestrator.session.messages] == [
        ("user", "find files"),
        ("assistant", "Fixed."),
    ]


def test_settings_edits_apply_to_next_session():
    async def scenario():
        reloads = []

        def loader():
            reloads.append(orchestrator.state)
            return len(reloads) == 2

        orchestrator, fakes = make_orchestrator()
        orchestrator.config_loader = loader
        await speak_round(orchestrator, fakes, finals=["first"])
        await orchestrator.on_close()
        await speak_round(orchestrator, fakes, finals=["second"])
        return reloads, fakes

    reloads, fakes = asyncio.run(scenario())
    assert reloads == [SessionState.IDLE, SessionState.IDLE]
    assert fakes.ai.invalidated == 1


def test_try_again_rereads_settings():
    async def scenario():
        ai = FakeAIService(errors=[ProviderError("OpenAI API key not configured", ErrorKind.NOT_CONFIGURED)])
        orchestrator, fakes = make_orchestrator(ai=ai)
        orchestrator.config_loader = lambda: True
        await speak_round(orchestrator, fakes, finals=["hello"])
        invalidated_before = ai.invalidated
        await orchestrator.on_button_click("Try again")
        return fakes, invalidated_before

    fakes, invalidated_before = asyncio.run(scenario())
    assert fakes.ai.invalidated == invalidated_before + 1
    assert fakes.ai.calls[1].texts == ["hello"]


def test_button_label_becomes_next_user_turn():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await speak_round(orchestrator, fakes, finals=["explain this"])
        await orchestrator.on_button_click("More detail")
        return fakes

    fakes = asyncio.run(scenario())
    assert fakes.ai.calls[1].texts == ["explain this", "Done.", "More detail"]


def test_button_click_ignored_while_recording():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await orchestrator.on_trigger()
        await orchestrator.on_button_click("More detail")
        return fakes

    fakes = asyncio.run(scenario())
    assert fakes.ai.calls == []


def test_settings_and_dismiss_buttons():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await speak_round(orchestrator, fakes, finals=["hello"])
        await orchestrator.on_button_click("Settings")
        settings_state = orchestrator.state
        await orchestrator.on_button_click("Dismiss")
        return orchestrator, fakes, settings_state

    orchestrator, fakes, settings_state = asyncio.run(scenario())
    assert UIEvent.SETTINGS_REQUESTED in fakes.listener.names()
    assert settings_state == SessionState.CONVERSING
    assert orchestrator.state == SessionState.IDLE
    assert len(fakes.history.saved) == 1


def test_transcription_error_stops_recording():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await orchestrator.on_trigger()
        fakes.transcribe.listener.on_error(TranscriptionError("Deepgram: Invalid API key", ErrorKind.AUTH_FAILED))
        await asyncio.sleep(0.01)
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    assert orchestrator.state == SessionState.CONVERSING
    assert fakes.listener.payloads(UIEvent.ERROR_OCCURRED) == [{
        "title": "Transcription error",
        "detail": "Deepgram: Invalid API key",
        "actions": ["Settings", "Dismiss"],
    }]
    assert not fakes.transcribe.running
    assert fakes.transcribe.reloads == 0


def test_screenshot_survives_retrigger_after_error():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        fakes.capture.delay = 0.05
        await orchestrator.on_trigger()
        fakes.transcribe.listener.on_error(TranscriptionError("socket closed"))
        await asyncio.sleep(0.01)
        await orchestrator.on_trigger()
        fakes.transcribe.pending_finals = ["what is this"]
        await orchestrator.on_trigger()
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    assert fakes.capture.calls == 1
    assert fakes.ai.calls[0].texts == ["what is this"]
    assert fakes.ai.calls[0].screenshot is not None
    assert fakes.ai.calls[0].screenshot is orchestrator.session.screenshot
    assert UIEvent.SCREENSHOT_AVAILABLE in fakes.listener.names()


def test_expired_credentials_trigger_refresh():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await orchestrator.on_trigger()
        fakes.transcribe.listener.on_error(
            TranscriptionError("The request signature we calculated does not match", ErrorKind.CREDENTIALS_EXPIRED)
        )
        await asyncio.sleep(0.01)
        return fakes

    fakes = asyncio.run(scenario())
    assert fakes.transcribe.reloads == 1
    assert fakes.ai.invalidated == 1
    detail = fakes.listener.payloads(UIEvent.ERROR_OCCURRED)[0]["detail"]
    assert detail.startswith("AWS credentials expired")


def test_transcription_start_failure_is_reported():
    async def scenario():
        transcribe = FakeTranscribeService(
            start_error=TranscriptionError("Could not open microphone", ErrorKind.CONNECTION)
        )
        orchestrator, fakes = make_orchestrator(transcribe=transcribe)
        await orchestrator.on_trigger()
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    assert orchestrator.state == SessionState.CONVERSING
    assert fakes.listener.payloads(UIEvent.ERROR_OCCURRED)[0]["title"] == "Transcription failed"


def test_single_code_block_is_auto_copied():
    async def scenario():
        ai = FakeAIService(responses=["```bash\nfind / -size +1G\n```"])
        orchestrator, fakes = make_orchestrator(ai=ai)
        await speak_round(orchestrator, fakes, finals=["find big files"])
        return fakes

    fakes = asyncio.run(scenario())
    assert fakes.clipboard.copied == ["find / -size +1G"]
    assert fakes.listener.payloads(UIEvent.AUTO_COPIED) == ["find / -size +1G"]


def test_auto_copy_can_be_disabled():
    async def scenario():
        ai = FakeAIService(responses=["```bash\nls\n```"])
        orchestrator, fakes = make_orchestrator(ai=ai, auto_copy=False)
        await speak_round(orchestrator, fakes, finals=["list"])
        return fakes

    assert asyncio.run(scenario()).clipboard.copied == []


def test_copy_action_copies_code_of_last_answer():
    async def scenario():
        ai = FakeAIService(responses=["Two ways:\n```\ndu -sh *\n```\nor\n```\nncdu\n```"])
        orchestrator, fakes = make_orchestrator(ai=ai)
        await speak_round(orchestrator, fakes, finals=["disk usage"])
        copied = orchestrator.on_copy_action()
        return fakes, copied

    fakes, copied = asyncio.run(scenario())
    assert copied
    assert fakes.clipboard.copied == ["du -sh *\n\nncdu"]


def test_dispose_releases_services():
    async def scenario():
        orchestrator, fakes = make_orchestrator()
        await orchestrator.on_trigger()
        await orchestrator.dispose()
        return orchestrator, fakes

    orchestrator, fakes = asyncio.run(scenario())
    assert orchestrator.state == SessionState.IDLE
    assert fakes.transcribe.disposed
    assert fakes.monitor.stopped
