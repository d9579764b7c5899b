"""Voice Overlay entry point.

The Qt event loop owns the main thread. Session logic runs on an asyncio
loop in a background thread; the two talk through queued Qt signals one way
and ``run_coroutine_threadsafe`` the other.
"""

import argparse
import asyncio
import logging
import signal
import sys
import threading
from functools import partial

from PyQt6.QtCore import QUrl
from PyQt6.QtGui import QAction, QDesktopServices
from PyQt6.QtWidgets import QApplication, QMenu, QStyle, QSystemTrayIcon

from .ai_service import AIService
from .audio_feedback import SoundEffects, get_feedback
from .audio_recorder import AudioRecorder
from .capture_service import CaptureService
from .clipboard import SystemClipboard
from .config import CONFIG_FILE, LOG_FILE, load_config, load_env_keys, reload_config, save_config
from .history import HistoryStore
from .hotkeys import InputMonitor
from .orchestrator import SessionOrchestrator
from .overlay import CompositeListener
from .overlay_window import OverlayBridge, OverlayWindow
from .transcribe_service import TranscribeService
from .window_service import WindowService

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 10


def setup_logging(debug: bool = False) -> None:
    """Log to a file truncated at startup, plus the console."""
    LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

    file_handler = logging.FileHandler(LOG_FILE, mode="w", encoding="utf-8")
    file_handler.setFormatter(formatter)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # Keep HTTP and websocket chatter out of the session log
    for noisy in ("httpx", "httpcore", "websockets", "faster_whisper"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class AsyncLoopThread(threading.Thread):
    """Runs the session event loop off the GUI thread."""

    def __init__(self):
        super().__init__(name="session-loop", daemon=True)
        self.loop = asyncio.new_event_loop()

    def run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def submit(self, coro):
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        future.add_done_callback(_log_failure)
        return future

    def call(self, callback, *args):
        self.loop.call_soon_threadsafe(callback, *args)

    def stop(self):
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.join(timeout=2.0)


def _log_failure(future) -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.error(f"Session task failed: {future.exception()!r}")


def open_settings_file() -> None:
    """Open the JSON config in the desktop's default editor."""
    if not CONFIG_FILE.exists():
        save_config(load_config())
    QDesktopServices.openUrl(QUrl.fromLocalFile(str(CONFIG_FILE)))


def setup_tray(app: QApplication, trigger_hotkey: str) -> QSystemTrayIcon:
    tray = QSystemTrayIcon(app.style().standardIcon(QStyle.StandardPixmap.SP_MediaVolume), app)
    tray.setToolTip(f"Voice Overlay ({trigger_hotkey.upper()} to talk)")

    menu = QMenu()
    settings_action = QAction("Settings...", menu)
    settings_action.triggered.connect(open_settings_file)
    menu.addAction(settings_action)
    menu.addSeparator()
    quit_action = QAction("Quit", menu)
    quit_action.triggered.connect(app.quit)
    menu.addAction(quit_action)

    tray.setContextMenu(menu)
    tray.show()
    # The menu must outlive this function
    tray._menu = menu
    return tray


def main():
    parser = argparse.ArgumentParser(description="Hotkey-driven voice assistant overlay")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    setup_logging(args.debug)
    config = load_env_keys(load_config())
    logger.info(f"AI provider: {config.ai_provider}, transcription: {config.transcribe_provider}")

    app = QApplication(sys.argv)
    app.setQuitOnLastWindowClosed(False)  # Keep running in tray

    recorder = AudioRecorder()
    recorder.select_device_by_name(config.preferred_mic_name)
    transcribe_service = TranscribeService(config, audio_source=recorder)
    ai_service = AIService(config)
    history_store = HistoryStore()
    input_monitor = InputMonitor(config.hotkey_trigger, config.hotkey_cancel)

    bridge = OverlayBridge()
    window = OverlayWindow()
    bridge.event_received.connect(window.handle_event)
    bridge.settings_requested.connect(open_settings_file)

    listener = CompositeListener([bridge])
    listener.add(SoundEffects(get_feedback(config.beep_volume), enabled=config.sound_effects))

    orchestrator = SessionOrchestrator(
        config,
        transcribe_service,
        ai_service,
        input_monitor=input_monitor,
        window_service=WindowService(),
        capture_service=CaptureService(config),
        history_store=history_store,
        clipboard=SystemClipboard(),
        listener=listener,
        config_loader=partial(reload_config, config),
    )

    loop_thread = AsyncLoopThread()
    loop_thread.start()

    window.button_clicked.connect(lambda label: loop_thread.submit(orchestrator.on_button_click(label)))
    window.close_requested.connect(lambda: loop_thread.submit(orchestrator.on_close()))
    window.copy_requested.connect(lambda: loop_thread.call(orchestrator.on_copy_action))

    input_monitor.start(loop_thread.loop)
    loop_thread.submit(transcribe_service.warmup())
    loop_thread.submit(ai_service.initialize())

    tray = setup_tray(app, config.hotkey_trigger)

    def shutdown():
        logger.info("Shutting down")
        try:
            loop_thread.submit(orchestrator.dispose()).result(timeout=SHUTDOWN_TIMEOUT)
        except Exception as e:
            logger.warning(f"Shutdown did not complete cleanly: {e}")
        loop_thread.stop()
        recorder.cleanup()
        history_store.close()
        tray.hide()

    app.aboutToQuit.connect(shutdown)
    signal.signal(signal.SIGINT, lambda *_: app.quit())

    logger.info(f"Ready. Press {config.hotkey_trigger} to talk.")
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
