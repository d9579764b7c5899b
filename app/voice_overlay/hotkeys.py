"""Global hotkeys for the overlay.

Uses pynput for cross-platform global hotkey support. On Wayland, this works
via the XWayland compatibility layer. Callbacks are coroutines scheduled on
the application's asyncio loop, so the listener thread never touches
session state directly.
"""

import asyncio
import logging
import threading
import time
from typing import Awaitable, Callable, Dict, Optional

from pynput import keyboard

logger = logging.getLogger(__name__)

# Minimum time between triggers of the same hotkey (prevents rapid-fire)
DEBOUNCE_INTERVAL_MS = 100

AsyncCallback = Callable[[], Awaitable[None]]

# Mapping of key names to pynput Key objects
KEY_MAP = {
    # Modifiers
    "ctrl": keyboard.Key.ctrl,
    "alt": keyboard.Key.alt,
    "shift": keyboard.Key.shift,
    "super": keyboard.Key.cmd,
    # Special keys
    "space": keyboard.Key.space,
    "enter": keyboard.Key.enter,
    "tab": keyboard.Key.tab,
    "escape": keyboard.Key.esc,
    "esc": keyboard.Key.esc,
    "backspace": keyboard.Key.backspace,
    "insert": keyboard.Key.insert,
    "pause": keyboard.Key.pause,
}

# Function keys, including the F13-F24 macro keys where the backend defines them
for _n in range(1, 25):
    _key = getattr(keyboard.Key, f"f{_n}", None)
    if _key is not None:
        KEY_MAP[f"f{_n}"] = _key


def parse_hotkey(hotkey_str: str) -> Optional[frozenset]:
    """Parse a hotkey string like 'ctrl+shift+space' or 'f10' into a set of keys.

    Returns None if the hotkey string is empty or invalid.
    """
    if not hotkey_str or not hotkey_str.strip():
        return None

    keys = set()
    for part in (p.strip().lower() for p in hotkey_str.split("+")):
        if part in KEY_MAP:
            keys.add(KEY_MAP[part])
        elif len(part) == 1:
            keys.add(keyboard.KeyCode.from_char(part))
        else:
            return None
    return frozenset(keys) if keys else None


def normalize_key(key):
    """Map left/right modifier variants and raw F13-F24 codes to the KEY_MAP entries."""
    if key in (keyboard.Key.shift_l, keyboard.Key.shift_r):
        return keyboard.Key.shift
    if key in (keyboard.Key.ctrl_l, keyboard.Key.ctrl_r):
        return keyboard.Key.ctrl
    if key in (keyboard.Key.alt_l, keyboard.Key.alt_r, keyboard.Key.alt_gr):
        return keyboard.Key.alt
    if key in (keyboard.Key.cmd_l, keyboard.Key.cmd_r):
        return keyboard.Key.cmd

    vk = getattr(key, "vk", None)
    if vk is not None:
        # Windows VK codes for F13-F24: 124-135
        if 124 <= vk <= 135:
            return KEY_MAP.get(f"f{vk - 111}", key)
        # X11 keysyms for F13-F24: 65482-65493
        if 65482 <= vk <= 65493:
            return KEY_MAP.get(f"f{vk - 65469}", key)
    if isinstance(key, keyboard.KeyCode) and key.char:
        return keyboard.KeyCode.from_char(key.char.lower())
    return key


class InputMonitor:
    """Listens for the trigger hotkey and, while a session is open, the cancel hotkey."""

    def __init__(self, trigger_hotkey: str, cancel_hotkey: str = "escape"):
        self.trigger_keys = parse_hotkey(trigger_hotkey)
        self.cancel_keys = parse_hotkey(cancel_hotkey)
        if self.trigger_keys is None:
            logger.warning(f"Invalid trigger hotkey: {trigger_hotkey!r}")

        self._on_trigger: Optional[AsyncCallback] = None
        self._on_cancel: Optional[AsyncCallback] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._listener: Optional[keyboard.Listener] = None
        self._session_active = False

        self.pressed_keys: set = set()
        self.active_hotkeys: set = set()
        self._last_trigger_time: Dict[str, float] = {}
        self._lock = threading.Lock()

    def connect(self, on_trigger: AsyncCallback, on_cancel: AsyncCallback) -> None:
        self._on_trigger = on_trigger
        self._on_cancel = on_cancel

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the loop that receives hotkey callbacks."""
        self._loop = loop

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start listening for global hotkeys."""
        self.attach(loop)
        if self._listener is not None:
            return
        self._listener = keyboard.Listener(on_press=self._on_press, on_release=self._on_release)
        self._listener.start()
        logger.info("Hotkey listener started")

    def stop(self) -> None:
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
        self.pressed_keys.clear()
        self.active_hotkeys.clear()

    def set_session_active(self, active: bool) -> None:
        """Arm or disarm the cancel hotkey."""
        with self._lock:
            self._session_active = active
            if not active:
                self.active_hotkeys.discard("cancel")

    @property
    def session_active(self) -> bool:
        return self._session_active

    def _should_debounce(self, name: str) -> bool:
        now = time.time() * 1000
        if now - self._last_trigger_time.get(name, 0) < DEBOUNCE_INTERVAL_MS:
            return True
        self._last_trigger_time[name] = now
        return False

    def _dispatch(self, callback: Optional[AsyncCallback]) -> None:
        loop = self._loop
        if callback is None or loop is None or loop.is_closed():
            return
        future = asyncio.run_coroutine_threadsafe(callback(), loop)
        future.add_done_callback(_log_callback_error)

    def _on_press(self, key) -> None:
        self.pressed_keys.add(normalize_key(key))

        fire = []
        with self._lock:
            candidates = [("trigger", self.trigger_keys, self._on_trigger)]
            if self._session_active:
                candidates.append(("cancel", self.cancel_keys, self._on_cancel))
            for name, keys, callback in candidates:
                # Only fire once per press; holding the key does not repeat
                if keys and name not in self.active_hotkeys and keys.issubset(self.pressed_keys):
                    self.active_hotkeys.add(name)
                    if not self._should_debounce(name):
                        fire.append(callback)

        for callback in fire:
            self._dispatch(callback)

    def _on_release(self, key) -> None:
        self.pressed_keys.discard(normalize_key(key))
        with self._lock:
            for name, keys in (("trigger", self.trigger_keys), ("cancel", self.cancel_keys)):
                if keys and not keys.issubset(self.pressed_keys):
                    self.active_hotkeys.discard(name)


def _log_callback_error(future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error(f"Hotkey callback failed: {error!r}")
