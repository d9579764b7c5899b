"""Contracts between the session orchestrator and whatever renders it."""

from enum import Enum
from typing import Any, Iterable, List, Optional, Protocol

from .models import Bounds


class UIEvent(str, Enum):
    SESSION_SHOWN = "session-shown"
    SESSION_HIDDEN = "session-hidden"
    OVERLAY_REVEALED = "overlay-revealed"
    SCREENSHOT_AVAILABLE = "screenshot-available"
    TRANSCRIPT_UPDATED = "transcript-updated"
    NEW_ROUND_STARTED = "new-round-started"
    FINALIZING_STARTED = "finalizing-started"
    STREAMING_CHUNK = "streaming-chunk"
    ROUND_COMPLETE = "round-complete"
    BUTTON_THINKING_STARTED = "button-thinking-started"
    ERROR_OCCURRED = "error-occurred"
    AUTO_COPIED = "auto-copied"
    CANCELLED = "cancelled"
    SETTINGS_REQUESTED = "settings-requested"


class OverlayListener(Protocol):
    def handle(self, event: UIEvent, payload: Any = None) -> None: ...


class CompositeListener:
    """Fans one event out to several listeners."""

    def __init__(self, listeners: Optional[Iterable[OverlayListener]] = None):
        self.listeners: List[OverlayListener] = list(listeners or [])

    def add(self, listener: OverlayListener) -> None:
        self.listeners.append(listener)

    def handle(self, event: UIEvent, payload: Any = None) -> None:
        for listener in self.listeners:
            listener.handle(event, payload)


class Highlight(Protocol):
    """A fire-and-forget on-screen affordance (capture border, screenshot thumbnail)."""

    def show(self, bounds: Optional[Bounds]) -> None: ...

    def hide(self) -> None: ...

    def flash(self) -> None: ...


class NullHighlight:
    def show(self, bounds: Optional[Bounds]) -> None:
        pass

    def hide(self) -> None:
        pass

    def flash(self) -> None:
        pass
