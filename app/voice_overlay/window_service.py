"""Active window detection.

X11 uses xdotool, macOS uses osascript. Wayland compositors do not expose
the focused window to clients, so detection there returns None and the
session falls back to full-screen capture.
"""

import asyncio
import logging
import subprocess
import sys
from pathlib import Path
from typing import Dict, Optional

from .models import Bounds, WindowInfo

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 2

MAC_FRONT_WINDOW_SCRIPT = """
tell application "System Events"
    set frontProc to first application process whose frontmost is true
    set appName to name of frontProc
    set winTitle to ""
    set winPos to {0, 0}
    set winSize to {0, 0}
    try
        set frontWin to front window of frontProc
        set winTitle to name of frontWin
        set winPos to position of frontWin
        set winSize to size of frontWin
    end try
end tell
return appName & "|" & winTitle & "|" & (item 1 of winPos) & "," & (item 2 of winPos) & "," & (item 1 of winSize) & "," & (item 2 of winSize)
"""


def _run(args) -> str:
    result = subprocess.run(args, capture_output=True, text=True, timeout=COMMAND_TIMEOUT, check=True)
    return result.stdout.strip()


def parse_xdotool_geometry(output: str) -> Optional[Bounds]:
    """Parse ``xdotool getwindowgeometry --shell`` output (X=, Y=, WIDTH=, HEIGHT= lines)."""
    values: Dict[str, int] = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep and value.strip().lstrip("-").isdigit():
            values[key.strip()] = int(value)
    try:
        bounds = Bounds(values["X"], values["Y"], values["WIDTH"], values["HEIGHT"])
    except KeyError:
        return None
    return bounds if bounds.width > 0 and bounds.height > 0 else None


def parse_osascript_window(output: str) -> Optional[WindowInfo]:
    parts = output.split("|", 2)
    if len(parts) != 3 or not parts[0]:
        return None
    owner, title, geometry = parts
    bounds = None
    try:
        x, y, width, height = (int(float(v)) for v in geometry.split(","))
        if width > 0 and height > 0:
            bounds = Bounds(x, y, width, height)
    except ValueError:
        pass
    return WindowInfo(title=title, owner=owner, bounds=bounds)


class WindowService:
    """Finds the focused window. Never raises; returns None when unknown."""

    def __init__(self, platform: Optional[str] = None):
        self.platform = platform or sys.platform

    async def get_active_window(self) -> Optional[WindowInfo]:
        try:
            return await asyncio.to_thread(self._detect)
        except Exception as e:
            logger.warning(f"Failed to get active window: {e}")
            return None

    def _detect(self) -> Optional[WindowInfo]:
        if self.platform == "darwin":
            return parse_osascript_window(_run(["osascript", "-e", MAC_FRONT_WINDOW_SCRIPT]))
        if self.platform.startswith("linux"):
            return self._detect_x11()
        return None

    def _detect_x11(self) -> Optional[WindowInfo]:
        try:
            window_id = _run(["xdotool", "getactivewindow"])
        except FileNotFoundError:
            logger.debug("xdotool not installed, window detection unavailable")
            return None
        if not window_id:
            return None

        title = _run(["xdotool", "getwindowname", window_id])
        owner = ""
        try:
            pid = _run(["xdotool", "getwindowpid", window_id])
            owner = Path(f"/proc/{pid}/comm").read_text().strip()
        except (subprocess.CalledProcessError, OSError):
            pass
        bounds = parse_xdotool_geometry(_run(["xdotool", "getwindowgeometry", "--shell", window_id]))
        return WindowInfo(title=title, owner=owner, bounds=bounds)
