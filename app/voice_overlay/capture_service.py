"""Screenshot capture with mss."""

import asyncio
import logging
from typing import Optional

import mss
import mss.tools

from .config import Config, DEBUG_SCREENSHOT_FILE
from .models import Bounds, Screenshot, WindowInfo

logger = logging.getLogger(__name__)


class CaptureService:
    """Grabs the active window region or the primary monitor as PNG. Never raises."""

    def __init__(self, config: Config):
        self.config = config

    def screen_bounds(self) -> Optional[Bounds]:
        try:
            with mss.mss() as sct:
                monitor = sct.monitors[1]
        except Exception as e:
            logger.warning(f"Could not read screen bounds: {e}")
            return None
        return Bounds(monitor["left"], monitor["top"], monitor["width"], monitor["height"])

    async def capture(self, window_info: Optional[WindowInfo], mode: str = "window") -> Optional[Screenshot]:
        try:
            return await asyncio.to_thread(self._grab, window_info, mode)
        except Exception as e:
            logger.warning(f"Screenshot capture failed: {e}")
            return None

    def _grab(self, window_info: Optional[WindowInfo], mode: str) -> Optional[Screenshot]:
        with mss.mss() as sct:
            bounds = window_info.bounds if window_info is not None else None
            if mode == "window" and bounds is not None:
                region = {"left": bounds.x, "top": bounds.y, "width": bounds.width, "height": bounds.height}
                label = "window"
            else:
                region = sct.monitors[1]
                label = "screen"
            shot = sct.grab(region)
            png = mss.tools.to_png(shot.rgb, shot.size)

        if not png:
            return None
        logger.info(f"Screenshot captured: {len(png) // 1024}KB (PNG, {label})")

        if self.config.debug_screenshot:
            try:
                DEBUG_SCREENSHOT_FILE.parent.mkdir(parents=True, exist_ok=True)
                DEBUG_SCREENSHOT_FILE.write_bytes(png)
            except OSError as e:
                logger.warning(f"Could not write debug screenshot: {e}")
        return Screenshot(image_bytes=png, media_type="image/png")
