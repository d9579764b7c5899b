"""System clipboard via command-line tools (wl-copy, xclip, pbcopy)."""

import logging
import subprocess

logger = logging.getLogger(__name__)

CLIPBOARD_COMMANDS = [
    ["wl-copy"],
    ["xclip", "-selection", "clipboard"],
    ["pbcopy"],
]


class SystemClipboard:
    def __init__(self, commands=None):
        self.commands = commands or CLIPBOARD_COMMANDS

    def copy(self, text: str) -> bool:
        """Copy text using the first tool that is installed. Returns True on success."""
        if not text:
            return False
        for command in self.commands:
            try:
                process = subprocess.Popen(
                    command,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
                process.communicate(input=text.encode("utf-8"), timeout=2)
            except FileNotFoundError:
                continue
            except subprocess.TimeoutExpired:
                # wl-copy and xclip fork to serve the selection; a stuck one is still a failure
                process.kill()
                logger.warning(f"{command[0]} timed out")
                continue
            if process.returncode == 0:
                return True
            logger.warning(f"{command[0]} exited with {process.returncode}")
        logger.warning("No clipboard tool available (wl-copy, xclip or pbcopy)")
        return False
