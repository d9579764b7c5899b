"""Voice Overlay - hotkey-driven voice assistant with screen context."""

__version__ = "0.1.0"
