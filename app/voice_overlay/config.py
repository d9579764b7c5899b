"""Configuration management for Voice Overlay."""

import json
import logging
import os
from pathlib import Path
from dataclasses import dataclass, asdict
from typing import Optional

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "voice-overlay"
CONFIG_FILE = CONFIG_DIR / "config.json"
LOG_FILE = CONFIG_DIR / "app.log"
MODELS_DIR = CONFIG_DIR / "models"
DEBUG_SCREENSHOT_FILE = CONFIG_DIR / "debug-screenshot.png"


# Available chat models per AI provider (model_id, display_name)
OPENAI_MODELS = [
    ("gpt-4o-mini", "GPT-4o Mini (Fast)"),
    ("gpt-4o", "GPT-4o"),
    ("gpt-4.1", "GPT-4.1"),
    ("gpt-4.1-mini", "GPT-4.1 Mini"),
    ("o3-mini", "o3 Mini"),
]

# OpenRouter models (using OpenAI-compatible API)
OPENROUTER_MODELS = [
    ("anthropic/claude-haiku-4-5", "Claude Haiku 4.5 (Fast)"),
    ("anthropic/claude-sonnet-4-5", "Claude Sonnet 4.5"),
    ("google/gemini-2.5-flash", "Gemini 2.5 Flash"),
    ("openai/gpt-4o-mini", "GPT-4o Mini"),
    ("meta-llama/llama-3.3-70b-instruct", "Llama 3.3 70B"),
]

GEMINI_MODELS = [
    ("gemini-2.0-flash", "Gemini 2.0 Flash (Fast)"),
    ("gemini-2.5-flash", "Gemini 2.5 Flash"),
    ("gemini-2.5-flash-lite", "Gemini 2.5 Flash Lite (Budget)"),
    ("gemini-2.5-pro", "Gemini 2.5 Pro"),
]

ANTHROPIC_MODELS = [
    ("claude-haiku-4-5-20251001", "Claude Haiku 4.5 (Fast)"),
    ("claude-sonnet-4-5-20250929", "Claude Sonnet 4.5"),
    ("claude-opus-4-1-20250805", "Claude Opus 4.1"),
]

# Speech-to-text models
WHISPER_MODELS = [
    ("tiny.en", "Tiny (English, 75 MB)"),
    ("base.en", "Base (English, 142 MB)"),
    ("small.en", "Small (English, 466 MB)"),
    ("medium.en", "Medium (English, 1.5 GB)"),
    ("distil-large-v3", "Distil Large v3 (1.5 GB)"),
    ("large-v3", "Large v3 (3 GB)"),
]

DEEPGRAM_MODELS = [
    ("nova-3", "Nova 3"),
    ("nova-2", "Nova 2"),
]

AWS_REGIONS = [
    "us-east-1", "us-east-2", "us-west-2", "ca-central-1",
    "eu-west-1", "eu-west-2", "eu-central-1",
    "ap-southeast-1", "ap-southeast-2", "ap-northeast-1",
]


@dataclass
class Config:
    """Application configuration."""

    # API Keys
    openai_api_key: str = ""
    openrouter_api_key: str = ""
    gemini_api_key: str = ""
    anthropic_api_key: str = ""
    deepgram_api_key: str = ""
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""

    # AI provider: "openai", "openrouter", "gemini", "anthropic"
    ai_provider: str = "openai"
    ai_model: str = ""  # Empty = provider's fast model
    ai_system_prompt: str = ""  # Empty = built-in prompt
    ai_max_tokens: int = 2048

    # Transcription provider: "whisper", "deepgram", "aws"
    transcribe_provider: str = "whisper"
    transcribe_language: str = "en-US"

    # Local whisper (faster-whisper)
    whisper_model: str = "base.en"
    whisper_device: str = "auto"  # "auto", "cpu", "cuda"
    whisper_compute_type: str = "int8"
    whisper_threads: int = 4

    # Deepgram
    deepgram_model: str = "nova-3"

    # AWS Transcribe
    aws_auth_method: str = "auto"  # "auto", "profile", "accessKey"
    aws_region: str = "us-west-2"
    aws_profile: str = "default"

    # Screen context
    capture_mode: str = "window"  # "window" or "screen"
    debug_screenshot: bool = False

    # Hotkeys
    hotkey_trigger: str = "f10"
    hotkey_cancel: str = "escape"

    # Microphone (matched by name, empty = system default)
    preferred_mic_name: str = ""

    # Overlay behaviour
    sound_effects: bool = True
    beep_volume: float = 0.3
    auto_copy: bool = True
    auto_copy_max_prose_chars: int = 120
    cancel_grace_ms: int = 300
    flash_duration_ms: int = 2000


# Old key name -> current key name
LEGACY_KEY_MAP = {
    "selected_provider": "ai_provider",
    "selected_microphone": "preferred_mic_name",
    "transcription_provider": "transcribe_provider",
}


def load_config(path: Optional[Path] = None) -> Config:
    """Load configuration from disk, or create default."""
    config_file = path or CONFIG_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)

    if config_file.exists():
        try:
            with open(config_file, "r") as f:
                data = json.load(f)

            # Migration: rename keys written by older releases
            for old_key, new_key in LEGACY_KEY_MAP.items():
                if old_key in data and new_key not in data:
                    data[new_key] = data.pop(old_key)

            # Filter to only known fields to handle schema changes gracefully
            known_fields = {f.name for f in Config.__dataclass_fields__.values()}
            filtered_data = {k: v for k, v in data.items() if k in known_fields}
            return Config(**filtered_data)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Could not load config: {e}")

    # Return default config
    return Config()


def save_config(config: Config, path: Optional[Path] = None) -> None:
    """Save configuration to disk."""
    config_file = path or CONFIG_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)

    with open(config_file, "w") as f:
        json.dump(asdict(config), f, indent=2)


def load_env_keys(config: Config) -> Config:
    """Load API keys from environment variables if not already set."""
    if not config.openai_api_key:
        config.openai_api_key = os.environ.get("OPENAI_API_KEY", "")
    if not config.openrouter_api_key:
        config.openrouter_api_key = os.environ.get("OPENROUTER_API_KEY", "")
    if not config.gemini_api_key:
        config.gemini_api_key = os.environ.get("GEMINI_API_KEY", "")
    if not config.anthropic_api_key:
        config.anthropic_api_key = os.environ.get("ANTHROPIC_API_KEY", "")
    if not config.deepgram_api_key:
        config.deepgram_api_key = os.environ.get("DEEPGRAM_API_KEY", "")
    if not config.aws_access_key_id:
        config.aws_access_key_id = os.environ.get("AWS_ACCESS_KEY_ID", "")
    if not config.aws_secret_access_key:
        config.aws_secret_access_key = os.environ.get("AWS_SECRET_ACCESS_KEY", "")
    return config


def reload_config(config: Config, path: Optional[Path] = None) -> bool:
    """Re-read the config file into ``config`` in place. Returns True if anything changed."""
    fresh = load_env_keys(load_config(path))
    if fresh == config:
        return False
    for name in Config.__dataclass_fields__:
        setattr(config, name, getattr(fresh, name))
    return True


# =============================================================================
# SYSTEM PROMPT
# =============================================================================
# Sent with every conversation. The user speaks a short request while looking
# at some window; the screenshot of that window is attached to the first turn.
# Responses are rendered in a small overlay, so brevity matters more than
# completeness. The trailing BUTTONS tag feeds the follow-up action row.
# =============================================================================

DEFAULT_SYSTEM_PROMPT = """You are Voice Overlay, a voice assistant that lives in a small floating window on the user's desktop.

The user pressed a hotkey while looking at their screen and spoke a short request. You receive a screenshot of the window they were looking at, the app and window title, and a transcript of what they said. The transcript comes from speech recognition and may contain misheard words; infer the intended meaning from context.

Fit the answer to what is on screen:
- Terminal or shell: give the command in a fenced code block. Explain only if it is not obvious.
  ("find files bigger than a gig" -> find . -size +1G)
- Code editor: give the code, in the language and style already visible.
- Email, chat or messaging app with a visible thread, when asked to reply or draft a response: write the reply itself in the tone the user asked for. No subject line, no "Here's a draft" lead-in. If a key detail is unclear, ask one short question and offer the likely answers as buttons.
- Text field with no thread to reply to: the user is dictating. Clean up the transcript (filler words, punctuation, capitalization) and keep their words.
- A question about the screen ("explain this", "what does this error mean"): answer it directly from the screenshot.
- "Highlighted" or "selected" text means text with a selection background, not merely prominent text.
- When unsure, clean up the transcript as natural text.

Do not describe the screenshot back to the user and do not open with "I can see" or "Based on the screenshot". Keep it short; the overlay is small. Follow-up messages continue the same conversation.

End every response with two to four follow-up buttons in exactly this format:
[BUTTONS: "First label", "Second label"]
Labels are one to four words. Each must be something you can do in the next turn: a question, a rephrasing, more detail. Never offer actions you cannot perform, such as running commands or sending messages. For message replies, include a tone change ("More formal", "More casual")."""


def get_system_prompt(config: Config) -> str:
    """Return the configured system prompt, falling back to the built-in one."""
    custom = (config.ai_system_prompt or "").strip()
    return custom or DEFAULT_SYSTEM_PROMPT
