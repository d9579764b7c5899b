"""Transcription provider registry (id -> descriptor + factory)."""

from dataclasses import dataclass
from typing import Callable, Dict

from ..config import Config, AWS_REGIONS, DEEPGRAM_MODELS, WHISPER_MODELS
from ..models import ConfigField, ProviderDescriptor
from .base import TranscriptionListener, TranscriptionProvider


@dataclass(frozen=True)
class ProviderEntry:
    descriptor: ProviderDescriptor
    factory: Callable[[Config], TranscriptionProvider]


def _whisper(config: Config) -> TranscriptionProvider:
    from .whisper_local import WhisperLocalProvider
    return WhisperLocalProvider(config)


def _deepgram(config: Config) -> TranscriptionProvider:
    from .deepgram import DeepgramProvider
    return DeepgramProvider(config)


def _aws(config: Config) -> TranscriptionProvider:
    from .aws_transcribe import AwsTranscribeProvider
    return AwsTranscribeProvider(config)


TRANSCRIPTION_PROVIDERS: Dict[str, ProviderEntry] = {
    "whisper": ProviderEntry(
        ProviderDescriptor(
            id="whisper",
            label="Local Whisper",
            models=tuple(WHISPER_MODELS),
            default_model="base.en",
            config_fields=(
                ConfigField("whisper_model", "Model", "select", tuple(m for m, _ in WHISPER_MODELS)),
                ConfigField("whisper_device", "Device", "select", ("auto", "cpu", "cuda")),
                ConfigField("whisper_threads", "CPU threads", "int"),
            ),
        ),
        _whisper,
    ),
    "deepgram": ProviderEntry(
        ProviderDescriptor(
            id="deepgram",
            label="Deepgram",
            models=tuple(DEEPGRAM_MODELS),
            default_model="nova-3",
            config_fields=(
                ConfigField("deepgram_api_key", "API Key", "secret"),
                ConfigField("deepgram_model", "Model", "select", tuple(m for m, _ in DEEPGRAM_MODELS)),
            ),
        ),
        _deepgram,
    ),
    "aws": ProviderEntry(
        ProviderDescriptor(
            id="aws",
            label="AWS Transcribe",
            models=(),
            default_model="",
            config_fields=(
                ConfigField("aws_auth_method", "Authentication", "select", ("auto", "profile", "accessKey")),
                ConfigField("aws_region", "Region", "select", tuple(AWS_REGIONS)),
                ConfigField("aws_profile", "Profile", "text", placeholder="default"),
                ConfigField("aws_access_key_id", "Access Key ID", "secret"),
                ConfigField("aws_secret_access_key", "Secret Access Key", "secret"),
            ),
        ),
        _aws,
    ),
}

__all__ = ["TRANSCRIPTION_PROVIDERS", "TranscriptionListener", "TranscriptionProvider", "ProviderEntry"]
