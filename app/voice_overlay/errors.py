"""Typed provider errors and the helpers that turn them into user-facing text."""

import re
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """What went wrong at a provider boundary."""
    NOT_CONFIGURED = "not_configured"
    AUTH_FAILED = "auth_failed"
    CREDENTIALS_EXPIRED = "credentials_expired"
    RATE_LIMITED = "rate_limited"
    CONNECTION = "connection"
    MODEL_UNAVAILABLE = "model_unavailable"
    INFERENCE = "inference"
    UNKNOWN = "unknown"


# Kinds the user can fix from the settings screen
CREDENTIAL_KINDS = frozenset({
    ErrorKind.NOT_CONFIGURED,
    ErrorKind.AUTH_FAILED,
    ErrorKind.CREDENTIALS_EXPIRED,
})

# Fallbacks for exceptions raised outside our providers (SDK internals, OS errors)
_EXPIRED_PATTERN = re.compile(r"signature.*does not match|signing method", re.IGNORECASE)
_CREDENTIAL_PATTERN = re.compile(r"not configured|api key|credentials|invalid", re.IGNORECASE)

MAX_ERROR_LENGTH = 200
CREDENTIALS_EXPIRED_MESSAGE = "AWS credentials expired. Refresh your credentials and try again."


class ProviderError(Exception):
    """Raised (or emitted) by AI and transcription providers."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN, status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status = status


class TranscriptionError(ProviderError):
    """Runtime failure of the live transcription stream."""


def kind_for_status(status: Optional[int]) -> ErrorKind:
    """Map an HTTP status code to an error kind."""
    if status in (401, 403):
        return ErrorKind.AUTH_FAILED
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status == 404:
        return ErrorKind.MODEL_UNAVAILABLE
    return ErrorKind.UNKNOWN


def classify_error(error: BaseException) -> ErrorKind:
    """Return the error's kind, inferring one from the message for foreign exceptions."""
    if isinstance(error, ProviderError) and error.kind is not ErrorKind.UNKNOWN:
        return error.kind
    message = str(error)
    if _EXPIRED_PATTERN.search(message):
        return ErrorKind.CREDENTIALS_EXPIRED
    if _CREDENTIAL_PATTERN.search(message):
        return ErrorKind.AUTH_FAILED
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorKind.CONNECTION
    return ErrorKind.UNKNOWN


def is_credential_error(error: BaseException) -> bool:
    return classify_error(error) in CREDENTIAL_KINDS


def friendly_error(error: BaseException) -> str:
    """First line of the error message, truncated for the overlay."""
    if classify_error(error) is ErrorKind.CREDENTIALS_EXPIRED:
        return CREDENTIALS_EXPIRED_MESSAGE
    message = str(error).strip() or error.__class__.__name__
    first_line = message.split("\n", 1)[0]
    if len(first_line) > MAX_ERROR_LENGTH:
        first_line = first_line[:MAX_ERROR_LENGTH] + "..."
    return first_line
