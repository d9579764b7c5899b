"""Tests for error classification and overlay-facing messages."""

from voice_overlay.errors import (
    CREDENTIALS_EXPIRED_MESSAGE,
    ErrorKind,
    ProviderError,
    classify_error,
    friendly_error,
    is_credential_error,
    kind_for_status,
)


def test_status_codes():
    assert kind_for_status(401) is ErrorKind.AUTH_FAILED
    assert kind_for_status(403) is ErrorKind.AUTH_FAILED
    assert kind_for_status(429) is ErrorKind.RATE_LIMITED
    assert kind_for_status(404) is ErrorKind.MODEL_UNAVAILABLE
    assert kind_for_status(500) is ErrorKind.UNKNOWN
    assert kind_for_status(None) is ErrorKind.UNKNOWN


def test_typed_errors_keep_their_kind():
    assert classify_error(ProviderError("x", ErrorKind.RATE_LIMITED)) is ErrorKind.RATE_LIMITED


def test_foreign_errors_are_classified_by_message():
    assert classify_error(RuntimeError("The request signature we calculated does not match")) is ErrorKind.CREDENTIALS_EXPIRED
    assert classify_error(RuntimeError("Invalid API key provided")) is ErrorKind.AUTH_FAILED
    assert classify_error(ConnectionResetError("reset by peer")) is ErrorKind.CONNECTION
    assert classify_error(ValueError("bad shape")) is ErrorKind.UNKNOWN


def test_credential_errors():
    assert is_credential_error(ProviderError("OpenAI API key not configured", ErrorKind.NOT_CONFIGURED))
    assert is_credential_error(ProviderError("expired", ErrorKind.CREDENTIALS_EXPIRED))
    assert not is_credential_error(ProviderError("slow down", ErrorKind.RATE_LIMITED))


def test_friendly_message():
    assert friendly_error(RuntimeError("first line\nstack trace")) == "first line"
    assert friendly_error(ValueError()) == "ValueError"
    assert friendly_error(RuntimeError("x" * 300)) == "x" * 200 + "..."
    assert friendly_error(ProviderError("sig", ErrorKind.CREDENTIALS_EXPIRED)) == CREDENTIALS_EXPIRED_MESSAGE
