"""Amazon Transcribe streaming over a SigV4-presigned websocket."""

import configparser
import hashlib
import hmac
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from ..errors import ErrorKind, ProviderError, TranscriptionError
from .base import SAMPLE_RATE, StreamingTranscriptionProvider, open_websocket
from .event_stream import EventStreamError, EventStreamException, decode_transcript_event, encode_audio_event

logger = logging.getLogger(__name__)

SERVICE = "transcribe"
PRESIGN_EXPIRES = 300
WEBSOCKET_PATH = "/stream-transcription-websocket"
EXPIRED_PATTERN = re.compile(r"signature.*does not match|signing method|expired", re.IGNORECASE)


@dataclass(frozen=True)
class AwsCredentials:
    access_key_id: str
    secret_access_key: str
    session_token: Optional[str] = None


def _aws_dir() -> Path:
    return Path.home() / ".aws"


def _credentials_file() -> Path:
    return Path(os.environ.get("AWS_SHARED_CREDENTIALS_FILE", _aws_dir() / "credentials"))


def _config_file() -> Path:
    return Path(os.environ.get("AWS_CONFIG_FILE", _aws_dir() / "config"))


def list_aws_profiles() -> List[str]:
    """Profile names from ~/.aws/credentials and ~/.aws/config, 'default' first."""
    profiles = ["default"]
    for path in (_credentials_file(), _config_file()):
        if not path.exists():
            continue
        parser = configparser.ConfigParser()
        try:
            parser.read(path)
        except configparser.Error as e:
            logger.warning(f"Could not parse {path}: {e}")
            continue
        for section in parser.sections():
            name = section[len("profile "):] if section.startswith("profile ") else section
            name = name.strip()
            if name and name not in profiles:
                profiles.append(name)
    return profiles


def read_profile_credentials(profile: str) -> Optional[AwsCredentials]:
    path = _credentials_file()
    if not path.exists():
        return None
    parser = configparser.ConfigParser()
    parser.read(path)
    if not parser.has_section(profile):
        return None
    section = parser[profile]
    access_key = section.get("aws_access_key_id")
    secret_key = section.get("aws_secret_access_key")
    if not access_key or not secret_key:
        return None
    return AwsCredentials(access_key, secret_key, section.get("aws_session_token"))


def _sign(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def _signing_key(secret_key: str, date_stamp: str, region: str) -> bytes:
    k_date = _sign(f"AWS4{secret_key}".encode("utf-8"), date_stamp)
    k_region = _sign(k_date, region)
    k_service = _sign(k_region, SERVICE)
    return _sign(k_service, "aws4_request")


def _uri_encode(value: str) -> str:
    return quote(value, safe="-_.~")


def create_presigned_url(
    region: str,
    language_code: str,
    credentials: AwsCredentials,
    sample_rate: int = SAMPLE_RATE,
    now: Optional[datetime] = None,
) -> str:
    """Build the SigV4 query-signed websocket URL for a streaming session."""
    now = now or datetime.now(timezone.utc)
    host = f"transcribestreaming.{region}.amazonaws.com"
    amz_date = now.strftime("%Y%m%dT%H%M%SZ")
    date_stamp = amz_date[:8]
    credential_scope = f"{date_stamp}/{region}/{SERVICE}/aws4_request"

    params = {
        "X-Amz-Algorithm": "AWS4-HMAC-SHA256",
        "X-Amz-Credential": f"{credentials.access_key_id}/{credential_scope}",
        "X-Amz-Date": amz_date,
        "X-Amz-Expires": str(PRESIGN_EXPIRES),
        "X-Amz-SignedHeaders": "host",
        "language-code": language_code,
        "media-encoding": "pcm",
        "sample-rate": str(sample_rate),
        "enable-partial-results-stabilization": "true",
        "partial-results-stability": "medium",
    }
    if credentials.session_token:
        params["X-Amz-Security-Token"] = credentials.session_token

    canonical_query = "&".join(
        f"{_uri_encode(key)}={_uri_encode(params[key])}" for key in sorted(params)
    )
    canonical_request = "\n".join([
        "GET",
        WEBSOCKET_PATH,
        canonical_query,
        f"host:{host}:8443\n",
        "host",
        hashlib.sha256(b"").hexdigest(),
    ])
    string_to_sign = "\n".join([
        "AWS4-HMAC-SHA256",
        amz_date,
        credential_scope,
        hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
    ])
    signature = hmac.new(
        _signing_key(credentials.secret_access_key, date_stamp, region),
        string_to_sign.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()

    return f"wss://{host}:8443{WEBSOCKET_PATH}?{canonical_query}&X-Amz-Signature={signature}"


class AwsTranscribeProvider(StreamingTranscriptionProvider):
    label = "AWS Transcribe"

    def __init__(self, config):
        super().__init__(config)
        self.credentials: Optional[AwsCredentials] = None

    async def warmup(self) -> None:
        await self.load_credentials()

    async def load_credentials(self) -> None:
        """Resolve credentials from config keys, environment, or a shared-credentials profile."""
        method = self.config.aws_auth_method or "auto"

        if method in ("accessKey", "auto"):
            if self.config.aws_access_key_id and self.config.aws_secret_access_key:
                self.credentials = AwsCredentials(self.config.aws_access_key_id, self.config.aws_secret_access_key)
                logger.info("Using access key credentials")
                return
            if method == "accessKey":
                raise TranscriptionError(
                    "AWS access key credentials not configured", ErrorKind.NOT_CONFIGURED
                )

        if method == "auto" and os.environ.get("AWS_ACCESS_KEY_ID") and os.environ.get("AWS_SECRET_ACCESS_KEY"):
            self.credentials = AwsCredentials(
                os.environ["AWS_ACCESS_KEY_ID"],
                os.environ["AWS_SECRET_ACCESS_KEY"],
                os.environ.get("AWS_SESSION_TOKEN"),
            )
            logger.info("Using AWS credentials from environment")
            return

        profile = self.config.aws_profile or os.environ.get("AWS_PROFILE", "default")
        try:
            credentials = read_profile_credentials(profile)
        except configparser.Error as e:
            raise TranscriptionError(f"Could not read AWS credentials file: {e}", ErrorKind.NOT_CONFIGURED) from e
        if credentials is None:
            raise TranscriptionError(
                f'AWS credentials not configured for profile "{profile}"', ErrorKind.NOT_CONFIGURED
            )
        self.credentials = credentials
        logger.info(f"AWS credentials loaded via profile: {profile}")

    async def _connect(self):
        await self.load_credentials()
        url = create_presigned_url(
            self.config.aws_region or "us-west-2",
            self.config.transcribe_language or "en-US",
            self.credentials,
        )
        return await open_websocket(url)

    def _connect_error(self, error: Exception) -> ProviderError:
        wrapped = super()._connect_error(error)
        if wrapped.status == 403:
            return TranscriptionError(
                "AWS credentials expired or invalid. Refresh your credentials and try again.",
                ErrorKind.CREDENTIALS_EXPIRED,
                status=403,
            )
        return wrapped

    def _encode_audio(self, pcm: bytes) -> bytes:
        return encode_audio_event(pcm)

    def _end_of_stream(self) -> bytes:
        return encode_audio_event(b"")

    def _handle_message(self, message) -> None:
        if isinstance(message, str):
            message = message.encode("utf-8")
        try:
            response = decode_transcript_event(message)
        except EventStreamException as e:
            kind = ErrorKind.CREDENTIALS_EXPIRED if EXPIRED_PATTERN.search(str(e)) else ErrorKind.UNKNOWN
            raise TranscriptionError(str(e), kind) from e
        except EventStreamError as e:
            logger.debug(f"AWS Transcribe: skipping malformed frame: {e}")
            return
        if not response:
            return

        results = (response.get("Transcript") or {}).get("Results") or []
        for result in results:
            alternatives = result.get("Alternatives") or []
            if not alternatives:
                continue
            transcript = alternatives[0].get("Transcript") or ""
            if not transcript.strip():
                continue
            if result.get("IsPartial"):
                self._emit_partial(transcript)
            else:
                self._emit_final(transcript)
