"""Session data model: rounds, segments, messages and the saved history record."""

import base64
import math
import time
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Bounds:
    x: int
    y: int
    width: int
    height: int


@dataclass
class WindowInfo:
    """The window the user was looking at when the session started."""
    title: str = ""
    owner: str = ""  # Application name
    bounds: Optional[Bounds] = None


@dataclass(frozen=True)
class Screenshot:
    image_bytes: bytes
    media_type: str = "image/png"

    @property
    def base64(self) -> str:
        return base64.b64encode(self.image_bytes).decode("ascii")


@dataclass
class Segment:
    """One finalized piece of speech-to-text output."""
    id: int
    text: str
    timestamp: float


@dataclass
class Round:
    """One utterance-to-response exchange within a session."""
    number: int = 0
    segments: List[Segment] = field(default_factory=list)
    partial: str = ""
    _next_segment_id: int = 0

    def add_final(self, text: str) -> Segment:
        self._next_segment_id += 1
        segment = Segment(id=self._next_segment_id, text=text.strip(), timestamp=time.time())
        self.segments.append(segment)
        self.partial = ""
        return segment

    def set_partial(self, text: str) -> None:
        self.partial = text

    def display_text(self) -> str:
        """Settled segments followed by the in-progress partial, for live display."""
        parts = [s.text for s in self.segments if s.text]
        if self.partial.strip():
            parts.append(self.partial.strip())
        return " ".join(parts)

    def transcript(self) -> str:
        """Joined segments, or the last partial if nothing finalized."""
        joined = " ".join(s.text for s in self.segments if s.text).strip()
        return joined or self.partial.strip()


@dataclass
class Message:
    role: str  # "user" or "assistant"
    content: str
    buttons: List[str] = field(default_factory=list)
    is_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.buttons:
            d["buttons"] = list(self.buttons)
        if self.is_error:
            d["is_error"] = True
        return d


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, other: Optional["TokenUsage"]) -> None:
        if other is None:
            return
        self.input_tokens += max(0, other.input_tokens)
        self.output_tokens += max(0, other.output_tokens)

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class Session:
    """Everything gathered between the first trigger and close."""
    started_at: float = field(default_factory=time.time)
    messages: List[Message] = field(default_factory=list)
    screenshot: Optional[Screenshot] = None
    window_info: Optional[WindowInfo] = None
    token_usage: TokenUsage = field(default_factory=TokenUsage)

    def last_assistant(self) -> Optional[Message]:
        for message in reversed(self.messages):
            if message.role == "assistant":
                return message
        return None

    def to_record(self) -> "SessionRecord":
        user_turns = [m.content for m in self.messages if m.role == "user"]
        last = self.last_assistant()
        usage = None
        if self.token_usage.total:
            usage = asdict(self.token_usage)
        return SessionRecord(
            id=uuid.uuid4().hex,
            timestamp=datetime.fromtimestamp(self.started_at).isoformat(),
            transcript=" → ".join(user_turns),
            ai_text=last.content if last else "",
            window_title=self.window_info.title if self.window_info else "",
            duration_ms=int((time.time() - self.started_at) * 1000),
            rounds=math.ceil(len(self.messages) / 2),
            messages=[m.to_dict() for m in self.messages],
            token_usage=usage,
        )


@dataclass
class SessionRecord:
    """A closed session as written to history."""
    id: str
    timestamp: str
    transcript: str
    ai_text: str
    window_title: str
    duration_ms: int
    rounds: int
    messages: List[Dict[str, Any]]
    screenshot_path: Optional[str] = None
    token_usage: Optional[Dict[str, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for storage."""
        return asdict(self)

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "SessionRecord":
        """Create from a stored document."""
        doc_copy = {k: v for k, v in doc.items() if k != "_id"}
        known = {f.name for f in cls.__dataclass_fields__.values()}
        doc_copy = {k: v for k, v in doc_copy.items() if k in known}
        doc_copy.setdefault("messages", [])
        doc_copy.setdefault("rounds", 0)
        return cls(**doc_copy)


@dataclass(frozen=True)
class ConfigField:
    """One setting a provider needs, used to render the settings form."""
    key: str
    label: str
    type: str = "text"  # "text", "secret", "select", "bool", "int"
    options: Tuple[str, ...] = ()
    placeholder: str = ""


@dataclass(frozen=True)
class ProviderDescriptor:
    id: str
    label: str
    models: Tuple[Tuple[str, str], ...]
    default_model: str
    config_fields: Tuple[ConfigField, ...] = ()
