"""Abstract AI chat provider."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..config import Config
from ..models import TokenUsage

# Provider-neutral message format built by AIService:
#   {"role": "user", "content": [{"type": "image", "media_type": ..., "data": <base64>},
#                                {"type": "text", "text": ...}]}
#   {"role": "assistant", "content": "..."}
ApiMessage = Dict[str, Any]
ChunkCallback = Callable[[str], None]

REQUEST_TIMEOUT = 60.0
CONNECT_TIMEOUT = 10.0


@dataclass
class ConverseOptions:
    system_prompt: str
    model: str
    max_tokens: int = 2048
    on_chunk: Optional[ChunkCallback] = None


class AIProvider(ABC):
    """Base class for streaming chat providers.

    ``converse`` must call ``options.on_chunk`` with the cumulative text on every
    chunk, and set ``last_usage`` when the backend reports token counts.
    """

    def __init__(self, config: Config):
        self.config = config
        self.last_usage: Optional[TokenUsage] = None

    async def initialize(self) -> None:
        """Warm up credentials or connections. Failures surface on first use."""

    @abstractmethod
    async def converse(self, messages: List[ApiMessage], options: ConverseOptions) -> str:
        """Stream a response and return the full text."""
        pass

    def invalidate_client(self) -> None:
        """Drop cached clients so the next call re-reads credentials."""

def text_of(message: ApiMessage) -> str:
    """Concatenated text parts of a neutral message."""
    content = message.get("content")
    if isinstance(content, str):
        return content
    return "".join(part.get("text", "") for part in content or [] if part.get("type") == "text")
