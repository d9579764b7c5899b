"""Post-processing of raw model output.

Models tend to open with scene-setting ("I can see a terminal..."), local
models leak end-of-sequence and reasoning tokens, and follow-up suggestions
arrive in whatever shape the model felt like. Everything here is pure text
processing so it is applied the same way regardless of provider.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

SPECIAL_TOKEN_PATTERN = re.compile(r"<\|(?:endoftext|im_end|end|eot_id)\|>", re.IGNORECASE)
THINK_BLOCK_PATTERN = re.compile(r"<think>.*?</think>\s*", re.IGNORECASE | re.DOTALL)
OPEN_THINK_PATTERN = re.compile(r"<think>.*\Z", re.IGNORECASE | re.DOTALL)

_SCENE_NOUNS = r"(?:terminal|window|screen|screenshot|editor|code|file|browser|app\w*|image|display|cursor|prompt)"

PREAMBLE_PATTERNS = [
    re.compile(r"^I can see\b[^.:\n]*\b" + _SCENE_NOUNS + r"\b[^.:\n]*[.:\n]\s*", re.IGNORECASE),
    re.compile(r"^I see\b[^.:\n]*\b" + _SCENE_NOUNS + r"\b[^.:\n]*[.:\n]\s*", re.IGNORECASE),
    re.compile(r"^Based on\b[^.:\n]*[.:\n]\s*", re.IGNORECASE),
    re.compile(r"^Looking at\b[^.:\n]*[.:\n]\s*", re.IGNORECASE),
    re.compile(r"^It appears\b[^.:\n]*[.:\n]\s*", re.IGNORECASE),
    re.compile(r"^It looks like\b[^.:\n]*[.:\n]\s*", re.IGNORECASE),
    re.compile(
        r"^Let me (?:clarify|explain|help|provide|rephrase|rewrite|interpret|process)\b[^.:\n]*[.:\n]\s*",
        re.IGNORECASE,
    ),
    re.compile(r"^The (?:user|transcript|output|screenshot|image|screen)\b[^.:\n]*[.:\n]\s*", re.IGNORECASE),
    re.compile(
        r"^Here(?:'s| is) (?:the |your |a )?"
        r"(?:command|code|output|result|text|answer|response|translation|cleaned|corrected|revised)\b"
        r"[^.:\n]*[.:\n]\s*",
        re.IGNORECASE,
    ),
    re.compile(r"^From (?:the |what )\b[^.:\n]*[.:\n]\s*", re.IGNORECASE),
]

MAX_PREAMBLE_PASSES = 3

BUTTONS_TAG_PATTERN = re.compile(r"\[BUTTONS:\s*(.+?)\]\s*\Z", re.IGNORECASE | re.DOTALL)
INCOMPLETE_BUTTONS_PATTERN = re.compile(r"\[BUTTONS:.*\Z", re.IGNORECASE | re.DOTALL)
TRAILING_LINE_LABELS = re.compile(r"(\n\s*\[[^\]\n]+\]){2,}\s*\Z")
TRAILING_INLINE_LABELS = re.compile(r"\n?\s*(\[[^\]\n]+\]\s*){2,}\s*\Z")
BRACKET_LABEL = re.compile(r"\[([^\]\n]+)\]")
LIST_MARKER = re.compile(r"^[-•*]\s*")
TERMINAL_PUNCTUATION = re.compile(r"[.!?:;]$")

MAX_BARE_LABELS = 4
MAX_LABEL_WORDS = 5

CODE_BLOCK_PATTERN = re.compile(r"```[^\n]*\n(.*?)```", re.DOTALL)
FENCED_SPAN_PATTERN = re.compile(r"```.*?```", re.DOTALL)


@dataclass
class ParsedResponse:
    content: str
    buttons: List[str] = field(default_factory=list)


def strip_special_tokens(text: str) -> str:
    """Remove end-of-sequence tokens and reasoning traces."""
    if not text:
        return text
    stripped = SPECIAL_TOKEN_PATTERN.sub("", text)
    return THINK_BLOCK_PATTERN.sub("", stripped)


def clean_chunk(text: str) -> str:
    """Clean cumulative streamed text, hiding a reasoning block that has not closed yet."""
    if not text:
        return text
    return OPEN_THINK_PATTERN.sub("", strip_special_tokens(text))


def clean_output(text: str) -> str:
    """Strip special tokens and generic preambles from a finished response."""
    if not text:
        return text

    cleaned = strip_special_tokens(text).strip()

    # Preambles can stack ("Looking at the screen. I can see a terminal: ...")
    for _ in range(MAX_PREAMBLE_PASSES):
        for pattern in PREAMBLE_PATTERNS:
            if pattern.search(cleaned):
                cleaned = pattern.sub("", cleaned, count=1).lstrip()
                break
        else:
            break

    if not cleaned.strip():
        return text.strip()
    return cleaned


def _strip_quotes(label: str) -> str:
    return re.sub(r"""^["']|["']$""", "", label.strip())


def _bare_label(line: str) -> str:
    return LIST_MARKER.sub("", line.strip())


def _count_bare_labels(lines: List[str]) -> int:
    count = 0
    for line in reversed(lines):
        if count >= MAX_BARE_LABELS:
            break
        label = _bare_label(line)
        if not label or label.startswith("```") or "[BUTTONS" in label.upper():
            break
        if len(label.split()) <= MAX_LABEL_WORDS and not TERMINAL_PUNCTUATION.search(label):
            count += 1
        else:
            break
    return count


def parse_buttons(text: str) -> ParsedResponse:
    """Split a response into visible content and follow-up button labels."""
    if not text:
        return ParsedResponse(content=text or "")

    # Explicit [BUTTONS: "A", "B"] tag
    match = BUTTONS_TAG_PATTERN.search(text)
    if match:
        labels = [_strip_quotes(part) for part in match.group(1).split(",")]
        return ParsedResponse(
            content=text[:match.start()].strip(),
            buttons=[label for label in labels if label],
        )

    # Consecutive [Label] tokens, one per line or all on one line
    trailing = TRAILING_LINE_LABELS.search(text) or TRAILING_INLINE_LABELS.search(text)
    if trailing:
        labels = [m.strip() for m in BRACKET_LABEL.findall(trailing.group(0)) if m.strip()]
        if len(labels) >= 2:
            return ParsedResponse(content=text[:trailing.start()].strip(), buttons=labels)

    # Short bare lines at the end (model forgot the brackets)
    lines = text.rstrip().split("\n")
    bare_count = min(_count_bare_labels(lines), len(lines) - 1)
    if bare_count >= 2:
        remaining = "\n".join(lines[:-bare_count]).strip()
        # An unclosed fence means the "labels" are really code
        if remaining and remaining.count("```") % 2 == 0:
            labels = [_bare_label(line) for line in lines[-bare_count:]]
            return ParsedResponse(content=remaining, buttons=[label for label in labels if label])

    # Tag cut off by the token limit
    cleaned = INCOMPLETE_BUTTONS_PATTERN.sub("", text).strip()
    if cleaned != text.strip():
        return ParsedResponse(content=cleaned)
    return ParsedResponse(content=text)


def extract_code_blocks(text: str) -> List[str]:
    """Bodies of all fenced code blocks, stripped, empty blocks dropped."""
    if not text:
        return []
    return [block.strip() for block in CODE_BLOCK_PATTERN.findall(text) if block.strip()]


def extract_pasteable(text: str) -> str:
    """What the copy action puts on the clipboard: code if there is any, else everything."""
    blocks = extract_code_blocks(text)
    if blocks:
        return "\n\n".join(blocks)
    return (text or "").strip()


def clean_code_block(text: str, max_prose_chars: int = 120) -> Optional[str]:
    """Return the code when the response is one fenced block with little prose around it."""
    blocks = extract_code_blocks(text)
    if len(blocks) != 1:
        return None
    outside = FENCED_SPAN_PATTERN.sub("", text).strip()
    if len(outside) > max_prose_chars:
        return None
    return blocks[0]
