"""
Parsing helpers for model output.

Local models wrap JSON in commentary, code fences and reasoning blocks, so
JSON is never assumed to be well-formed: callers scan for balanced
``{...}`` / ``[...]`` spans and decode the first one with the expected shape.
"""

import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional

from nexusrag.models import ToolInvocation

logger = logging.getLogger(__name__)

THINK_BLOCK_PATTERN = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
THINK_CLOSE_TAG = "</think>"

SENTENCE_SPLIT_PATTERN = re.compile(r"[.!?]+")


def strip_thinking_tokens(text: str) -> str:
    """
    Remove reasoning blocks emitted by reasoning models (DeepSeek R1 etc.).

    Handles complete ``<think>...</think>`` blocks and the common case where
    the opening tag is missing and only ``</think>`` marks the end.
    """
    if not text:
        return ""
    cleaned = THINK_BLOCK_PATTERN.sub("", text)
    lowered = cleaned.lower()
    if THINK_CLOSE_TAG in lowered:
        cut = lowered.rfind(THINK_CLOSE_TAG) + len(THINK_CLOSE_TAG)
        cleaned = cleaned[cut:]
    return cleaned.strip()


def iter_balanced_spans(text: str, open_char: str, close_char: str) -> Iterator[str]:
    """
    Yield balanced ``open_char ... close_char`` spans in order of their start.

    Brackets inside JSON string literals (including escaped quotes) are
    ignored. Spans nested inside an earlier span are yielded after it, so a
    caller that rejects an outer span still gets to try the inner ones.
    """
    if not text:
        return
    start = text.find(open_char)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = None
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == open_char:
                depth += 1
            elif ch == close_char:
                depth -= 1
                if depth == 0:
                    end = i
                    break
        if end is not None:
            yield text[start : end + 1]
        start = text.find(open_char, start + 1)


def _decode(span: str) -> Any:
    try:
        return json.loads(span)
    except (json.JSONDecodeError, ValueError):
        return None


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the first balanced ``{...}`` span that decodes to a JSON object."""
    for span in iter_balanced_spans(strip_thinking_tokens(text), "{", "}"):
        value = _decode(span)
        if isinstance(value, dict):
            return value
    return None


def extract_json_array(text: str) -> List[str]:
    """
    Return the strings of the first balanced ``[...]`` span that decodes to a list.

    Non-string and blank items are dropped. Returns an empty list when no
    array can be decoded (soft failure).
    """
    cleaned = strip_thinking_tokens(text)
    for span in iter_balanced_spans(cleaned, "[", "]"):
        value = _decode(span)
        if isinstance(value, list):
            items = [item.strip() for item in value if isinstance(item, str)]
            return [item for item in items if item]
    logger.debug(f"No JSON array found in model output: {cleaned[:200]!r}")
    return []


def parse_tool_call(text: str) -> Optional[ToolInvocation]:
    """
    Parse a model response as a tool invocation.

    Accepts the first JSON object carrying a string ``tool`` and a mapping
    ``parameters``; anything else (including plain prose) returns None and
    is treated as a final answer.
    """
    cleaned = strip_thinking_tokens(text)
    for span in iter_balanced_spans(cleaned, "{", "}"):
        value = _decode(span)
        if not isinstance(value, dict):
            continue
        tool = value.get("tool")
        parameters = value.get("parameters")
        if isinstance(tool, str) and tool.strip() and isinstance(parameters, dict):
            return ToolInvocation(tool=tool.strip(), parameters=parameters)
    return None


def compress_context(content: str, query: str, max_sentences: int = 3) -> str:
    """
    Keep only the sentences sharing the most keywords with the query.

    Words of two characters or fewer are ignored. Content with at most
    ``max_sentences`` sentences is returned unchanged.
    """
    query_words = {w for w in query.lower().split() if len(w) > 2}
    sentences = [s.strip() for s in SENTENCE_SPLIT_PATTERN.split(content)]
    sentences = [s for s in sentences if s]

    if len(sentences) <= max_sentences:
        return content

    scored = []
    for sentence in sentences:
        words = sentence.lower().split()
        overlap = sum(1 for w in words if w in query_words)
        scored.append((overlap, sentence))

    # stable sort keeps document order among equal overlaps
    scored.sort(key=lambda item: item[0], reverse=True)
    return ". ".join(sentence for _, sentence in scored[:max_sentences]) + "."


def extract_string_list(text: str) -> List[str]:
    """
    Return a list of strings from model output.

    JSON mode makes some backends wrap the array in an object
    (``{"queries": [...]}``); the first list-valued field is used then.
    """
    items = extract_json_array(text)
    if items:
        return items
    obj = extract_json_object(text)
    if obj:
        for value in obj.values():
            if isinstance(value, list):
                items = [item.strip() for item in value if isinstance(item, str)]
                return [item for item in items if item]
    return []
