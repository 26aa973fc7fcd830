"""Best-effort recovery of JSON objects from free-form model output.

Each strategy takes the raw text and returns a parsed object or ``None``;
``extract_json`` tries them in order and returns the first hit.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Sequence
from typing import Any

JsonStrategy = Callable[[str], dict[str, Any] | None]

FENCED_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
OUTPUT_KEY_PATTERN = re.compile(r"\{\s*\"output\"\s*:\s*(?=\{)")


def _loads_object(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw.strip())
    except (json.JSONDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def balanced_object_end(text: str, start: int) -> int:
    """Return the index of the brace closing the object opened at ``start``, or -1.

    String literals are skipped so braces inside quoted values do not count.
    """
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return -1


def from_fenced_block(text: str) -> dict[str, Any] | None:
    blocks = FENCED_BLOCK_PATTERN.findall(text)
    if not blocks:
        return None
    return _loads_object(blocks[-1])


def from_balanced_braces(text: str) -> dict[str, Any] | None:
    start = text.find("{")
    if start < 0:
        return None
    end = balanced_object_end(text, start)
    if end <= start:
        return None
    return _loads_object(text[start : end + 1])


def from_raw_text(text: str) -> dict[str, Any] | None:
    return _loads_object(text)


DEFAULT_STRATEGIES: tuple[JsonStrategy, ...] = (
    from_fenced_block,
    from_balanced_braces,
    from_raw_text,
)


def extract_json(
    text: str,
    strategies: Sequence[JsonStrategy] = DEFAULT_STRATEGIES,
) -> dict[str, Any] | None:
    for strategy in strategies:
        parsed = strategy(text)
        if parsed is not None:
            return parsed
    return None


def find_output_block(text: str) -> dict[str, Any] | None:
    """Locate a ``{"output": {...}}`` envelope and return the inner object.

    Later envelopes win: agents are asked to end their answer with one.
    """
    for match in reversed(list(OUTPUT_KEY_PATTERN.finditer(text))):
        inner_start = match.end()
        inner_end = balanced_object_end(text, inner_start)
        if inner_end < 0:
            continue
        parsed = _loads_object(text[inner_start : inner_end + 1])
        if parsed is not None:
            return parsed
    return None


def extract_agent_output(text: str) -> dict[str, Any]:
    """Return the agent's output payload; never discards the model text."""
    found = find_output_block(text)
    if found is not None:
        return found
    extracted = extract_json(text)
    if extracted is not None and isinstance(extracted.get("output"), dict):
        return extracted["output"]
    return {"raw": text}
