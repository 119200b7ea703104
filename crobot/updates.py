"""Helpers for reading ACP session updates and prompt responses.

All functions take JSON values that are already decoded: dicts, lists,
strings, numbers or ``None`` for an absent or null field.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

MAX_TOOL_OUTPUT_LINES = 5
"""Most lines of tool output kept by ``cap_lines`` when logging tool results."""

DIM_START = "\033[2m"
DIM_END = "\033[0m"

_OBJECT_TRUNCATE = 60
_SCALAR_TRUNCATE = 80


class _Mismatch(Exception):
    """A JSON value did not have the shape a field requires."""


@dataclass(frozen=True)
class ContentBlock:
    """One ACP content block."""

    type: str = ""
    text: str = ""


def _str_field(obj: dict[str, Any], key: str) -> str:
    value = obj.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _Mismatch(key)
    return value


def _object(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _Mismatch("expected an object")
    return value


def _block(item: Any) -> ContentBlock:
    obj = _object(item)
    return ContentBlock(type=_str_field(obj, "type"), text=_str_field(obj, "text"))


def parse_content(raw: Any) -> list[ContentBlock]:
    """Read content given either as one block object or as a list of blocks."""
    try:
        if isinstance(raw, list):
            return [_block(item) for item in raw]
        if isinstance(raw, dict):
            return [_block(raw)]
    except _Mismatch:
        return []
    return []


def _text_of(blocks: list[ContentBlock]) -> str:
    return "".join(block.text for block in blocks if block.type == "text")


def extract_response_text(content: Any = None, messages: Any = None, text: str = "") -> str:
    """Find assistant text embedded directly in a prompt response.

    A non-empty ``text`` wins, then the text blocks of ``content``, then the
    text of each entry in ``messages``.
    """
    if text:
        return text

    joined = _text_of(parse_content(content))
    if joined:
        return joined

    if isinstance(messages, list):
        try:
            parts = []
            for entry in messages:
                message = _object(entry)
                _str_field(message, "role")
                message_text = _str_field(message, "text")
                if message_text:
                    parts.append(message_text)
                    continue
                parts.append(_text_of(parse_content(message.get("content"))))
        except _Mismatch:
            return ""
        return "".join(parts)

    return ""


def extract_tool_name(raw_update: Any) -> str:
    """Return the tool name of a tool update, or "" when none is given.

    The ``_meta.claudeCode.toolName`` field wins, then ``name``, ``tool``
    and finally the human-readable ``title``.
    """
    if not isinstance(raw_update, dict):
        return ""
    try:
        meta = _object(raw_update.get("_meta"))
        claude = _object(meta.get("claudeCode"))
        candidates = (
            _str_field(claude, "toolName"),
            _str_field(raw_update, "name"),
            _str_field(raw_update, "tool"),
            _str_field(raw_update, "title"),
        )
    except _Mismatch:
        return ""
    return next((name for name in candidates if name), "")


def extract_tool_input(raw_update: Any) -> str:
    """Summarise the input of a tool update on one line, or "" if it has none."""
    if not isinstance(raw_update, dict):
        return ""
    for key in ("rawInput", "input"):
        value = raw_update.get(key)
        if value is None or value == {}:
            continue
        return summarize_json(value)
    return ""


def extract_tool_output(raw_update: Any) -> str:
    """Return the output of a finished tool update, or "" while it is running."""
    if not isinstance(raw_update, dict):
        return ""
    try:
        status = _str_field(raw_update, "status")
    except _Mismatch:
        return ""
    if status not in ("completed", "failed"):
        return ""
    for key in ("rawOutput", "output"):
        value = raw_update.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            return value
        return _compact(value)
    return ""


def _compact(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def summarize_json(raw: Any) -> str:
    """Render a JSON value as a short line of ``key=value`` pairs.

    Objects show each key with its value cut at 60 characters; any other
    value is shown whole, cut at 80 characters.
    """
    if raw is None:
        return ""
    if not isinstance(raw, dict):
        shown = raw if isinstance(raw, str) else _compact(raw).strip()
        return _truncate(shown, _SCALAR_TRUNCATE)

    parts = []
    for key, value in raw.items():
        if value is None:
            shown = ""
        elif isinstance(value, str):
            shown = value
        else:
            shown = _compact(value)
        parts.append(f"{key}={_truncate(shown, _OBJECT_TRUNCATE)}")
    return ", ".join(parts)


def cap_lines(text: str, n: int) -> str:
    """Keep at most ``n`` lines of ``text``, ending with "..." when cut."""
    lines = text.split("\n", n)
    if len(lines) <= n:
        return text
    return "\n".join(lines[:n]) + "\n..."