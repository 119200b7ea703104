"""Review findings and their extraction from free-form agent output."""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from typing import Any, Iterator, Optional, Union

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n(.*?)```", re.DOTALL)

_STRING_FIELDS = ("path", "side", "severity", "category", "message", "fingerprint")


class FindingsError(ValueError):
    """Raised when findings cannot be parsed or extracted."""


@dataclass
class ReviewFinding:
    """One review comment anchored to a line of a file."""

    path: str = ""
    line: int = 0
    side: str = ""
    severity: str = ""
    category: str = ""
    message: str = ""
    fingerprint: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "ReviewFinding":
        """Build a finding from its JSON object form; unknown keys are ignored."""
        if not isinstance(data, dict):
            raise FindingsError("finding is not a JSON object")
        values: dict[str, Any] = {}
        for name in _STRING_FIELDS:
            value = data.get(name)
            if value is None:
                continue
            if not isinstance(value, str):
                raise FindingsError(f"finding field {name!r} must be a string")
            values[name] = value
        line = data.get("line")
        if line is not None:
            if isinstance(line, bool) or not isinstance(line, int):
                raise FindingsError("finding field 'line' must be an integer")
            values["line"] = line
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON object form of the finding."""
        return asdict(self)


def parse_findings(data: Union[str, bytes]) -> list[ReviewFinding]:
    """Parse a JSON array of findings."""
    try:
        decoded = json.loads(data)
    except ValueError as exc:
        raise FindingsError(f"parsing findings: {exc}") from exc
    if not isinstance(decoded, list):
        raise FindingsError("parsing findings: expected a JSON array")
    return [ReviewFinding() if item is None else ReviewFinding.from_dict(item) for item in decoded]


def _try_parse(candidate: str) -> Optional[list[ReviewFinding]]:
    try:
        return parse_findings(candidate)
    except FindingsError:
        return None


def extract_findings(agent_output: str) -> list[ReviewFinding]:
    """Find a JSON array of findings in agent output.

    Tries the whole text, then each fenced code block, then any bracketed
    array embedded in the text.
    """
    text = agent_output.strip()
    if not text:
        raise FindingsError("agent: extract findings: empty output")

    findings = _try_parse(text)
    if findings is not None:
        return findings

    fences = _FENCED_JSON.findall(text)
    for content in fences:
        findings = _try_parse(content.strip())
        if findings is not None:
            return findings

    for candidate in _bare_arrays(text):
        findings = _try_parse(candidate)
        if findings is not None:
            return findings

    if fences:
        raise FindingsError(
            f"agent: extract findings: found {len(fences)} code fence(s) "
            "but none contained valid ReviewFinding[] JSON"
        )
    if "[" in text:
        raise FindingsError(
            "agent: extract findings: found JSON-like content but could not parse as ReviewFinding[]"
        )
    raise FindingsError("agent: extract findings: no JSON array found in agent output")


def _bare_arrays(text: str) -> Iterator[str]:
    """Yield every balanced ``[...]`` span that starts at an opening bracket."""
    for start, char in enumerate(text):
        if char != "[":
            continue
        end = _matching_bracket(text, start)
        if end is not None:
            yield text[start : end + 1]


def _matching_bracket(text: str, start: int) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False
    for index, char in enumerate(text[start:], start):
        if escaped:
            escaped = False
            continue
        if char == "\\" and in_string:
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return index
    return None