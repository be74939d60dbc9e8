"""Lenient JSON extraction from free-form model output.

Model replies mix prose with JSON (inline quiz blocks, completion signals,
quiz batteries wrapped in markdown fences).  These helpers locate and
decode that JSON without ever raising on malformed input.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)


@dataclass(frozen=True)
class JsonBlock:
    """A top-level ``{...}`` object found in text, with its span."""

    start: int
    end: int  # exclusive
    value: Any


def fix_invalid_json_escapes(s: str) -> str:
    r"""Fix invalid JSON escape sequences produced by LLMs.

    Lone backslashes before non-escape characters (``\(``, ``\s``) and
    LaTeX commands that start with a JSON escape letter (``\frac``,
    ``\theta``) are doubled so ``json.loads`` succeeds.
    """
    placeholder = "\x00\x01"
    s = s.replace("\\\\", placeholder)
    s = re.sub(r'\\(?!["\\/bfnrtu])', r"\\\\", s)
    s = re.sub(r"\\([bfnrt])([a-zA-Z]{2,})", r"\\\\" + r"\1\2", s)
    return s.replace(placeholder, "\\\\")


def loads_lenient(text: str) -> Any:
    """``json.loads`` with one retry after escape repair.

    Raises:
        ValueError: The text is not valid JSON even after repair.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(fix_invalid_json_escapes(text))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON: {exc}") from exc


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1).strip() if match else stripped


def _balanced_end(text: str, start: int) -> int | None:
    """Index one past the ``}`` closing the object opened at *start*."""
    depth = 0
    in_string = False
    escape_next = False

    for i in range(start, len(text)):
        ch = text[i]
        if escape_next:
            escape_next = False
            continue
        if ch == "\\":
            if in_string:
                escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def scan_json_objects(text: str) -> list[JsonBlock]:
    """Find every top-level JSON object embedded in *text*, in order.

    Unbalanced or undecodable candidates are skipped; scanning resumes just
    after the offending ``{`` so objects nested inside prose still surface.
    """
    blocks: list[JsonBlock] = []
    pos = 0
    while True:
        start = text.find("{", pos)
        if start == -1:
            return blocks
        end = _balanced_end(text, start)
        if end is None:
            return blocks
        try:
            value = loads_lenient(text[start:end])
        except ValueError:
            logger.debug("Skipped malformed JSON block at %d (len=%d)", start, end - start)
            pos = start + 1
            continue
        blocks.append(JsonBlock(start=start, end=end, value=value))
        pos = end
