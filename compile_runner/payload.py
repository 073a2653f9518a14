"""Recover ``{filename, code}`` from compile request bodies.

Upstream clients send anything from clean JSON to JSON glued onto log noise
or double-escaped source. Each strategy below is a pure function that
returns ``(filename, code)`` or ``None``; the first hit wins.
"""

from __future__ import annotations

import json
import re
from pathlib import PurePosixPath
from typing import Callable, Optional

from pydantic import ValidationError

from compile_runner.errors import EmptySource, MalformedRequest
from compile_runner.models import CompileRequest, RecoveredPayload

DEFAULT_FILENAME = "contract.algo.ts"
LITERAL_STRUCTURE_THRESHOLD = 4

_CODE_PATTERN = re.compile(r'"code"\s*:\s*"((?:\\.|[^\\])*?)"\s*(?:,|\}|$)', re.DOTALL)
_FILENAME_PATTERN = re.compile(r'"filename"\s*:\s*"((?:\\.|[^"\\])*)"')
# \r\n must be replaced before \n
_ESCAPES = (("\\r\\n", "\r\n"), ("\\n", "\n"), ("\\t", "\t"), ('\\"', '"'))

Extracted = tuple[Optional[str], str]
Strategy = Callable[[str, Optional[str]], Optional[Extracted]]


def _from_structured(text: str, content_type: str | None) -> Extracted | None:
    try:
        request = CompileRequest.model_validate_json(text)
    except ValidationError:
        return None
    return request.filename, request.code


def _from_braced_json(text: str, content_type: str | None) -> Extracted | None:
    start = text.find("{")
    if start < 0:
        return None
    try:
        parsed = json.loads(text[start:])
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict) or not isinstance(parsed.get("code"), str):
        return None
    filename = parsed.get("filename")
    return (filename if isinstance(filename, str) else None), parsed["code"]


def _from_pattern(text: str, content_type: str | None) -> Extracted | None:
    match = _CODE_PATTERN.search(text)
    if match is None:
        return None
    filename_match = _FILENAME_PATTERN.search(text)
    filename = _decode_string(filename_match.group(1)) if filename_match else None
    return filename, _decode_string(match.group(1))


def _from_literal(text: str, content_type: str | None) -> Extracted | None:
    structural = sum(text.count(ch) for ch in '"{}')
    if _is_plain_text(content_type) or structural < LITERAL_STRUCTURE_THRESHOLD:
        return None, text
    return None


STRATEGIES: tuple[Strategy, ...] = (
    _from_structured,
    _from_braced_json,
    _from_pattern,
    _from_literal,
)


def recover_payload(
    body: bytes,
    content_type: str | None = None,
    default_filename: str = DEFAULT_FILENAME,
) -> RecoveredPayload:
    text = body.decode("utf-8", errors="replace")
    for strategy in STRATEGIES:
        extracted = strategy(text, content_type)
        if extracted is not None:
            break
    else:
        raise MalformedRequest("could not extract code")

    filename, code = extracted
    code = normalize_escapes(code)
    if not code.strip():
        raise EmptySource("Field 'code' must be a non-empty string")
    return RecoveredPayload(
        filename=sanitize_filename(filename, default_filename),
        source_text=code,
    )


def normalize_escapes(text: str) -> str:
    """Turn literal ``\\n``, ``\\t``, ``\\"`` left by double escaping into real characters.

    Only text that looks double escaped is touched: it holds escape sequences
    but no real line break. Source with real newlines keeps escapes inside its
    string literals. Repeats until no sequence remains, so applying it twice is
    the same as applying it once.
    """
    if not looks_double_escaped(text):
        return text
    while any(seq in text for seq, _ in _ESCAPES):
        text = _unescape(text)
    return text


def looks_double_escaped(text: str) -> bool:
    return "\n" not in text and any(seq in text for seq, _ in _ESCAPES)


def sanitize_filename(name: str | None, default: str = DEFAULT_FILENAME) -> str:
    """Keep only the final path component of a client supplied filename."""
    if not name:
        return default
    candidate = PurePosixPath(name.replace("\x00", "").replace("\\", "/")).name
    if candidate in ("", ".", ".."):
        return default
    return candidate


def _decode_string(raw: str) -> str:
    escaped = raw.replace("\r", "\\r").replace("\n", "\\n").replace("\t", "\\t")
    try:
        return json.loads(f'"{escaped}"')
    except json.JSONDecodeError:
        return _unescape(raw)


def _unescape(text: str) -> str:
    for seq, replacement in _ESCAPES:
        text = text.replace(seq, replacement)
    return text


def _is_plain_text(content_type: str | None) -> bool:
    if not content_type:
        return False
    return content_type.split(";", 1)[0].strip().lower() == "text/plain"
