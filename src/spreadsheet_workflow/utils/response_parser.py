"""Helpers for turning model completions into JSON structures.

Model output is untrusted: anything that does not parse degrades to an empty
structure so downstream column filling falls back to blanks.
"""

from __future__ import annotations

import json
import re
from typing import Any

from spreadsheet_workflow.utils.logging import get_logger

logger = get_logger(__name__)

_RESPONSE_TAG_PATTERN = re.compile(r"<response>(.*?)</response>", re.DOTALL)
_CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def extract_tagged_response(text: str) -> str:
    """Return the content of the first ``<response>`` block, or ""."""
    match = _RESPONSE_TAG_PATTERN.search(text)
    return match.group(1).strip() if match else ""


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    match = _CODE_FENCE_PATTERN.match(stripped)
    return match.group(1) if match else stripped


def _load_slice(text: str, opener: str, closer: str) -> Any:
    start_idx = text.find(opener)
    end_idx = text.rfind(closer) + 1
    if start_idx == -1 or end_idx <= start_idx:
        return None
    try:
        return json.loads(text[start_idx:end_idx])
    except json.JSONDecodeError:
        return None


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def parse_json_value(text: str) -> Any:
    """Parse a JSON document out of a completion.

    Tries the whole text first, then the outermost object, then the outermost
    list. Returns None when nothing parses.
    """
    candidate = _strip_code_fence(text)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    parsed = _load_slice(candidate, "{", "}")
    if parsed is not None:
        return parsed
    return _load_slice(candidate, "[", "]")


def parse_string_mapping(
    text: str,
    *,
    keys: list[str] | None = None,
    source: str = "llm",
) -> dict[str, str]:
    """Parse a completion into a ``name -> text`` mapping.

    A JSON list is accepted when ``keys`` is given and is zipped onto them in
    order. All values are coerced to strings.
    """
    parsed = parse_json_value(text)

    if isinstance(parsed, dict):
        return {str(key): _stringify(value) for key, value in parsed.items()}

    if isinstance(parsed, list) and keys is not None:
        return {key: _stringify(value) for key, value in zip(keys, parsed)}

    logger.warning("Response is not a JSON object", source=source)
    return {}


def parse_string_list(text: str, *, source: str = "llm") -> list[str]:
    """Parse a completion into a list of non-empty strings."""
    parsed = parse_json_value(text)

    if isinstance(parsed, dict):
        for key in ("results", "names", "items"):
            if isinstance(parsed.get(key), list):
                parsed = parsed[key]
                break

    if not isinstance(parsed, list):
        logger.warning("Response is not a JSON list", source=source)
        return []

    return [_stringify(item) for item in parsed if _stringify(item).strip()]
