from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

from loguru import logger

from meeting_analysis.errors import InvalidJSONError, ResponseShapeError

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\[{][\s\S]*?[\]}])\s*```", re.IGNORECASE)


def _candidates(text: str):
    """Yield progressively looser JSON candidates from a model response."""
    stripped = text.strip()
    yield stripped
    m = _FENCED_JSON_RE.search(stripped)
    if m:
        yield m.group(1)
    start = stripped.find("{")
    end = stripped.rfind("}")
    if start != -1 and end > start:
        yield stripped[start:end + 1]


def parse_json_object(text: Optional[str], label: str = "response") -> Dict[str, Any]:
    """Parse a model response that must hold a single JSON object.

    Tolerates a surrounding markdown fence or leading chatter, but never
    substitutes an empty result for an unparsable one.

    Raises:
        InvalidJSONError: no candidate parses as JSON.
        ResponseShapeError: the JSON is valid but not an object.
    """
    if not text or not text.strip():
        raise InvalidJSONError(f"Empty response for {label}", label)

    last_error: Optional[json.JSONDecodeError] = None
    for candidate in _candidates(text):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as e:
            last_error = e
            continue
        if not isinstance(parsed, dict):
            raise ResponseShapeError(
                f"Expected a JSON object for {label}, got {type(parsed).__name__}", label
            )
        return parsed

    preview = text.strip()[:200]
    logger.error(f"Unparsable JSON for {label}: {preview!r}")
    raise InvalidJSONError(f"Failed to parse JSON response for {label}: {last_error}", label)
