"""Pull a JSON value out of free-form model output.

Models are asked for bare JSON but frequently wrap it in prose or in
markdown code fences.  ``extract_json`` tries, in order:

1. the whole text as JSON;
2. each ```` ```json ```` fenced block, last block first;
3. each unlabelled fenced block, last block first.

A fenced block runs from its opening fence to a later closing fence,
longest span first, so JSON strings that themselves contain fences (a
README, a code sample) survive.  The label may be followed directly by
the JSON on the same line.

No AI calls, no schema awareness.
"""

from __future__ import annotations

import json
import re
from itertools import chain
from typing import Any, Iterator


class ExtractionFailed(Exception):
    """No parseable JSON value could be located in the text."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_FENCE = "```"
_JSON_OPENING_PATTERN = re.compile(r"```json", re.IGNORECASE)


def _try_parse(text: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except json.JSONDecodeError:
        return False, None


def _fence_positions(text: str) -> list[int]:
    positions = []
    index = text.find(_FENCE)
    while index != -1:
        positions.append(index)
        index = text.find(_FENCE, index + len(_FENCE))
    return positions


def _candidates(text: str, openings: list[int], fences: list[int]) -> Iterator[str]:
    """Spans from each opening (last first) to each later fence (last first)."""
    for start in reversed(openings):
        for end in reversed(fences):
            if end < start:
                break
            yield text[start:end]


def extract_json(text: str) -> Any:
    """Return the first JSON value found in *text*.

    Args:
        text: Raw model output.

    Returns:
        The decoded JSON value (usually a ``dict``).

    Raises:
        ExtractionFailed: If neither the text nor any fenced block parses.
    """
    if not text or not text.strip():
        raise ExtractionFailed("Response was empty")

    ok, value = _try_parse(text.strip())
    if ok:
        return value

    fences = _fence_positions(text)
    json_openings = [m.end() for m in _JSON_OPENING_PATTERN.finditer(text)]
    labelled = {start - len(_FENCE) - len("json") for start in json_openings}
    plain_openings = [pos + len(_FENCE) for pos in fences if pos not in labelled]

    for block in chain(
        _candidates(text, json_openings, fences),
        _candidates(text, plain_openings, fences),
    ):
        ok, value = _try_parse(block.strip())
        if ok:
            return value

    if len(fences) >= 2:
        raise ExtractionFailed("Found fenced code blocks but none contained valid JSON")
    raise ExtractionFailed("Response is not JSON and contains no fenced JSON block")
