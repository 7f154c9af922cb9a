"""Static keyword replies."""

from __future__ import annotations

from collections.abc import Mapping


def match_keyword(text: str, keywords: Mapping[str, str]) -> str | None:
    """Reply of the first keyword (in table order) contained in *text*, case-insensitively."""
    lowered = text.lower()
    for keyword, reply in keywords.items():
        if keyword and keyword.lower() in lowered:
            return reply
    return None
