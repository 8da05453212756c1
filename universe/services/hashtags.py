"""Hashtag extraction and group-name normalisation."""

from __future__ import annotations

import re

from universe.services.exceptions import InvalidTagError

HASHTAG_PATTERN = re.compile(r"#(\w+)")
NON_TAG_CHARACTERS = re.compile(r"[^a-z0-9]")


def extract_hashtags(text: str | None) -> set[str]:
    """Return the lowercased, deduplicated hashtags referenced in ``text``.

    Never fails: empty input or text without tags yields an empty set.
    """
    if not text:
        return set()
    return {match.lower() for match in HASHTAG_PATTERN.findall(text)}


def normalize_tag(raw_tag: str) -> str:
    """Turn user input such as ``"#Study Group!"`` into ``"studygroup"``.

    Raises:
        InvalidTagError: If nothing alphanumeric is left
    """
    tag = NON_TAG_CHARACTERS.sub("", (raw_tag or "").strip().lower())
    if not tag:
        raise InvalidTagError(raw_tag)
    return tag
