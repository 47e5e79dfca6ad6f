"""Spam and low-entropy heuristics applied to prompts before they cost quota."""

from __future__ import annotations

import re
from typing import Final

MIN_PROMPT_LENGTH: Final[int] = 3
MAX_PROMPT_LENGTH: Final[int] = 500
MIN_UNIQUE_CHAR_RATIO: Final[float] = 0.3
MAX_TEST_OCCURRENCES: Final[int] = 2

SUSPICIOUS_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"(.)\1{10,}"),  # one character 11+ times in a row
    re.compile(r"^[^a-zA-Z]*\Z"),  # no letters at all
    re.compile(r"^\s*\Z"),
    re.compile(r"test{3,}", re.IGNORECASE),
    re.compile(r"spam", re.IGNORECASE),
    re.compile(r"abuse", re.IGNORECASE),
    re.compile(r"^(.{1,3})\1{5,}\Z"),  # short unit repeated 6+ times
    re.compile(r"^[0-9\s\-_.]{10,}\Z"),
    re.compile(r"lorem\s+ipsum", re.IGNORECASE),
    re.compile(r"asdf{2,}|(?:asdf){2,}", re.IGNORECASE),
    re.compile(r"qwerty", re.IGNORECASE),
    re.compile(r"^\w{1,2}(\s+\w{1,2}){10,}\Z"),  # 11+ tiny words
)

_WHITESPACE = re.compile(r"\s")


def unique_char_ratio(prompt: str) -> float:
    """Return distinct lower-case non-space characters over non-space characters."""
    compact = _WHITESPACE.sub("", prompt)
    if not compact:
        return 0.0
    return len(set(compact.lower())) / len(compact)


def is_valid_prompt(prompt: object) -> bool:
    """Return True if `prompt` looks like a genuine image description.

    Args:
        prompt: User-supplied text. Non-strings are always invalid.

    Returns:
        False for empty, too short or too long text, for text matching any of
        the spam heuristics, and for text with too little character diversity.
    """
    if not prompt or not isinstance(prompt, str):
        return False
    if len(prompt.strip()) < MIN_PROMPT_LENGTH:
        return False
    if len(prompt) > MAX_PROMPT_LENGTH:
        return False

    if any(pattern.search(prompt) for pattern in SUSPICIOUS_PATTERNS):
        return False
    if prompt.lower().count("test") > MAX_TEST_OCCURRENCES:
        return False

    return unique_char_ratio(prompt) >= MIN_UNIQUE_CHAR_RATIO
