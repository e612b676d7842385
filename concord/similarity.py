"""Token overlap scoring used to corroborate model answers.

Normalization is ASCII-only: letters outside ASCII are stripped, so two
answers written entirely in a non-Latin script share no tokens and score 0.
"""
from __future__ import annotations

import re

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^\w\s.,;:!?()-]", re.ASCII)


def normalize_text(text: str | None) -> str:
    value = _WHITESPACE.sub(" ", text or "")
    value = _DISALLOWED.sub("", value)
    return value.strip().casefold()


def tokens(text: str | None) -> set[str]:
    return set(normalize_text(text).split())


def score(text_a: str | None, text_b: str | None) -> float:
    """Jaccard similarity of the unique normalized tokens of both texts."""
    set_a = tokens(text_a)
    set_b = tokens(text_b)
    union = len(set_a | set_b) or 1
    return len(set_a & set_b) / union
