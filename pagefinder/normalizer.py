"""Text canonicalisation shared by corpus indexing and OCR queries.

Both sides of every comparison go through `normalize`, so anything done here
is symmetric. The goal is smoothing OCR noise (case, spacing, punctuation,
line-break hyphenation), not correcting words.
"""
from __future__ import annotations

import re
import unicodedata

from .types import NormalizedText

_REPLACEMENTS = {
    "‘": "'",  # left single quote
    "’": "'",  # right single quote
    "“": '"',  # left double quote
    "”": '"',  # right double quote
    "–": "-",  # en dash
    "—": "-",  # em dash
    "\u2010": "-",  # hyphen
    "\u2011": "-",  # non-breaking hyphen
}

# Soft hyphen, zero-width space/joiners, BOM.
_INVISIBLE_RE = re.compile("[\u00ad\u200b\u200c\u200d\u2060\ufeff]")
_HYPHEN_BREAK_RE = re.compile(r"(\w)-\s+(\w)")
_APOSTROPHE_RE = re.compile(r"(\w)'(\w)")
_NON_WORD_RE = re.compile(r"[\W_]+")

_MAX_PASSES = 4


def _canonical_once(text: str) -> str:
    text = unicodedata.normalize("NFKC", text)
    text = _INVISIBLE_RE.sub("", text)
    for old, new in _REPLACEMENTS.items():
        text = text.replace(old, new)
    text = text.casefold()
    # "exam-\nple" is a line-break split, "well-known" is not
    text = _HYPHEN_BREAK_RE.sub(r"\1\2", text)
    text = _APOSTROPHE_RE.sub(r"\1\2", text)
    text = _NON_WORD_RE.sub(" ", text)
    return " ".join(text.split())


def canonicalize(text: str) -> str:
    """Canonical form of `text`; a fixed point of itself."""
    current = _canonical_once(text or "")
    for _ in range(_MAX_PASSES):
        nxt = _canonical_once(current)
        if nxt == current:
            break
        current = nxt
    return current


def normalize(text: str | NormalizedText) -> NormalizedText:
    if isinstance(text, NormalizedText):
        return NormalizedText(original=text.original, canonical=canonicalize(text.canonical))
    original = "" if text is None else str(text)
    return NormalizedText(original=original, canonical=canonicalize(original))


def tokenize(text: str | NormalizedText) -> list[str]:
    return list(normalize(text).tokens)


def squash(tokens: list[str] | tuple[str, ...]) -> str:
    """Join tokens without separators so dropped or merged spaces stop mattering."""
    return "".join(tokens)
