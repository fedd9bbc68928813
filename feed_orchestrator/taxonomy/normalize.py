"""Text normalization shared by the category index and matcher."""

from __future__ import annotations

import re
import unicodedata
from typing import List

MIN_KEYWORD_LENGTH = 3

# Generic umbrella terms feeds attach to everything ("toys", "games", "all").
STOPLIST = frozenset({"jucarii", "jocuri", "toate"})


def normalize_text(text: str) -> str:
    """
    Normalize text for lookup.

    Lowercase, strip diacritics, collapse non-alphanumerics to single
    spaces, trim.
    """
    if not text:
        return ""
    value = unicodedata.normalize("NFKD", text)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = value.lower()
    value = re.sub(r"[^a-z0-9\s]", " ", value)
    value = re.sub(r"\s+", " ", value)
    return value.strip()


def tokenize(normalized: str) -> List[str]:
    """Split normalized text into keywords longer than two characters."""
    return [w for w in normalized.split(" ") if len(w) >= MIN_KEYWORD_LENGTH]


def is_stopword(normalized: str) -> bool:
    return normalized in STOPLIST


__all__ = ["normalize_text", "tokenize", "is_stopword", "STOPLIST", "MIN_KEYWORD_LENGTH"]
