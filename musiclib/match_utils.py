from __future__ import annotations

import re
import string
import unicodedata
from difflib import SequenceMatcher
from typing import Callable, Iterable, Optional, TypeVar

T = TypeVar("T")


def normalize_match_text(value: str) -> str:
    cleaned = unicodedata.normalize("NFKD", value)
    cleaned = cleaned.encode("ascii", "ignore").decode("ascii")
    cleaned = cleaned.lower()
    cleaned = re.sub(r"[^a-z0-9]+", " ", cleaned)
    return cleaned.strip()


def title_similarity(a: Optional[str], b: Optional[str]) -> Optional[float]:
    if not a or not b:
        return None
    norm_a = normalize_match_text(a)
    norm_b = normalize_match_text(b)
    if not norm_a or not norm_b:
        # non-latin names normalize away entirely; compare them case-insensitively
        norm_a, norm_b = a.casefold().strip(), b.casefold().strip()
    return SequenceMatcher(None, norm_a, norm_b).ratio()


def best_match(reference: str, candidates: Iterable[T], key: Callable[[T], str]) -> Optional[T]:
    """Return the candidate whose ``key`` is most similar to ``reference``; first wins ties."""
    best: Optional[T] = None
    best_score = -1.0
    for candidate in candidates:
        score = title_similarity(reference, key(candidate)) or 0.0
        if score > best_score:
            best, best_score = candidate, score
    return best


def pascal_genre(value: str) -> str:
    return string.capwords(value.strip())
