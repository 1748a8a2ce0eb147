"""
Status classification — bucket free-text status descriptions.

Descriptions are accent-folded and lower-cased, then matched by substring
against each bucket's keywords in order: ``in_call``, ``paused``, ``free``.
Anything else is ``other`` and does not count as logged in.
"""

from __future__ import annotations

import math
import unicodedata
from typing import Dict, Iterable, Optional

IN_CALL = "in_call"
PAUSED = "paused"
FREE = "free"
OTHER = "other"

BUCKET_KEYWORDS = (
    (IN_CALL, ("atendimento", "chamada", "ligacao", "ocupado", "falando")),
    (PAUSED, ("pausa",)),
    (FREE, ("livre", "disponivel")),
)


def fold(text: Optional[str]) -> str:
    """``"Ligação"`` → ``"ligacao"``."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", str(text))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower().strip()


def classify(description: Optional[str]) -> str:
    folded = fold(description)
    if not folded:
        return OTHER
    for bucket, keywords in BUCKET_KEYWORDS:
        if any(keyword in folded for keyword in keywords):
            return bucket
    return OTHER


def count_buckets(descriptions: Iterable[Optional[str]]) -> Dict[str, int]:
    counts = {IN_CALL: 0, PAUSED: 0, FREE: 0, OTHER: 0}
    for description in descriptions:
        counts[classify(description)] += 1
    return counts


def logged_in_percent(logged_in: int, total_active: int) -> int:
    """Rounded half up, capped at 100; 0 when there is no active headcount."""
    if total_active <= 0:
        return 0
    return min(100, int(math.floor(logged_in / total_active * 100 + 0.5)))
