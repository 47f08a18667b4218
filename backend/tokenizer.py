from __future__ import annotations

import math
import re
from typing import AbstractSet, Set

STOPWORDS = {
    "the","a","an","and","or","to","of","for","on","in","is","it","are","do","does","did",
    "you","we","i","can","with","at","my","our","your","me","us","be","have","has","will",
    "from","about","this","that","there","was","were","am","im","its","any","please","just",
    "would","could","should","so","if","by","as","get","got",
    # question words
    "what","whats","which","where","when","who","whom","whose","how","hows","why",
}

_APOSTROPHES = re.compile(r"['’`]")
_NON_WORD = re.compile(r"[\W_]+")


def normalize(text: str | None) -> str:
    t = (text or "").lower()
    t = _APOSTROPHES.sub("", t)
    t = _NON_WORD.sub(" ", t)
    return t.strip()


def tokens(text: str | None) -> Set[str]:
    return {tok for tok in normalize(text).split() if tok not in STOPWORDS}


def overlap_score(a: AbstractSet[str], b: AbstractSet[str]) -> float:
    """Cosine-like overlap of two unweighted token sets.

    This is a cheap stand-in for embeddings: two texts that share vocabulary
    score high even when they mean different things.
    """
    if not a or not b:
        return 0.0
    return len(a & b) / math.sqrt(len(a) * len(b))
