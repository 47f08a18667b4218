from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .knowledge import flatten_knowledge
from .tenant_models import TenantConfig
from .tokenizer import overlap_score, tokens

FAQ = "faq"
KNOWLEDGE = "knowledge"


@dataclass(frozen=True)
class MatchCandidate:
    kind: str
    label: str
    answer: str
    text: str


@dataclass(frozen=True)
class MatchResult:
    candidate: MatchCandidate
    score: float

    @property
    def answer(self) -> str:
        return self.candidate.answer


def build_candidates(config: TenantConfig) -> List[MatchCandidate]:
    out: List[MatchCandidate] = []
    for idx, faq in enumerate(config.faqs, start=1):
        text = " ".join([faq.q or "", " ".join(faq.keywords), faq.a])
        out.append(MatchCandidate(kind=FAQ, label=faq.q or f"FAQ {idx}", answer=faq.a, text=text))
    for snip in flatten_knowledge(config.knowledge):
        out.append(MatchCandidate(kind=KNOWLEDGE, label=snip.label, answer=snip.answer,
                                  text=f"{snip.label} {snip.answer}"))
    return out


def rank(config: TenantConfig, message: str) -> List[Tuple[float, MatchCandidate]]:
    """Score every candidate against the message, in candidate order."""
    query = tokens(message)
    return [(overlap_score(query, tokens(c.text)), c) for c in build_candidates(config)]


def best_match(config: TenantConfig, message: str, threshold: Optional[float] = None) -> Optional[MatchResult]:
    if threshold is None:
        threshold = config.behavior.semantic_threshold
    best: Optional[Tuple[float, MatchCandidate]] = None
    for score, cand in rank(config, message):
        # strict ">" keeps the earliest candidate on ties
        if score > 0 and (best is None or score > best[0]):
            best = (score, cand)
    if best is None or best[0] < threshold:
        return None
    return MatchResult(candidate=best[1], score=best[0])
