from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Sequence, Union

KnowledgeValue = Union[str, Sequence[str]]


@dataclass(frozen=True)
class KnowledgeSnippet:
    label: str
    answer: str


def flatten_knowledge(knowledge: Mapping[str, KnowledgeValue] | None) -> List[KnowledgeSnippet]:
    """Flatten plain facts and fact lists into (label, answer) snippets.

    Scalars keep their key as label; list items are labelled "<key> #<n>"
    with a 1-based index. Blank values are dropped.
    """
    out: List[KnowledgeSnippet] = []
    for key, value in (knowledge or {}).items():
        if isinstance(value, str):
            text = value.strip()
            if text:
                out.append(KnowledgeSnippet(label=key, answer=text))
            continue
        for idx, item in enumerate(value or [], start=1):
            text = str(item or "").strip()
            if text:
                out.append(KnowledgeSnippet(label=f"{key} #{idx}", answer=text))
    return out
