from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Pattern

logger = logging.getLogger(__name__)

RECALL = "recall"
GREETING = "greeting"
LOW_INFO = "low_info"
PRICING = "pricing"
CLOSING = "closing"

DEFAULT_PATTERNS: Dict[str, str] = {
    RECALL: (
        r"\b(what|repeat)\b.*\b(last|previous)\s+(message|reply|answer|response)\b"
        r"|\bwhat did you (just )?say\b"
    ),
    GREETING: (
        r"^\s*(hi|hello|hey|hiya|howdy|yo|greetings|good (morning|afternoon|evening))"
        r"(\s+there)?[\s!.,]*$"
    ),
    LOW_INFO: r"^\s*(ok|okay|k|kk|sure|yes|yeah|yep|hm+|uh+|um+|cool|fine)?[\s!.,?]*$",
    PRICING: r"\b(price|prices|pricing|cost|costs|fee|fees|charge|charges|subscription|money)\b",
    CLOSING: r"\b(no|nope|that's all|thats all|that is all|nothing|i'm good|im good|all set)\b",
}

# Categories a tenant can override from its behavior options.
TENANT_CATEGORIES = (GREETING, LOW_INFO)


def _compile(source: str) -> Pattern[str]:
    return re.compile(source, re.IGNORECASE)


@dataclass
class IntentPatterns:
    compiled: Dict[str, List[Pattern[str]]] = field(default_factory=dict)

    def matches(self, category: str, message: str) -> bool:
        for pat in self.compiled.get(category) or []:
            if pat.search(message or ""):
                return True
        return False


def _compile_tenant_list(category: str, sources: Iterable[str], tenant_id: str) -> List[Pattern[str]]:
    default = _compile(DEFAULT_PATTERNS[category])
    out: List[Pattern[str]] = []
    for src in sources:
        if not src:
            continue
        try:
            out.append(_compile(src))
        except re.error as e:
            logger.warning(f"Invalid {category} pattern for tenant {tenant_id!r}: {src!r} ({e}); using default")
            if default not in out:
                out.append(default)
    return out or [default]


def compile_patterns(
    greeting: Iterable[str] = (),
    low_info: Iterable[str] = (),
    tenant_id: str = "",
) -> IntentPatterns:
    compiled: Dict[str, List[Pattern[str]]] = {
        cat: [_compile(src)] for cat, src in DEFAULT_PATTERNS.items() if cat not in TENANT_CATEGORIES
    }
    compiled[GREETING] = _compile_tenant_list(GREETING, greeting, tenant_id)
    compiled[LOW_INFO] = _compile_tenant_list(LOW_INFO, low_info, tenant_id)
    return IntentPatterns(compiled=compiled)
