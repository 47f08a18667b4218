from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, MutableMapping, Optional, Protocol

USER = "user"
ASSISTANT = "assistant"


@dataclass
class SessionState:
    """Turn history and dialogue flags for one (visitor, tenant) pair."""
    history: List[Dict[str, str]] = field(default_factory=list)
    history_cap: int = 24
    has_answered_before: bool = False
    fallback_already_used: bool = False
    error_already_notified: bool = False


def _truncate(state: SessionState) -> None:
    overflow = len(state.history) - state.history_cap
    if overflow > 0:
        del state.history[:overflow]


class SessionBags(Protocol):
    def bag(self, visitor_id: str) -> MutableMapping[str, "SessionState"]: ...


def load(store: SessionBags, visitor_id: str, tenant_id: str, history_turns: int) -> SessionState:
    """Return the visitor's state for this tenant, creating a zero-valued one.

    The store only hands out the visitor's session bag; states live in it
    keyed by tenant id, so one cookie can talk to several tenants.
    """
    bag = store.bag(visitor_id)
    state = bag.get(tenant_id)
    if not isinstance(state, SessionState):
        state = SessionState()
        bag[tenant_id] = state
    state.history_cap = 2 * max(1, history_turns)
    _truncate(state)
    return state


def append_turn(state: SessionState, role: str, text: str) -> None:
    state.history.append({"role": role, "content": text})
    _truncate(state)


def mark_answered(state: SessionState) -> None:
    state.has_answered_before = True


def mark_fallback_used(state: SessionState) -> None:
    state.fallback_already_used = True


def clear_fallback_used(state: SessionState) -> None:
    state.fallback_already_used = False


def mark_error_notified(state: SessionState) -> None:
    state.error_already_notified = True


def last_assistant_turn(
    state: SessionState, skip: Optional[Callable[[str], bool]] = None
) -> Optional[str]:
    for entry in reversed(state.history):
        if entry.get("role") != ASSISTANT:
            continue
        text = entry.get("content") or ""
        if skip is not None and skip(text):
            continue
        return text
    return None


def recent_turns(state: SessionState, n: int) -> List[Dict[str, str]]:
    if n <= 0:
        return []
    return [dict(e) for e in state.history[-n:]]
