from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol, Sequence

import httpx
from openai import OpenAI, OpenAIError

from .tenant_models import FewShotExample, ModelOptions

logger = logging.getLogger(__name__)


class CompletionError(RuntimeError):
    """The provider failed, timed out or returned something unusable."""


class CompletionProvider(Protocol):
    def complete(
        self,
        model: ModelOptions,
        system_prompt: str,
        few_shot: Sequence[FewShotExample],
        prior_turns: Sequence[Dict[str, str]],
        user_message: str,
    ) -> str: ...


def build_messages(
    system_prompt: str,
    few_shot: Sequence[FewShotExample],
    prior_turns: Sequence[Dict[str, str]],
    user_message: str,
) -> List[Dict[str, str]]:
    messages: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]
    for ex in few_shot:
        messages.append({"role": "user", "content": ex.user})
        messages.append({"role": "assistant", "content": ex.assistant})
    for turn in prior_turns:
        if turn.get("role") in {"user", "assistant"} and turn.get("content"):
            messages.append({"role": turn["role"], "content": turn["content"]})
    messages.append({"role": "user", "content": user_message})
    return messages


class OpenAICompletionProvider:
    """Chat-completions provider with a bounded request timeout."""

    def __init__(self, api_key: Optional[str] = None, timeout_secs: float = 20.0, client: Optional[OpenAI] = None) -> None:
        self._timeout = timeout_secs
        self._client = client or OpenAI(
            api_key=api_key,
            timeout=timeout_secs,
            max_retries=0,
            http_client=httpx.Client(timeout=httpx.Timeout(timeout_secs)),
        )

    def complete(
        self,
        model: ModelOptions,
        system_prompt: str,
        few_shot: Sequence[FewShotExample],
        prior_turns: Sequence[Dict[str, str]],
        user_message: str,
    ) -> str:
        messages = build_messages(system_prompt, few_shot, prior_turns, user_message)
        try:
            resp = self._client.chat.completions.create(
                model=model.name,
                messages=messages,
                temperature=model.temperature,
                max_tokens=model.max_tokens,
                timeout=self._timeout,
            )
        except (OpenAIError, httpx.HTTPError) as e:
            raise CompletionError(f"completion request failed: {e}") from e
        try:
            content = resp.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise CompletionError("malformed completion response") from e
        return (content or "").strip()


class DisabledCompletionProvider:
    """Used when no API key is configured; every call is a provider failure."""

    def complete(self, model, system_prompt, few_shot, prior_turns, user_message) -> str:
        raise CompletionError("LLM is disabled")
