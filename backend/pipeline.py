"""Turn resolution: one visitor message in, exactly one reply out.

Stages run in a fixed order and the first one that produces a decision
ends the turn. Stage handlers only read the session; flag updates and the
history append happen once, in `resolve_decision`, from the chosen decision.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from . import patterns as P
from . import session_memory as sm
from .completion import CompletionProvider
from .grounding import build_system_prompt, contact_line, pricing_line
from .matcher import best_match
from .session_memory import SessionState
from .tenant_models import TenantConfig, Templates
from .tokenizer import tokens

logger = logging.getLogger(__name__)

RECALL = "recall"
GREETING = "greeting"
LOW_INFO = "low-info"
SEMANTIC = "semantic"
PRICING = "pricing"
CLOSING = "closing"
GENERATIVE = "generative"
GENERATIVE_EMPTY = "generative-empty-fallback"
GENERATIVE_ERROR = "generative-error-fallback"


@dataclass(frozen=True)
class PipelineDecision:
    reply: str
    stage: str
    score: Optional[float] = None
    notified_error: bool = False


@dataclass
class TurnContext:
    config: TenantConfig
    session: SessionState
    message: str
    provider: Optional[CompletionProvider] = None


Stage = Callable[[TurnContext], Optional[PipelineDecision]]


def _join(*parts: str) -> str:
    return "\n\n".join(p for p in parts if p)


def _fallback(config: TenantConfig, second: bool) -> str:
    text = config.fallback_texts()[1 if second else 0]
    contact = contact_line(config)
    if contact and contact not in text:
        text = f"{text} {contact}"
    return text


def _is_recall_reply(templates: Templates, text: str) -> bool:
    if text == templates.no_recall:
        return True
    head, sep, tail = templates.recall.partition("{last}")
    if not sep:
        return text == templates.recall
    return len(text) >= len(head) + len(tail) and text.startswith(head) and text.endswith(tail)


def recall_stage(ctx: TurnContext) -> Optional[PipelineDecision]:
    if not ctx.config.patterns.matches(P.RECALL, ctx.message):
        return None
    templates = ctx.config.behavior.templates
    # earlier recall replies are skipped so repeated asks do not nest
    last = sm.last_assistant_turn(ctx.session, skip=lambda text: _is_recall_reply(templates, text))
    if last is None:
        return PipelineDecision(templates.no_recall, RECALL)
    return PipelineDecision(templates.recall.replace("{last}", last), RECALL)


def greeting_stage(ctx: TurnContext) -> Optional[PipelineDecision]:
    behavior = ctx.config.behavior
    if not behavior.greeter_enabled:
        return None
    if ctx.config.patterns.matches(P.GREETING, ctx.message):
        return PipelineDecision(_join(behavior.templates.greeter, ctx.config.menu_text()), GREETING)
    if ctx.config.patterns.matches(P.LOW_INFO, ctx.message):
        return PipelineDecision(_join(behavior.templates.clarify, ctx.config.menu_text()), LOW_INFO)
    return None


def semantic_stage(ctx: TurnContext) -> Optional[PipelineDecision]:
    match = best_match(ctx.config, ctx.message)
    if match is None:
        return None
    return PipelineDecision(match.answer, SEMANTIC, score=match.score)


def pricing_stage(ctx: TurnContext) -> Optional[PipelineDecision]:
    # Catches pricing phrasing the matcher scored below threshold.
    if ctx.config.patterns.matches(P.PRICING, ctx.message):
        return PipelineDecision(pricing_line(ctx.config), PRICING)
    return None


def closing_stage(ctx: TurnContext) -> Optional[PipelineDecision]:
    if ctx.session.has_answered_before and ctx.config.patterns.matches(P.CLOSING, ctx.message):
        return PipelineDecision(ctx.config.closing_message, CLOSING)
    return None


def generative_stage(ctx: TurnContext) -> PipelineDecision:
    config = ctx.config
    try:
        if ctx.provider is None:
            raise RuntimeError("no completion provider configured")
        answer = ctx.provider.complete(
            config.model,
            build_system_prompt(config),
            config.few_shot,
            sm.recent_turns(ctx.session, config.behavior.history_turns),
            ctx.message,
        )
    except Exception:
        logger.exception(f"Completion provider failed for tenant {config.tenant_id!r}")
        return _escalate(ctx)

    answer = (answer or "").strip()
    if not tokens(answer):
        return PipelineDecision(_join(_fallback(config, second=False), config.menu_text()), GENERATIVE_EMPTY)
    if config.patterns.matches(P.PRICING, ctx.message):
        # The provider is not trusted to quote prices.
        return PipelineDecision(pricing_line(config), GENERATIVE)
    return PipelineDecision(answer, GENERATIVE)


def _escalate(ctx: TurnContext) -> PipelineDecision:
    config, session = ctx.config, ctx.session
    menu = config.menu_text()
    if session.fallback_already_used:
        return PipelineDecision(_join(_fallback(config, second=True), menu), GENERATIVE_ERROR)
    notice = "" if session.error_already_notified else config.behavior.templates.error_notice
    return PipelineDecision(
        _join(_fallback(config, second=False), menu, notice),
        GENERATIVE_ERROR,
        notified_error=bool(notice),
    )


STAGES: List[Stage] = [
    recall_stage,
    greeting_stage,
    semantic_stage,
    pricing_stage,
    closing_stage,
    generative_stage,
]


def _apply(decision: PipelineDecision, session: SessionState) -> None:
    if decision.stage in {GREETING, LOW_INFO, PRICING, GENERATIVE}:
        sm.mark_answered(session)
    elif decision.stage == SEMANTIC:
        sm.mark_answered(session)
        sm.clear_fallback_used(session)
    elif decision.stage in {GENERATIVE_EMPTY, GENERATIVE_ERROR}:
        sm.mark_fallback_used(session)
    if decision.notified_error:
        sm.mark_error_notified(session)


def resolve_decision(
    config: TenantConfig,
    session: SessionState,
    message: str,
    provider: Optional[CompletionProvider] = None,
    stages: Optional[List[Stage]] = None,
) -> PipelineDecision:
    text = (message or "").strip()
    ctx = TurnContext(config=config, session=session, message=text, provider=provider)
    decision = None
    for stage in stages or STAGES:
        decision = stage(ctx)
        if decision is not None:
            break
    if decision is None:
        decision = _escalate(ctx)
    _apply(decision, session)
    sm.append_turn(session, sm.USER, text)
    sm.append_turn(session, sm.ASSISTANT, decision.reply)
    logger.info(
        f"turn tenant={config.tenant_id!r} stage={decision.stage} "
        f"score={decision.score if decision.score is None else round(decision.score, 3)}"
    )
    return decision


def resolve_turn(
    config: TenantConfig,
    session: SessionState,
    message: str,
    provider: Optional[CompletionProvider] = None,
) -> Tuple[str, SessionState]:
    decision = resolve_decision(config, session, message, provider)
    return decision.reply, session
