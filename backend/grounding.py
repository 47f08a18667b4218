from __future__ import annotations

import re
from typing import Iterable, Optional

from .knowledge import flatten_knowledge
from .tenant_models import TenantConfig

PRICING_KEYWORDS = {"pricing", "cost", "monthly", "fee", "charge", "subscription", "price", "money"}
CONTACT_KEYWORDS = {"contact", "support", "email", "phone", "reach", "number", "hours"}
INSTALL_RE = re.compile(r"install|installation|setup|integration|code|how to add|apply", re.IGNORECASE)

DEFAULT_PRICING = "Our service costs $35 per month with an initial setup fee of $75."
DEFAULT_INSTALL = "Install is quick: add ~10 lines of HTML; your unique ID applies your customizations."
NO_CONTACT = "(Contact details not provided.)"

PRICING_POLICY_KEY = "pricingPolicy"
CONTACT_KEY = "contact"

FAQ_KEYWORD_CAP = 8

POLICIES = (
    "- Use ONLY information in this CONTEXT, the FAQs and the KNOWLEDGE list. Do NOT invent features/services.\n"
    "- If the user asks about pricing/money, answer with the AUTHORITATIVE PRICING line verbatim.\n"
    "- If the exact info is not present, say you're not certain and offer CONTACT.\n"
    "- Keep replies natural and concise (<=120 words). Avoid repeating the same greeting."
)


def _faq_with_keywords(config: TenantConfig, vocabulary: Iterable[str]) -> Optional[str]:
    vocab = set(vocabulary)
    for faq in config.faqs:
        if any(k.lower() in vocab for k in faq.keywords):
            return faq.a
    return None


def _knowledge_scalar(config: TenantConfig, key: str) -> Optional[str]:
    value = config.knowledge.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def pricing_line(config: TenantConfig) -> str:
    return (
        _faq_with_keywords(config, PRICING_KEYWORDS)
        or _knowledge_scalar(config, PRICING_POLICY_KEY)
        or DEFAULT_PRICING
    )


def contact_line(config: TenantConfig) -> str:
    # Empty means "not provided"; never make up contact data.
    return _faq_with_keywords(config, CONTACT_KEYWORDS) or _knowledge_scalar(config, CONTACT_KEY) or ""


def installation_line(config: TenantConfig) -> str:
    for faq in config.faqs:
        if any(INSTALL_RE.search(k) for k in faq.keywords):
            return faq.a
    for faq in config.faqs:
        if faq.q and INSTALL_RE.search(faq.q):
            return faq.a
    return DEFAULT_INSTALL


def _faq_digest(config: TenantConfig) -> str:
    blocks = []
    for i, faq in enumerate(config.faqs[: config.behavior.faq_digest_cap], start=1):
        keys = ", ".join(faq.keywords[:FAQ_KEYWORD_CAP])
        head = f"FAQ {i} [{keys}]"
        if faq.q:
            head += f"\nQ: {faq.q}"
        blocks.append(f"{head}\n{faq.a}")
    return "\n\n".join(blocks)


def _knowledge_digest(config: TenantConfig) -> str:
    return "\n".join(f"- {s.label}: {s.answer}" for s in flatten_knowledge(config.knowledge))


def build_grounding_context(config: TenantConfig) -> str:
    style = f"STYLE:\n{config.system_prompt.strip()}\n\n" if (config.system_prompt or "").strip() else ""
    contact = contact_line(config)
    return (
        f"{style}BRAND: {config.brand_name}\n\n"
        f"AUTHORITATIVE PRICING: {pricing_line(config)}\n\n"
        f"CONTACT: {contact or NO_CONTACT}\n\n"
        f"INSTALLATION: {installation_line(config)}\n\n"
        f"POLICIES:\n{POLICIES}\n\n"
        f"FAQs:\n{_faq_digest(config) or '(none provided)'}\n\n"
        f"KNOWLEDGE:\n{_knowledge_digest(config) or '(none provided)'}"
    )


def build_system_prompt(config: TenantConfig) -> str:
    return (
        f"You are a helpful assistant for {config.brand_name}.\n"
        f"CONTEXT (authoritative):\n{build_grounding_context(config)}\n\n"
        "INSTRUCTIONS:\n"
        "- Use ONLY the above CONTEXT, FAQs and KNOWLEDGE.\n"
        "- If unsure or not present, say you're not certain and provide CONTACT info.\n"
        "- If asked about pricing/money, reply with the AUTHORITATIVE PRICING line exactly.\n"
        "- Keep responses natural and concise (<=120 words)."
    )
