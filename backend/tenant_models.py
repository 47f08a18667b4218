from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, PrivateAttr, ValidationError, root_validator, validator

from .patterns import IntentPatterns, compile_patterns

logger = logging.getLogger(__name__)

DEFAULT_BRAND = "Craver Labs AI"
DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_FALLBACK = "I'm not certain based on what I have."
DEFAULT_SECOND_FALLBACK = "Sorry, I still can't answer that right now. Our team will be happy to help directly."


def _clean_str_list(v: Any) -> List[str]:
    # ordered, de-duplicated, blanks dropped
    if v is None:
        return []
    if isinstance(v, str):
        v = [v]
    out: List[str] = []
    seen = set()
    for item in v:
        s = str(item).strip() if item is not None else ""
        if not s or s.lower() in seen:
            continue
        seen.add(s.lower())
        out.append(s)
    return out


def _drop_unset(values: Any, blank_strings: bool = False) -> Any:
    # null (and optionally blank) options fall back to the field default
    if not isinstance(values, dict):
        return values
    return {
        k: v for k, v in values.items()
        if v is not None and not (blank_strings and isinstance(v, str) and not v.strip())
    }


class FaqEntry(BaseModel):
    q: Optional[str] = None
    a: str
    keywords: List[str] = Field(default_factory=list)

    @validator("a", pre=True)
    def _validate_answer(cls, v: Any) -> str:
        text = str(v).strip() if v is not None else ""
        if not text:
            raise ValueError("FAQ answer must be a non-empty string")
        return text

    @validator("q", pre=True)
    def _validate_question(cls, v: Any) -> Optional[str]:
        text = str(v).strip() if v is not None else ""
        return text or None

    @validator("keywords", pre=True)
    def _validate_keywords(cls, v: Any) -> List[str]:
        return _clean_str_list(v)


class ModelOptions(BaseModel):
    name: str = DEFAULT_MODEL
    temperature: float = 0.2
    max_tokens: int = Field(450, alias="maxTokens")

    @root_validator(pre=True)
    def _null_options(cls, values: Any) -> Any:
        return _drop_unset(values)

    @validator("name", pre=True)
    def _default_name(cls, v: Any) -> str:
        return str(v).strip() if v else DEFAULT_MODEL


class FewShotExample(BaseModel):
    user: str
    assistant: str


class Templates(BaseModel):
    greeter: str = "Hi there! How can I help you today?"
    clarify: str = "Could you tell me a little more about what you're looking for?"
    recall: str = 'My last message was: "{last}"'
    no_recall: str = Field("I haven't sent you a message yet in this conversation.", alias="noRecall")
    menu_header: str = Field("You can ask me things like:", alias="menuHeader")
    error_notice: str = Field(
        "(I'm having a temporary issue reaching my assistant service, so my answer may be limited.)",
        alias="errorNotice",
    )

    @root_validator(pre=True)
    def _blank_templates(cls, values: Any) -> Any:
        return _drop_unset(values, blank_strings=True)


class BehaviorOptions(BaseModel):
    greeter_enabled: bool = Field(True, alias="greeterEnabled")
    greeting_patterns: List[str] = Field(default_factory=list, alias="greetingPatterns")
    low_info_patterns: List[str] = Field(default_factory=list, alias="lowInfoPatterns")
    menu_size: int = Field(3, alias="menuSize")
    semantic_threshold: float = Field(0.18, alias="semanticThreshold")
    history_turns: int = Field(12, alias="historyTurns")
    faq_digest_cap: int = Field(16, alias="faqDigestCap")
    templates: Templates = Field(default_factory=Templates)

    @root_validator(pre=True)
    def _null_options(cls, values: Any) -> Any:
        return _drop_unset(values)

    @validator("greeting_patterns", "low_info_patterns", pre=True)
    def _clean_patterns(cls, v: Any) -> List[str]:
        return _clean_str_list(v)

    @validator("menu_size", "faq_digest_cap")
    def _non_negative(cls, v: int) -> int:
        return max(0, v)

    @validator("history_turns")
    def _at_least_one_turn(cls, v: int) -> int:
        return max(1, v)

    @validator("semantic_threshold")
    def _threshold_range(cls, v: float) -> float:
        if v < 0:
            raise ValueError("semanticThreshold must be >= 0")
        return v


class FallbackOptions(BaseModel):
    answer: Optional[str] = None
    second_answer: Optional[str] = Field(None, alias="secondAnswer")


class TenantConfig(BaseModel):
    brand_name: str = Field(DEFAULT_BRAND, alias="brandName")
    faqs: List[FaqEntry] = Field(default_factory=list)
    knowledge: Dict[str, Union[str, List[str]]] = Field(default_factory=dict)
    system_prompt: Optional[str] = Field(None, alias="systemPrompt")
    model: ModelOptions = Field(default_factory=ModelOptions)
    few_shot: List[FewShotExample] = Field(default_factory=list, alias="fewShot")
    behavior: BehaviorOptions = Field(default_factory=BehaviorOptions)
    fallback: FallbackOptions = Field(default_factory=FallbackOptions)
    closing_message: str = Field("", alias="closingMessage")
    common_questions: List[str] = Field(default_factory=list, alias="commonQuestions")
    sheet_id: Optional[str] = Field(None, alias="sheetId")

    _patterns: Optional[IntentPatterns] = PrivateAttr(default=None)
    _tenant_id: str = PrivateAttr(default="")

    @validator("brand_name", pre=True)
    def _default_brand(cls, v: Any) -> str:
        return str(v).strip() if v else DEFAULT_BRAND

    @validator("faqs", pre=True)
    def _skip_bad_faqs(cls, v: Any) -> List[FaqEntry]:
        out: List[FaqEntry] = []
        for idx, row in enumerate(v or []):
            try:
                out.append(FaqEntry.parse_obj(row))
            except ValidationError:
                logger.warning(f"Skipping FAQ #{idx + 1}: missing or empty answer")
                continue
        return out

    @validator("knowledge", pre=True)
    def _normalize_knowledge(cls, v: Any) -> Dict[str, Union[str, List[str]]]:
        out: Dict[str, Union[str, List[str]]] = {}
        if not isinstance(v, dict):
            return out
        for key, value in v.items():
            if value is None or isinstance(value, dict):
                continue
            if isinstance(value, (list, tuple)):
                out[str(key)] = [str(x) for x in value if x is not None and not isinstance(x, dict)]
            else:
                out[str(key)] = str(value)
        return out

    @validator("model", "behavior", "fallback", pre=True)
    def _null_section(cls, v: Any) -> Any:
        return v if v is not None else {}

    @validator("few_shot", pre=True)
    def _null_list(cls, v: Any) -> Any:
        return v if v is not None else []

    @validator("closing_message", pre=True)
    def _closing_text(cls, v: Any) -> str:
        return str(v) if v is not None else ""

    @validator("common_questions", pre=True)
    def _clean_questions(cls, v: Any) -> List[str]:
        return _clean_str_list(v)

    @classmethod
    def load(cls, raw: Any, tenant_id: str = "") -> "TenantConfig":
        cfg = cls.parse_obj(raw)
        cfg._tenant_id = tenant_id
        cfg._patterns = compile_patterns(
            cfg.behavior.greeting_patterns, cfg.behavior.low_info_patterns, tenant_id
        )
        return cfg

    @property
    def tenant_id(self) -> str:
        return self._tenant_id

    @property
    def patterns(self) -> IntentPatterns:
        if self._patterns is None:
            self._patterns = compile_patterns(
                self.behavior.greeting_patterns, self.behavior.low_info_patterns, self._tenant_id
            )
        return self._patterns

    def fallback_texts(self) -> Tuple[str, str]:
        first = (self.fallback.answer or "").strip() or DEFAULT_FALLBACK
        second = (self.fallback.second_answer or "").strip() or DEFAULT_SECOND_FALLBACK
        if second == first:
            second = DEFAULT_SECOND_FALLBACK if first != DEFAULT_SECOND_FALLBACK else DEFAULT_FALLBACK
        return first, second

    def menu_text(self) -> str:
        questions = self.common_questions[: self.behavior.menu_size]
        if not questions:
            return ""
        lines = [self.behavior.templates.menu_header]
        lines.extend(f"• {q}" for q in questions)
        return "\n".join(lines)
