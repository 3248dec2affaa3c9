from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import Any

from ..config import ThoughtsortConfig
from ..errors import ClassificationError
from ..models import Category, ClassificationResult
from ..utils import language_code
from .prompts import build_classification_prompt, build_title_prompt

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_ANTHROPIC_MODEL = "claude-3-5-haiku-latest"
CLASSIFY_MAX_TOKENS = 2048
TITLE_MAX_TOKENS = 60

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")
_TITLE_QUOTES = re.compile(r"^[\"']|[\"']$")


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ClassificationError(f"classifier field {key} must be a string")
    return value.strip() or None


def parse_classification(raw: str) -> ClassificationResult:
    """Decode the classifier reply; anything off-contract is a ClassificationError."""

    text = _FENCE.sub("", (raw or "").strip())
    if not text:
        raise ClassificationError("empty classifier response")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ClassificationError("classifier response is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ClassificationError("classifier response must be a JSON object")

    category = data.get("category")
    if not isinstance(category, str) or not category.strip():
        raise ClassificationError("classifier response missing category")
    title = data.get("title")
    if not isinstance(title, str):
        raise ClassificationError("classifier response missing title")
    formatted = data.get("formatted_transcript", "")
    if formatted is None:
        formatted = ""
    if not isinstance(formatted, str):
        raise ClassificationError("classifier field formatted_transcript must be a string")
    explicit = data.get("is_explicit_placement", False)
    if not isinstance(explicit, bool):
        raise ClassificationError("classifier field is_explicit_placement must be a boolean")
    confidence = data.get("confidence_score", 0.0)
    if isinstance(confidence, bool) or not isinstance(confidence, int | float):
        raise ClassificationError("classifier field confidence_score must be a number")

    return ClassificationResult(
        formatted_transcript=formatted.strip(),
        title=title.strip(),
        category=category.strip(),
        is_explicit_placement=explicit,
        confidence_score=min(max(float(confidence), 0.0), 1.0),
        category_reason=_optional_str(data, "category_reason"),
        suggested_new_category=_optional_str(data, "suggested_new_category"),
        new_category_explanation=_optional_str(data, "new_category_explanation"),
    )


class TranscriptClassifier:
    def __init__(
        self,
        *,
        provider: str = "openai",
        model: str | None = None,
        api_key: str | None = None,
        timeout_s: float = 25.0,
        max_categories: int = 10,
        client: Any = None,
    ) -> None:
        self.provider = "anthropic" if (provider or "").lower() == "anthropic" else "openai"
        self.model = model or (
            DEFAULT_ANTHROPIC_MODEL if self.provider == "anthropic" else DEFAULT_OPENAI_MODEL
        )
        self.timeout_s = timeout_s
        self.max_categories = max_categories
        self.client: Any = client
        if self.client is not None:
            return
        # SDK retries stay off; a failed ingestion is retried by the next sync cycle.
        if self.provider == "anthropic":
            try:
                import anthropic  # type: ignore

                self.client = anthropic.Anthropic(
                    api_key=api_key, timeout=timeout_s, max_retries=0
                )
            except Exception as exc:  # pragma: no cover
                logger.exception("classifier: anthropic client init failed", exc_info=exc)
                self.client = None
        else:
            try:
                from openai import OpenAI  # type: ignore

                self.client = OpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)
            except Exception as exc:  # pragma: no cover
                logger.exception("classifier: openai client init failed", exc_info=exc)
                self.client = None

    @classmethod
    def from_config(cls, cfg: ThoughtsortConfig) -> TranscriptClassifier:
        if cfg.classifier_provider == "anthropic":
            api_key = cfg.anthropic_api_key
        else:
            api_key = cfg.openai_api_key
        return cls(
            provider=cfg.classifier_provider,
            model=cfg.classifier_model,
            api_key=api_key,
            timeout_s=cfg.classify_timeout_s,
            max_categories=cfg.max_categories,
        )

    def available(self) -> bool:
        return self.client is not None

    def classify(
        self, transcript: str, categories: Sequence[Category], locale: str | None
    ) -> ClassificationResult:
        system, user = build_classification_prompt(
            transcript,
            categories,
            language_code(locale),
            max_categories=self.max_categories,
        )
        raw = self._call(system, user, max_tokens=CLASSIFY_MAX_TOKENS, json_mode=True)
        return parse_classification(raw)

    def generate_title(self, transcript: str, locale: str | None) -> str:
        raw = self._call(
            build_title_prompt(language_code(locale)),
            transcript,
            max_tokens=TITLE_MAX_TOKENS,
            json_mode=False,
        )
        return _TITLE_QUOTES.sub("", raw.strip())

    def _call(self, system: str, user: str, *, max_tokens: int, json_mode: bool) -> str:
        if not self.client:
            raise ClassificationError(f"{self.provider} classifier is not configured")
        try:
            if self.provider == "anthropic":
                resp = self.client.messages.create(
                    model=self.model,
                    system=system,
                    messages=[{"role": "user", "content": user}],
                    max_tokens=max_tokens,
                )
                return "".join(
                    getattr(block, "text", "")
                    for block in resp.content
                    if getattr(block, "type", "text") == "text"
                )
            kwargs: dict[str, Any] = {}
            if json_mode:
                kwargs["response_format"] = {"type": "json_object"}
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                max_tokens=max_tokens,
                **kwargs,
            )
            return resp.choices[0].message.content or ""
        except ClassificationError:
            raise
        except Exception as exc:
            logger.exception(
                "classifier call failed",
                extra={"provider": self.provider, "model": self.model},
            )
            raise ClassificationError(f"classifier call failed: {exc}") from exc
