"""
Generative classifier client.

Talks to an OpenAI-compatible chat-completions endpoint and asks it to
assign semantic domain codes to a batch of words in context. The model
answers with JSON; responses wrapped in markdown code fences are accepted.

Failures are mapped onto the lexicon-spine error hierarchy so the retry
and circuit-breaker layers can tell them apart:

    ┌──────────────────────────────┬──────────────────────────────┐
    │ httpx timeout                │ TimeoutError (retryable)     │
    │ connection / transport error │ NetworkError (retryable)     │
    │ HTTP 429                     │ RateLimitError (retryable)   │
    │ HTTP 5xx                     │ NetworkError (retryable)     │
    │ HTTP 401 / 403               │ AuthError                    │
    │ other HTTP 4xx               │ ClassifierError (permanent)  │
    │ unparseable body             │ ClassifierError (retryable)  │
    └──────────────────────────────┴──────────────────────────────┘

Both English and Portuguese field names are accepted in the response
(``word``/``palavra``, ``code``/``tagset_codigo``, ...).
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from lexspine.core.errors import (
    AuthError,
    ClassifierError,
    NetworkError,
    RateLimitError,
    TimeoutError,
)
from lexspine.core.logging import get_logger
from lexspine.core.text import normalize_key

from .models import WordContext

logger = get_logger(__name__)

NOT_CLASSIFIED = "NC"

_FENCE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)

SYSTEM_PROMPT = """You are a lexical semantics annotator for Brazilian Portuguese.
For each word, choose the semantic domain code that best fits the word in
its context sentence. Use the code NC when no domain applies.

Answer with JSON only, in this exact shape:
{"classifications": [{"word": "...", "code": "...", "alternates": ["..."],
"is_polysemous": false, "confidence": 0.0}]}"""


@dataclass(frozen=True)
class ClassifierVerdict:
    """One classified word as returned by the classifier."""

    key: str
    classification: tuple[str, ...]
    confidence: float
    is_polysemous: bool = False

    @property
    def not_classified(self) -> bool:
        return not self.classification or self.classification[0] == NOT_CLASSIFIED


class ClassifierClient(Protocol):
    model: str

    def classify(self, items: Sequence[WordContext]) -> list[ClassifierVerdict]: ...


class ClassificationItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    word: str = Field(validation_alias=AliasChoices("word", "palavra"))
    code: str = Field(validation_alias=AliasChoices("code", "tagset_codigo"))
    alternates: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("alternates", "alternatives", "tagsets_alternativos"),
    )
    is_polysemous: bool = False
    confidence: float = Field(default=0.0, validation_alias=AliasChoices("confidence", "confianca"))

    @field_validator("alternates", mode="before")
    @classmethod
    def _none_is_empty(cls, value):
        return value or []

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return min(1.0, max(0.0, value))

    def to_verdict(self) -> ClassifierVerdict:
        codes = [self.code.strip().upper()] + [a.strip().upper() for a in self.alternates if a and a.strip()]
        return ClassifierVerdict(
            key=normalize_key(self.word),
            classification=tuple(dict.fromkeys(codes)),
            confidence=self.confidence,
            is_polysemous=self.is_polysemous,
        )


class ClassifierResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    classifications: list[ClassificationItem] = Field(
        validation_alias=AliasChoices("classifications", "classificacoes"),
    )


def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", text).strip()


def parse_classifier_content(content: str) -> list[ClassifierVerdict]:
    """Parse the model's message content into verdicts.

    Raises:
        ClassifierError: If the content is not the expected JSON shape
    """
    try:
        response = ClassifierResponse.model_validate_json(strip_code_fences(content))
    except PydanticValidationError as e:
        raise ClassifierError("Unparseable classifier response", cause=e) from e
    return [item.to_verdict() for item in response.classifications]


def build_user_prompt(items: Sequence[WordContext]) -> str:
    lines = ["Classify these words:"]
    for number, item in enumerate(items, start=1):
        pos = f" [{item.pos}]" if item.pos else ""
        context = f' - context: "{item.sentence}"' if item.sentence else ""
        lines.append(f"{number}. {item.word}{pos}{context}")
    return "\n".join(lines)


class HttpClassifierClient:
    """Chat-completions classifier over httpx.

    Args:
        url: Full chat-completions endpoint URL
        api_key: Bearer token (optional for local gateways)
        model: Model identifier sent with each request
        timeout: Per-request timeout in seconds
        client: Pre-built ``httpx.Client`` (tests inject a MockTransport)
    """

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        model: str = "google/gemini-2.5-flash",
        timeout: float = 30.0,
        temperature: float = 0.2,
        max_tokens: int = 2000,
        client: httpx.Client | None = None,
    ):
        self.url = url
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = headers

    @classmethod
    def from_settings(cls, settings) -> HttpClassifierClient:
        return cls(
            settings.classifier_url,
            api_key=settings.classifier_api_key,
            model=settings.classifier_model,
            timeout=settings.classifier_timeout_seconds,
            temperature=settings.classifier_temperature,
        )

    def close(self) -> None:
        self._client.close()

    def classify(self, items: Sequence[WordContext]) -> list[ClassifierVerdict]:
        if not items:
            return []
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(items)},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        try:
            response = self._client.post(self.url, json=payload, headers=self._headers)
        except httpx.TimeoutException as e:
            raise TimeoutError(f"Classifier timed out: {e}", cause=e).with_context(
                dependency="classifier", url=self.url
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Classifier unreachable: {e}", cause=e).with_context(
                dependency="classifier", url=self.url
            ) from e

        self._raise_for_status(response)

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ClassifierError("Classifier response has no message content", cause=e).with_context(
                dependency="classifier", http_status=response.status_code
            ) from e

        verdicts = parse_classifier_content(content)
        logger.debug("classifier_batch_done", words=len(items), verdicts=len(verdicts), model=self.model)
        return verdicts

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = response.text[:200]
        if status == 429:
            retry_after = _retry_after_seconds(response.headers.get("Retry-After"))
            raise RateLimitError(f"Classifier rate limited: {detail}", retry_after=retry_after).with_context(
                dependency="classifier", http_status=status
            )
        if status >= 500:
            raise NetworkError(f"Classifier server error {status}: {detail}").with_context(
                dependency="classifier", http_status=status
            )
        if status in (401, 403):
            raise AuthError(f"Classifier rejected credentials ({status})").with_context(
                dependency="classifier", http_status=status
            )
        raise ClassifierError(f"Classifier request rejected {status}: {detail}", retryable=False).with_context(
            dependency="classifier", http_status=status
        )


def _retry_after_seconds(value: str | None) -> float:
    try:
        return float(value) if value else 60.0
    except ValueError:
        return 60.0


def verdicts_by_key(verdicts: Sequence[ClassifierVerdict]) -> dict[str, ClassifierVerdict]:
    """Index verdicts by normalized key; the first verdict for a key wins."""
    indexed: dict[str, ClassifierVerdict] = {}
    for verdict in verdicts:
        indexed.setdefault(verdict.key, verdict)
    return indexed


__all__ = [
    "NOT_CLASSIFIED",
    "ClassifierClient",
    "ClassifierVerdict",
    "ClassificationItem",
    "ClassifierResponse",
    "HttpClassifierClient",
    "parse_classifier_content",
    "strip_code_fences",
    "verdicts_by_key",
]
