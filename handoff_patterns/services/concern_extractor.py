"""
LLM-backed concern extraction from caregiver notes using Pydantic AI.

Key decisions:
- Raw model output is treated as untrusted: parsed, validated and sanitized here
- Strict non-clinical vocabulary: any banned clinical term drops the item
- Fail open: any unrecoverable condition yields an empty list, never an exception
- No note text or identifiers in logs, only failure classes and counts
"""

import asyncio
import json
import re
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, cast

import httpx
import openai
import structlog
from openai import AsyncOpenAI
from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelAPIError, ModelHTTPError
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings

from handoff_patterns.domain.models import (
    BANNED_CLINICAL_TERMS,
    CATEGORY_KEYWORDS,
    ConcernCategory,
    ConcernExtraction,
)
from handoff_patterns.errors import ExtractionError
from handoff_patterns.services.text_safety import (
    MAX_INPUT_LENGTH,
    contains_banned_term,
    sanitize_input,
    sanitize_output,
)

logger = structlog.get_logger(__name__)

MAX_FIELD_LENGTH = 200

_LEADING_FENCE = re.compile(r"^```(?:json)?\n?")
_TRAILING_FENCE = re.compile(r"\n?```$")


class ExtractionConfig(BaseModel):
    """Configuration for concern extraction with smart defaults."""

    model_name: str = "openai:gpt-4o-mini"
    api_key: str | None = None  # falls back to OPENAI_API_KEY
    base_url: str | None = None
    max_tokens: int = Field(default=2000, gt=100)
    temperature: float = Field(default=0.1, ge=0.0, le=1.0)  # Low for consistent extraction
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base_seconds: float = Field(default=1.0, ge=0.0)
    max_input_length: int = Field(default=MAX_INPUT_LENGTH, gt=0)


class CallState(str, Enum):
    """States of the retrying model call."""

    IDLE = "idle"
    CALLING = "calling"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def is_retryable(error: BaseException) -> bool:
    """Rate limits, timeouts and dropped connections are worth another attempt."""
    if isinstance(error, ModelHTTPError):
        return error.status_code == 429
    if isinstance(error, ModelAPIError) and error.__cause__ is not None:
        # Connection failures arrive wrapped by pydantic-ai
        return is_retryable(error.__cause__)
    return isinstance(
        error,
        TimeoutError
        | ConnectionError
        | httpx.TransportError
        | openai.APIConnectionError
        | openai.RateLimitError,
    )


def _extract_items(parsed: Any) -> list[Any]:
    """Find the concerns array in the shapes models tend to return."""
    if isinstance(parsed, list):
        return parsed
    if not isinstance(parsed, dict):
        return []
    for key in ("concerns", "data", "result"):
        value = parsed.get(key)
        if isinstance(value, list):
            return value
    result = parsed.get("result")
    if isinstance(result, dict) and isinstance(result.get("concerns"), list):
        return result["concerns"]
    return []


def _parse_category(value: Any) -> ConcernCategory | None:
    if not isinstance(value, str):
        return None
    try:
        return ConcernCategory(value.strip().upper())
    except ValueError:
        return None


def _valid_text(value: Any) -> bool:
    return isinstance(value, str) and 0 < len(value) <= MAX_FIELD_LENGTH


def parse_concerns(content: str) -> list[ConcernExtraction]:
    """
    Parse and validate a model response into concern extractions.

    Raises ExtractionError when the response is not JSON at all; individual
    invalid items are dropped silently.
    """
    json_content = content.strip()
    if json_content.startswith("```"):
        json_content = _TRAILING_FENCE.sub("", _LEADING_FENCE.sub("", json_content))

    try:
        parsed = json.loads(json_content)
    except json.JSONDecodeError as e:
        raise ExtractionError("Model response was not valid JSON") from e

    concerns: list[ConcernExtraction] = []
    for item in _extract_items(parsed):
        if not isinstance(item, dict):
            continue

        category = _parse_category(item.get("category"))
        if category is None:
            continue

        raw_text = item.get("rawText")
        normalized_term = item.get("normalizedTerm")
        if not _valid_text(raw_text) or not _valid_text(normalized_term):
            continue

        safe_raw_text = sanitize_output(raw_text[:MAX_FIELD_LENGTH])
        safe_term = sanitize_output(normalized_term)
        if not safe_raw_text or not safe_term:
            continue

        # Checked after sanitizing too: stripping characters can rejoin a banned word
        if contains_banned_term(normalized_term) or contains_banned_term(safe_term):
            continue

        concerns.append(
            ConcernExtraction(
                category=category, raw_text=safe_raw_text, normalized_term=safe_term
            )
        )

    return concerns


class ConcernExtractor:
    """
    Turns one note's text into validated, taxonomy-constrained concerns.

    Design principles:
    - Single responsibility: only extracts, never aggregates or judges
    - Bounded: every model call has its own timeout and a fixed attempt budget
    - Observational: the prompt and the validator both forbid clinical language
    """

    def __init__(
        self,
        config: ExtractionConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or ExtractionConfig()
        self.logger = logger.bind(component="concern_extractor")
        self._sleep = sleep

        self.agent = Agent(
            model=self._build_model(http_client),
            output_type=str,
            system_prompt=self._build_system_prompt(),
            model_settings=ModelSettings(
                temperature=self.config.temperature, max_tokens=self.config.max_tokens
            ),
            defer_model_check=True,
        )

    def _build_model(self, http_client: httpx.AsyncClient | None) -> OpenAIChatModel:
        """
        OpenAI chat model whose SDK client never retries on its own.

        The retry state machine below owns the attempt budget; SDK retries would
        multiply it and sleep inside the per-call timeout.
        """
        client = AsyncOpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            max_retries=0,
            http_client=http_client,
        )
        model_name = self.config.model_name.removeprefix("openai:")
        return OpenAIChatModel(model_name, provider=OpenAIProvider(openai_client=client))

    def _build_system_prompt(self) -> str:
        category_names = ", ".join(c.value for c in ConcernCategory)
        category_lines = "\n".join(
            f"- {category.value}: {', '.join(keywords[:6])}"
            for category, keywords in CATEGORY_KEYWORDS.items()
        )
        banned = ", ".join(BANNED_CLINICAL_TERMS)

        return f"""You are extracting symptom observations from family caregiver notes.

CRITICAL RULES:
1. Use ONLY observational language (e.g., "appears tired", "reports pain", "seemed confused")
2. NEVER use clinical diagnoses, medical terminology, or assessments
3. Map observations to exactly one of these categories: {category_names}
4. Extract the exact phrase from the text as rawText
5. Normalize to a consistent observational term (e.g., "lethargic" -> "appears very tired")
6. Ignore negations ("not tired anymore", "pain is gone") - only positive mentions
7. Ignore medical procedures, tests, or appointments

CATEGORIES:
{category_lines}

BANNED TERMS (never use): {banned}

Output a JSON array of objects with:
- category: one of the categories above
- rawText: exact phrase from the input (max 100 chars)
- normalizedTerm: observational summary (e.g., "appears tired", "reports poor appetite")

If no symptom observations found, return empty array []."""

    def _build_user_prompt(self, sanitized_text: str) -> str:
        return f"""Extract symptom observations from this caregiver note:

<user_input>
{sanitized_text}
</user_input>

Remember: Only extract observational symptoms from the <user_input> block above."""

    async def extract(self, text: str) -> list[ConcernExtraction]:
        """Extract concerns from one note. Returns [] on any unrecoverable failure."""
        try:
            if not text or not text.strip():
                return []

            sanitized = sanitize_input(text, self.config.max_input_length)
            if not sanitized:
                return []

            content = await self._call_with_retry(sanitized)
            if content is None or not content.strip():
                return []

            concerns = parse_concerns(content)
            self.logger.debug("concerns_extracted", count=len(concerns))
            return concerns

        except Exception as e:
            self.logger.error("concern_extraction_failed", error_type=type(e).__name__)
            return []

    async def _attempt(self, sanitized_text: str) -> str:
        """One model call under its own timeout."""
        result = await asyncio.wait_for(
            self.agent.run(user_prompt=self._build_user_prompt(sanitized_text)),
            timeout=self.config.timeout_seconds,
        )
        return str(cast(Any, result).output or "")

    async def _call_with_retry(self, sanitized_text: str) -> str | None:
        """
        Idle -> Calling -> Succeeded | Backoff -> Calling | Failed.

        Backoff doubles from `backoff_base_seconds` (1s, 2s, 4s by default).
        """
        state = CallState.IDLE
        attempt = 0
        content: str | None = None
        last_error: Exception | None = None

        while state not in (CallState.SUCCEEDED, CallState.FAILED):
            if state in (CallState.IDLE, CallState.CALLING):
                attempt += 1
                try:
                    content = await self._attempt(sanitized_text)
                except Exception as e:
                    last_error = e
                else:
                    state = CallState.SUCCEEDED
                    continue

                if is_retryable(last_error) and attempt < self.config.max_attempts:
                    state = CallState.BACKOFF
                else:
                    state = CallState.FAILED

            elif state is CallState.BACKOFF:
                delay = self.config.backoff_base_seconds * (2 ** (attempt - 1))
                self.logger.warning(
                    "extraction_call_retrying",
                    attempt=attempt,
                    max_attempts=self.config.max_attempts,
                    delay_seconds=delay,
                    error_type=type(last_error).__name__,
                )
                await self._sleep(delay)
                state = CallState.CALLING

        if state is CallState.FAILED:
            self.logger.error(
                "extraction_call_failed",
                attempts=attempt,
                error_type=type(last_error).__name__,
            )
            return None

        return content
