"""Adapters for the remote structured-extraction backends (OpenAI, Claude)."""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from string import Template
from typing import Any

from anthropic import Anthropic
from anthropic.types import TextBlock
from openai import OpenAI

from src.config import Settings
from src.extraction.dates import ensure_upcoming
from src.extraction.description import normalize_description
from src.extraction.models import (
    FIELD_NAMES,
    AttemptResult,
    BackendFailure,
    BackendSuccess,
    ExtractedRecord,
    ExtractionSource,
    FailureReason,
)
from src.extraction.prompts import (
    PRIMARY_USER_TEMPLATE,
    SECONDARY_USER_TEMPLATE,
    Instructions,
    build_instructions,
)
from src.extraction.retry import RetryPolicy, is_transient, retry_with_backoff

logger = logging.getLogger(__name__)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if present."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()
    return text


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name}")


def parse_reply(reply: str, source: ExtractionSource, now: datetime) -> AttemptResult:
    """Parse a backend's textual reply into a tagged attempt result.

    The reply must be a JSON object with at least one record field. An
    object-shaped description is flattened, and ``scheduled_start`` is held to
    the never-in-the-past rule.
    """
    text = strip_code_fences(reply)
    if not text:
        return BackendFailure(source, FailureReason.MALFORMED, "empty reply")
    try:
        data = json.loads(text, parse_constant=_reject_constant)
    except ValueError as e:
        return BackendFailure(source, FailureReason.MALFORMED, f"invalid JSON: {e}")

    if not isinstance(data, dict):
        return BackendFailure(source, FailureReason.MALFORMED, f"expected object, got {type(data).__name__}")
    if not any(name in data for name in FIELD_NAMES):
        return BackendFailure(source, FailureReason.MALFORMED, "no work order fields in reply")

    payload: dict[str, Any] = {**data, "description": normalize_description(data.get("description"))}
    record = ExtractedRecord.from_payload(payload)
    record = replace(record, scheduled_start=ensure_upcoming(record.scheduled_start, now))
    return BackendSuccess(source, record)


class CompletionBackend(ABC):
    """One structured-extraction backend behind the retry executor.

    ``client=None`` marks the backend as unconfigured; it then reports
    ``FailureReason.UNCONFIGURED`` without making any request.
    """

    user_template: Template

    def __init__(
        self,
        client: Any,
        model: str,
        source: ExtractionSource,
        retry_policy: RetryPolicy | None = None,
        max_tokens: int = 1024,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.model = model
        self.source = source
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_tokens = max_tokens
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return self.client is not None

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def _complete(self, instructions: Instructions) -> str:
        """Send one request and return the reply text."""

    def _on_retry(self, error: BaseException, attempt: int, delay_ms: int) -> None:
        logger.warning(
            "[%s] Retry %d/%d after %dms: %s",
            self.name,
            attempt,
            self.retry_policy.max_retries,
            delay_ms,
            error,
        )

    def attempt(self, raw_text: str, now: datetime) -> AttemptResult:
        """Try to extract a record; never raises."""
        if not self.configured:
            return BackendFailure(self.source, FailureReason.UNCONFIGURED, f"{self.name} has no credentials")

        instructions = build_instructions(self.user_template, raw_text, now)
        try:
            reply = retry_with_backoff(
                lambda: self._complete(instructions),
                self.retry_policy,
                on_retry=self._on_retry,
                sleep=self._sleep,
            )
        except Exception as e:
            reason = FailureReason.TRANSPORT if is_transient(e) else FailureReason.TERMINAL
            return BackendFailure(self.source, reason, f"{type(e).__name__}: {e}")

        logger.debug("[%s] Reply length: %d", self.name, len(reply))
        return parse_reply(reply, self.source, now)


class OpenAIBackend(CompletionBackend):
    """OpenAI chat completions in JSON mode."""

    user_template = PRIMARY_USER_TEMPLATE

    def _complete(self, instructions: Instructions) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            temperature=0,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": instructions.system},
                {"role": "user", "content": instructions.user},
            ],
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


class AnthropicBackend(CompletionBackend):
    """Claude messages API."""

    user_template = SECONDARY_USER_TEMPLATE

    def _complete(self, instructions: Instructions) -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=instructions.system,
            messages=[{"role": "user", "content": instructions.user}],
        )
        # We always request plain text, so take the first TextBlock.
        for block in response.content:
            if isinstance(block, TextBlock):
                return block.text
        return ""


def build_backends(settings: Settings) -> list[CompletionBackend]:
    """Construct the backends in priority order from configuration.

    SDK-level retries are disabled so ``retry_with_backoff`` owns the policy.
    """
    policy = RetryPolicy(
        max_retries=settings.retry_max_retries,
        initial_delay_ms=settings.retry_initial_delay_ms,
        max_delay_ms=settings.retry_max_delay_ms,
    )

    openai_client = None
    if settings.openai_api_key:
        openai_client = OpenAI(
            api_key=settings.openai_api_key,
            max_retries=0,
            timeout=settings.llm_timeout_seconds,
        )

    anthropic_client = None
    if settings.anthropic_api_key:
        anthropic_client = Anthropic(
            api_key=settings.anthropic_api_key,
            max_retries=0,
            timeout=settings.llm_timeout_seconds,
        )

    return [
        OpenAIBackend(
            openai_client,
            settings.primary_model,
            ExtractionSource.PRIMARY,
            retry_policy=policy,
            max_tokens=settings.llm_max_tokens,
        ),
        AnthropicBackend(
            anthropic_client,
            settings.secondary_model,
            ExtractionSource.SECONDARY,
            retry_policy=policy,
            max_tokens=settings.llm_max_tokens,
        ),
    ]
