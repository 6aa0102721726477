"""Tests for backend adapters and the fallback orchestrator (no external APIs required)."""

from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import anthropic
import httpx
import openai
import pytest
from anthropic.types import TextBlock

from src.config import Settings
from src.extraction.backends import (
    AnthropicBackend,
    OpenAIBackend,
    build_backends,
    parse_reply,
    strip_code_fences,
)
from src.extraction.description import normalize_description, render_description
from src.extraction.models import (
    FIELD_NAMES,
    BackendFailure,
    BackendSuccess,
    ExtractedRecord,
    ExtractionSource,
    FailureReason,
)
from src.extraction.orchestrator import EmptyInputError, FallbackOrchestrator, build_orchestrator
from src.extraction.prompts import PRIMARY_USER_TEMPLATE, SECONDARY_USER_TEMPLATE, build_instructions
from src.extraction.retry import RetryPolicy

if TYPE_CHECKING:
    from tests.conftest import RecordingSleep

NOW = datetime(2025, 6, 1, 10, 0)

_OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
_ANTHROPIC_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")

BACKEND_PAYLOAD: dict[str, Any] = {
    "job_title": "Water heater replacement",
    "description": "**Symptoms:** No hot water\n**Diagnosis:** Failed element\n"
    "**Solution:** Replace unit\n**Safety:** Shut off gas",
    "trade_category": "Plumbing",
    "service_address": "1234 Oak Street, Austin, TX 78701",
    "scheduled_start": "2025-07-04T14:00:00",
    "urgency": "next_day",
    "duration_estimate": "2-3 hours",
    "budget_min": 1200,
    "budget_max": 3500,
    "pay_rate": "$75/hr",
    "contact_name": "Maria Lopez",
    "contact_phone": "(512) 555-0199",
    "contact_email": "maria@example.com",
}


def _openai_client(*replies: Any) -> MagicMock:
    """Mock OpenAI client; each reply is a content string or an exception."""
    client = MagicMock()
    effects: list[Any] = []
    for reply in replies:
        if isinstance(reply, BaseException):
            effects.append(reply)
            continue
        response = MagicMock()
        choice = MagicMock()
        choice.message.content = reply
        response.choices = [choice]
        effects.append(response)
    client.chat.completions.create.side_effect = effects
    return client


def _anthropic_client(*replies: Any) -> MagicMock:
    client = MagicMock()
    effects: list[Any] = []
    for reply in replies:
        if isinstance(reply, BaseException):
            effects.append(reply)
            continue
        response = MagicMock()
        response.content = [TextBlock(type="text", text=reply)]
        effects.append(response)
    client.messages.create.side_effect = effects
    return client


def _primary(client: Any, sleep: Any) -> OpenAIBackend:
    return OpenAIBackend(client, "gpt-4o-mini", ExtractionSource.PRIMARY, RetryPolicy(max_retries=2), sleep=sleep)


def _secondary(client: Any, sleep: Any) -> AnthropicBackend:
    return AnthropicBackend(
        client, "claude-sonnet-4-20250514", ExtractionSource.SECONDARY, RetryPolicy(max_retries=2), sleep=sleep
    )


def _connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=_OPENAI_REQUEST)


def _anthropic_overloaded() -> anthropic.InternalServerError:
    return anthropic.InternalServerError(
        "overloaded", response=httpx.Response(529, request=_ANTHROPIC_REQUEST), body=None
    )


# ---------------------------------------------------------------------------
# Description normalization
# ---------------------------------------------------------------------------


class TestNormalizeDescription:
    def test_string_passes_through(self) -> None:
        assert normalize_description("already a string") == "already a string"

    def test_object_flattened(self) -> None:
        result = normalize_description(
            {
                "symptoms_observed": "Breaker trips",
                "likely_cause": "Overloaded circuit",
                "recommended_solution": "Add a dedicated circuit",
                "safety_concerns": "De-energize panel first",
            }
        )
        assert result == (
            "**Symptoms:** Breaker trips\n"
            "**Diagnosis:** Overloaded circuit\n"
            "**Solution:** Add a dedicated circuit\n"
            "**Safety:** De-energize panel first"
        )

    def test_object_with_short_keys_and_gaps(self) -> None:
        result = normalize_description({"symptoms": "Noise", "diagnosis": "Loose belt"})
        assert "**Symptoms:** Noise" in result
        assert "**Diagnosis:** Loose belt" in result
        assert "**Solution:** Not specified" in result
        assert "**Safety:** None" in result

    @pytest.mark.parametrize("value", [None, 42, ["a", "b"]])
    def test_other_shapes_become_empty(self, value: Any) -> None:
        assert normalize_description(value) == ""

    def test_render_defaults(self) -> None:
        assert render_description() == (
            "**Symptoms:** Not specified\n**Diagnosis:** Not specified\n"
            "**Solution:** Not specified\n**Safety:** None"
        )


# ---------------------------------------------------------------------------
# Instructions
# ---------------------------------------------------------------------------


class TestInstructions:
    def test_anchored_to_today(self) -> None:
        instructions = build_instructions(PRIMARY_USER_TEMPLATE, "AC broken", NOW)
        assert "Today is 2025-06-01" in instructions.system
        assert "2025-06-02" in instructions.system
        assert "use 2026" in instructions.user
        assert "**Symptoms:**" in instructions.user
        assert instructions.user.endswith("RAW:\nAC broken")

    def test_raw_text_inserted_verbatim(self) -> None:
        """Template syntax inside the raw text is never expanded."""
        raw = "Budget $today ${raw_text} {0} %(x)s"
        instructions = build_instructions(SECONDARY_USER_TEMPLATE, raw, NOW)
        assert raw in instructions.user
        assert "'$75/hr'" in instructions.user

    def test_secondary_lists_fields(self) -> None:
        user = build_instructions(SECONDARY_USER_TEMPLATE, "x", NOW).user
        for name in FIELD_NAMES:
            assert f'"{name}"' in user


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------


class TestParseReply:
    def test_valid_json(self) -> None:
        result = parse_reply(json.dumps(BACKEND_PAYLOAD), ExtractionSource.PRIMARY, NOW)
        assert isinstance(result, BackendSuccess)
        assert result.ok
        assert result.record.contact_phone == "(512) 555-0199"
        assert result.record.budget_max == 3500
        assert result.record.scheduled_start == "2025-07-04T14:00:00"

    def test_code_fenced_json(self) -> None:
        reply = "```json\n" + json.dumps(BACKEND_PAYLOAD) + "\n```"
        assert isinstance(parse_reply(reply, ExtractionSource.SECONDARY, NOW), BackendSuccess)

    def test_strip_code_fences(self) -> None:
        assert strip_code_fences("```\n{}\n```") == "{}"
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'

    @pytest.mark.parametrize(
        "reply",
        ["", "Sure! Here is the JSON you asked for.", "[1, 2, 3]", '"just a string"', '{"unrelated": true}'],
    )
    def test_malformed(self, reply: str) -> None:
        result = parse_reply(reply, ExtractionSource.PRIMARY, NOW)
        assert isinstance(result, BackendFailure)
        assert not result.ok
        assert result.reason is FailureReason.MALFORMED

    def test_object_description_flattened(self) -> None:
        payload = {**BACKEND_PAYLOAD, "description": {"symptoms_observed": "Leak", "likely_cause": "Seal"}}
        result = parse_reply(json.dumps(payload), ExtractionSource.PRIMARY, NOW)
        assert isinstance(result, BackendSuccess)
        assert result.record.description.startswith("**Symptoms:** Leak\n**Diagnosis:** Seal")

    def test_missing_fields_and_money_strings(self) -> None:
        reply = json.dumps({"job_title": "Fix door", "budget_min": "$1,200", "budget_max": "n/a"})
        result = parse_reply(reply, ExtractionSource.PRIMARY, NOW)
        assert isinstance(result, BackendSuccess)
        assert result.record.budget_min == 1200
        assert result.record.budget_max == 0
        assert result.record.contact_email == ""
        assert result.record.scheduled_start == "2025-06-02T09:00"

    @pytest.mark.parametrize("constant", ["Infinity", "-Infinity", "NaN"])
    def test_non_finite_json_constant_malformed(self, constant: str) -> None:
        reply = '{"job_title": "Fix AC", "budget_max": %s}' % constant
        result = parse_reply(reply, ExtractionSource.PRIMARY, NOW)
        assert isinstance(result, BackendFailure)
        assert result.reason is FailureReason.MALFORMED

    @pytest.mark.parametrize("value", ["inf", "$1e999", 10**400])
    def test_non_finite_budget_coerced_to_zero(self, value: Any) -> None:
        reply = json.dumps({"job_title": "Fix AC", "budget_min": 150, "budget_max": value})
        result = parse_reply(reply, ExtractionSource.PRIMARY, NOW)
        assert isinstance(result, BackendSuccess)
        assert result.record.budget_min == 150
        assert result.record.budget_max == 0

    def test_past_scheduled_start_rolled_forward(self) -> None:
        reply = json.dumps({**BACKEND_PAYLOAD, "scheduled_start": "2024-01-05T08:30:00"})
        result = parse_reply(reply, ExtractionSource.PRIMARY, NOW)
        assert isinstance(result, BackendSuccess)
        assert result.record.scheduled_start == "2026-01-05T08:30"


# ---------------------------------------------------------------------------
# Backend adapters
# ---------------------------------------------------------------------------


class TestOpenAIBackend:
    def test_success(self, no_sleep: RecordingSleep) -> None:
        client = _openai_client(json.dumps(BACKEND_PAYLOAD))
        result = _primary(client, no_sleep).attempt("Water heater out", NOW)

        assert isinstance(result, BackendSuccess)
        assert result.source is ExtractionSource.PRIMARY
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0]["role"] == "system"
        assert "Today is 2025-06-01" in kwargs["messages"][0]["content"]
        assert "Water heater out" in kwargs["messages"][1]["content"]

    def test_unconfigured_makes_no_call(self, no_sleep: RecordingSleep) -> None:
        backend = _primary(None, no_sleep)
        assert not backend.configured
        result = backend.attempt("anything", NOW)
        assert isinstance(result, BackendFailure)
        assert result.reason is FailureReason.UNCONFIGURED

    def test_transport_failure_after_retries(self, no_sleep: RecordingSleep) -> None:
        client = _openai_client(_connection_error(), _connection_error(), _connection_error())
        result = _primary(client, no_sleep).attempt("anything", NOW)

        assert isinstance(result, BackendFailure)
        assert result.reason is FailureReason.TRANSPORT
        assert client.chat.completions.create.call_count == 3
        assert no_sleep.calls == [1.0, 2.0]

    def test_recovers_on_retry(self, no_sleep: RecordingSleep) -> None:
        server_error = openai.InternalServerError(
            "bad gateway", response=httpx.Response(502, request=_OPENAI_REQUEST), body=None
        )
        client = _openai_client(server_error, json.dumps(BACKEND_PAYLOAD))
        result = _primary(client, no_sleep).attempt("anything", NOW)

        assert isinstance(result, BackendSuccess)
        assert client.chat.completions.create.call_count == 2

    def test_bad_credentials_not_retried(self, no_sleep: RecordingSleep) -> None:
        auth_error = openai.AuthenticationError(
            "invalid api key", response=httpx.Response(401, request=_OPENAI_REQUEST), body=None
        )
        client = _openai_client(auth_error)
        result = _primary(client, no_sleep).attempt("anything", NOW)

        assert isinstance(result, BackendFailure)
        assert result.reason is FailureReason.TERMINAL
        client.chat.completions.create.assert_called_once()
        assert no_sleep.calls == []

    def test_unparseable_reply_not_retried(self, no_sleep: RecordingSleep) -> None:
        client = _openai_client("I could not find a work order.")
        result = _primary(client, no_sleep).attempt("anything", NOW)

        assert isinstance(result, BackendFailure)
        assert result.reason is FailureReason.MALFORMED
        client.chat.completions.create.assert_called_once()

    def test_empty_choices(self, no_sleep: RecordingSleep) -> None:
        client = MagicMock()
        client.chat.completions.create.return_value.choices = []
        result = _primary(client, no_sleep).attempt("anything", NOW)
        assert isinstance(result, BackendFailure)
        assert result.reason is FailureReason.MALFORMED


class TestAnthropicBackend:
    def test_success(self, no_sleep: RecordingSleep) -> None:
        client = _anthropic_client(json.dumps(BACKEND_PAYLOAD))
        result = _secondary(client, no_sleep).attempt("Water heater out", NOW)

        assert isinstance(result, BackendSuccess)
        assert result.source is ExtractionSource.SECONDARY
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-sonnet-4-20250514"
        assert "Today is 2025-06-01" in kwargs["system"]
        assert "Water heater out" in kwargs["messages"][0]["content"]

    def test_overloaded_retried_then_absorbed(self, no_sleep: RecordingSleep) -> None:
        client = _anthropic_client(_anthropic_overloaded(), _anthropic_overloaded(), _anthropic_overloaded())
        result = _secondary(client, no_sleep).attempt("anything", NOW)

        assert isinstance(result, BackendFailure)
        assert result.reason is FailureReason.TRANSPORT
        assert client.messages.create.call_count == 3

    def test_no_text_block(self, no_sleep: RecordingSleep) -> None:
        client = MagicMock()
        client.messages.create.return_value.content = []
        result = _secondary(client, no_sleep).attempt("anything", NOW)
        assert isinstance(result, BackendFailure)
        assert result.reason is FailureReason.MALFORMED


class TestBuildBackends:
    def test_priority_order_and_configuration(self) -> None:
        settings = Settings(_env_file=None, openai_api_key="", anthropic_api_key="sk-ant-test")  # type: ignore[call-arg]
        primary, secondary = build_backends(settings)

        assert isinstance(primary, OpenAIBackend)
        assert primary.source is ExtractionSource.PRIMARY
        assert not primary.configured
        assert isinstance(secondary, AnthropicBackend)
        assert secondary.source is ExtractionSource.SECONDARY
        assert secondary.configured
        assert secondary.model == settings.secondary_model
        assert secondary.retry_policy.max_retries == settings.retry_max_retries

    def test_heuristic_only_orchestrator(self) -> None:
        settings = Settings(_env_file=None, openai_api_key="sk-test")  # type: ignore[call-arg]
        assert build_orchestrator(settings, heuristic_only=True).backends == ()
        assert len(build_orchestrator(settings).backends) == 2


# ---------------------------------------------------------------------------
# Fallback orchestrator
# ---------------------------------------------------------------------------


class TestFallbackOrchestrator:
    def test_primary_wins(self, no_sleep: RecordingSleep) -> None:
        primary_client = _openai_client(json.dumps(BACKEND_PAYLOAD))
        secondary_client = _anthropic_client(json.dumps(BACKEND_PAYLOAD))
        orchestrator = FallbackOrchestrator(
            [_primary(primary_client, no_sleep), _secondary(secondary_client, no_sleep)],
            clock=lambda: NOW,
        )

        result = orchestrator.extract("Water heater out")

        assert result.source is ExtractionSource.PRIMARY
        assert result.confidence == 0.9
        secondary_client.messages.create.assert_not_called()

    def test_secondary_only_configured(self, no_sleep: RecordingSleep) -> None:
        secondary_client = _anthropic_client(json.dumps(BACKEND_PAYLOAD))
        orchestrator = FallbackOrchestrator(
            [_primary(None, no_sleep), _secondary(secondary_client, no_sleep)],
            clock=lambda: NOW,
        )

        result = orchestrator.extract("Water heater out")

        assert result.source is ExtractionSource.SECONDARY
        assert result.confidence == 0.88

    def test_neither_configured(self, no_sleep: RecordingSleep) -> None:
        orchestrator = FallbackOrchestrator(
            [_primary(None, no_sleep), _secondary(None, no_sleep)],
            clock=lambda: NOW,
        )
        result = orchestrator.extract("call 555.123.4567 about the AC")

        assert result.source is ExtractionSource.HEURISTIC
        assert result.record.contact_phone == "(555) 123-4567"

    def test_malformed_primary_falls_through(self, no_sleep: RecordingSleep) -> None:
        primary_client = _openai_client("not json at all")
        secondary_client = _anthropic_client(json.dumps(BACKEND_PAYLOAD))
        orchestrator = FallbackOrchestrator(
            [_primary(primary_client, no_sleep), _secondary(secondary_client, no_sleep)],
            clock=lambda: NOW,
        )

        assert orchestrator.extract("Water heater out").source is ExtractionSource.SECONDARY

    def test_both_unreachable(self, no_sleep: RecordingSleep) -> None:
        primary_client = _openai_client(*[_connection_error() for _ in range(3)])
        secondary_client = _anthropic_client(*[_anthropic_overloaded() for _ in range(3)])
        orchestrator = FallbackOrchestrator(
            [_primary(primary_client, no_sleep), _secondary(secondary_client, no_sleep)],
            clock=lambda: NOW,
        )

        result = orchestrator.extract("Plumbing leak at 1234 Oak Street, Austin, TX 78701, call 555.123.4567")

        assert result.source is ExtractionSource.HEURISTIC
        assert primary_client.chat.completions.create.call_count == 3
        assert secondary_client.messages.create.call_count == 3
        assert 0.0 <= result.confidence <= 0.7
        assert all(v <= 0.7 for v in result.field_confidence.values())
        assert result.field_confidence["contact_phone"] == pytest.approx(0.95 * 0.7)

    def test_sequential_priority_order(self, no_sleep: RecordingSleep) -> None:
        calls: list[str] = []
        primary = MagicMock()
        primary.attempt.side_effect = lambda *_: (
            calls.append("primary") or BackendFailure(ExtractionSource.PRIMARY, FailureReason.TRANSPORT)
        )
        secondary = MagicMock()
        secondary.attempt.side_effect = lambda *_: (
            calls.append("secondary") or BackendSuccess(ExtractionSource.SECONDARY, ExtractedRecord(job_title="x"))
        )

        result = FallbackOrchestrator([primary, secondary], clock=lambda: NOW).extract("text")

        assert calls == ["primary", "secondary"]
        assert result.source is ExtractionSource.SECONDARY

    @pytest.mark.parametrize("raw_text", ["", "   ", "\n\t", None])
    def test_empty_input_rejected_before_extraction(self, raw_text: str | None) -> None:
        backend = MagicMock()
        with pytest.raises(EmptyInputError):
            FallbackOrchestrator([backend], clock=lambda: NOW).extract(raw_text)
        backend.attempt.assert_not_called()

    def test_empty_input_is_value_error(self) -> None:
        assert issubclass(EmptyInputError, ValueError)

    @pytest.mark.parametrize(
        "raw_text",
        [
            "AC broken",
            "schedule for January 5",
            "between $1,200 and $3,500",
            "Emergency!! electrical fire smell in unit 3b, call (415) 555-2671 ASAP",
            "x",
        ],
    )
    def test_always_returns_populated_result(self, raw_text: str) -> None:
        result = FallbackOrchestrator([], clock=lambda: NOW).extract(raw_text)

        assert set(result.record.to_dict()) == set(FIELD_NAMES)
        assert set(result.field_confidence) == set(FIELD_NAMES)
        assert 0.0 <= result.confidence <= 1.0
        assert result.record.scheduled_start >= "2025-06-01"

    def test_scenarios(self) -> None:
        orchestrator = FallbackOrchestrator([], clock=lambda: datetime(2025, 6, 1, 8, 0))

        assert orchestrator.extract("schedule for January 5").record.scheduled_start == "2026-01-05T09:00"
        assert orchestrator.extract("no date here").record.scheduled_start == "2025-06-02T09:00"
        budget = orchestrator.extract("between $1,200 and $3,500").record
        assert (budget.budget_min, budget.budget_max) == (1200, 3500)

    def test_result_response_shape(self) -> None:
        response = FallbackOrchestrator([], clock=lambda: NOW).extract("Fix the sink").to_response()

        assert response["success"] is True
        assert response["source"] == "heuristic"
        assert set(response) == {"success", "data", "confidence", "fieldConfidence", "source"}

    def test_result_is_immutable(self) -> None:
        result = FallbackOrchestrator([], clock=lambda: NOW).extract("Fix the sink")
        with pytest.raises(AttributeError):
            result.source = ExtractionSource.PRIMARY  # type: ignore[misc]
