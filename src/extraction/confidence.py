"""Per-field and overall confidence scoring for extracted work orders."""

from __future__ import annotations

import math
import re
from collections.abc import Callable
from dataclasses import dataclass

from src.extraction.models import ExtractedRecord, ExtractionSource, TradeCategory

SOURCE_MULTIPLIERS: dict[ExtractionSource, float] = {
    ExtractionSource.PRIMARY: 1.0,
    ExtractionSource.SECONDARY: 0.98,
    ExtractionSource.HEURISTIC: 0.7,
}

CRITICAL_FIELDS: frozenset[str] = frozenset(
    {"contact_email", "contact_phone", "service_address", "scheduled_start"}
)
# Tuning constant with no documented derivation; kept for parity.
CRITICAL_WEIGHT = 1.5

_TRADE_VOCABULARY = frozenset(t.value for t in TradeCategory)
# number, anything, state code, 5-digit zip
_ADDRESS_SHAPE = re.compile(r"\d+.*[A-Z]{2}\s*\d{5}")
_PHONE_SHAPE = re.compile(r"\(\d{3}\)\s?\d{3}-\d{4}")
_PAY_RATE_SHAPE = re.compile(r"\$\d+")
_DIGIT = re.compile(r"\d")


@dataclass(frozen=True)
class ConfidenceScores:
    """Overall confidence plus the adjusted per-field scores."""

    overall: float
    fields: dict[str, float]


# (field, predicate, score if present and well-formed, score otherwise)
_FIELD_RULES: list[tuple[str, Callable[[ExtractedRecord], bool], float, float]] = [
    ("job_title", lambda r: len(r.job_title) > 5, 0.9, 0.3),
    ("description", lambda r: len(r.description) > 20, 0.9, 0.5),
    ("trade_category", lambda r: r.trade_category in _TRADE_VOCABULARY, 0.95, 0.6),
    ("service_address", lambda r: bool(_ADDRESS_SHAPE.search(r.service_address)), 0.95, 0.4),
    ("scheduled_start", lambda r: len(r.scheduled_start) > 0, 0.85, 0.3),
    ("urgency", lambda r: bool(r.urgency), 0.9, 0.5),
    ("duration_estimate", lambda r: bool(_DIGIT.search(r.duration_estimate)), 0.8, 0.4),
    ("budget_min", lambda r: r.budget_min > 0, 0.85, 0.3),
    ("budget_max", lambda r: r.budget_max > 0, 0.85, 0.3),
    ("pay_rate", lambda r: bool(_PAY_RATE_SHAPE.search(r.pay_rate)), 0.85, 0.4),
    ("contact_name", lambda r: len(r.contact_name) > 2, 0.9, 0.4),
    ("contact_phone", lambda r: bool(_PHONE_SHAPE.search(r.contact_phone)), 0.95, 0.4),
    ("contact_email", lambda r: "@" in r.contact_email, 0.95, 0.3),
]


def base_scores(record: ExtractedRecord) -> dict[str, float]:
    """Score each field before the source multiplier is applied."""
    return {name: (high if check(record) else low) for name, check, high, low in _FIELD_RULES}


def _round_half_up(value: float, places: int = 2) -> float:
    factor = 10**places
    return math.floor(value * factor + 0.5) / factor


def score_record(record: ExtractedRecord, source: ExtractionSource) -> ConfidenceScores:
    """Compute per-field and overall confidence for a record.

    Each base score is scaled by the source multiplier and clamped to 1.0.
    The overall score is a weighted mean in which critical fields count
    ``CRITICAL_WEIGHT`` times, rounded to two decimals.
    """
    multiplier = SOURCE_MULTIPLIERS[source]
    adjusted = {name: min(1.0, score * multiplier) for name, score in base_scores(record).items()}

    critical_sum = sum(v for k, v in adjusted.items() if k in CRITICAL_FIELDS)
    other_sum = sum(v for k, v in adjusted.items() if k not in CRITICAL_FIELDS)
    n_critical = len(CRITICAL_FIELDS)
    n_other = len(adjusted) - n_critical

    overall = (CRITICAL_WEIGHT * critical_sum + other_sum) / (CRITICAL_WEIGHT * n_critical + n_other)
    return ConfidenceScores(overall=_round_half_up(overall), fields=adjusted)
