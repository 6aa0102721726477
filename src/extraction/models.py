"""Data models for work-order extraction results."""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields
from enum import StrEnum
from typing import Any


class TradeCategory(StrEnum):
    """Fixed trade vocabulary for work orders."""

    HVAC = "HVAC"
    PLUMBING = "Plumbing"
    ELECTRICAL = "Electrical"
    HANDYMAN = "Handyman"
    FACILITIES_TECH = "Facilities Tech"
    OTHER = "Other"


class Urgency(StrEnum):
    """How soon the work needs to start."""

    EMERGENCY = "emergency"
    SAME_DAY = "same_day"
    NEXT_DAY = "next_day"
    WITHIN_WEEK = "within_week"
    FLEXIBLE = "flexible"


class ExtractionSource(StrEnum):
    """Which extraction path produced the winning record."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    HEURISTIC = "heuristic"


class FailureReason(StrEnum):
    """Why a backend attempt produced no candidate."""

    UNCONFIGURED = "unconfigured"
    TRANSPORT = "transport"
    TERMINAL = "terminal"
    MALFORMED = "malformed"


_MONEY_CHARS_RE = re.compile(r"[$,\s]")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def _as_number(value: Any) -> float:
    """Coerce a backend-supplied money value to a number (0 when unusable)."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, str):
        value = _MONEY_CHARS_RE.sub("", value)
    elif not isinstance(value, int | float):
        return 0
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return 0
    # "inf", "nan" and ints past float range are not money
    if not math.isfinite(number):
        return 0
    if isinstance(value, int):
        return value
    return int(number) if number.is_integer() else number


@dataclass(frozen=True)
class ExtractedRecord:
    """Normalized structured work-order fields derived from free text."""

    job_title: str = ""
    description: str = ""
    trade_category: str = ""
    service_address: str = ""
    scheduled_start: str = ""  # "YYYY-MM-DDTHH:MM" (local) or backend ISO string
    urgency: str = ""
    duration_estimate: str = ""
    budget_min: float = 0
    budget_max: float = 0
    pay_rate: str = ""
    contact_name: str = ""
    contact_phone: str = ""
    contact_email: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ExtractedRecord:
        """Build a record from a parsed backend JSON object.

        Unknown keys are ignored; missing text fields become ``""`` and
        unusable budgets become ``0``. ``description`` is expected to be
        normalized to a string before this is called.
        """
        return cls(
            job_title=_as_text(payload.get("job_title")),
            description=_as_text(payload.get("description")),
            trade_category=_as_text(payload.get("trade_category")),
            service_address=_as_text(payload.get("service_address")),
            scheduled_start=_as_text(payload.get("scheduled_start")),
            urgency=_as_text(payload.get("urgency")),
            duration_estimate=_as_text(payload.get("duration_estimate")),
            budget_min=_as_number(payload.get("budget_min")),
            budget_max=_as_number(payload.get("budget_max")),
            pay_rate=_as_text(payload.get("pay_rate")),
            contact_name=_as_text(payload.get("contact_name")),
            contact_phone=_as_text(payload.get("contact_phone")),
            contact_email=_as_text(payload.get("contact_email")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


FIELD_NAMES: tuple[str, ...] = tuple(f.name for f in fields(ExtractedRecord))


@dataclass(frozen=True)
class BackendSuccess:
    """A backend attempt that produced a usable record."""

    source: ExtractionSource
    record: ExtractedRecord
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class BackendFailure:
    """A backend attempt that produced no candidate."""

    source: ExtractionSource
    reason: FailureReason
    detail: str = ""
    ok: bool = field(default=False, init=False)


AttemptResult = BackendSuccess | BackendFailure


@dataclass(frozen=True)
class ExtractionResult:
    """The single result returned to the caller for one extraction request."""

    record: ExtractedRecord
    confidence: float
    field_confidence: dict[str, float]
    source: ExtractionSource

    def to_response(self) -> dict[str, Any]:
        """Render the public success payload."""
        return {
            "success": True,
            "data": self.record.to_dict(),
            "confidence": self.confidence,
            "fieldConfidence": dict(self.field_confidence),
            "source": self.source.value,
        }
