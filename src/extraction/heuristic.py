"""Deterministic regex-based work-order extraction.

This is the last-resort fallback: it needs no network access and never
raises for any string input. Every rule takes the first match in the text.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime

from src.extraction.dates import default_start, format_timestamp, resolve_date
from src.extraction.description import NOT_SPECIFIED, render_description
from src.extraction.models import ExtractedRecord, TradeCategory, Urgency

DEFAULT_JOB_TITLE = "Work Order"
DEFAULT_TRADE = TradeCategory.HVAC

EMAIL_PATTERN = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)

PHONE_PATTERN = re.compile(r"(?<!\d)(?:\+?1[\s.-]?)?\(?(\d{3})\)?[\s.-]?(\d{3})[\s.-]?(\d{4})(?!\d)")

# <number> <street>, <city>, <ST> <zip>? -- the street may not contain a
# lowercase word followed by a number run, so leading prose like
# "2 days at" is skipped while "Route 66 Rd" stays whole.
ADDRESS_PATTERN = re.compile(
    r"\b\d+\s+(?:(?!\b[a-z]+\s+\d+\s)[^,\n])+,\s*[^,\n]+,\s*[A-Z]{2}\b(?:\s*\d{5}(?:-\d{4})?)?"
)

_TRADE_RE = re.compile(r"hvac|air[\s-]*condition|plumb|electr|handyman|facilit", re.IGNORECASE)

_DATE_MDY_RE = re.compile(r"(?<!\d)(\d{1,2})/(\d{1,2})/(\d{4}|\d{2})(?!\d)")
_DATE_ISO_RE = re.compile(r"(?<!\d)(\d{4})-(\d{1,2})-(\d{1,2})(?!\d)")
_DATE_NAMED_RE = re.compile(
    r"\b(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?\s+(\d{1,2})(?:st|nd|rd|th)?\b"
    r"(?:,?\s+(\d{4})\b)?",
    re.IGNORECASE,
)
_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}  # fmt: skip

_TIME_COLON_RE = re.compile(r"(?<![\d:])(\d{1,2}):(\d{2})(?!\d)(?:\s*([ap])\.?m\b\.?)?", re.IGNORECASE)
_TIME_MERIDIEM_RE = re.compile(r"(?<![\d:])(\d{1,2})\s*([ap])\.?m\b", re.IGNORECASE)

_URGENCY_RULES: list[tuple[re.Pattern[str], Urgency]] = [
    (re.compile(r"\b(?:emergency|critical|asap|immediately)\b", re.IGNORECASE), Urgency.EMERGENCY),
    (re.compile(r"\btoday\b|\bsame[\s-]*day\b", re.IGNORECASE), Urgency.SAME_DAY),
    (re.compile(r"\btomorrow\b|\bnext[\s-]*day\b", re.IGNORECASE), Urgency.NEXT_DAY),
    (re.compile(r"\bweek", re.IGNORECASE), Urgency.WITHIN_WEEK),
]
DEFAULT_URGENCY = Urgency.WITHIN_WEEK

_DURATION_RANGE_RE = re.compile(r"\b(\d+)\s*-\s*(\d+)\s*(?:hours?|hrs?|h)\b", re.IGNORECASE)
_DURATION_SINGLE_RE = re.compile(r"\b(\d+)\s*(?:hours?|hrs?|h)\b", re.IGNORECASE)

_DOLLAR_RE = re.compile(r"\$\s*(\d[\d,]*(?:\.\d{2})?)")
_GROUPED_NUMBER_RE = re.compile(r"(?<![\d$,.])(\d{1,3}(?:,\d{3})+(?:\.\d{2})?)(?![\d,])")

_PAY_RATE_RE = re.compile(r"\$\s*\d[\d,]*(?:\.\d{2})?\s*(?:/|per\b)?\s*(?:hour|hr|flat)\b", re.IGNORECASE)

_CONTACT_RE = re.compile(r"\b(?:contact|attn|attention)\s*:\s*([A-Za-z][A-Za-z ]{2,39})", re.IGNORECASE)


def _clean(text: str) -> str:
    return text.replace("–", "-").replace("—", "-")


def extract_email(text: str) -> str:
    match = EMAIL_PATTERN.search(text)
    return match.group(0) if match else ""


def extract_phone(text: str) -> str:
    """Return the first North American number as ``(AAA) PPP-LLLL``."""
    match = PHONE_PATTERN.search(text)
    if not match:
        return ""
    area, prefix, line = match.groups()
    return f"({area}) {prefix}-{line}"


def classify_trade(text: str) -> TradeCategory:
    """Map the first trade keyword in the text to a category (HVAC if none)."""
    match = _TRADE_RE.search(text)
    if not match:
        return DEFAULT_TRADE
    keyword = match.group(0).lower()
    if keyword.startswith("plumb"):
        return TradeCategory.PLUMBING
    if keyword.startswith("electr"):
        return TradeCategory.ELECTRICAL
    if keyword == "handyman":
        return TradeCategory.HANDYMAN
    if keyword.startswith("facilit"):
        return TradeCategory.FACILITIES_TECH
    return TradeCategory.HVAC


def extract_address(text: str) -> str:
    match = ADDRESS_PATTERN.search(text)
    return match.group(0).strip() if match else ""


def _extract_time(text: str) -> tuple[int, int]:
    """Return (hour, minute) of the first time of day mentioned, else 09:00."""
    match = _TIME_COLON_RE.search(text)
    if match:
        hour, minute, meridiem = int(match.group(1)), int(match.group(2)), match.group(3)
    else:
        match = _TIME_MERIDIEM_RE.search(text)
        if not match:
            return 9, 0
        hour, minute, meridiem = int(match.group(1)), 0, match.group(2)

    if meridiem:
        if hour < 1 or hour > 12:
            return 9, 0
        if meridiem.lower() == "p" and hour < 12:
            hour += 12
        elif meridiem.lower() == "a" and hour == 12:
            hour = 0
    if hour > 23 or minute > 59:
        return 9, 0
    return hour, minute


def _extract_date(text: str, today: date) -> date | None:
    """Resolve the first date mentioned: M/D/Y, then ISO, then named month."""
    match = _DATE_MDY_RE.search(text)
    if match:
        month, day, year = (int(g) for g in match.groups())
        if year < 100:
            year += 2000
        resolved = resolve_date(month, day, year, today)
        if resolved:
            return resolved

    match = _DATE_ISO_RE.search(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        resolved = resolve_date(month, day, year, today)
        if resolved:
            return resolved

    match = _DATE_NAMED_RE.search(text)
    if match:
        month = _MONTHS[match.group(1)[:3].lower()]
        day = int(match.group(2))
        year = int(match.group(3)) if match.group(3) else None
        resolved = resolve_date(month, day, year, today)
        if resolved:
            return resolved

    return None


def extract_scheduled_start(text: str, now: datetime) -> str:
    """Resolve the scheduled start as ``YYYY-MM-DDTHH:MM``.

    Falls back to tomorrow at 09:00 when no date is mentioned. Resolved dates
    are never earlier than ``now``'s date.
    """
    resolved = _extract_date(text, now.date())
    if resolved is None:
        return format_timestamp(default_start(now))
    hour, minute = _extract_time(text)
    return format_timestamp(datetime(resolved.year, resolved.month, resolved.day, hour, minute))


def classify_urgency(text: str) -> Urgency:
    for pattern, urgency in _URGENCY_RULES:
        if pattern.search(text):
            return urgency
    return DEFAULT_URGENCY


def extract_duration(text: str) -> str:
    match = _DURATION_RANGE_RE.search(text)
    if match:
        return f"{match.group(1)}-{match.group(2)} hours"
    match = _DURATION_SINGLE_RE.search(text)
    if match:
        return f"{match.group(1)} hours"
    return ""


def _to_number(raw: str) -> float | None:
    number = float(raw.replace(",", ""))
    # an overlong digit run parses as inf
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def extract_budget(text: str) -> tuple[float, float]:
    """Return (min, max) over every dollar amount and comma-grouped number."""
    candidates = [m for m in _DOLLAR_RE.findall(text) if m.strip(",")]
    candidates += _GROUPED_NUMBER_RE.findall(text)
    amounts = [n for n in map(_to_number, candidates) if n is not None]
    if not amounts:
        return 0, 0
    return min(amounts), max(amounts)


def extract_pay_rate(text: str) -> str:
    match = _PAY_RATE_RE.search(text)
    return match.group(0).strip() if match else ""


def extract_contact_name(text: str) -> str:
    match = _CONTACT_RE.search(text)
    if not match:
        return ""
    name = match.group(1).strip()
    return name if len(name) >= 3 else ""


def extract_job_title(text: str) -> str:
    return " ".join(text[:100].split()) or DEFAULT_JOB_TITLE


def heuristic_extract(raw_text: str, now: datetime | None = None) -> ExtractedRecord:
    """Extract a work-order record from free text using fixed rules.

    Args:
        raw_text: The operator's job description.
        now: Extraction time used for date resolution (defaults to now).

    Returns:
        A fully populated ExtractedRecord.
    """
    now = now or datetime.now()
    text = _clean(raw_text)
    budget_min, budget_max = extract_budget(text)

    return ExtractedRecord(
        job_title=extract_job_title(text),
        description=render_description(
            symptoms=" ".join(text.split()),
            diagnosis=NOT_SPECIFIED,
            solution=NOT_SPECIFIED,
        ),
        trade_category=classify_trade(text).value,
        service_address=extract_address(text),
        scheduled_start=extract_scheduled_start(text, now),
        urgency=classify_urgency(text).value,
        duration_estimate=extract_duration(text),
        budget_min=budget_min,
        budget_max=budget_max,
        pay_rate=extract_pay_rate(text),
        contact_name=extract_contact_name(text),
        contact_phone=extract_phone(text),
        contact_email=extract_email(text),
    )
