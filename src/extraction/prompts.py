"""Instruction templates for the extraction backends.

Templates are filled with ``string.Template.substitute``: values are inserted
verbatim and the raw text is never interpreted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from string import Template

from src.extraction.models import TradeCategory, Urgency

_TRADES = "|".join(t.value for t in TradeCategory)
_URGENCIES = "|".join(u.value for u in Urgency)

SYSTEM_TEMPLATE = Template(
    "You are a work order parsing assistant with technical expertise. "
    "Output only a valid JSON object, no markdown and no explanation. "
    "CRITICAL: Today is $today. ALL dates must be TODAY or in the FUTURE; never use past dates. "
    "If a date like \"October 7\" is mentioned without a year, use its next occurrence. "
    "If no date is mentioned, use tomorrow ($tomorrow) at 09:00."
)

_RULES = (
    "CRITICAL DATE RULE: Today is $today. When a date is given without a year:\n"
    "- If that month/day in $current_year has already passed, use $next_year\n"
    "- Otherwise use $current_year\n"
    "- ALL dates MUST be today or in the future, NEVER in the past\n"
    "If NO date is mentioned, use ${tomorrow}T09:00. Always provide scheduled_start.\n\n"
    "The description field must be a single string with these labeled sections:\n"
    "**Symptoms:** [what was observed]\n"
    "**Diagnosis:** [likely cause]\n"
    "**Solution:** [recommended work]\n"
    "**Safety:** [any safety concerns]\n\n"
)

PRIMARY_USER_TEMPLATE = Template(
    "Extract fields from this work order text. If unknown, infer sensible defaults.\n\n"
    + _RULES
    + "Return ONLY JSON with fields: job_title, description (string with the labeled sections), "
    f"trade_category ({_TRADES}), service_address, "
    "scheduled_start (ISO 8601, today or later), "
    f"urgency ({_URGENCIES}), duration_estimate, budget_min (number), budget_max (number), "
    "pay_rate, contact_name, contact_phone, contact_email.\n\n"
    "RAW:\n$raw_text"
)

SECONDARY_USER_TEMPLATE = Template(
    "Extract the following fields from the raw work order text and return ONLY a valid "
    "JSON object (no markdown, no explanation). If a field is not found, use a sensible default.\n\n"
    + _RULES
    + "Raw work order text:\n$raw_text\n\n"
    "Return JSON with these exact fields:\n"
    "{\n"
    '  "job_title": "string (concise title, max 100 chars)",\n'
    '  "description": "string (labeled Symptoms/Diagnosis/Solution/Safety sections)",\n'
    f'  "trade_category": "one of: {_TRADES}",\n'
    '  "service_address": "string (full address)",\n'
    '  "scheduled_start": "string (ISO 8601 datetime, e.g. ${current_year}-10-15T14:00)",\n'
    f'  "urgency": "one of: {_URGENCIES}",\n'
    '  "duration_estimate": "string (e.g. \'2-3 hours\')",\n'
    '  "budget_min": number,\n'
    '  "budget_max": number,\n'
    '  "pay_rate": "string (e.g. \'$$75/hr\' or \'$$500 flat\')",\n'
    '  "contact_name": "string",\n'
    '  "contact_phone": "string",\n'
    '  "contact_email": "string"\n'
    "}"
)


@dataclass(frozen=True)
class Instructions:
    """A rendered system instruction and user message pair."""

    system: str
    user: str


def _values(raw_text: str, today: datetime) -> dict[str, str]:
    return {
        "today": today.date().isoformat(),
        "tomorrow": (today.date() + timedelta(days=1)).isoformat(),
        "current_year": str(today.year),
        "next_year": str(today.year + 1),
        "raw_text": raw_text,
    }


def build_instructions(template: Template, raw_text: str, today: datetime) -> Instructions:
    """Render the system instruction and the given user template."""
    values = _values(raw_text, today)
    return Instructions(
        system=SYSTEM_TEMPLATE.substitute(values),
        user=template.substitute(values),
    )
