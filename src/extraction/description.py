"""Four-section work-order description rendering."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

NOT_SPECIFIED = "Not specified"

# Keys a backend may use when it returns the description as an object.
_SECTION_KEYS: dict[str, tuple[str, ...]] = {
    "symptoms": ("symptoms_observed", "symptoms"),
    "diagnosis": ("likely_cause", "diagnosis"),
    "solution": ("recommended_solution", "solution"),
    "safety": ("safety_concerns", "safety"),
}


def render_description(
    symptoms: str = "",
    diagnosis: str = "",
    solution: str = "",
    safety: str = "",
) -> str:
    """Render the labeled Symptoms/Diagnosis/Solution/Safety string."""
    return (
        f"**Symptoms:** {symptoms or NOT_SPECIFIED}\n"
        f"**Diagnosis:** {diagnosis or NOT_SPECIFIED}\n"
        f"**Solution:** {solution or NOT_SPECIFIED}\n"
        f"**Safety:** {safety or 'None'}"
    )


def _section(payload: Mapping[str, Any], section: str) -> str:
    for key in _SECTION_KEYS[section]:
        value = payload.get(key)
        if value:
            return str(value).strip()
    return ""


def normalize_description(value: Any) -> str:
    """Resolve a string- or object-shaped description into one string.

    Strings pass through unchanged; mappings are flattened into the four
    labeled sections; anything else becomes an empty string.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        return render_description(
            symptoms=_section(value, "symptoms"),
            diagnosis=_section(value, "diagnosis"),
            solution=_section(value, "solution"),
            safety=_section(value, "safety"),
        )
    return ""
