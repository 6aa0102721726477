"""Prioritized backend fallback ending in the heuristic extractor."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from src.config import Settings
from src.extraction.backends import CompletionBackend, build_backends
from src.extraction.confidence import score_record
from src.extraction.heuristic import heuristic_extract
from src.extraction.models import (
    BackendFailure,
    BackendSuccess,
    ExtractedRecord,
    ExtractionResult,
    ExtractionSource,
    FailureReason,
)

logger = logging.getLogger(__name__)


class EmptyInputError(ValueError):
    """Raised when the raw text is missing or blank."""


class FallbackOrchestrator:
    """Try each backend in priority order, then the heuristic extractor.

    Backends are attempted one at a time; the first ``BackendSuccess`` wins.
    Every ``BackendFailure`` is logged and the next backend is tried. The
    heuristic extractor cannot fail, so ``extract`` always returns a result
    for non-blank input.
    """

    def __init__(
        self,
        backends: Sequence[CompletionBackend],
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._backends = tuple(backends)
        self._clock = clock

    @property
    def backends(self) -> tuple[CompletionBackend, ...]:
        return self._backends

    def _select(self, raw_text: str, now: datetime) -> tuple[ExtractedRecord, ExtractionSource]:
        for backend in self._backends:
            outcome = backend.attempt(raw_text, now)
            match outcome:
                case BackendSuccess(source=source, record=record):
                    return record, source
                case BackendFailure(reason=FailureReason.UNCONFIGURED):
                    logger.debug("Skipping %s: not configured", backend.name)
                case BackendFailure(reason=reason, detail=detail):
                    logger.warning("%s failed (%s): %s", backend.name, reason, detail)

        logger.info("Falling back to heuristic parsing")
        return heuristic_extract(raw_text, now), ExtractionSource.HEURISTIC

    def extract(self, raw_text: str | None) -> ExtractionResult:
        """Extract and score a work order from free text.

        Args:
            raw_text: The operator's job description.

        Returns:
            A fresh ExtractionResult tagged with the winning source.

        Raises:
            EmptyInputError: If ``raw_text`` is missing or blank.
        """
        if not raw_text or not raw_text.strip():
            raise EmptyInputError("Raw text is required")

        now = self._clock()
        record, source = self._select(raw_text, now)
        scores = score_record(record, source)
        logger.info("Parsed work order via %s (confidence %.2f)", source, scores.overall)
        return ExtractionResult(
            record=record,
            confidence=scores.overall,
            field_confidence=scores.fields,
            source=source,
        )


def build_orchestrator(settings: Settings, heuristic_only: bool = False) -> FallbackOrchestrator:
    """Wire the backends from configuration into an orchestrator."""
    backends = [] if heuristic_only else build_backends(settings)
    return FallbackOrchestrator(backends)
