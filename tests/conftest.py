"""Shared fixtures: a fixed clock, a recording sleep, and an API client."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

FIXED_NOW = datetime(2025, 6, 1, 10, 0)


class RecordingSleep:
    """Stands in for time.sleep and records requested waits (seconds)."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def client() -> Iterator[TestClient]:
    """API client whose orchestrator runs heuristic-only at FIXED_NOW."""
    from src.api.main import app
    from src.api.routes.work_orders import get_orchestrator
    from src.extraction.orchestrator import FallbackOrchestrator

    app.dependency_overrides[get_orchestrator] = lambda: FallbackOrchestrator([], clock=lambda: FIXED_NOW)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
