"""Work-order parsing endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from src.api.models import BackendStatus, ErrorResponse, ParseRequest, ParseResponse, WorkOrderData
from src.extraction.orchestrator import EmptyInputError, FallbackOrchestrator

router = APIRouter()


def get_orchestrator(request: Request) -> FallbackOrchestrator:
    """Return the orchestrator built once at application start."""
    return request.app.state.orchestrator  # type: ignore[no-any-return]


OrchestratorDep = Annotated[FallbackOrchestrator, Depends(get_orchestrator)]


@router.post(
    "/api/work-orders/parse",
    response_model=ParseResponse,
    responses={400: {"model": ErrorResponse}},
)
def parse_work_order(body: ParseRequest, orchestrator: OrchestratorDep) -> ParseResponse | JSONResponse:
    """Parse free text into a scored work-order record.

    Backend failures never surface here: they degrade the ``source`` (and the
    confidence) but the call still succeeds. Declared as a sync endpoint so
    retry waits run on the worker threadpool.
    """
    try:
        result = orchestrator.extract(body.raw_text)
    except EmptyInputError as exc:
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error=str(exc)).model_dump(),
        )

    return ParseResponse(
        data=WorkOrderData(**result.record.to_dict()),
        confidence=result.confidence,
        field_confidence=result.field_confidence,
        source=result.source.value,
    )


@router.get("/api/work-orders/backends", response_model=list[BackendStatus])
def list_backends(orchestrator: OrchestratorDep) -> list[BackendStatus]:
    """List the extraction backends in priority order."""
    return [
        BackendStatus(
            source=b.source.value,
            backend=b.name,
            model=b.model,
            configured=b.configured,
        )
        for b in orchestrator.backends
    ]
