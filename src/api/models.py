"""Pydantic request/response schemas for the Work Order Intake API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ParseRequest(BaseModel):
    """Request body for the /api/work-orders/parse endpoint.

    ``raw_text`` is optional at the schema level so that a missing value is
    reported as a 400 with the standard error body rather than a 422.
    """

    raw_text: str | None = None


class WorkOrderData(BaseModel):
    """Normalized work-order fields."""

    job_title: str
    description: str
    trade_category: str
    service_address: str
    scheduled_start: str
    urgency: str
    duration_estimate: str
    budget_min: float
    budget_max: float
    pay_rate: str
    contact_name: str
    contact_phone: str
    contact_email: str


class ParseResponse(BaseModel):
    """Successful parse result."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    data: WorkOrderData
    confidence: float
    field_confidence: dict[str, float] = Field(alias="fieldConfidence")
    source: str


class ErrorResponse(BaseModel):
    """The only caller-visible failure: missing or blank input."""

    success: bool = False
    error: str


class BackendStatus(BaseModel):
    """Configuration state of one extraction backend."""

    source: str
    backend: str
    model: str
    configured: bool
