from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from artwork_backend.domain import Provenance


class PendingOperation(BaseModel):
    """One outstanding operation on one job, whatever store holds it."""

    provenance: Provenance
    store_id: int | str | None = None
    site: str | None = None
    ledger_id: int | None = None
    operation: str | None = None
    plan_date: datetime | None = None
    status: str | None = None
    client_name: str | None = None
    job_name: str | None = None
    division: str | None = None
    file_received_date: datetime | None = None
    remarks: str | None = None
    po_number: str | None = None
    po_date: datetime | None = None
    job_card_number: str | None = None
    ref_mis_code: str | None = None
    reference: str | None = None
    token_number: str | None = None
    so_date: datetime | None = None
    employee_name: str | None = None
    final_approval_status: str | None = None
    final_approval_date: datetime | None = None
    prepress_user_key: str | None = None
    tooling_user_key: str | None = None
    plate_user_key: str | None = None


class SourceSummary(BaseModel):
    provenance: Provenance
    total: int = 0
    matched: int = 0
    resolved_identity: int | str | None = None
    error: str | None = None


class UpdateResult(BaseModel):
    ok: bool = True
    provenance: Provenance
    store_id: int | str
    written: list[str] = Field(default_factory=list)
    verified: dict[str, Any] = Field(default_factory=dict)
    output_id: int | None = None


class CompletionResult(BaseModel):
    ok: bool = True
    provenance: Provenance
    store_id: int | str
    operation: str
    new_status: str | None = None
    detail: list[dict[str, Any]] | None = None


class BatchItemOutcome(BaseModel):
    index: int
    ok: bool
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None


class BatchResult(BaseModel):
    ok: bool = True
    success: int = 0
    failed: int = 0
    items: list[BatchItemOutcome] = Field(default_factory=list)


class BatchRequest(BaseModel):
    items: list[dict[str, Any]] = Field(default_factory=list)
