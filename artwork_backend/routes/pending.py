from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from artwork_backend.application import (
    PendingAggregator,
    UpdateOrchestrator,
    get_pending_aggregator,
    get_update_orchestrator,
)
from artwork_backend.core.schema import BatchRequest, BatchResult, UpdateResult
from artwork_backend.infrastructure import IdentityResolver, build_identity_resolver, get_store_registry

router = APIRouter(tags=["pending"])


def get_identity_resolver() -> IdentityResolver:
    return build_identity_resolver(get_store_registry())


def _require_items(payload: BatchRequest) -> list[dict[str, Any]]:
    if not payload.items:
        raise HTTPException(status_code=400, detail="items array is required and must not be empty")
    return payload.items


@router.get("/prepress/pending")
def list_pending(
    username: str = Query(default=""),
    aggregator: PendingAggregator = Depends(get_pending_aggregator),
) -> dict:
    if not username.strip():
        raise HTTPException(status_code=400, detail="username query parameter is required")
    report = aggregator.fetch_pending_for_user(username)
    return {
        "ok": True,
        "username": username.strip(),
        "count": len(report.rows),
        "data": [row.model_dump(mode="json") for row in report.rows],
        "sources": [summary.model_dump(mode="json") for summary in report.sources],
    }


@router.post("/artwork/pending/update", response_model=UpdateResult)
def update_pending(
    payload: dict,
    orchestrator: UpdateOrchestrator = Depends(get_update_orchestrator),
) -> UpdateResult:
    return orchestrator.apply_update(payload)


@router.post("/artwork/pending/update/batch", response_model=BatchResult)
def update_pending_batch(
    payload: BatchRequest,
    orchestrator: UpdateOrchestrator = Depends(get_update_orchestrator),
) -> BatchResult:
    return orchestrator.apply_batch(_require_items(payload))


@router.post("/prepress/pending/complete", response_model=BatchResult)
def complete_pending(
    payload: BatchRequest,
    orchestrator: UpdateOrchestrator = Depends(get_update_orchestrator),
) -> BatchResult:
    return orchestrator.complete_operations(_require_items(payload))


@router.get("/artwork/users")
def list_users(
    site: str | None = Query(default=None),
    identity: IdentityResolver = Depends(get_identity_resolver),
) -> dict:
    users = identity.list_users(site)
    return {"ok": True, "data": users, "count": len(users)}


@router.get("/health")
def health() -> dict:
    report = get_store_registry().health()
    return {"ok": all(entry["ok"] for entry in report.values()), "stores": report}
