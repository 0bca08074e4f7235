"""Outstanding-work aggregation across both shards and the document store."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from artwork_backend.core.approval_rules import RULES, RuleConfig, token_in
from artwork_backend.core.errors import UpstreamUnavailable
from artwork_backend.core.normalize import clean_text, coerce_datetime, coerce_int
from artwork_backend.core.schema import PendingOperation, SourceSummary
from artwork_backend.core.settings import StoreSettings
from artwork_backend.domain import APPROVAL_DIMENSIONS, SHARDS, Provenance, Required
from artwork_backend.infrastructure import (
    DocumentRepository,
    IdentityResolver,
    PendingDocument,
    ShardWorklist,
    build_document_services,
    build_shard_repositories,
    get_store_registry,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PendingReport:
    rows: list[PendingOperation] = field(default_factory=list)
    sources: list[SourceSummary] = field(default_factory=list)


def shard_row_to_operation(provenance: Provenance, site: str, row: Mapping[str, Any]) -> PendingOperation:
    """Map one worklist procedure row; the procedure already emits one row per operation."""

    return PendingOperation(
        provenance=provenance,
        store_id=coerce_int(row.get("ID")),
        site=site,
        ledger_id=coerce_int(row.get("ledgerid")),
        operation=clean_text(row.get("Operation")),
        plan_date=coerce_datetime(row.get("PlanDate")),
        status=clean_text(row.get("Status")),
        client_name=clean_text(row.get("ClientName")),
        job_name=clean_text(row.get("JobName")),
        division=clean_text(row.get("Division")),
        file_received_date=coerce_datetime(row.get("FileReceivedDate")),
        remarks=clean_text(row.get("Remarks")),
        po_number=clean_text(row.get("PONumber")),
        po_date=coerce_datetime(row.get("PODate")),
        job_card_number=clean_text(row.get("Jobcardnumber")),
        ref_mis_code=clean_text(row.get("RefMISCode")),
        employee_name=clean_text(row.get("EmployeeName")),
        final_approval_status=clean_text(row.get("FinalApprovalStatus")),
        final_approval_date=coerce_datetime(row.get("FinalApprovalDate")),
    )


def fan_out(pending: PendingDocument, rules: RuleConfig = RULES) -> list[PendingOperation]:
    """Expand one document into a row per outstanding dimension.

    A fully resolved document yields no rows.
    """

    item = pending.item
    base = {
        "provenance": Provenance.DOCUMENT,
        "store_id": str(item.store_id),
        "site": pending.site or "COMMON",
        "status": "Approved" if item.final.approved else "Pending",
        "client_name": item.client_name,
        "job_name": pending.job_name,
        "division": pending.division,
        "file_received_date": item.file_received_date,
        "remarks": item.remarks,
        "reference": item.reference,
        "token_number": pending.token_number,
        "so_date": pending.created_at,
        "prepress_user_key": item.assigned_to.prepress,
        "tooling_user_key": item.assigned_to.tooling,
        "plate_user_key": item.assigned_to.plate,
    }

    outstanding: list[tuple[str, Any]] = []
    if item.plate.output and not token_in(item.plate.output, rules.tokens("plate_done")):
        outstanding.append(("plate", item.plate.plan_date))
    if token_in(item.tooling.die, rules.tokens("tooling_die")):
        outstanding.append(("tooling_die", item.tooling.blanket_plan_date))
    if token_in(item.tooling.block, rules.tokens("tooling_block")):
        outstanding.append(("tooling_block", item.tooling.blanket_plan_date))
    if token_in(item.tooling.blanket, rules.tokens("tooling_blanket")):
        outstanding.append(("tooling_blanket", item.tooling.blanket_plan_date))
    if not item.final.approved:
        for name in APPROVAL_DIMENSIONS:
            dimension = item.dimension(name)
            status = dimension.status.value if dimension.status else None
            if dimension.required is Required.YES and not token_in(status, rules.tokens("approval_resolved")):
                outstanding.append((name, dimension.plan_date))

    return [PendingOperation(**base, operation=rules.label(key), plan_date=plan_date) for key, plan_date in outstanding]


class PendingAggregator:
    """Collects one user's outstanding operations from every store.

    Sources are read one after another: shard A, shard B, then the document
    store. A failing source contributes no rows and is reported in its summary.
    """

    def __init__(
        self,
        shards: Mapping[Provenance, ShardWorklist],
        documents: DocumentRepository | None,
        identity: IdentityResolver | None,
        settings: StoreSettings,
        *,
        rules: RuleConfig = RULES,
    ) -> None:
        self._shards = shards
        self._documents = documents
        self._identity = identity
        self._settings = settings
        self._rules = rules

    def _directory(self) -> IdentityResolver:
        if self._identity is None:
            raise UpstreamUnavailable("user directory is not configured")
        return self._identity

    def _fetch_shard(self, shard: Provenance, username: str) -> tuple[list[PendingOperation], SourceSummary]:
        summary = SourceSummary(provenance=shard)
        repository = self._shards.get(shard)
        if repository is None:
            summary.error = f"{shard.value} is not configured"
            return [], summary
        try:
            worklist = repository.fetch_worklist()
            summary.total = len(worklist)
            ledger_id = self._directory().resolve_ledger_id(shard, username)
        except UpstreamUnavailable as exc:
            logger.warning("pending.shard.failed", extra={"provenance": shard.value}, exc_info=exc)
            summary.error = exc.message
            return [], summary

        summary.resolved_identity = ledger_id
        if ledger_id is None:
            logger.info("pending.shard.unresolved", extra={"provenance": shard.value, "username": username})
            return [], summary

        site = self._settings.site_for(shard)
        rows = [
            shard_row_to_operation(shard, site, row)
            for row in worklist
            if coerce_int(row.get("ledgerid")) == ledger_id
        ]
        summary.matched = len(rows)
        logger.info(
            "pending.shard.counts",
            extra={"provenance": shard.value, "total": summary.total, "matched": summary.matched},
        )
        return rows, summary

    def _fetch_documents(self, username: str) -> tuple[list[PendingOperation], SourceSummary]:
        summary = SourceSummary(provenance=Provenance.DOCUMENT)
        try:
            user_key = self._directory().resolve_user_key(username)
            summary.resolved_identity = user_key
            if user_key is None:
                logger.info("pending.documents.unresolved", extra={"username": username})
                return [], summary
            if self._documents is None:
                raise UpstreamUnavailable("document store is not configured")
            documents = self._documents.find_pending_for_user(user_key)
        except UpstreamUnavailable as exc:
            logger.warning("pending.documents.failed", exc_info=exc)
            summary.error = exc.message
            return [], summary

        summary.total = len(documents)
        rows = [row for document in documents for row in fan_out(document, self._rules)]
        summary.matched = len(rows)
        return rows, summary

    def fetch_pending_for_user(self, username: str) -> PendingReport:
        report = PendingReport()
        name = username.strip()
        for shard in SHARDS:
            rows, summary = self._fetch_shard(shard, name)
            report.rows.extend(rows)
            report.sources.append(summary)
        rows, summary = self._fetch_documents(name)
        report.rows.extend(rows)
        report.sources.append(summary)
        return report


def get_pending_aggregator() -> PendingAggregator:
    registry = get_store_registry()
    documents, identity = build_document_services(registry)
    return PendingAggregator(build_shard_repositories(registry), documents, identity, registry.settings)
