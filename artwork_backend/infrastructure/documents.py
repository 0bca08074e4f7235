"""Document-store adapter for ``ArtworkUnordered`` job documents.

Documents are shared with other workflows, so writes are ``$set`` on the
dotted paths that actually changed; the document is never replaced.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from bson import ObjectId
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from artwork_backend.core.approval_rules import RULES, RuleConfig, utc_now
from artwork_backend.core.errors import NotFoundError, UpstreamUnavailable, ValidationError
from artwork_backend.core.normalize import (
    clean_text,
    coerce_datetime,
    normalize_approval_status,
    normalize_file_status,
    normalize_yes_no,
)
from artwork_backend.domain import (
    ApprovalDimension,
    Assignments,
    FinalApproval,
    PlateState,
    Provenance,
    Required,
    ToolingState,
    WorkItem,
)
from artwork_backend.infrastructure.repository import PersistOutcome

logger = logging.getLogger(__name__)

WORK_ITEMS_COLLECTION = "ArtworkUnordered"

_DIMENSION_KEYS = {"soft": "soft", "hard": "hard", "machine_proof": "machineProof"}
_NOT_DELETED = {"status.isDeleted": {"$ne": True}}


@dataclass(slots=True)
class PendingDocument:
    """A matched document plus the display fields the worklist shows."""

    item: WorkItem
    site: str | None = None
    job_name: str | None = None
    division: str | None = None
    token_number: str | None = None
    created_at: datetime | None = None


def _get_path(document: Mapping[str, Any] | None, path: str) -> Any:
    node: Any = document
    for part in path.split("."):
        if not isinstance(node, Mapping):
            return None
        node = node.get(part)
    return node


def _required_from(value: Any) -> Required:
    if isinstance(value, bool):
        return Required.YES if value else Required.NO
    return normalize_yes_no(value)


def _required_to(value: Required) -> bool | None:
    if value is Required.UNSET:
        return None
    return value is Required.YES


def _token_variants(tokens: tuple[str, ...]) -> list[str]:
    variants: list[str] = []
    for token in tokens:
        for variant in (token.upper(), token.capitalize(), token.lower()):
            if variant not in variants:
                variants.append(variant)
    return variants


def _object_id(store_id: int | str) -> ObjectId:
    raw = str(store_id).strip()
    if not ObjectId.is_valid(raw):
        raise ValidationError(f"invalid document id: {store_id}")
    return ObjectId(raw)


def document_to_work_item(document: Mapping[str, Any]) -> WorkItem:
    dimensions = {}
    for name, key in _DIMENSION_KEYS.items():
        dimensions[name] = ApprovalDimension(
            required=_required_from(_get_path(document, f"approvals.{key}.required")),
            status=normalize_approval_status(_get_path(document, f"approvals.{key}.status")),
            plan_date=coerce_datetime(_get_path(document, f"approvals.{key}.planDate")),
            actual_date=coerce_datetime(_get_path(document, f"approvals.{key}.actualDate")),
        )
    dimensions["soft"].link = clean_text(_get_path(document, "approvals.soft.link"))

    return WorkItem(
        provenance=Provenance.DOCUMENT,
        store_id=str(document["_id"]),
        file_status=normalize_file_status(_get_path(document, "artwork.fileStatus")),
        file_received_date=coerce_datetime(_get_path(document, "artwork.fileReceivedDate")),
        soft=dimensions["soft"],
        hard=dimensions["hard"],
        machine_proof=dimensions["machine_proof"],
        tooling=ToolingState(
            die=clean_text(_get_path(document, "tooling.die")),
            block=clean_text(_get_path(document, "tooling.block")),
            blanket=clean_text(_get_path(document, "tooling.blanket")),
            blanket_plan_date=coerce_datetime(_get_path(document, "tooling.planDate")),
            blanket_actual_date=coerce_datetime(_get_path(document, "tooling.actualDate")),
            remark=clean_text(_get_path(document, "tooling.remark")),
        ),
        plate=PlateState(
            output=clean_text(_get_path(document, "plate.output")),
            plan_date=coerce_datetime(_get_path(document, "plate.planDate")),
            actual_date=coerce_datetime(_get_path(document, "plate.actualDate")),
            remark=clean_text(_get_path(document, "plate.remark")),
        ),
        final=FinalApproval(
            approved=_get_path(document, "finalApproval.approved") is True,
            approved_date=coerce_datetime(_get_path(document, "finalApproval.approvedDate")),
        ),
        assigned_to=Assignments(
            prepress=clean_text(_get_path(document, "assignedTo.prepressUserKey")),
            tooling=clean_text(_get_path(document, "assignedTo.toolingUserKey")),
            plate=clean_text(_get_path(document, "assignedTo.plateUserKey")),
        ),
        remarks=clean_text(_get_path(document, "remarks.artwork")),
        client_name=clean_text(_get_path(document, "client.name")),
        reference=clean_text(_get_path(document, "reference")),
    )


def work_item_to_paths(item: WorkItem) -> dict[str, Any]:
    """Flatten a work item into the document's dotted field paths."""

    paths: dict[str, Any] = {
        "artwork.fileStatus": item.file_status.value.upper() if item.file_status else None,
        "artwork.fileReceivedDate": item.file_received_date,
        "approvals.soft.link": item.soft.link,
        "finalApproval.approved": item.final.approved,
        "finalApproval.approvedDate": item.final.approved_date,
        "tooling.die": item.tooling.die,
        "tooling.block": item.tooling.block,
        "tooling.blanket": item.tooling.blanket,
        "tooling.planDate": item.tooling.blanket_plan_date,
        "tooling.actualDate": item.tooling.blanket_actual_date,
        "tooling.remark": item.tooling.remark,
        "plate.output": item.plate.output,
        "plate.planDate": item.plate.plan_date,
        "plate.actualDate": item.plate.actual_date,
        "plate.remark": item.plate.remark,
        "assignedTo.prepressUserKey": item.assigned_to.prepress,
        "assignedTo.toolingUserKey": item.assigned_to.tooling,
        "assignedTo.plateUserKey": item.assigned_to.plate,
        "remarks.artwork": item.remarks,
        "client.name": item.client_name,
        "reference": item.reference,
    }
    for name, key in _DIMENSION_KEYS.items():
        dimension = item.dimension(name)
        paths[f"approvals.{key}.required"] = _required_to(dimension.required)
        paths[f"approvals.{key}.status"] = dimension.status.value if dimension.status else None
        paths[f"approvals.{key}.planDate"] = dimension.plan_date
        paths[f"approvals.{key}.actualDate"] = dimension.actual_date
    return paths


def _comparable(value: Any) -> Any:
    # BSON dates keep millisecond precision.
    if isinstance(value, datetime):
        parsed = coerce_datetime(value)
        return parsed.replace(microsecond=parsed.microsecond // 1000 * 1000)
    return value


def compute_delta(current: WorkItem, derived: WorkItem) -> dict[str, Any]:
    before = work_item_to_paths(current)
    after = work_item_to_paths(derived)
    return {path: value for path, value in after.items() if _comparable(value) != _comparable(before.get(path))}


class DocumentRepository:
    """Load, patch and verify job documents in the document store."""

    provenance = Provenance.DOCUMENT

    def __init__(self, collection: Collection, *, rules: RuleConfig = RULES) -> None:
        self._collection = collection
        self._rules = rules

    def _find_one(self, query: dict[str, Any], projection: dict[str, int] | None = None) -> dict[str, Any] | None:
        try:
            return self._collection.find_one(query, projection)
        except PyMongoError as exc:
            raise UpstreamUnavailable(f"document store is unavailable: {exc}") from exc

    def load(self, store_id: int | str) -> WorkItem:
        document = self._find_one({"_id": _object_id(store_id), **_NOT_DELETED})
        if document is None:
            raise NotFoundError(f"no document record {store_id}")
        return document_to_work_item(document)

    def persist(self, current: WorkItem, derived: WorkItem, *, acting_user: str) -> PersistOutcome:
        object_id = _object_id(derived.store_id)
        delta = compute_delta(current, derived)
        written = sorted(delta)
        now = utc_now()
        update = {**delta, "updatedAt": now, "status.updatedAt": now, "status.updatedBy": acting_user}

        try:
            result = self._collection.update_one({"_id": object_id, **_NOT_DELETED}, {"$set": update})
        except PyMongoError as exc:
            raise UpstreamUnavailable(f"document update failed: {exc}") from exc
        if result.matched_count == 0:
            raise NotFoundError(f"no document record {derived.store_id}")
        logger.info(
            "documents.persist.written",
            extra={"store_id": derived.store_id, "changed": len(written), "acting_user": acting_user},
        )

        persisted = self._find_one({"_id": object_id}, {path: 1 for path in written} or None)
        if persisted is None:
            raise NotFoundError(f"document record {derived.store_id} vanished after update")

        verified: dict[str, Any] = {}
        mismatches: dict[str, dict[str, Any]] = {}
        for path in written:
            expected = _comparable(delta[path])
            actual = _comparable(_get_path(persisted, path))
            verified[path] = actual
            if expected != actual:
                mismatches[path] = {"expected": expected, "persisted": actual}
        if mismatches:
            logger.warning(
                "documents.persist.mismatch",
                extra={"store_id": derived.store_id, "mismatches": mismatches},
            )
        return PersistOutcome(written=written, verified=verified, mismatches=mismatches)

    def find_pending_for_user(self, user_key: str) -> list[PendingDocument]:
        """Non-deleted documents with outstanding work assigned to ``user_key``."""

        rules = self._rules
        query = {
            **_NOT_DELETED,
            "$and": [
                {
                    "$or": [
                        {"finalApproval.approved": {"$ne": True}},
                        {"tooling.die": {"$in": _token_variants(rules.tokens("tooling_die"))}},
                        {"tooling.block": {"$in": _token_variants(rules.tokens("tooling_block"))}},
                        {"tooling.blanket": {"$in": _token_variants(rules.tokens("tooling_blanket"))}},
                        {
                            "plate.output": {
                                "$exists": True,
                                "$nin": [None, *_token_variants(rules.tokens("plate_done"))],
                            }
                        },
                    ]
                },
                {
                    "$or": [
                        {"assignedTo.prepressUserKey": user_key},
                        {"assignedTo.toolingUserKey": user_key},
                        {"assignedTo.plateUserKey": user_key},
                    ]
                },
            ],
        }
        try:
            documents = list(self._collection.find(query).sort([("updatedAt", -1), ("createdAt", -1)]))
        except PyMongoError as exc:
            raise UpstreamUnavailable(f"document store is unavailable: {exc}") from exc

        return [
            PendingDocument(
                item=document_to_work_item(document),
                site=clean_text(document.get("site")),
                job_name=clean_text(_get_path(document, "job.jobName")),
                division=clean_text(_get_path(document, "job.segment")),
                token_number=clean_text(document.get("tokenNumber")),
                created_at=coerce_datetime(document.get("createdAt")),
            )
            for document in documents
        ]
