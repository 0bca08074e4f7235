"""Application service that applies grid edits to whichever store owns the row."""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from artwork_backend.core.approval_rules import RULES, RuleConfig, merge
from artwork_backend.core.errors import ArtworkError, UpstreamUnavailable, ValidationError, VerificationMismatch
from artwork_backend.core.normalize import parse_completion, parse_envelope
from artwork_backend.core.schema import BatchItemOutcome, BatchResult, CompletionResult, UpdateResult
from artwork_backend.domain import (
    ABSENT,
    ApprovalStatus,
    Assignments,
    CompletionRequest,
    IdentityPatch,
    Provenance,
    Required,
    UpdateEnvelope,
    WorkItem,
    WorkItemUpdate,
)
from artwork_backend.infrastructure import (
    IdentityResolver,
    PersistOutcome,
    ShardWorklist,
    WorkItemRepository,
    build_document_services,
    build_shard_repositories,
    get_store_registry,
)

logger = logging.getLogger(__name__)

_ROLES = ("prepress", "tooling", "plate")


class UpdateOrchestrator:
    """Resolve people, merge, persist and verify one work item at a time."""

    def __init__(
        self,
        repositories: Mapping[Provenance, WorkItemRepository],
        identity: IdentityResolver | None,
        *,
        rules: RuleConfig = RULES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repositories = repositories
        self._identity = identity
        self._rules = rules
        self._clock = clock

    def _repository(self, provenance: Provenance) -> WorkItemRepository:
        repository = self._repositories.get(provenance)
        if repository is None:
            raise UpstreamUnavailable(f"{provenance.value} is not configured")
        return repository

    def _directory(self) -> IdentityResolver:
        if self._identity is None:
            raise UpstreamUnavailable("user directory is not configured")
        return self._identity

    def _now(self) -> datetime | None:
        return self._clock() if self._clock else None

    # ------------------------------------------------------------------
    # identity
    # ------------------------------------------------------------------
    def _resolve_shard_role(self, shard: Provenance, role: str, patch: IdentityPatch, stored: Any) -> Any:
        def from_display_name(value: str) -> int | None:
            return self._directory().resolve_ledger_id(shard, value)

        def from_user_key(value: str) -> int | None:
            return self._directory().ledger_id_for_user_key(shard, value)

        tiers = (
            ("explicit_id", patch.explicit_id, lambda value: value),
            ("display_name", patch.display_name, from_display_name),
            ("user_key", patch.user_key, from_user_key),
        )
        return self._walk_tiers(role, tiers, stored)

    def _resolve_document_role(self, role: str, patch: IdentityPatch, stored: Any) -> Any:
        def from_user_key(value: str) -> str:
            # grids send either a display name or a key in this field
            return self._directory().resolve_user_key(value) or value.lower()

        tiers = (
            ("display_name", patch.display_name, lambda value: self._directory().resolve_user_key(value)),
            ("user_key", patch.user_key, from_user_key),
        )
        return self._walk_tiers(role, tiers, stored)

    def _walk_tiers(
        self,
        role: str,
        tiers: Iterable[tuple[str, Any, Callable[[Any], Any]]],
        stored: Any,
    ) -> Any:
        for source, value, resolve in tiers:
            if value is ABSENT:
                continue
            if value is None:
                return None
            resolved = resolve(value)
            if resolved is not None:
                return resolved
            logger.warning("updates.identity.unresolved", extra={"role": role, "source": source, "value": value})
        return stored

    def _resolve_assignments(self, envelope: UpdateEnvelope, current: WorkItem) -> Assignments:
        resolved = Assignments()
        for role in _ROLES:
            patch: IdentityPatch = getattr(envelope, role)
            stored = getattr(current.assigned_to, role)
            if envelope.provenance.is_relational:
                value = self._resolve_shard_role(envelope.provenance, role, patch, stored)
            else:
                value = self._resolve_document_role(role, patch, stored)
            setattr(resolved, role, value)
        return resolved

    # ------------------------------------------------------------------
    # updates
    # ------------------------------------------------------------------
    def _persist_checked(
        self,
        repository: WorkItemRepository,
        current: WorkItem,
        derived: WorkItem,
        acting_user: str,
    ) -> PersistOutcome:
        outcome = repository.persist(current, derived, acting_user=acting_user)
        if outcome.mismatches:
            raise VerificationMismatch(
                f"{derived.provenance.value} record {derived.store_id} did not persist as derived",
                mismatches=outcome.mismatches,
                details={"provenance": derived.provenance.value, "store_id": derived.store_id},
            )
        return outcome

    def apply_update(self, payload: Mapping[str, Any] | UpdateEnvelope) -> UpdateResult:
        envelope = payload if isinstance(payload, UpdateEnvelope) else parse_envelope(payload)
        repository = self._repository(envelope.provenance)

        current = repository.load(envelope.store_id)
        derived = merge(current, envelope.update, now=self._now(), rules=self._rules)
        derived.assigned_to = self._resolve_assignments(envelope, current)
        if envelope.provenance.is_relational:
            for key, value in envelope.booking.items():
                if value is not None:
                    derived.booking[key] = value

        outcome = self._persist_checked(repository, current, derived, envelope.acting_user)
        return UpdateResult(
            provenance=envelope.provenance,
            store_id=envelope.store_id,
            written=outcome.written,
            verified=outcome.verified,
            output_id=outcome.output_id,
        )

    def apply_batch(self, items: Iterable[Mapping[str, Any]]) -> BatchResult:
        """Apply independent envelopes in order; one failure never stops the rest."""

        result = BatchResult()
        for index, item in enumerate(items):
            try:
                update = self.apply_update(item)
            except ArtworkError as exc:
                logger.warning("updates.batch.item_failed", extra={"index": index, "code": exc.code})
                result.items.append(BatchItemOutcome(index=index, ok=False, error=_error_body(exc)))
                result.failed += 1
            else:
                result.items.append(BatchItemOutcome(index=index, ok=True, result=update.model_dump(mode="json")))
                result.success += 1
        result.ok = result.failed == 0
        logger.info("updates.batch.completed", extra={"success": result.success, "failed": result.failed})
        return result

    # ------------------------------------------------------------------
    # operation completion
    # ------------------------------------------------------------------
    def _operation_key(self, operation: str) -> str:
        wanted = operation.strip().upper()
        for key in ("soft", "hard", "machine_proof", "plate"):
            if wanted == self._rules.label(key).upper():
                return key
        if wanted == "MACHINE PROOF":
            return "machine_proof"
        raise ValidationError(
            f"unsupported operation {operation!r}",
            details={"supported": [self._rules.label(key) for key in ("soft", "hard", "machine_proof", "plate")]},
        )

    def _complete_document(self, request: CompletionRequest, acting_user: str) -> CompletionResult:
        key = self._operation_key(request.operation)
        repository = self._repository(Provenance.DOCUMENT)
        current = repository.load(request.store_id)

        if key == "plate":
            plate = current.plate
            if not (plate.plan_date or plate.output or current.assigned_to.plate):
                raise ValidationError("Plate Output step not present for this record")
            update = WorkItemUpdate(
                plate_output="Done",
                plate_remark=request.remark if request.remark else ABSENT,
            )
            new_status = "Done"
        else:
            if current.dimension(key).required is not Required.YES:
                raise ValidationError(f"{self._rules.label(key)} not required for this record")
            values: dict[str, Any] = {f"{key}_status": ApprovalStatus.SENT}
            if request.remark:
                values["artwork_remark"] = request.remark
            if key == "soft" and request.link:
                values["soft_link"] = request.link
            update = WorkItemUpdate(**values)
            new_status = ApprovalStatus.SENT.value

        derived = merge(current, update, now=self._now(), rules=self._rules)
        self._persist_checked(repository, current, derived, acting_user)
        return CompletionResult(
            provenance=request.provenance,
            store_id=request.store_id,
            operation=request.operation,
            new_status=new_status,
        )

    def _complete_shard(self, request: CompletionRequest) -> CompletionResult:
        if request.ledger_id is None:
            raise ValidationError("ledger_id is required to complete a shard operation")
        shard: ShardWorklist = self._repository(request.provenance)  # type: ignore[assignment]
        rows = shard.complete_operation(
            int(request.store_id),
            request.operation,
            request.ledger_id,
            request.remark,
            request.link,
        )
        return CompletionResult(
            provenance=request.provenance,
            store_id=request.store_id,
            operation=request.operation,
            detail=rows or None,
        )

    def complete_operation(
        self,
        payload: Mapping[str, Any] | CompletionRequest,
        *,
        acting_user: str = "Coordinator",
    ) -> CompletionResult:
        request = payload if isinstance(payload, CompletionRequest) else parse_completion(payload)
        if request.provenance.is_relational:
            return self._complete_shard(request)
        return self._complete_document(request, acting_user)

    def complete_operations(self, items: Iterable[Mapping[str, Any]]) -> BatchResult:
        result = BatchResult()
        for index, item in enumerate(items):
            try:
                completed = self.complete_operation(item, acting_user=str(item.get("acting_user") or "Coordinator"))
            except ArtworkError as exc:
                logger.warning("updates.complete.item_failed", extra={"index": index, "code": exc.code})
                result.items.append(BatchItemOutcome(index=index, ok=False, error=_error_body(exc)))
                result.failed += 1
            else:
                result.items.append(
                    BatchItemOutcome(index=index, ok=True, result=completed.model_dump(mode="json"))
                )
                result.success += 1
        result.ok = result.failed == 0
        logger.info("updates.complete.completed", extra={"success": result.success, "failed": result.failed})
        return result


def _error_body(exc: ArtworkError) -> dict[str, Any]:
    return {"code": exc.code, "message": exc.message, "details": exc.details}


def get_update_orchestrator() -> UpdateOrchestrator:
    registry = get_store_registry()
    repositories: dict[Provenance, WorkItemRepository] = dict(build_shard_repositories(registry))
    documents, identity = build_document_services(registry)
    if documents is not None:
        repositories[Provenance.DOCUMENT] = documents
    return UpdateOrchestrator(repositories, identity)
