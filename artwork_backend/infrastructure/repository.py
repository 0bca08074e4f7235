"""Persistence contract shared by the shard and document adapters."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from artwork_backend.domain import Provenance, WorkItem


@dataclass(slots=True)
class PersistOutcome:
    """What a repository wrote and what it read back afterwards."""

    written: list[str] = field(default_factory=list)
    verified: dict[str, Any] = field(default_factory=dict)
    mismatches: dict[str, dict[str, Any]] = field(default_factory=dict)
    output_id: int | None = None


class WorkItemRepository(Protocol):
    """Load and persist work items owned by one store."""

    provenance: Provenance

    def load(self, store_id: int | str) -> WorkItem: ...

    def persist(self, current: WorkItem, derived: WorkItem, *, acting_user: str) -> PersistOutcome: ...


class ShardWorklist(Protocol):
    """Worklist reads and operation completion on a relational shard."""

    provenance: Provenance

    def fetch_worklist(self) -> list[dict[str, Any]]: ...

    def complete_operation(
        self,
        approval_id: int,
        process: str,
        user_id: int,
        remark: str | None = None,
        link: str | None = None,
    ) -> list[dict[str, Any]]: ...
