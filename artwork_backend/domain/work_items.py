"""Domain entities for outstanding artwork approval work."""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Literal, TypeVar, Union


class Provenance(str, Enum):
    """Which store owns a work item."""

    SHARD_A = "shard_a"
    SHARD_B = "shard_b"
    DOCUMENT = "document"

    @property
    def is_relational(self) -> bool:
        return self is not Provenance.DOCUMENT

    @classmethod
    def parse(cls, value: object) -> "Provenance":
        """Parse a provenance tag, accepting the legacy grid tags as well."""

        raw = str(value or "").strip()
        if not raw:
            raise ValueError("provenance is required")
        lowered = raw.lower()
        for member in cls:
            if member.value == lowered:
                return member
        legacy = _LEGACY_TAGS.get(raw.upper())
        if legacy is None:
            raise ValueError(f"unsupported provenance: {raw}")
        return legacy

    @property
    def legacy_tag(self) -> str:
        return _LEGACY_NAMES[self]


_LEGACY_TAGS: dict[str, Provenance] = {
    "KOL_SQL": Provenance.SHARD_A,
    "AMD_SQL": Provenance.SHARD_B,
    "MONGO_UNORDERED": Provenance.DOCUMENT,
}
_LEGACY_NAMES: dict[Provenance, str] = {value: key for key, value in _LEGACY_TAGS.items()}

SHARDS: tuple[Provenance, Provenance] = (Provenance.SHARD_A, Provenance.SHARD_B)


class Required(str, Enum):
    YES = "Yes"
    NO = "No"
    UNSET = "Unset"


class ApprovalStatus(str, Enum):
    PENDING = "Pending"
    SENT = "Sent"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    REDO = "Redo"


class FileStatus(str, Enum):
    PENDING = "Pending"
    RECEIVED = "Received"
    OLD = "Old"


class _Absent(Enum):
    ABSENT = "ABSENT"

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent.ABSENT
"""Marks an update field the caller did not send (leave the stored value alone)."""

Absent = Literal[_Absent.ABSENT]
T = TypeVar("T")
Patch = Union[T, None, Absent]

APPROVAL_DIMENSIONS: tuple[str, str, str] = ("soft", "hard", "machine_proof")


@dataclass(slots=True)
class ApprovalDimension:
    required: Required = Required.UNSET
    status: ApprovalStatus | None = None
    plan_date: datetime | None = None
    actual_date: datetime | None = None
    link: str | None = None


@dataclass(slots=True)
class ToolingState:
    die: str | None = None
    block: str | None = None
    blanket: str | None = None
    blanket_plan_date: datetime | None = None
    blanket_actual_date: datetime | None = None
    remark: str | None = None


@dataclass(slots=True)
class PlateState:
    output: str | None = None
    plan_date: datetime | None = None
    actual_date: datetime | None = None
    remark: str | None = None


@dataclass(slots=True)
class FinalApproval:
    approved: bool = False
    approved_date: datetime | None = None


@dataclass(slots=True)
class Assignments:
    """Role slots; ledger ids on the shards, user keys in the document store."""

    prepress: int | str | None = None
    tooling: int | str | None = None
    plate: int | str | None = None


@dataclass(slots=True)
class WorkItem:
    """Full approval state of one job as held by exactly one store."""

    provenance: Provenance
    store_id: int | str
    file_status: FileStatus | None = None
    file_received_date: datetime | None = None
    soft: ApprovalDimension = field(default_factory=ApprovalDimension)
    hard: ApprovalDimension = field(default_factory=ApprovalDimension)
    machine_proof: ApprovalDimension = field(default_factory=ApprovalDimension)
    tooling: ToolingState = field(default_factory=ToolingState)
    plate: PlateState = field(default_factory=PlateState)
    final: FinalApproval = field(default_factory=FinalApproval)
    assigned_to: Assignments = field(default_factory=Assignments)
    remarks: str | None = None
    client_name: str | None = None
    reference: str | None = None
    booking: dict[str, Any] = field(default_factory=dict)

    def dimension(self, name: str) -> ApprovalDimension:
        return getattr(self, name)


@dataclass(frozen=True, slots=True)
class WorkItemUpdate:
    """A normalised partial update.

    Every field defaults to :data:`ABSENT`. ``None`` clears the stored value;
    ``Required.UNSET`` clears a required flag.
    """

    file_status: Patch[FileStatus] = ABSENT
    file_received_date: Patch[datetime] = ABSENT
    soft_required: Required | Absent = ABSENT
    soft_status: Patch[ApprovalStatus] = ABSENT
    soft_link: Patch[str] = ABSENT
    hard_required: Required | Absent = ABSENT
    hard_status: Patch[ApprovalStatus] = ABSENT
    machine_proof_required: Required | Absent = ABSENT
    machine_proof_status: Patch[ApprovalStatus] = ABSENT
    tooling_die: Patch[str] = ABSENT
    tooling_block: Patch[str] = ABSENT
    tooling_blanket: Patch[str] = ABSENT
    tooling_remark: Patch[str] = ABSENT
    plate_output: Patch[str] = ABSENT
    plate_remark: Patch[str] = ABSENT
    artwork_remark: Patch[str] = ABSENT
    client_name: Patch[str] = ABSENT
    reference: Patch[str] = ABSENT

    def required_for(self, dimension: str) -> Required | Absent:
        return getattr(self, f"{dimension}_required")

    def status_for(self, dimension: str) -> Patch[ApprovalStatus]:
        return getattr(self, f"{dimension}_status")

    def given(self) -> dict[str, Any]:
        """Return only the fields the caller actually sent."""

        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if getattr(self, item.name) is not ABSENT
        }

    def is_empty(self) -> bool:
        return not self.given()


@dataclass(frozen=True, slots=True)
class IdentityPatch:
    """Person-identifying inputs for one role, in precedence order."""

    explicit_id: Patch[int] = ABSENT
    display_name: Patch[str] = ABSENT
    user_key: Patch[str] = ABSENT

    def is_empty(self) -> bool:
        return (
            self.explicit_id is ABSENT
            and self.display_name is ABSENT
            and self.user_key is ABSENT
        )


@dataclass(frozen=True, slots=True)
class UpdateEnvelope:
    provenance: Provenance
    store_id: int | str
    update: WorkItemUpdate = field(default_factory=WorkItemUpdate)
    prepress: IdentityPatch = field(default_factory=IdentityPatch)
    tooling: IdentityPatch = field(default_factory=IdentityPatch)
    plate: IdentityPatch = field(default_factory=IdentityPatch)
    booking: dict[str, int | None] = field(default_factory=dict)
    acting_user: str = "Coordinator"


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    """Mark one outstanding operation of a work item as done."""

    provenance: Provenance
    store_id: int | str
    operation: str
    ledger_id: int | None = None
    remark: str | None = None
    link: str | None = None
