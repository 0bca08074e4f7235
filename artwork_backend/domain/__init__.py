"""Domain layer definitions."""

from .work_items import (
    ABSENT,
    APPROVAL_DIMENSIONS,
    SHARDS,
    ApprovalDimension,
    ApprovalStatus,
    Assignments,
    CompletionRequest,
    FileStatus,
    FinalApproval,
    IdentityPatch,
    PlateState,
    Provenance,
    Required,
    ToolingState,
    UpdateEnvelope,
    WorkItem,
    WorkItemUpdate,
)

__all__ = [
    "ABSENT",
    "APPROVAL_DIMENSIONS",
    "SHARDS",
    "ApprovalDimension",
    "ApprovalStatus",
    "Assignments",
    "CompletionRequest",
    "FileStatus",
    "FinalApproval",
    "IdentityPatch",
    "PlateState",
    "Provenance",
    "Required",
    "ToolingState",
    "UpdateEnvelope",
    "WorkItem",
    "WorkItemUpdate",
]
