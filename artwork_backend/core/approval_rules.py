from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

import yaml

from artwork_backend.domain import (
    ABSENT,
    APPROVAL_DIMENSIONS,
    ApprovalStatus,
    FileStatus,
    Required,
    WorkItem,
    WorkItemUpdate,
)

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"

_DEFAULT_RULES: dict = {
    "plan_offsets_days": {"soft": 2, "hard": 4, "machine_proof": 4, "plate_after_final_approval": 1},
    "outstanding_tokens": {
        "tooling_die": ["required", "ordered"],
        "tooling_block": ["required", "ordered"],
        "tooling_blanket": ["required"],
        "plate_done": ["done"],
        "approval_resolved": ["Approved", "Sent"],
    },
    "operation_labels": {
        "plate": "Plate Output",
        "tooling_die": "Tooling Die",
        "tooling_block": "Tooling Block",
        "tooling_blanket": "Tooling Blanket",
        "soft": "Soft Copy Approval",
        "hard": "Hard Copy Approval",
        "machine_proof": "Machine Proof Approval",
    },
}


@dataclass(frozen=True)
class RuleConfig:
    plan_offsets_days: dict[str, int] = field(default_factory=dict)
    outstanding_tokens: dict[str, tuple[str, ...]] = field(default_factory=dict)
    operation_labels: dict[str, str] = field(default_factory=dict)

    def plan_offset(self, key: str) -> timedelta:
        return timedelta(days=int(self.plan_offsets_days.get(key, 0)))

    def tokens(self, key: str) -> tuple[str, ...]:
        return self.outstanding_tokens.get(key, ())

    def label(self, key: str) -> str:
        return self.operation_labels.get(key, key)


def _load_rule_config() -> RuleConfig:
    path = CONFIG_DIR / "approval_rules.yaml"
    data = dict(_DEFAULT_RULES)
    if path.exists():
        with path.open("r", encoding="utf-8") as fp:
            loaded = yaml.safe_load(fp) or {}
        for key, value in loaded.items():
            if isinstance(value, dict):
                data[key] = {**data.get(key, {}), **value}
    return RuleConfig(
        plan_offsets_days={key: int(value) for key, value in data["plan_offsets_days"].items()},
        outstanding_tokens={key: tuple(str(token) for token in value) for key, value in data["outstanding_tokens"].items()},
        operation_labels={key: str(value) for key, value in data["operation_labels"].items()},
    )


RULES = _load_rule_config()


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def token_in(value: str | None, tokens: tuple[str, ...]) -> bool:
    """Case-insensitive membership for free-form readiness tokens."""

    if value is None:
        return False
    lowered = str(value).strip().lower()
    return any(lowered == token.lower() for token in tokens)


def _apply_update(row: WorkItem, update: WorkItemUpdate) -> None:
    if update.file_status is not ABSENT:
        row.file_status = update.file_status
    if update.file_received_date is not ABSENT:
        row.file_received_date = update.file_received_date

    for name in APPROVAL_DIMENSIONS:
        dimension = row.dimension(name)
        required = update.required_for(name)
        status = update.status_for(name)
        if required is not ABSENT:
            dimension.required = required
        if status is not ABSENT:
            dimension.status = status
    if update.soft_link is not ABSENT:
        row.soft.link = update.soft_link

    if update.tooling_die is not ABSENT:
        row.tooling.die = update.tooling_die
    if update.tooling_block is not ABSENT:
        row.tooling.block = update.tooling_block
    if update.tooling_blanket is not ABSENT:
        row.tooling.blanket = update.tooling_blanket
    if update.tooling_remark is not ABSENT:
        row.tooling.remark = update.tooling_remark
    if update.plate_output is not ABSENT:
        row.plate.output = update.plate_output
    if update.plate_remark is not ABSENT:
        row.plate.remark = update.plate_remark
    if update.artwork_remark is not ABSENT:
        row.remarks = update.artwork_remark
    if update.client_name is not ABSENT:
        row.client_name = update.client_name
    if update.reference is not ABSENT:
        row.reference = update.reference


def _derive_file_received(row: WorkItem, now: datetime) -> None:
    if row.file_status in (FileStatus.RECEIVED, FileStatus.OLD):
        if row.file_received_date is None:
            row.file_received_date = now
    elif row.file_status is FileStatus.PENDING:
        row.file_received_date = None


def _derive_plan_dates(row: WorkItem, rules: RuleConfig) -> None:
    received = row.file_received_date
    if received is None:
        return
    for name in APPROVAL_DIMENSIONS:
        dimension = row.dimension(name)
        if dimension.required is Required.YES and dimension.plan_date is None:
            dimension.plan_date = received + rules.plan_offset(name)


def _stamp_status_dates(dimension, now: datetime) -> None:
    if dimension.status is ApprovalStatus.SENT and dimension.actual_date is None:
        dimension.actual_date = now
    elif dimension.status is ApprovalStatus.REDO:
        dimension.actual_date = None


def _reconcile_dimension(name: str, current: WorkItem, row: WorkItem, update: WorkItemUpdate, now: datetime) -> None:
    required_given = update.required_for(name)
    status_given = update.status_for(name)
    if required_given is ABSENT and status_given is ABSENT:
        return

    dimension = row.dimension(name)
    if required_given is ABSENT:
        _stamp_status_dates(dimension, now)
        return

    previous = current.dimension(name).required
    if (
        previous is Required.NO
        and dimension.required is Required.YES
        and dimension.status is ApprovalStatus.APPROVED
        and status_given is ABSENT
    ):
        dimension.status = ApprovalStatus.PENDING

    if dimension.required is Required.NO:
        dimension.status = ApprovalStatus.APPROVED
        if dimension.actual_date is None:
            dimension.actual_date = now
        if dimension.plan_date is None:
            dimension.plan_date = now
    elif dimension.required is Required.YES:
        if dimension.status is None:
            dimension.status = ApprovalStatus.PENDING
        _stamp_status_dates(dimension, now)
    # Required.UNSET: the status keeps whatever the shallow merge left.


def _derive_final_approval(row: WorkItem, now: datetime) -> None:
    approved = all(row.dimension(name).status is ApprovalStatus.APPROVED for name in APPROVAL_DIMENSIONS)
    row.final.approved = approved
    if approved:
        if row.final.approved_date is None:
            row.final.approved_date = now
            if row.tooling.blanket_plan_date is None:
                row.tooling.blanket_plan_date = row.final.approved_date
    else:
        row.final.approved_date = None


def _derive_plate(row: WorkItem, rules: RuleConfig, now: datetime) -> None:
    if not row.plate.output:
        return
    output = str(row.plate.output).strip().lower()
    if output == "pending" and row.plate.plan_date is None:
        approved_date = row.final.approved_date
        row.plate.plan_date = (
            approved_date + rules.plan_offset("plate_after_final_approval") if approved_date else None
        )
    if token_in(output, rules.tokens("plate_done")) and row.plate.actual_date is None:
        row.plate.actual_date = now


def _derive_blanket_actual(row: WorkItem, now: datetime) -> None:
    tooling = row.tooling
    if (
        token_in(tooling.die, ("ready",))
        and token_in(tooling.blanket, ("ready",))
        and not token_in(tooling.block, ("required",))
        and tooling.blanket_actual_date is None
    ):
        tooling.blanket_actual_date = now


def merge(
    current: WorkItem,
    update: WorkItemUpdate,
    *,
    now: datetime | None = None,
    rules: RuleConfig = RULES,
) -> WorkItem:
    """Merge a normalised update into ``current`` and derive every dependent field.

    Pure: ``current`` is not mutated and nothing is read or written outside the
    arguments. Steps run in a fixed order because later ones read what earlier
    ones derived: file status, plan dates, per-dimension status, final approval,
    plate, then tooling.
    """

    stamp = now or utc_now()
    row = copy.deepcopy(current)
    _apply_update(row, update)
    _derive_file_received(row, stamp)
    _derive_plan_dates(row, rules)
    for name in APPROVAL_DIMENSIONS:
        _reconcile_dimension(name, current, row, update, stamp)
    _derive_final_approval(row, stamp)
    _derive_plate(row, rules, stamp)
    _derive_blanket_actual(row, stamp)
    return row
