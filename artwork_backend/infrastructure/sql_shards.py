"""Relational shard adapter for ``dbo.ArtworkProcessApproval`` rows.

Writes go through the shard's upsert procedure, which is the sole writer of a
row. Every write is followed by a point read of the same row so callers can
see what actually landed.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import Date, DateTime, Integer, bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import TextClause
from sqlalchemy.types import TypeEngine

from artwork_backend.core.errors import NotFoundError, UpstreamUnavailable
from artwork_backend.core.normalize import (
    clean_text,
    coerce_datetime,
    coerce_int,
    normalize_approval_status,
    normalize_file_status,
    normalize_yes_no,
)
from artwork_backend.core.settings import StoreSettings
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
from artwork_backend.infrastructure.stores import StoreRegistry

logger = logging.getLogger(__name__)

_DIMENSION_PREFIX = {"soft": "Soft", "hard": "Hard", "machine_proof": "MProof"}

BOOKING_COLUMNS = ("CategoryID", "OrderBookingID", "JobBookingID")
ASSIGNMENT_COLUMNS = ("EmployeeID", "ToolingPersonID", "PlatePersonID")

# Columns stored as DATE lose their time part; compared by calendar day.
DATE_COLUMNS = (
    "SoftApprovalSentPlanDate",
    "HardApprovalSentPlanDate",
    "MProofApprovalSentPlanDate",
    "FinallyApprovedDate",
    "ToolingBlanketPlan",
    "ToolingBlanketActual",
    "PlatePlan",
)
DATETIME_COLUMNS = (
    "FileReceivedDate",
    "SoftApprovalSentActdate",
    "HardApprovalSentActdate",
    "MProofApprovalSentActdate",
    "PlateActual",
)

ROW_COLUMNS = (
    "OrderBookingDetailsID",
    *BOOKING_COLUMNS,
    *ASSIGNMENT_COLUMNS,
    "FileName",
    "FileReceivedDate",
    "SoftApprovalReqd",
    "SoftApprovalStatus",
    "SoftApprovalSentPlanDate",
    "SoftApprovalSentActdate",
    "LinkofSoftApprovalfile",
    "HardApprovalReqd",
    "HardApprovalStatus",
    "HardApprovalSentPlanDate",
    "HardApprovalSentActdate",
    "MProofApprovalReqd",
    "MProofApprovalStatus",
    "MProofApprovalSentPlanDate",
    "MProofApprovalSentActdate",
    "FinallyApproved",
    "FinallyApprovedDate",
    "ToolingDie",
    "ToolingBlock",
    "Blanket",
    "ToolingBlanketPlan",
    "ToolingBlanketActual",
    "PlateOutput",
    "PlatePlan",
    "PlateActual",
    "PlateRemark",
    "ToolingRemark",
    "ArtworkRemark",
)

_PARAM_TYPES: dict[str, TypeEngine] = {
    **{name: Date() for name in DATE_COLUMNS},
    **{name: DateTime() for name in DATETIME_COLUMNS},
    **{name: Integer() for name in ("OrderBookingDetailsID", *BOOKING_COLUMNS, *ASSIGNMENT_COLUMNS)},
}

_BIND_NAME = re.compile(r"(?<![:\w\x5c]):(\w+)(?!:)")


def _typed(statement: str) -> TextClause:
    clause = text(statement)
    present = set(_BIND_NAME.findall(statement))
    typed = [bindparam(name, type_=type_) for name, type_ in _PARAM_TYPES.items() if name in present]
    return clause.bindparams(*typed) if typed else clause


@dataclass(frozen=True)
class ShardStatements:
    """SQL text used against one shard; bind names match ``ROW_COLUMNS``."""

    load: str
    worklist: str
    upsert: str
    complete: str

    @classmethod
    def for_settings(cls, settings: StoreSettings) -> "ShardStatements":
        upsert_args = ", ".join(f"@{name}=:{name}" for name in ROW_COLUMNS)
        return cls(
            load=(
                f"SELECT {', '.join(ROW_COLUMNS)} FROM dbo.ArtworkProcessApproval "
                "WHERE OrderBookingDetailsID = :OrderBookingDetailsID"
            ),
            worklist=f"EXEC {settings.worklist_procedure} 0",
            upsert=(
                "SET NOCOUNT ON; DECLARE @out INT; "
                f"EXEC {settings.upsert_procedure} {upsert_args}, @ArtworkProcessApprovalID=@out OUTPUT; "
                "SELECT @out AS ArtworkProcessApprovalID"
            ),
            complete=(
                f"EXEC {settings.status_procedure} @ArtworkProcessApprovalID=:approval_id, "
                "@Process=:process, @UserID=:user_id, @Remark=:remark, @Link=:link"
            ),
        )


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0)


def _as_day(value: datetime | None) -> date | None:
    return value.date() if value is not None else None


def _required_text(value: Required) -> str | None:
    return None if value is Required.UNSET else value.value


def row_to_work_item(provenance: Provenance, row: Mapping[str, Any]) -> WorkItem:
    dimensions = {}
    for name, prefix in _DIMENSION_PREFIX.items():
        dimensions[name] = ApprovalDimension(
            required=normalize_yes_no(row.get(f"{prefix}ApprovalReqd")),
            status=normalize_approval_status(row.get(f"{prefix}ApprovalStatus")),
            plan_date=coerce_datetime(row.get(f"{prefix}ApprovalSentPlanDate")),
            actual_date=coerce_datetime(row.get(f"{prefix}ApprovalSentActdate")),
        )
    dimensions["soft"].link = clean_text(row.get("LinkofSoftApprovalfile"))

    return WorkItem(
        provenance=provenance,
        store_id=int(row["OrderBookingDetailsID"]),
        file_status=normalize_file_status(row.get("FileName")),
        file_received_date=coerce_datetime(row.get("FileReceivedDate")),
        soft=dimensions["soft"],
        hard=dimensions["hard"],
        machine_proof=dimensions["machine_proof"],
        tooling=ToolingState(
            die=clean_text(row.get("ToolingDie")),
            block=clean_text(row.get("ToolingBlock")),
            blanket=clean_text(row.get("Blanket")),
            blanket_plan_date=coerce_datetime(row.get("ToolingBlanketPlan")),
            blanket_actual_date=coerce_datetime(row.get("ToolingBlanketActual")),
            remark=clean_text(row.get("ToolingRemark")),
        ),
        plate=PlateState(
            output=clean_text(row.get("PlateOutput")),
            plan_date=coerce_datetime(row.get("PlatePlan")),
            actual_date=coerce_datetime(row.get("PlateActual")),
            remark=clean_text(row.get("PlateRemark")),
        ),
        final=FinalApproval(
            approved=normalize_yes_no(row.get("FinallyApproved")) is Required.YES,
            approved_date=coerce_datetime(row.get("FinallyApprovedDate")),
        ),
        assigned_to=Assignments(
            prepress=coerce_int(row.get("EmployeeID")),
            tooling=coerce_int(row.get("ToolingPersonID")),
            plate=coerce_int(row.get("PlatePersonID")),
        ),
        remarks=clean_text(row.get("ArtworkRemark")),
        booking={key: coerce_int(row.get(key)) for key in BOOKING_COLUMNS},
    )


def work_item_to_row(item: WorkItem) -> dict[str, Any]:
    """Project a work item onto the upsert procedure's parameters."""

    row: dict[str, Any] = {
        "OrderBookingDetailsID": int(item.store_id),
        **{key: item.booking.get(key) for key in BOOKING_COLUMNS},
        "EmployeeID": coerce_int(item.assigned_to.prepress),
        "ToolingPersonID": coerce_int(item.assigned_to.tooling),
        "PlatePersonID": coerce_int(item.assigned_to.plate),
        "FileName": item.file_status.value if item.file_status else None,
        "FileReceivedDate": _naive_utc(item.file_received_date),
        "LinkofSoftApprovalfile": item.soft.link,
        "FinallyApproved": "Yes" if item.final.approved else "No",
        "FinallyApprovedDate": _as_day(item.final.approved_date),
        "ToolingDie": item.tooling.die,
        "ToolingBlock": item.tooling.block,
        "Blanket": item.tooling.blanket,
        "ToolingBlanketPlan": _as_day(item.tooling.blanket_plan_date),
        "ToolingBlanketActual": _as_day(item.tooling.blanket_actual_date),
        "PlateOutput": item.plate.output,
        "PlatePlan": _as_day(item.plate.plan_date),
        "PlateActual": _naive_utc(item.plate.actual_date),
        "PlateRemark": item.plate.remark,
        "ToolingRemark": item.tooling.remark,
        "ArtworkRemark": item.remarks,
    }
    for name, prefix in _DIMENSION_PREFIX.items():
        dimension = item.dimension(name)
        row[f"{prefix}ApprovalReqd"] = _required_text(dimension.required)
        row[f"{prefix}ApprovalStatus"] = dimension.status.value if dimension.status else None
        row[f"{prefix}ApprovalSentPlanDate"] = _as_day(dimension.plan_date)
        row[f"{prefix}ApprovalSentActdate"] = _naive_utc(dimension.actual_date)
    return row


def _comparable(column: str, value: Any) -> Any:
    if column in DATE_COLUMNS:
        parsed = coerce_datetime(value)
        return parsed.date() if parsed else None
    if column in DATETIME_COLUMNS:
        return _naive_utc(coerce_datetime(value))
    if column in ("OrderBookingDetailsID", *BOOKING_COLUMNS, *ASSIGNMENT_COLUMNS):
        return coerce_int(value)
    return clean_text(value)


class SqlShardRepository:
    """Load, upsert and verify approval rows on one relational shard."""

    def __init__(
        self,
        registry: StoreRegistry,
        provenance: Provenance,
        statements: ShardStatements | None = None,
    ) -> None:
        if not provenance.is_relational:
            raise ValueError(f"{provenance.value} is not a relational shard")
        self.provenance = provenance
        self._registry = registry
        self._statements = statements or ShardStatements.for_settings(registry.settings)

    def _read_row(self, connection, store_id: int) -> dict[str, Any] | None:
        result = connection.execute(_typed(self._statements.load), {"OrderBookingDetailsID": store_id})
        row = result.mappings().first()
        return dict(row) if row is not None else None

    def load(self, store_id: int | str) -> WorkItem:
        number = coerce_int(store_id)
        if number is None:
            raise NotFoundError(f"no {self.provenance.value} record {store_id}")
        with self._registry.connection(self.provenance) as connection:
            row = self._read_row(connection, number)
        if row is None:
            raise NotFoundError(f"no {self.provenance.value} record {store_id}")
        return row_to_work_item(self.provenance, row)

    def persist(self, current: WorkItem, derived: WorkItem, *, acting_user: str) -> PersistOutcome:
        params = work_item_to_row(derived)
        before = work_item_to_row(current)
        written = [
            column
            for column in ROW_COLUMNS
            if _comparable(column, params[column]) != _comparable(column, before[column])
        ]

        with self._registry.connection(self.provenance) as connection:
            try:
                result = connection.execute(_typed(self._statements.upsert), params)
                output_id = coerce_int(result.scalar()) if result.returns_rows else None
                connection.commit()
            except SQLAlchemyError as exc:
                connection.rollback()
                raise UpstreamUnavailable(f"{self.provenance.value} upsert failed: {exc}") from exc
            persisted = self._read_row(connection, params["OrderBookingDetailsID"])

        logger.info(
            "sql.persist.written",
            extra={
                "provenance": self.provenance.value,
                "store_id": derived.store_id,
                "changed": len(written),
                "acting_user": acting_user,
            },
        )
        if persisted is None:
            raise NotFoundError(f"{self.provenance.value} record {derived.store_id} vanished after upsert")

        mismatches: dict[str, dict[str, Any]] = {}
        for column in ROW_COLUMNS:
            expected = _comparable(column, params[column])
            actual = _comparable(column, persisted.get(column))
            if expected != actual:
                mismatches[column] = {"expected": expected, "persisted": actual}
        if mismatches:
            logger.warning(
                "sql.persist.mismatch",
                extra={"provenance": self.provenance.value, "store_id": derived.store_id, "mismatches": mismatches},
            )

        return PersistOutcome(
            written=written,
            verified={column: _comparable(column, persisted.get(column)) for column in written},
            mismatches=mismatches,
            output_id=output_id,
        )

    def fetch_worklist(self) -> list[dict[str, Any]]:
        """Run the shard's pending worklist once, unfiltered."""

        with self._registry.connection(self.provenance) as connection:
            result = connection.execute(text(self._statements.worklist))
            return [dict(row) for row in result.mappings()]

    def complete_operation(
        self,
        approval_id: int,
        process: str,
        user_id: int,
        remark: str | None = None,
        link: str | None = None,
    ) -> list[dict[str, Any]]:
        """Mark one worklist operation done through the shard's status procedure."""

        with self._registry.connection(self.provenance) as connection:
            try:
                result = connection.execute(
                    text(self._statements.complete),
                    {
                        "approval_id": approval_id,
                        "process": process,
                        "user_id": user_id,
                        "remark": remark,
                        "link": link,
                    },
                )
                rows = [dict(row) for row in result.mappings()] if result.returns_rows else []
                connection.commit()
            except SQLAlchemyError as exc:
                connection.rollback()
                raise UpstreamUnavailable(f"{self.provenance.value} status update failed: {exc}") from exc
        logger.info(
            "sql.operation.completed",
            extra={"provenance": self.provenance.value, "approval_id": approval_id, "operation": process},
        )
        return rows
