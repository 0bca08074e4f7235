from __future__ import annotations

import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

sys.path.append(str(Path(__file__).resolve().parents[1]))

from artwork_backend.core.approval_rules import merge
from artwork_backend.core.errors import NotFoundError, UpstreamUnavailable
from artwork_backend.core.settings import StoreSettings
from artwork_backend.domain import ApprovalStatus, FileStatus, Provenance, Required, WorkItemUpdate
from artwork_backend.infrastructure import ShardStatements, SqlShardRepository, StoreRegistry
from artwork_backend.infrastructure.sql_shards import DATE_COLUMNS, DATETIME_COLUMNS, ROW_COLUMNS

NOW = datetime(2026, 3, 2, 9, 30, 15, tzinfo=timezone.utc)

_INTEGER_COLUMNS = {"OrderBookingDetailsID", "CategoryID", "OrderBookingID", "JobBookingID", "EmployeeID",
                    "ToolingPersonID", "PlatePersonID"}


def _column_type(column: str) -> str:
    if column in _INTEGER_COLUMNS:
        return "INTEGER"
    if column in DATE_COLUMNS:
        return "DATE"
    if column in DATETIME_COLUMNS:
        return "DATETIME"
    return "TEXT"


def _upsert_statement(skip: tuple[str, ...] = ()) -> str:
    columns = ", ".join(ROW_COLUMNS)
    values = ", ".join(f":{column}" for column in ROW_COLUMNS)
    updates = ", ".join(
        f"{column} = excluded.{column}"
        for column in ROW_COLUMNS
        if column != "OrderBookingDetailsID" and column not in skip
    )
    return (
        f"INSERT INTO ArtworkProcessApproval ({columns}) VALUES ({values}) "
        f"ON CONFLICT(OrderBookingDetailsID) DO UPDATE SET {updates} "
        "RETURNING ArtworkProcessApprovalID"
    )


def _statements(skip: tuple[str, ...] = ()) -> ShardStatements:
    return ShardStatements(
        load=(
            f"SELECT {', '.join(ROW_COLUMNS)} FROM ArtworkProcessApproval "
            "WHERE OrderBookingDetailsID = :OrderBookingDetailsID"
        ),
        worklist="SELECT * FROM PendingWorklist ORDER BY ID",
        upsert=_upsert_statement(skip),
        complete=(
            "UPDATE ArtworkProcessApproval SET ArtworkRemark = :remark "
            "WHERE ArtworkProcessApprovalID = :approval_id"
        ),
    )


@pytest.fixture()
def engine():
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    columns = ", ".join(f"{column} {_column_type(column)}" for column in ROW_COLUMNS if column != "OrderBookingDetailsID")
    with engine.begin() as connection:
        connection.execute(
            text(
                "CREATE TABLE ArtworkProcessApproval ("
                "ArtworkProcessApprovalID INTEGER PRIMARY KEY AUTOINCREMENT, "
                f"OrderBookingDetailsID INTEGER UNIQUE NOT NULL, {columns})"
            )
        )
        connection.execute(
            text(
                "CREATE TABLE PendingWorklist (ID INTEGER, Operation TEXT, PlanDate DATE, Status TEXT, "
                "ClientName TEXT, JobName TEXT, PONumber INTEGER, ledgerid INTEGER)"
            )
        )
        connection.execute(
            text(
                "INSERT INTO ArtworkProcessApproval (OrderBookingDetailsID, CategoryID, EmployeeID, FileName, "
                "SoftApprovalReqd, SoftApprovalStatus, HardApprovalReqd, HardApprovalStatus, ToolingDie, PlateRemark) "
                "VALUES (4411, 3, 501, 'Pending', 'Yes', 'Pending', 'No', 'Approved', 'Ready', 'old remark')"
            )
        )
        connection.execute(
            text(
                "INSERT INTO PendingWorklist VALUES "
                "(1, 'Soft Copy Approval', '2026-03-04', 'Pending', 'Sunrise Foods', 'Mango Pouch', 9001, 501), "
                "(2, 'Plate Output', NULL, 'Pending', 'Blue Dairy', 'Curd Lid', 9002, 502)"
            )
        )
    yield engine
    engine.dispose()


def _repository(engine, skip: tuple[str, ...] = ()) -> SqlShardRepository:
    registry = StoreRegistry(StoreSettings(), engines={Provenance.SHARD_A: engine})
    return SqlShardRepository(registry, Provenance.SHARD_A, _statements(skip))


def test_load_maps_row(engine):
    item = _repository(engine).load(4411)

    assert item.store_id == 4411
    assert item.provenance is Provenance.SHARD_A
    assert item.file_status is FileStatus.PENDING
    assert item.soft.required is Required.YES
    assert item.hard.status is ApprovalStatus.APPROVED
    assert item.assigned_to.prepress == 501
    assert item.booking == {"CategoryID": 3, "OrderBookingID": None, "JobBookingID": None}
    assert item.plate.remark == "old remark"


def test_load_absent_row_is_not_found(engine):
    with pytest.raises(NotFoundError):
        _repository(engine).load(9999)


def test_persist_upserts_and_verifies(engine):
    repository = _repository(engine)
    current = repository.load(4411)
    derived = merge(
        current,
        WorkItemUpdate(file_status=FileStatus.RECEIVED, soft_status=ApprovalStatus.SENT),
        now=NOW,
    )

    outcome = repository.persist(current, derived, acting_user="asha")

    assert outcome.mismatches == {}
    assert outcome.output_id == 1
    assert "FileName" in outcome.written
    assert "SoftApprovalSentActdate" in outcome.written
    assert "SoftApprovalSentPlanDate" in outcome.written
    assert outcome.verified["SoftApprovalSentPlanDate"] == date(2026, 3, 4)

    reloaded = repository.load(4411)
    assert reloaded.file_status is FileStatus.RECEIVED
    assert reloaded.file_received_date == NOW
    assert reloaded.soft.status is ApprovalStatus.SENT
    assert reloaded.soft.actual_date == NOW
    assert reloaded.soft.plan_date == datetime(2026, 3, 4, tzinfo=timezone.utc)
    assert reloaded.plate.remark == "old remark"


def test_persist_reports_readback_mismatch(engine):
    repository = _repository(engine, skip=("PlateRemark",))
    current = repository.load(4411)
    derived = merge(current, WorkItemUpdate(plate_remark="new remark"), now=NOW)

    outcome = repository.persist(current, derived, acting_user="asha")

    assert outcome.mismatches == {"PlateRemark": {"expected": "new remark", "persisted": "old remark"}}


def test_date_columns_compare_by_day(engine):
    repository = _repository(engine)
    current = repository.load(4411)
    derived = merge(current, WorkItemUpdate(plate_output="Pending"), now=NOW)
    derived.plate.plan_date = NOW + timedelta(hours=5)

    outcome = repository.persist(current, derived, acting_user="asha")

    assert outcome.mismatches == {}
    assert outcome.verified["PlatePlan"] == date(2026, 3, 2)


def test_fetch_worklist_returns_all_rows(engine):
    rows = _repository(engine).fetch_worklist()

    assert [row["ID"] for row in rows] == [1, 2]
    assert rows[0]["ledgerid"] == 501


def test_complete_operation_runs_status_statement(engine):
    repository = _repository(engine)

    rows = repository.complete_operation(1, "Soft Copy Approval", 501, remark="sent to client")

    assert rows == []
    assert repository.load(4411).remarks == "sent to client"


def test_unconfigured_shard_is_unavailable(engine):
    registry = StoreRegistry(StoreSettings(), engines={Provenance.SHARD_A: engine})
    repository = SqlShardRepository(registry, Provenance.SHARD_B, _statements())

    with pytest.raises(UpstreamUnavailable):
        repository.fetch_worklist()


def test_driver_errors_become_upstream_unavailable(engine):
    registry = StoreRegistry(StoreSettings(), engines={Provenance.SHARD_A: engine})
    statements = ShardStatements(load="SELECT 1", worklist="SELECT * FROM MissingTable", upsert="", complete="")
    repository = SqlShardRepository(registry, Provenance.SHARD_A, statements)

    with pytest.raises(UpstreamUnavailable):
        repository.fetch_worklist()
