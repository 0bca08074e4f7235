from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from bson import ObjectId
from pymongo.errors import ServerSelectionTimeoutError

sys.path.append(str(Path(__file__).resolve().parents[1]))

from artwork_backend.core.approval_rules import merge
from artwork_backend.core.errors import NotFoundError, UpstreamUnavailable, ValidationError
from artwork_backend.domain import ApprovalStatus, FileStatus, Required, WorkItemUpdate
from artwork_backend.infrastructure import DocumentRepository

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


def _document(**overrides) -> dict:
    document = {
        "_id": ObjectId(),
        "tokenNumber": "UN-00042",
        "site": "KOLKATA",
        "reference": "PCC-7",
        "client": {"name": "Sunrise Foods"},
        "job": {"jobName": "Mango Pouch 200g", "segment": "Flexible"},
        "artwork": {"fileStatus": "PENDING", "fileReceivedDate": None},
        "approvals": {
            "soft": {"required": True, "status": "Pending", "planDate": None, "actualDate": None},
            "hard": {"required": False, "status": "Approved", "planDate": None, "actualDate": None},
            "machineProof": {"required": None, "status": None, "planDate": None, "actualDate": None},
        },
        "finalApproval": {"approved": False, "approvedDate": None},
        "tooling": {"die": "Ready", "block": None, "blanket": None},
        "plate": {"output": None},
        "assignedTo": {"prepressUserKey": "asha.patel", "toolingUserKey": None, "plateUserKey": None},
        "remarks": {"artwork": None},
        "status": {"isDeleted": False, "createdBy": "intake"},
        "createdAt": datetime(2026, 2, 1, 8, 0),
        "updatedAt": datetime(2026, 2, 1, 8, 0),
        "audit": {"source": "booking-form"},
    }
    document.update(overrides)
    return document


@pytest.fixture()
def collection(mongo_db):
    return mongo_db["ArtworkUnordered"]


@pytest.fixture()
def repository(collection):
    return DocumentRepository(collection)


def test_load_maps_document_fields(collection, repository):
    document = _document()
    collection.insert_one(document)

    item = repository.load(str(document["_id"]))

    assert item.store_id == str(document["_id"])
    assert item.file_status is FileStatus.PENDING
    assert item.soft.required is Required.YES
    assert item.hard.required is Required.NO
    assert item.machine_proof.required is Required.UNSET
    assert item.hard.status is ApprovalStatus.APPROVED
    assert item.assigned_to.prepress == "asha.patel"
    assert item.client_name == "Sunrise Foods"
    assert item.reference == "PCC-7"


def test_load_treats_soft_deleted_as_not_found(collection, repository):
    document = _document(status={"isDeleted": True})
    collection.insert_one(document)

    with pytest.raises(NotFoundError):
        repository.load(str(document["_id"]))


def test_load_rejects_malformed_id(repository):
    with pytest.raises(ValidationError):
        repository.load("not-an-object-id")


def test_persist_sets_only_changed_paths(collection, repository):
    document = _document()
    collection.insert_one(document)
    current = repository.load(str(document["_id"]))
    derived = merge(
        current,
        WorkItemUpdate(soft_status=ApprovalStatus.SENT, plate_output="Pending"),
        now=NOW,
    )

    outcome = repository.persist(current, derived, acting_user="asha")

    assert outcome.written == ["approvals.soft.actualDate", "approvals.soft.status", "plate.output"]
    assert outcome.mismatches == {}
    assert outcome.verified["approvals.soft.status"] == "Sent"

    stored = collection.find_one({"_id": document["_id"]})
    assert stored["approvals"]["soft"]["status"] == "Sent"
    assert stored["plate"]["output"] == "Pending"
    assert stored["audit"] == {"source": "booking-form"}
    assert stored["status"]["createdBy"] == "intake"
    assert stored["status"]["updatedBy"] == "asha"
    assert stored["job"]["jobName"] == "Mango Pouch 200g"


def test_persist_on_deleted_document_is_not_found(collection, repository):
    document = _document()
    collection.insert_one(document)
    current = repository.load(str(document["_id"]))
    derived = merge(current, WorkItemUpdate(plate_output="Done"), now=NOW)
    collection.update_one({"_id": document["_id"]}, {"$set": {"status.isDeleted": True}})

    with pytest.raises(NotFoundError):
        repository.persist(current, derived, acting_user="asha")


def test_find_pending_for_user(collection, repository):
    resolved = _document(
        approvals={
            "soft": {"required": True, "status": "Approved"},
            "hard": {"required": True, "status": "Approved"},
            "machineProof": {"required": True, "status": "Approved"},
        },
        finalApproval={"approved": True},
        tooling={"die": "Ready", "block": "Ready", "blanket": "Ready"},
        plate={"output": "DONE"},
    )
    plate_only = _document(
        finalApproval={"approved": True},
        tooling={"die": "Ready"},
        plate={"output": "Pending"},
        assignedTo={"plateUserKey": "asha.patel"},
        updatedAt=datetime(2026, 2, 3, 8, 0),
    )
    someone_else = _document(assignedTo={"prepressUserKey": "ravi.kumar"})
    deleted = _document(status={"isDeleted": True})
    unapproved = _document(updatedAt=datetime(2026, 2, 2, 8, 0))
    collection.insert_many([resolved, plate_only, someone_else, deleted, unapproved])

    pending = repository.find_pending_for_user("asha.patel")

    assert [entry.item.store_id for entry in pending] == [str(plate_only["_id"]), str(unapproved["_id"])]
    assert pending[0].token_number == "UN-00042"
    assert pending[0].job_name == "Mango Pouch 200g"
    assert pending[0].division == "Flexible"


def test_persist_reports_readback_mismatch(collection, repository, monkeypatch):
    document = _document()
    collection.insert_one(document)
    current = repository.load(str(document["_id"]))
    derived = merge(current, WorkItemUpdate(plate_output="Pending", plate_remark="ctp"), now=NOW)
    update_one = collection.update_one

    def dropping_plate_output(query, update, *args, **kwargs):
        update["$set"].pop("plate.output", None)
        return update_one(query, update, *args, **kwargs)

    monkeypatch.setattr(collection, "update_one", dropping_plate_output)

    outcome = repository.persist(current, derived, acting_user="asha")

    assert outcome.mismatches == {"plate.output": {"expected": "Pending", "persisted": None}}
    assert outcome.verified["plate.remark"] == "ctp"


def test_driver_errors_become_upstream_unavailable(collection, repository, monkeypatch):
    document = _document()
    collection.insert_one(document)
    current = repository.load(str(document["_id"]))
    derived = merge(current, WorkItemUpdate(plate_output="Done"), now=NOW)

    def unreachable(*args, **kwargs):
        raise ServerSelectionTimeoutError("no servers available")

    monkeypatch.setattr(collection, "update_one", unreachable)
    monkeypatch.setattr(collection, "find_one", unreachable)
    monkeypatch.setattr(collection, "find", unreachable)

    with pytest.raises(UpstreamUnavailable):
        repository.persist(current, derived, acting_user="asha")
    with pytest.raises(UpstreamUnavailable):
        repository.load(str(document["_id"]))
    with pytest.raises(UpstreamUnavailable):
        repository.find_pending_for_user("asha.patel")
