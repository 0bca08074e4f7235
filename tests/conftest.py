from __future__ import annotations

import copy
import sys
from pathlib import Path

import mongomock
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from artwork_backend.core.errors import NotFoundError, UpstreamUnavailable
from artwork_backend.core.settings import StoreSettings
from artwork_backend.domain import Provenance, WorkItem
from artwork_backend.infrastructure import IdentityResolver, PersistOutcome, configure_store_registry
from artwork_backend.infrastructure.documents import compute_delta

USERS = [
    {
        "_id": "asha.patel",
        "displayName": "Asha Patel",
        "active": True,
        "sites": ["KOLKATA", "AHMEDABAD"],
        "erp": {"KOLKATA": {"ledgerId": 501}, "AHMEDABAD": {"ledgerId": 902}},
    },
    {
        "_id": "ravi.kumar",
        "displayName": "Ravi Kumar",
        "active": True,
        "sites": ["KOLKATA"],
        "erp": {"KOLKATA": {"ledgerId": 502}},
    },
    {
        "_id": "old.hand",
        "displayName": "Old Hand",
        "active": False,
        "sites": ["AHMEDABAD"],
        "erp": {"AHMEDABAD": {"ledgerId": 903}},
    },
]


class InMemoryRepository:
    """Work item store used by orchestrator and route tests."""

    def __init__(self, provenance: Provenance, items: list[WorkItem] | None = None) -> None:
        self.provenance = provenance
        self.items: dict[str, WorkItem] = {str(item.store_id): item for item in items or []}
        self.writes: list[tuple[WorkItem, str]] = []
        self.mismatches: dict[str, dict] = {}
        self.completed: list[dict] = []

    def load(self, store_id):
        item = self.items.get(str(store_id))
        if item is None:
            raise NotFoundError(f"no {self.provenance.value} record {store_id}")
        return copy.deepcopy(item)

    def persist(self, current, derived, *, acting_user):
        delta = compute_delta(current, derived)
        self.items[str(derived.store_id)] = copy.deepcopy(derived)
        self.writes.append((copy.deepcopy(derived), acting_user))
        return PersistOutcome(written=sorted(delta), verified=dict(delta), mismatches=dict(self.mismatches))

    def fetch_worklist(self):
        return []

    def complete_operation(self, approval_id, process, user_id, remark=None, link=None):
        call = {"approval_id": approval_id, "process": process, "user_id": user_id, "remark": remark, "link": link}
        self.completed.append(call)
        return [{"Result": "OK"}]


class FakeWorklist:
    def __init__(self, provenance: Provenance, rows=None, error: str | None = None) -> None:
        self.provenance = provenance
        self.rows = rows or []
        self.error = error
        self.calls = 0

    def fetch_worklist(self):
        self.calls += 1
        if self.error:
            raise UpstreamUnavailable(self.error)
        return [dict(row) for row in self.rows]

    def complete_operation(self, approval_id, process, user_id, remark=None, link=None):
        return []


@pytest.fixture()
def mongo_db():
    client = mongomock.MongoClient()
    database = client["artwork_portal"]
    database["user"].insert_many(copy.deepcopy(USERS))
    yield database
    client.close()


@pytest.fixture()
def settings():
    return StoreSettings()


@pytest.fixture()
def identity(mongo_db, settings):
    return IdentityResolver(mongo_db["user"], settings)


@pytest.fixture(autouse=True)
def reset_store_registry():
    configure_store_registry(None)
    yield
    configure_store_registry(None)
