"""Person lookups against the document store's user directory.

A human has a numeric ledger id on each relational shard (``erp.<SITE>.ledgerId``)
and a stable user key (``_id``) in the document store. Every lookup here is
scoped to exactly one of those representations.
"""
from __future__ import annotations

import logging
import re
from typing import Any

from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from artwork_backend.core.errors import UpstreamUnavailable
from artwork_backend.core.normalize import coerce_int
from artwork_backend.core.settings import StoreSettings
from artwork_backend.domain import Provenance

logger = logging.getLogger(__name__)

USERS_COLLECTION = "user"


def _display_name_filter(display_name: str) -> dict[str, Any]:
    return {
        "active": True,
        "displayName": {"$regex": f"^{re.escape(display_name.strip())}$", "$options": "i"},
    }


class IdentityResolver:
    """Resolve display names and user keys to store-specific identities.

    Unmatched, inactive and unmapped users resolve to ``None``; only a store
    failure raises.
    """

    def __init__(self, users: Collection, settings: StoreSettings) -> None:
        self._users = users
        self._settings = settings

    def _find_one(self, query: dict[str, Any], projection: dict[str, int]) -> dict[str, Any] | None:
        try:
            return self._users.find_one(query, projection)
        except PyMongoError as exc:
            raise UpstreamUnavailable(f"user directory is unavailable: {exc}") from exc

    def _ledger_id_from(self, user: dict[str, Any] | None, shard: Provenance) -> int | None:
        if not user:
            return None
        site = self._settings.site_for(shard)
        erp = user.get("erp") or {}
        return coerce_int((erp.get(site) or {}).get("ledgerId"))

    def resolve_ledger_id(self, shard: Provenance, display_name: str | None) -> int | None:
        if not shard.is_relational:
            raise ValueError(f"{shard.value} has no ledger ids")
        if not display_name or not str(display_name).strip():
            return None
        site = self._settings.site_for(shard)
        user = self._find_one(_display_name_filter(str(display_name)), {"_id": 1, f"erp.{site}.ledgerId": 1})
        ledger_id = self._ledger_id_from(user, shard)
        if ledger_id is None:
            logger.info(
                "identity.ledger_id.unresolved",
                extra={"display_name": display_name, "site": site, "user_found": user is not None},
            )
        return ledger_id

    def resolve_user_key(self, display_name: str | None) -> str | None:
        if not display_name or not str(display_name).strip():
            return None
        user = self._find_one(_display_name_filter(str(display_name)), {"_id": 1})
        if not user:
            logger.info("identity.user_key.unresolved", extra={"display_name": display_name})
            return None
        return str(user["_id"]).lower()

    def ledger_id_for_user_key(self, shard: Provenance, user_key: str | None) -> int | None:
        """Map a document-store user key to the shard's ledger id."""

        if not shard.is_relational:
            raise ValueError(f"{shard.value} has no ledger ids")
        if not user_key or not str(user_key).strip():
            return None
        site = self._settings.site_for(shard)
        user = self._find_one(
            {"_id": str(user_key).strip().lower(), "active": True},
            {"_id": 1, f"erp.{site}.ledgerId": 1},
        )
        return self._ledger_id_from(user, shard)

    def list_users(self, site: str | None = None) -> list[dict[str, Any]]:
        """Active users sorted by display name, optionally limited to one site."""

        query: dict[str, Any] = {"active": True}
        known_sites = {self._settings.site_for(shard) for shard in (Provenance.SHARD_A, Provenance.SHARD_B)}
        if site and site.strip().upper() in known_sites:
            query["sites"] = site.strip().upper()
        try:
            cursor = self._users.find(query, {"_id": 1, "displayName": 1, "sites": 1, "erp": 1}).sort(
                "displayName", 1
            )
            users = list(cursor)
        except PyMongoError as exc:
            raise UpstreamUnavailable(f"user directory is unavailable: {exc}") from exc
        return [
            {
                "userKey": str(user["_id"]).lower(),
                "displayName": user.get("displayName"),
                "sites": user.get("sites") or [],
                "erp": user.get("erp") or {},
            }
            for user in users
        ]
