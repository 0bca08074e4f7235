from __future__ import annotations

import os
from dataclasses import dataclass, field

from artwork_backend.domain import Provenance


def _get_env_int(name: str, *, default: int, minimum: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def _first_env(*names: str) -> str:
    for name in names:
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return ""


@dataclass(frozen=True)
class ShardSettings:
    url: str = ""
    database: str = ""
    site: str = ""


def _default_shards() -> dict[Provenance, ShardSettings]:
    return {
        Provenance.SHARD_A: ShardSettings(site="KOLKATA"),
        Provenance.SHARD_B: ShardSettings(site="AHMEDABAD"),
    }


@dataclass(frozen=True)
class StoreSettings:
    """Store connection settings loaded from environment with fail-fast validation."""

    shards: dict[Provenance, ShardSettings] = field(default_factory=_default_shards)
    mongo_uri: str = ""
    mongo_db: str = "artwork_portal"
    sql_pool_size: int = 5
    sql_pool_timeout: int = 30
    mongo_pool_size: int = 10
    worklist_procedure: str = "dbo.GetPendingArtworkWorklist"
    upsert_procedure: str = "dbo.UpsertArtworkProcessApproval"
    status_procedure: str = "dbo.UpdateArtworkProcessStatus"
    cors_origins: tuple[str, ...] = ("http://localhost:3000", "http://127.0.0.1:3000")

    @classmethod
    def from_env(cls) -> "StoreSettings":
        origins_env = os.getenv("API_CORS_ORIGINS", "")
        origins = tuple(origin.strip() for origin in origins_env.split(",") if origin.strip())
        return cls(
            shards={
                Provenance.SHARD_A: ShardSettings(
                    url=_first_env("ARTWORK_SHARD_A_URL"),
                    database=_first_env("ARTWORK_SHARD_A_DATABASE", "DB_NAME_KOL"),
                    site=_first_env("ARTWORK_SHARD_A_SITE") or "KOLKATA",
                ),
                Provenance.SHARD_B: ShardSettings(
                    url=_first_env("ARTWORK_SHARD_B_URL"),
                    database=_first_env("ARTWORK_SHARD_B_DATABASE", "DB_NAME_AHM"),
                    site=_first_env("ARTWORK_SHARD_B_SITE") or "AHMEDABAD",
                ),
            },
            mongo_uri=_first_env("ARTWORK_MONGO_URI", "MONGODB_URI_Approval", "MONGO_URI"),
            mongo_db=_first_env("ARTWORK_MONGO_DB", "MONGO_DB") or "artwork_portal",
            sql_pool_size=_get_env_int("ARTWORK_SQL_POOL_SIZE", default=5, minimum=1),
            sql_pool_timeout=_get_env_int("ARTWORK_SQL_POOL_TIMEOUT", default=30, minimum=1),
            mongo_pool_size=_get_env_int("ARTWORK_MONGO_POOL_SIZE", default=10, minimum=1),
            worklist_procedure=_first_env("ARTWORK_WORKLIST_PROCEDURE") or "dbo.GetPendingArtworkWorklist",
            upsert_procedure=_first_env("ARTWORK_UPSERT_PROCEDURE") or "dbo.UpsertArtworkProcessApproval",
            status_procedure=_first_env("ARTWORK_STATUS_PROCEDURE") or "dbo.UpdateArtworkProcessStatus",
            cors_origins=origins or cls.cors_origins,
        ).normalized()

    def normalized(self) -> "StoreSettings":
        """Validate shard wiring. Raises ValueError on invalid configuration."""

        shard_a = self.shard(Provenance.SHARD_A)
        shard_b = self.shard(Provenance.SHARD_B)
        if shard_a.url and shard_a.url == shard_b.url and shard_a.database == shard_b.database:
            raise ValueError("shard A and shard B must point at different databases")
        if shard_a.site and shard_a.site.upper() == shard_b.site.upper():
            raise ValueError("shard A and shard B must use different ERP site keys")
        return self

    def shard(self, provenance: Provenance) -> ShardSettings:
        return self.shards.get(provenance) or ShardSettings()

    def site_for(self, provenance: Provenance) -> str:
        return self.shard(provenance).site.upper()
