"""Connection ownership for the two relational shards and the document store.

One :class:`StoreRegistry` is built at application start-up, handed to the
repositories that need it, and closed on shutdown. Nothing in the package
creates pools on its own.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from artwork_backend.core.errors import UpstreamUnavailable
from artwork_backend.core.settings import StoreSettings
from artwork_backend.domain import SHARDS, Provenance

logger = logging.getLogger(__name__)


def _create_engine(url: str, settings: StoreSettings) -> Engine:
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if make_url(url).get_backend_name() != "sqlite":
        engine_kwargs["pool_size"] = settings.sql_pool_size
        engine_kwargs["pool_timeout"] = settings.sql_pool_timeout
    return create_engine(url, **engine_kwargs)


class StoreRegistry:
    """Owns every store handle used by the repositories."""

    def __init__(
        self,
        settings: StoreSettings,
        *,
        engines: Mapping[Provenance, Engine] | None = None,
        mongo_client: MongoClient | None = None,
    ) -> None:
        self._settings = settings
        self._engines: dict[Provenance, Engine] = dict(engines or {})
        for shard in SHARDS:
            url = settings.shard(shard).url
            if shard not in self._engines and url:
                self._engines[shard] = _create_engine(url, settings)

        self._mongo_client = mongo_client
        self._owns_mongo_client = mongo_client is None
        if self._mongo_client is None and settings.mongo_uri:
            self._mongo_client = MongoClient(settings.mongo_uri, maxPoolSize=settings.mongo_pool_size)

    @property
    def settings(self) -> StoreSettings:
        return self._settings

    # ------------------------------------------------------------------
    # relational shards
    # ------------------------------------------------------------------
    def _verify_database(self, provenance: Provenance, connection: Connection) -> None:
        if connection.dialect.name != "mssql":
            return
        expected = self._settings.shard(provenance).database
        if not expected:
            return
        actual = connection.execute(text("SELECT DB_NAME()")).scalar()
        if actual != expected:
            raise UpstreamUnavailable(
                f"{provenance.value} is connected to the wrong database",
                details={"expected": expected, "actual": actual},
            )

    @contextmanager
    def connection(self, provenance: Provenance) -> Iterator[Connection]:
        """Check out a connection bound to exactly one shard's database."""

        if not provenance.is_relational:
            raise ValueError(f"{provenance.value} is not a relational shard")
        engine = self._engines.get(provenance)
        if engine is None:
            raise UpstreamUnavailable(f"{provenance.value} is not configured")
        try:
            with engine.connect() as connection:
                self._verify_database(provenance, connection)
                yield connection
        except SQLAlchemyError as exc:
            logger.warning("stores.shard.failed", extra={"provenance": provenance.value}, exc_info=exc)
            raise UpstreamUnavailable(f"{provenance.value} is unavailable: {exc}") from exc

    # ------------------------------------------------------------------
    # document store
    # ------------------------------------------------------------------
    def document_store(self) -> Database:
        if self._mongo_client is None:
            raise UpstreamUnavailable("document store is not configured")
        return self._mongo_client[self._settings.mongo_db]

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def health(self) -> dict[str, dict[str, Any]]:
        report: dict[str, dict[str, Any]] = {}
        for shard in SHARDS:
            try:
                with self.connection(shard) as connection:
                    connection.execute(text("SELECT 1"))
            except UpstreamUnavailable as exc:
                report[shard.value] = {"ok": False, "error": exc.message}
            else:
                report[shard.value] = {"ok": True}
        try:
            self.document_store().command("ping")
        except (UpstreamUnavailable, PyMongoError) as exc:
            report[Provenance.DOCUMENT.value] = {"ok": False, "error": str(exc)}
        else:
            report[Provenance.DOCUMENT.value] = {"ok": True}
        return report

    def close(self) -> None:
        for engine in self._engines.values():
            engine.dispose()
        self._engines.clear()
        if self._mongo_client is not None and self._owns_mongo_client:
            self._mongo_client.close()
        self._mongo_client = None


_registry: StoreRegistry | None = None


def configure_store_registry(registry: StoreRegistry | None) -> None:
    """Install the registry used by the service accessors."""

    global _registry
    _registry = registry


def get_store_registry() -> StoreRegistry:
    if _registry is None:
        raise UpstreamUnavailable("stores are not initialised")
    return _registry


def has_store_registry() -> bool:
    return _registry is not None
