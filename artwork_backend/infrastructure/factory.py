"""Build repositories and resolvers on top of an installed :class:`StoreRegistry`."""
from __future__ import annotations

import logging

from artwork_backend.core.errors import UpstreamUnavailable
from artwork_backend.domain import SHARDS, Provenance

from .documents import WORK_ITEMS_COLLECTION, DocumentRepository
from .identity import USERS_COLLECTION, IdentityResolver
from .sql_shards import SqlShardRepository
from .stores import StoreRegistry

logger = logging.getLogger(__name__)


def build_identity_resolver(registry: StoreRegistry) -> IdentityResolver:
    return IdentityResolver(registry.document_store()[USERS_COLLECTION], registry.settings)


def build_document_repository(registry: StoreRegistry) -> DocumentRepository:
    return DocumentRepository(registry.document_store()[WORK_ITEMS_COLLECTION])


def build_document_services(
    registry: StoreRegistry,
) -> tuple[DocumentRepository | None, IdentityResolver | None]:
    """Document repository and user directory, or ``(None, None)`` when the store is not configured.

    Callers degrade the document-backed parts of a request instead of failing
    the shards along with them.
    """

    try:
        return build_document_repository(registry), build_identity_resolver(registry)
    except UpstreamUnavailable as exc:
        logger.warning("factory.document_store.unavailable", extra={"error": exc.message})
        return None, None


def build_shard_repositories(registry: StoreRegistry) -> dict[Provenance, SqlShardRepository]:
    return {shard: SqlShardRepository(registry, shard) for shard in SHARDS}
