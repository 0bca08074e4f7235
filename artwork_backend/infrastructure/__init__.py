"""Infrastructure layer exports."""

from .documents import WORK_ITEMS_COLLECTION, DocumentRepository, PendingDocument
from .factory import (
    build_document_repository,
    build_document_services,
    build_identity_resolver,
    build_shard_repositories,
)
from .identity import USERS_COLLECTION, IdentityResolver
from .repository import PersistOutcome, ShardWorklist, WorkItemRepository
from .sql_shards import ShardStatements, SqlShardRepository
from .stores import StoreRegistry, configure_store_registry, get_store_registry, has_store_registry

__all__ = [
    "DocumentRepository",
    "IdentityResolver",
    "PendingDocument",
    "PersistOutcome",
    "ShardStatements",
    "ShardWorklist",
    "SqlShardRepository",
    "StoreRegistry",
    "USERS_COLLECTION",
    "WORK_ITEMS_COLLECTION",
    "WorkItemRepository",
    "build_document_repository",
    "build_document_services",
    "build_identity_resolver",
    "build_shard_repositories",
    "configure_store_registry",
    "get_store_registry",
    "has_store_registry",
]
