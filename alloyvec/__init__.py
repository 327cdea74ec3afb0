"""
alloyvec - vector similarity storage on PostgreSQL/AlloyDB with pgvector.

Usage:
    async with Database() as db:
        config = TableConfig("documents", vector_size=768)
        await SchemaManager(db).init_table(config)
        store = await PgVectorStore.create(db, config)
        await store.add_all(records)
        matches = await store.similarity_search(query_vector, k=5)
"""

from alloyvec.errors import (
    ConfigurationError,
    ConnectivityError,
    ConstraintViolationError,
    FilterCompilationError,
    IdentityResolutionError,
    PoolExhaustedError,
    SchemaConflictError,
    VectorStoreError,
)
from alloyvec.storage.database import Database
from alloyvec.vectorstore import (
    EmbeddingRecord,
    PgVectorStore,
    QueryRequest,
    SchemaManager,
    SearchMatch,
    TableConfig,
)

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "ConnectivityError",
    "ConstraintViolationError",
    "Database",
    "EmbeddingRecord",
    "FilterCompilationError",
    "IdentityResolutionError",
    "PgVectorStore",
    "PoolExhaustedError",
    "QueryRequest",
    "SchemaConflictError",
    "SchemaManager",
    "SearchMatch",
    "TableConfig",
    "VectorStoreError",
]
