"""
Vector store engine over PostgreSQL with the pgvector extension.

Main components:
- PgVectorStore: writes records and runs ranked similarity searches
- SchemaManager: creates, validates and drops vector store tables
- TableConfig / MetadataColumn: table layout
- HNSWIndex / IVFFlatIndex / ExactNearestNeighbor: vector index strategies
- Comparison / And / Or / Not: metadata filters, compiled by compile_filter
- EmbeddingRecord / QueryRequest / SearchMatch: write, query and result types
"""

from alloyvec.vectorstore.base import (
    EmbeddingRecord,
    QueryRequest,
    SearchMatch,
    VectorStore,
)
from alloyvec.vectorstore.config import VectorStoreConfig
from alloyvec.vectorstore.filters import (
    And,
    CompiledFilter,
    Comparison,
    FilterOperator,
    Not,
    Or,
    compile_filter,
)
from alloyvec.vectorstore.identifiers import Identifier
from alloyvec.vectorstore.indexes import (
    DistanceStrategy,
    ExactNearestNeighbor,
    HNSWIndex,
    HNSWQueryOptions,
    IVFFlatIndex,
    IVFFlatQueryOptions,
)
from alloyvec.vectorstore.pgvector_store import PgVectorStore
from alloyvec.vectorstore.schema import MetadataColumn, SchemaManager, TableConfig

__all__ = [
    "And",
    "CompiledFilter",
    "Comparison",
    "DistanceStrategy",
    "EmbeddingRecord",
    "ExactNearestNeighbor",
    "FilterOperator",
    "HNSWIndex",
    "HNSWQueryOptions",
    "IVFFlatIndex",
    "IVFFlatQueryOptions",
    "Identifier",
    "MetadataColumn",
    "Not",
    "Or",
    "PgVectorStore",
    "QueryRequest",
    "SchemaManager",
    "SearchMatch",
    "TableConfig",
    "VectorStore",
    "VectorStoreConfig",
    "compile_filter",
]
