"""
Abstract base class and data models for vector store implementations.

Defines the interface that vector store backends implement, plus the
shared records, requests and search matches.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from alloyvec.errors import ConfigurationError
from alloyvec.vectorstore.filters import FilterNode
from alloyvec.vectorstore.indexes import DistanceStrategy, QueryOptions


@dataclass
class EmbeddingRecord:
    """
    An embedding to store.

    Attributes:
        embedding: Vector, length must equal the table's vector_size
        id: UUID string (generated on write if None)
        content: Optional text the embedding was computed from
        metadata: Declared column values plus, with a JSON column, any extra keys
    """

    embedding: list[float]
    id: str | None = None
    content: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryRequest:
    """
    A similarity search.

    Attributes:
        embedding: Query vector, length must equal the table's vector_size
        distance_strategy: Metric used for ranking and scoring
        k: Maximum number of matches
        filter: Optional metadata filter
        query_options: Per-query session settings, e.g. HNSWQueryOptions(ef_search=100)
    """

    embedding: list[float]
    distance_strategy: DistanceStrategy
    k: int = 4
    filter: FilterNode | None = None
    query_options: QueryOptions | Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        """Validate k and the strategy."""
        if isinstance(self.k, bool) or not isinstance(self.k, int) or self.k < 1:
            raise ConfigurationError(f"k must be a positive integer, got {self.k!r}")
        try:
            self.distance_strategy = DistanceStrategy(self.distance_strategy)
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown distance strategy: {self.distance_strategy!r}"
            ) from e


@dataclass
class SearchMatch:
    """
    Result from a vector similarity search.

    Attributes:
        id: Record id
        score: l2 or cosine distance (lower is better) or inner product
            (higher is better), depending on the distance strategy
        content: Stored text content
        metadata: Declared columns merged over the JSON metadata keys
        embedding: Stored vector
    """

    id: str
    score: float
    content: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] | None = None


class VectorStore(ABC):
    """
    Abstract base class for vector store implementations.

    All methods are async to support non-blocking I/O.
    """

    @abstractmethod
    async def add(self, record: EmbeddingRecord) -> str:
        """
        Insert one record.

        Returns:
            Id of the inserted record
        """
        ...

    @abstractmethod
    async def add_all(self, records: list[EmbeddingRecord]) -> list[str]:
        """
        Insert records as a single unit of work.

        Either every record is inserted or none is.

        Returns:
            Ids in insertion order
        """
        ...

    @abstractmethod
    async def upsert(self, records: list[EmbeddingRecord]) -> list[str]:
        """
        Insert records, replacing existing rows with the same id.

        Returns:
            Ids in input order
        """
        ...

    @abstractmethod
    async def remove_all(self, ids: list[str]) -> int:
        """
        Delete records by id. Unknown ids are ignored.

        Returns:
            Number of records deleted
        """
        ...

    @abstractmethod
    async def search(self, request: QueryRequest) -> list[SearchMatch]:
        """
        Find the k nearest records.

        Returns:
            Matches ordered best-first for the request's distance strategy
        """
        ...

    @abstractmethod
    async def get_by_ids(self, ids: list[str]) -> list[SearchMatch]:
        """Retrieve records by id."""
        ...
