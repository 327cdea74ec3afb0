"""
Vector index strategies and distance strategies.

The index variants form a closed set: HNSWIndex (graph-based),
IVFFlatIndex (partition-based) and ExactNearestNeighbor (no index, full
scan). Each renders its own CREATE INDEX statement for a table/column pair;
render_create_index() dispatches over the set and rejects anything else.
"""

import hashlib
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from alloyvec.errors import ConfigurationError
from alloyvec.vectorstore.identifiers import MAX_IDENTIFIER_LENGTH, Identifier, qualified

# Session setting names: "work_mem", "hnsw.ef_search", ...
SETTING_NAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*(\.[a-z_][a-z0-9_]*)?$")


class DistanceStrategy(str, Enum):
    """
    Distance metric used for ranking.

    EUCLIDEAN and COSINE_DISTANCE are distances (lower is better).
    INNER_PRODUCT is a similarity (higher is better).
    """

    EUCLIDEAN = "euclidean"
    COSINE_DISTANCE = "cosine_distance"
    INNER_PRODUCT = "inner_product"

    @property
    def operator(self) -> str:
        """pgvector ordering operator (always ascending best-first)."""
        return _OPERATORS[self]

    @property
    def search_function(self) -> str:
        """pgvector function computing the reported score."""
        return _SEARCH_FUNCTIONS[self]

    @property
    def higher_is_better(self) -> bool:
        """Whether larger scores mean closer matches."""
        return self is DistanceStrategy.INNER_PRODUCT


_OPERATORS = {
    DistanceStrategy.EUCLIDEAN: "<->",
    DistanceStrategy.COSINE_DISTANCE: "<=>",
    # Negative inner product, so ascending order is best-first
    DistanceStrategy.INNER_PRODUCT: "<#>",
}

_SEARCH_FUNCTIONS = {
    DistanceStrategy.EUCLIDEAN: "l2_distance",
    DistanceStrategy.COSINE_DISTANCE: "cosine_distance",
    DistanceStrategy.INNER_PRODUCT: "inner_product",
}

# Operator classes per index access method
_OPERATOR_CLASSES: dict[str, dict[DistanceStrategy, str]] = {
    "hnsw": {
        DistanceStrategy.EUCLIDEAN: "vector_l2_ops",
        DistanceStrategy.COSINE_DISTANCE: "vector_cosine_ops",
        DistanceStrategy.INNER_PRODUCT: "vector_ip_ops",
    },
    "ivfflat": {
        DistanceStrategy.EUCLIDEAN: "vector_l2_ops",
        DistanceStrategy.COSINE_DISTANCE: "vector_cosine_ops",
        DistanceStrategy.INNER_PRODUCT: "vector_ip_ops",
    },
}


def operator_class(index_type: str, strategy: DistanceStrategy) -> str:
    """
    Look up the operator class for an index type and distance strategy.

    Raises:
        ConfigurationError: If the combination is not supported
    """
    try:
        return _OPERATOR_CLASSES[index_type][DistanceStrategy(strategy)]
    except (KeyError, ValueError) as e:
        raise ConfigurationError(
            f"Distance strategy {strategy!r} is not supported by index type {index_type!r}"
        ) from e


@dataclass(frozen=True)
class HNSWIndex:
    """
    Hierarchical navigable small world graph index.

    Attributes:
        m: Max connections per node
        ef_construction: Candidate list size while building
        distance_strategy: Metric the index accelerates
        name: Index name (defaults to <table>_<column>_hnsw_idx)
    """

    m: int = 16
    ef_construction: int = 64
    distance_strategy: DistanceStrategy = DistanceStrategy.COSINE_DISTANCE
    name: str | None = None
    kind: Literal["hnsw"] = field(default="hnsw", init=False)

    def __post_init__(self) -> None:
        if self.m < 2:
            raise ConfigurationError(f"HNSW m must be at least 2, got {self.m}")
        if self.ef_construction < 1:
            raise ConfigurationError(
                f"HNSW ef_construction must be positive, got {self.ef_construction}"
            )

    def index_options(self) -> str:
        return f"(m = {int(self.m)}, ef_construction = {int(self.ef_construction)})"


@dataclass(frozen=True)
class IVFFlatIndex:
    """
    Inverted-file index over k-means partitions.

    Build it after the table holds representative data; partitions are
    trained from existing rows.

    Attributes:
        lists: Number of partitions
        distance_strategy: Metric the index accelerates
        name: Index name (defaults to <table>_<column>_ivfflat_idx)
    """

    lists: int = 100
    distance_strategy: DistanceStrategy = DistanceStrategy.COSINE_DISTANCE
    name: str | None = None
    kind: Literal["ivfflat"] = field(default="ivfflat", init=False)

    def __post_init__(self) -> None:
        if self.lists < 1:
            raise ConfigurationError(f"IVFFlat lists must be positive, got {self.lists}")

    def index_options(self) -> str:
        return f"(lists = {int(self.lists)})"


@dataclass(frozen=True)
class ExactNearestNeighbor:
    """No index structure: every search is an exact full scan."""

    distance_strategy: DistanceStrategy = DistanceStrategy.COSINE_DISTANCE
    name: str | None = None
    kind: Literal["exact"] = field(default="exact", init=False)


VectorIndex = HNSWIndex | IVFFlatIndex | ExactNearestNeighbor


def default_index() -> HNSWIndex:
    """Index used when table init is given none."""
    return HNSWIndex()


def index_name(index: VectorIndex, table: str, column: str) -> Identifier:
    """
    Explicit index name, or <table>_<column>_<kind>_idx.

    A default name over MAX_IDENTIFIER_LENGTH keeps a truncated
    <table>_<column> prefix and gains an 8-character hash of the full
    prefix, so long table names still get a stable, distinct name.
    """
    if index.name:
        return Identifier(index.name)

    prefix = f"{table}_{column}"
    suffix = f"_{index.kind}_idx"
    name = prefix + suffix
    if len(name) > MAX_IDENTIFIER_LENGTH:
        digest = hashlib.sha1(prefix.encode("utf-8")).hexdigest()[:8]
        keep = MAX_IDENTIFIER_LENGTH - len(suffix) - len(digest) - 1
        name = f"{prefix[:keep]}_{digest}{suffix}"
    return Identifier(name)


def render_create_index(
    index: VectorIndex,
    schema: str,
    table: str,
    column: str,
    concurrently: bool = False,
) -> str | None:
    """
    Render the CREATE INDEX statement for an embedding column.

    Args:
        index: Index variant to build
        schema: Schema of the table
        table: Table name
        column: Embedding column name
        concurrently: Build without locking out writes

    Returns:
        SQL text, or None for ExactNearestNeighbor (nothing to build)

    Raises:
        ConfigurationError: For an unsupported distance strategy or index object
    """
    if isinstance(index, ExactNearestNeighbor):
        return None

    if isinstance(index, (HNSWIndex, IVFFlatIndex)):
        opclass = operator_class(index.kind, index.distance_strategy)
        name = index_name(index, table, column)
        return (
            f"CREATE INDEX {'CONCURRENTLY ' if concurrently else ''}{name.quoted} "
            f"ON {qualified(schema, table)} "
            f"USING {index.kind} ({Identifier(column).quoted} {opclass}) "
            f"WITH {index.index_options()}"
        )

    raise ConfigurationError(f"Unsupported vector index: {index!r}")


@dataclass(frozen=True)
class HNSWQueryOptions:
    """Per-query HNSW search breadth (hnsw.ef_search)."""

    ef_search: int = 40

    def to_settings(self) -> dict[str, Any]:
        return {"hnsw.ef_search": self.ef_search}


@dataclass(frozen=True)
class IVFFlatQueryOptions:
    """Per-query number of IVFFlat partitions probed (ivfflat.probes)."""

    probes: int = 1

    def to_settings(self) -> dict[str, Any]:
        return {"ivfflat.probes": self.probes}


QueryOptions = HNSWQueryOptions | IVFFlatQueryOptions


def session_settings(
    options: QueryOptions | Mapping[str, Any] | None,
) -> list[tuple[str, str]]:
    """
    Normalize per-query options into (setting, value) pairs.

    Values are later bound as parameters of set_config(), so only the
    setting names need validating here.

    Raises:
        ConfigurationError: For a malformed setting name
    """
    if options is None:
        return []
    if isinstance(options, (HNSWQueryOptions, IVFFlatQueryOptions)):
        options = options.to_settings()

    pairs = []
    for name, value in options.items():
        if not isinstance(name, str) or not SETTING_NAME_PATTERN.match(name):
            raise ConfigurationError(f"Invalid session setting name: {name!r}")
        if isinstance(value, bool):
            value = "on" if value else "off"
        pairs.append((name, str(value)))
    return pairs
