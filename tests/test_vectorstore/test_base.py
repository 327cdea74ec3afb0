"""Tests for vector store data models and the abstract interface."""

import pytest

from alloyvec.errors import ConfigurationError
from alloyvec.vectorstore.base import (
    EmbeddingRecord,
    QueryRequest,
    SearchMatch,
    VectorStore,
)
from alloyvec.vectorstore.indexes import DistanceStrategy


class TestEmbeddingRecord:
    """Tests for EmbeddingRecord."""

    def test_defaults(self):
        record = EmbeddingRecord(embedding=[0.1, 0.2])
        assert record.id is None
        assert record.content is None
        assert record.metadata == {}

    def test_metadata_not_shared(self):
        first = EmbeddingRecord(embedding=[0.1])
        second = EmbeddingRecord(embedding=[0.2])
        first.metadata["key"] = "value"
        assert second.metadata == {}


class TestQueryRequest:
    """Tests for QueryRequest validation."""

    def test_strategy_from_string(self):
        request = QueryRequest(embedding=[0.1], distance_strategy="inner_product")
        assert request.distance_strategy is DistanceStrategy.INNER_PRODUCT
        assert request.k == 4

    def test_unknown_strategy(self):
        with pytest.raises(ConfigurationError, match="Unknown distance strategy"):
            QueryRequest(embedding=[0.1], distance_strategy="manhattan")

    @pytest.mark.parametrize("k", [0, -3, 1.5, True, "4"])
    def test_invalid_k(self, k):
        with pytest.raises(ConfigurationError, match="k must be a positive integer"):
            QueryRequest(embedding=[0.1], distance_strategy=DistanceStrategy.EUCLIDEAN, k=k)


class TestSearchMatch:
    """Tests for SearchMatch."""

    def test_defaults(self):
        match = SearchMatch(id="abc", score=0.5)
        assert match.content is None
        assert match.metadata == {}
        assert match.embedding is None


class TestDistanceStrategy:
    """Tests for DistanceStrategy properties."""

    def test_only_inner_product_is_similarity(self):
        assert DistanceStrategy.INNER_PRODUCT.higher_is_better
        assert not DistanceStrategy.EUCLIDEAN.higher_is_better
        assert not DistanceStrategy.COSINE_DISTANCE.higher_is_better


class TestVectorStoreInterface:
    """Tests for the VectorStore ABC."""

    def test_cannot_instantiate(self):
        with pytest.raises(TypeError):
            VectorStore()

    def test_partial_implementation_rejected(self):
        class AddOnly(VectorStore):
            async def add(self, record):
                return "id"

        with pytest.raises(TypeError):
            AddOnly()
