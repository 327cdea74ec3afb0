"""Pytest fixtures for vectorstore tests."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from alloyvec.vectorstore.config import VectorStoreConfig
from alloyvec.vectorstore.schema import MetadataColumn, TableConfig


@pytest.fixture
def vector_store_config() -> VectorStoreConfig:
    """Default vector store configuration for tests."""
    return VectorStoreConfig(
        default_k=4,
        max_k=100,
        validate_on_create=True,
    )


@pytest.fixture
def table_config() -> TableConfig:
    """Five-dimensional table with no metadata."""
    return TableConfig(table_name="embeddings_test", vector_size=5)


@pytest.fixture
def metadata_table_config() -> TableConfig:
    """Table with a declared category column and a JSON metadata column."""
    return TableConfig(
        table_name="embeddings_meta",
        vector_size=3,
        metadata_columns=[
            MetadataColumn("category", "TEXT"),
            MetadataColumn("year", "INTEGER"),
        ],
        metadata_json_column="extra",
        store_metadata=True,
    )


@pytest.fixture
def sample_embedding() -> list[float]:
    """Sample 5-dimensional embedding."""
    return [0.1, 0.2, 0.3, 0.4, 0.5]


@pytest.fixture
def mock_statement() -> AsyncMock:
    """Mock asyncpg PreparedStatement."""
    statement = AsyncMock()
    statement.fetchval = AsyncMock(return_value=None)
    return statement


@pytest.fixture
def mock_connection(mock_statement: AsyncMock) -> AsyncMock:
    """Mock asyncpg Connection."""
    conn = AsyncMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchval = AsyncMock(return_value=None)
    conn.fetchrow = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value="OK")
    conn.prepare = AsyncMock(return_value=mock_statement)
    return conn


@pytest.fixture
def mock_database(mock_connection: AsyncMock) -> AsyncMock:
    """Mock Database instance matching the Database API."""

    @asynccontextmanager
    async def _transaction():
        yield mock_connection

    db = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchval = AsyncMock(return_value=None)
    db.fetchrow = AsyncMock(return_value=None)
    db.execute = AsyncMock(return_value="OK")
    db.transaction = MagicMock(side_effect=_transaction)
    db.acquire = MagicMock(side_effect=_transaction)
    return db
