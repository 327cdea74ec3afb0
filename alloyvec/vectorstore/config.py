"""
Configuration for vector store operations.

Uses Pydantic BaseSettings for environment variable support.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from alloyvec.vectorstore.indexes import DistanceStrategy


class VectorStoreConfig(BaseSettings):
    """
    Configuration for PgVectorStore.

    All settings can be overridden via environment variables with
    VECTORSTORE_ prefix (e.g., VECTORSTORE_DEFAULT_K=20).
    """

    # Search defaults
    default_k: int = Field(
        default=4,
        ge=1,
        le=1000,
        description="Default number of results to return",
    )
    max_k: int = Field(
        default=10_000,
        ge=1,
        description="Upper bound accepted for k",
    )
    default_distance_strategy: DistanceStrategy = Field(
        default=DistanceStrategy.COSINE_DISTANCE,
        description="Distance strategy when a search does not name one",
    )

    # Validate tables against the catalog before use
    validate_on_create: bool = True

    model_config = SettingsConfigDict(env_prefix="VECTORSTORE_")
