"""Storage layer: pooled connections and credentials."""

from alloyvec.storage.credentials import TokenSource
from alloyvec.storage.database import (
    Database,
    build_instance_uri,
    close_database,
    get_database,
)

__all__ = [
    "Database",
    "TokenSource",
    "build_instance_uri",
    "close_database",
    "get_database",
]
