"""
Table configuration and schema lifecycle for vector store tables.

SchemaManager creates, validates and drops the one-table-per-collection
layout:

    "<id>" UUID PRIMARY KEY,
    "<content>" TEXT,
    "<embedding>" vector(<n>) NOT NULL,
    "<metadata column>" <type>, ...
    "<metadata json column>" JSON

Every identifier is a validated Identifier; no value is ever interpolated.
"""

import re
from dataclasses import dataclass, field, replace

import structlog

from alloyvec.errors import ConfigurationError, SchemaConflictError
from alloyvec.storage.database import Database
from alloyvec.vectorstore.identifiers import Identifier, qualified
from alloyvec.vectorstore.indexes import (
    VectorIndex,
    default_index,
    index_name,
    render_create_index,
)

logger = structlog.get_logger(__name__)

# Column types such as TEXT, VARCHAR(64), NUMERIC(10, 2), TEXT[],
# TIMESTAMP WITH TIME ZONE, timestamp(3) without time zone
SQL_TYPE_PATTERN = re.compile(
    r"^[A-Za-z][A-Za-z0-9_ ]*(\(\s*\d+(\s*,\s*\d+)?\s*\))?[A-Za-z0-9_ ]*(\[\])*$"
)

# Alias of the computed distance in search results
RESERVED_COLUMN = "__distance"

_TABLE_EXISTS_QUERY = """
    SELECT EXISTS (
        SELECT 1
        FROM information_schema.tables
        WHERE table_schema = $1 AND table_name = $2
    )
"""


@dataclass(frozen=True)
class MetadataColumn:
    """
    A typed metadata column.

    Attributes:
        name: Column name
        data_type: SQL type, e.g. "TEXT" or "INTEGER"
        nullable: Whether NULL is allowed
    """

    name: str
    data_type: str
    nullable: bool = True

    def __post_init__(self) -> None:
        Identifier(self.name)
        if not SQL_TYPE_PATTERN.match(self.data_type.strip()):
            raise ConfigurationError(
                f"Invalid SQL type {self.data_type!r} for column {self.name!r}"
            )

    def column_definition(self) -> str:
        """DDL fragment: "<name>" <type> [NOT NULL]."""
        definition = f"{Identifier(self.name).quoted} {self.data_type.strip()}"
        if not self.nullable:
            definition += " NOT NULL"
        return definition


@dataclass
class TableConfig:
    """
    Layout of a vector store table.

    Attributes:
        table_name: Table name
        vector_size: Embedding dimension
        schema_name: Schema holding the table
        id_column: UUID primary key column
        content_column: Text content column
        embedding_column: vector(n) column
        metadata_columns: Typed metadata columns, in DDL order
        metadata_json_column: JSON column for undeclared metadata keys
        overwrite_existing: Drop an existing table on init (destroys its rows)
        store_metadata: Must be True exactly when metadata_columns is non-empty
    """

    table_name: str
    vector_size: int
    schema_name: str = "public"
    id_column: str = "embedding_id"
    content_column: str = "content"
    embedding_column: str = "embedding"
    metadata_columns: list[MetadataColumn] = field(default_factory=list)
    metadata_json_column: str | None = None
    overwrite_existing: bool = False
    store_metadata: bool = False

    def __post_init__(self) -> None:
        for name in (
            self.table_name,
            self.schema_name,
            self.id_column,
            self.content_column,
            self.embedding_column,
        ):
            Identifier(name)
        if self.metadata_json_column is not None:
            Identifier(self.metadata_json_column)

        if isinstance(self.vector_size, bool) or not isinstance(self.vector_size, int):
            raise ConfigurationError(f"vector_size must be an integer, got {self.vector_size!r}")
        if self.vector_size <= 0:
            raise ConfigurationError(f"vector_size must be positive, got {self.vector_size}")

        self.metadata_columns = list(self.metadata_columns)
        if self.metadata_columns and not self.store_metadata:
            raise ConfigurationError("store_metadata is disabled but metadata columns were provided")
        if not self.metadata_columns and self.store_metadata:
            raise ConfigurationError("store_metadata is enabled but no metadata columns were provided")

        names = self.column_names
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate column names: {duplicates}")
        if RESERVED_COLUMN in names:
            raise ConfigurationError(f"Column name {RESERVED_COLUMN!r} is reserved")

    @property
    def metadata_column_names(self) -> list[str]:
        return [column.name for column in self.metadata_columns]

    @property
    def column_names(self) -> list[str]:
        """All column names in DDL order."""
        names = [self.id_column, self.content_column, self.embedding_column]
        names.extend(self.metadata_column_names)
        if self.metadata_json_column:
            names.append(self.metadata_json_column)
        return names

    @property
    def table_ref(self) -> str:
        """Quoted, schema-qualified table reference."""
        return qualified(self.schema_name, self.table_name)

    def create_table_query(self) -> str:
        """Render the CREATE TABLE statement."""
        columns = [
            f"{Identifier(self.id_column).quoted} UUID PRIMARY KEY",
            f"{Identifier(self.content_column).quoted} TEXT",
            f"{Identifier(self.embedding_column).quoted} vector({int(self.vector_size)}) NOT NULL",
        ]
        columns.extend(column.column_definition() for column in self.metadata_columns)
        if self.metadata_json_column:
            columns.append(f"{Identifier(self.metadata_json_column).quoted} JSON")
        return f"CREATE TABLE {self.table_ref} ({', '.join(columns)})"


class SchemaManager:
    """
    Creates, validates and drops vector store tables and their indexes.

    Administrative operations: run them without concurrent writers. In
    particular, overwrite_existing drops and recreates the table and is
    not safe against traffic on the same table.
    """

    def __init__(self, database: Database):
        self._db = database

    async def table_exists(self, schema_name: str, table_name: str) -> bool:
        """Check the catalog for a table."""
        return bool(
            await self._db.fetchval(
                _TABLE_EXISTS_QUERY,
                str(Identifier(schema_name)),
                str(Identifier(table_name)),
            )
        )

    async def init_table(self, config: TableConfig, index: VectorIndex | None = None) -> None:
        """
        Create a vector store table and its vector index.

        With overwrite_existing=True any existing table of that name is
        dropped first, together with all of its rows.

        Args:
            config: Table layout
            index: Vector index to build (HNSWIndex() if None)

        Raises:
            SchemaConflictError: If the table exists and overwriting is disabled
        """
        index = index if index is not None else default_index()
        # Render up front so an unsupported index fails before any DDL runs
        index_query = render_create_index(
            index, config.schema_name, config.table_name, config.embedding_column
        )

        async with self._db.transaction() as conn:
            if config.overwrite_existing:
                logger.warning("Overwriting table", table=config.table_ref)
                await conn.execute(f"DROP TABLE IF EXISTS {config.table_ref}")
            else:
                exists = await conn.fetchval(
                    _TABLE_EXISTS_QUERY,
                    config.schema_name,
                    config.table_name,
                )
                if exists:
                    raise SchemaConflictError(
                        f"Overwrite option is false but table {config.table_ref} is present",
                        table=config.table_name,
                    )

            await conn.execute(config.create_table_query())
            if index_query is not None:
                await conn.execute(index_query)

        logger.info(
            "Initialized vector store table",
            table=config.table_ref,
            vector_size=config.vector_size,
            index=index.kind,
        )

    async def describe_table(self, config: TableConfig) -> dict[str, str]:
        """
        Read a table's columns from the catalog.

        Returns:
            Column name -> formatted type, e.g. {"embedding": "vector(768)"}
        """
        rows = await self._db.fetch(
            """
            SELECT a.attname AS column_name,
                   format_type(a.atttypid, a.atttypmod) AS data_type
            FROM pg_attribute a
            JOIN pg_class c ON c.oid = a.attrelid
            JOIN pg_namespace n ON n.oid = c.relnamespace
            WHERE n.nspname = $1
              AND c.relname = $2
              AND a.attnum > 0
              AND NOT a.attisdropped
            ORDER BY a.attnum
            """,
            config.schema_name,
            config.table_name,
        )
        return {row["column_name"]: row["data_type"] for row in rows}

    async def validate_table(self, config: TableConfig) -> None:
        """
        Check that an existing table matches the configured layout.

        Raises:
            ConfigurationError: On a missing table or column, or a dimension mismatch
        """
        columns = await self.describe_table(config)
        if not columns:
            raise ConfigurationError(f"Table {config.table_ref} does not exist")

        missing = [name for name in config.column_names if name not in columns]
        if missing:
            raise ConfigurationError(
                f"Table {config.table_ref} is missing columns: {missing}"
            )

        expected = f"vector({config.vector_size})"
        actual = columns[config.embedding_column]
        if actual != expected:
            raise ConfigurationError(
                f"Column {config.embedding_column!r} is {actual}, expected {expected}"
            )

    async def reflect_table(
        self,
        config: TableConfig,
        ignore_metadata_columns: list[str],
    ) -> TableConfig:
        """
        Derive the metadata columns of a pre-existing table from the catalog.

        Every column other than the id, content, embedding and JSON columns
        becomes a metadata column, except those listed in
        ignore_metadata_columns.

        Args:
            config: Layout with the id/content/embedding/JSON column names;
                its metadata_columns must be empty
            ignore_metadata_columns: Columns to leave out of the metadata

        Returns:
            Copy of config with metadata_columns filled in from the catalog

        Raises:
            ConfigurationError: If metadata columns were also declared, or the
                table does not exist
        """
        if config.metadata_columns:
            raise ConfigurationError(
                "Cannot use both metadata_columns and ignore_metadata_columns"
            )

        columns = await self.describe_table(config)
        if not columns:
            raise ConfigurationError(f"Table {config.table_ref} does not exist")

        skipped = {
            config.id_column,
            config.content_column,
            config.embedding_column,
            *ignore_metadata_columns,
        }
        if config.metadata_json_column:
            skipped.add(config.metadata_json_column)

        metadata_columns = [
            MetadataColumn(name, data_type)
            for name, data_type in columns.items()
            if name not in skipped
        ]
        logger.debug(
            "Reflected metadata columns",
            table=config.table_ref,
            columns=[column.name for column in metadata_columns],
        )
        return replace(
            config,
            metadata_columns=metadata_columns,
            store_metadata=bool(metadata_columns),
        )

    async def apply_vector_index(
        self,
        config: TableConfig,
        index: VectorIndex,
        concurrently: bool = False,
    ) -> None:
        """
        Build a vector index on an existing table.

        Drop any conflicting index on the embedding column first.
        """
        query = render_create_index(
            index,
            config.schema_name,
            config.table_name,
            config.embedding_column,
            concurrently=concurrently,
        )
        if query is None:
            logger.info("Exact search selected, no index to build", table=config.table_ref)
            return
        await self._db.execute(query)
        logger.info("Built vector index", table=config.table_ref, index=index.kind)

    async def drop_vector_index(self, config: TableConfig, index: VectorIndex | str) -> None:
        """Drop a vector index by variant (default name) or explicit name."""
        name = self._index_name(config, index)
        await self._db.execute(
            f"DROP INDEX IF EXISTS {Identifier(config.schema_name).quoted}.{name.quoted}"
        )
        logger.info("Dropped vector index", table=config.table_ref, index=str(name))

    async def reindex(self, config: TableConfig, index: VectorIndex | str) -> None:
        """Rebuild a vector index, e.g. after bulk loads into an IVFFlat table."""
        name = self._index_name(config, index)
        await self._db.execute(
            f"REINDEX INDEX {Identifier(config.schema_name).quoted}.{name.quoted}"
        )

    async def drop_table(self, config: TableConfig) -> None:
        """Drop the table and all of its rows if it exists."""
        await self._db.execute(f"DROP TABLE IF EXISTS {config.table_ref}")
        logger.info("Dropped table", table=config.table_ref)

    def _index_name(self, config: TableConfig, index: VectorIndex | str) -> Identifier:
        if isinstance(index, str):
            return Identifier(index)
        return index_name(index, config.table_name, config.embedding_column)
