"""
pgvector implementation of the VectorStore interface.

Stores records in a table laid out by SchemaManager and builds the ranked
similarity query from a distance strategy, a compiled metadata filter and
transaction-local session settings.
"""

import json
import time
import uuid
from collections.abc import Mapping
from typing import Any

import asyncpg
import structlog

from alloyvec.errors import (
    ConfigurationError,
    ConstraintViolationError,
    FilterCompilationError,
)
from alloyvec.observability.metrics import MetricsCollector, get_metrics
from alloyvec.storage.database import Database, decode_vector
from alloyvec.vectorstore.base import (
    EmbeddingRecord,
    QueryRequest,
    SearchMatch,
    VectorStore,
)
from alloyvec.vectorstore.config import VectorStoreConfig
from alloyvec.vectorstore.filters import FilterNode, compile_filter
from alloyvec.vectorstore.identifiers import Identifier
from alloyvec.vectorstore.indexes import DistanceStrategy, QueryOptions, session_settings
from alloyvec.vectorstore.schema import RESERVED_COLUMN, SchemaManager, TableConfig

logger = structlog.get_logger(__name__)

DISTANCE_ALIAS = Identifier(RESERVED_COLUMN).quoted


class PgVectorStore(VectorStore):
    """
    pgvector-based vector store over one table.

    Features:
    - All-or-nothing batch inserts and upserts, failing record reported
    - Distance strategies: euclidean, cosine distance, inner product
    - Structured metadata filters compiled to parameterized SQL
    - Per-query index tuning (hnsw.ef_search, ivfflat.probes) scoped to
      the search transaction

    Usage:
        store = await PgVectorStore.create(db, TableConfig("docs", vector_size=768))
        ids = await store.add_all([EmbeddingRecord(embedding=v) for v in vectors])
        matches = await store.similarity_search(query_vector, k=5)
    """

    def __init__(
        self,
        database: Database,
        table: TableConfig,
        config: VectorStoreConfig | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize pgvector store.

        Use create() to validate the table against the catalog as well.

        Args:
            database: Connected Database instance
            table: Layout of the backing table
            config: Optional configuration
            metrics: Optional metrics collector (global one if None)
        """
        self._db = database
        self._table = table
        self._config = config or VectorStoreConfig()
        self._metrics = metrics or get_metrics()

        self._id = Identifier(table.id_column).quoted
        self._embedding = Identifier(table.embedding_column).quoted
        self._write_columns = [
            table.id_column,
            table.content_column,
            table.embedding_column,
            *table.metadata_column_names,
        ]
        if table.metadata_json_column:
            self._write_columns.append(table.metadata_json_column)
        select_columns = [
            *table.metadata_column_names,
            table.id_column,
            table.content_column,
            table.embedding_column,
        ]
        if table.metadata_json_column:
            select_columns.append(table.metadata_json_column)
        self._select_columns = ", ".join(Identifier(name).quoted for name in select_columns)

        self._insert_sql = self._build_insert_sql(upsert=False)
        self._upsert_sql = self._build_insert_sql(upsert=True)

    @classmethod
    async def create(
        cls,
        database: Database,
        table: TableConfig,
        config: VectorStoreConfig | None = None,
        metrics: MetricsCollector | None = None,
        ignore_metadata_columns: list[str] | None = None,
    ) -> "PgVectorStore":
        """
        Create a store after checking the table matches its configuration.

        Args:
            database: Connected Database instance
            table: Layout of the backing table
            config: Optional configuration
            metrics: Optional metrics collector
            ignore_metadata_columns: For pre-existing tables: treat every
                column except these (and the id, content, embedding and JSON
                columns) as metadata instead of declaring metadata_columns

        Raises:
            ConfigurationError: If the table is missing or laid out differently
        """
        config = config or VectorStoreConfig()
        schema = SchemaManager(database)
        if ignore_metadata_columns is not None:
            table = await schema.reflect_table(table, ignore_metadata_columns)
        if config.validate_on_create:
            await schema.validate_table(table)
        return cls(database, table, config=config, metrics=metrics)

    @property
    def table(self) -> TableConfig:
        return self._table

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add(self, record: EmbeddingRecord) -> str:
        """Insert one record and return its id."""
        ids = await self._write([record], self._insert_sql, operation="insert")
        return ids[0]

    async def add_all(self, records: list[EmbeddingRecord]) -> list[str]:
        """
        Insert records in one transaction.

        Records are validated before any SQL runs; a database constraint
        violation on any record rolls back the whole batch.

        Args:
            records: Records to insert

        Returns:
            Ids in insertion order

        Raises:
            ConfigurationError: Wrong vector length or undeclared metadata keys
            ConstraintViolationError: Bad or duplicate id, or a table constraint
                failure; carries the offending record's id and index
        """
        return await self._write(records, self._insert_sql, operation="insert")

    async def upsert(self, records: list[EmbeddingRecord]) -> list[str]:
        """
        Insert records, replacing rows that share an id.

        Same validation and all-or-nothing semantics as add_all().
        """
        return await self._write(records, self._upsert_sql, operation="upsert")

    async def remove_all(self, ids: list[str]) -> int:
        """
        Delete records by id.

        Ids that do not exist (or are not UUIDs, so cannot exist) are
        ignored, which makes repeated deletes safe.

        Returns:
            Number of records deleted
        """
        uuids = [parsed for parsed in (_parse_uuid(i) for i in ids) if parsed is not None]
        if not uuids:
            return 0

        sql = f"""
            DELETE FROM {self._table.table_ref}
            WHERE {self._id} = ANY($1::uuid[])
            RETURNING {self._id}
        """
        rows = await self._db.fetch(sql, uuids)
        deleted = len(rows)

        self._metrics.record_delete(self._table.table_name, deleted)
        logger.info(f"Deleted {deleted}/{len(ids)} records", table=self._table.table_ref)
        return deleted

    async def _write(
        self,
        records: list[EmbeddingRecord],
        sql: str,
        operation: str,
    ) -> list[str]:
        rows = self._prepare_rows(records)
        if not rows:
            return []

        ids: list[str] = []
        async with self._db.transaction() as conn:
            statement = await conn.prepare(sql)
            for index, args in enumerate(rows):
                record_id = str(args[0])
                try:
                    await statement.fetchval(*args)
                except (
                    asyncpg.IntegrityConstraintViolationError,
                    asyncpg.DataError,
                ) as e:
                    raise ConstraintViolationError(
                        f"Record {index} (id {record_id}) violates a constraint "
                        f"on {self._table.table_ref}: {e}",
                        record_id=record_id,
                        index=index,
                    ) from e
                ids.append(record_id)

        self._metrics.record_write(self._table.table_name, len(ids), operation=operation)
        logger.info(
            f"Wrote {len(ids)} records",
            table=self._table.table_ref,
            operation=operation,
        )
        return ids

    def _prepare_rows(self, records: list[EmbeddingRecord]) -> list[tuple[Any, ...]]:
        """Validate records and turn them into insert arguments, in order."""
        declared = self._table.metadata_column_names
        json_column = self._table.metadata_json_column
        seen: set[uuid.UUID] = set()
        rows = []

        for index, record in enumerate(records):
            self._check_dimension(record.embedding, f"Record {index}")

            if record.id is None:
                record_id = uuid.uuid4()
            else:
                record_id = _parse_uuid(record.id)
                if record_id is None:
                    raise ConstraintViolationError(
                        f"Record {index} id {record.id!r} is not a valid UUID",
                        record_id=record.id,
                        index=index,
                    )
            if record_id in seen:
                raise ConstraintViolationError(
                    f"Record {index} repeats id {record_id} within the batch",
                    record_id=str(record_id),
                    index=index,
                )
            seen.add(record_id)

            metadata = record.metadata or {}
            extra = {key: value for key, value in metadata.items() if key not in declared}
            if extra and not json_column:
                raise ConfigurationError(
                    f"Record {index} has undeclared metadata keys {sorted(extra)} "
                    f"and the table has no JSON metadata column"
                )

            args: list[Any] = [
                record_id,
                record.content,
                [float(x) for x in record.embedding],
            ]
            args.extend(metadata.get(name) for name in declared)
            if json_column:
                args.append(json.dumps(extra, default=str))
            rows.append(tuple(args))

        return rows

    def _build_insert_sql(self, upsert: bool) -> str:
        columns = ", ".join(Identifier(name).quoted for name in self._write_columns)
        placeholders = ", ".join(f"${i}" for i in range(1, len(self._write_columns) + 1))
        sql = f"INSERT INTO {self._table.table_ref} ({columns}) VALUES ({placeholders})"
        if upsert:
            updates = ", ".join(
                f"{Identifier(name).quoted} = EXCLUDED.{Identifier(name).quoted}"
                for name in self._write_columns[1:]
            )
            sql += f" ON CONFLICT ({self._id}) DO UPDATE SET {updates}"
        return f"{sql} RETURNING {self._id}"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(self, request: QueryRequest) -> list[SearchMatch]:
        """
        Find the k nearest records to the query vector.

        The dimension check, filter compilation and option validation all
        happen before any SQL runs. Query options are applied with
        set_config(..., is_local => true), so they last only for this
        search's transaction.

        Args:
            request: Query vector, strategy, k, filter and options

        Returns:
            Matches best-first: ascending distance, or descending inner
            product. Ties break on id.

        Raises:
            ConfigurationError: Wrong vector length, k over max_k, bad option name
            FilterCompilationError: Unknown filter field or operator, or a filter value
                the column type rejects
        """
        self._check_dimension(request.embedding, "Query vector")
        if request.k > self._config.max_k:
            raise ConfigurationError(f"k must be at most {self._config.max_k}, got {request.k}")

        strategy = request.distance_strategy
        settings = session_settings(request.query_options)
        compiled = compile_filter(
            request.filter,
            self._table.metadata_column_names,
            metadata_json_column=self._table.metadata_json_column,
            param_offset=2,
        )
        limit_param = 2 + len(compiled.params)

        sql = f"""
            SELECT {self._select_columns},
                   {strategy.search_function}({self._embedding}, $1) AS {DISTANCE_ALIAS}
            FROM {self._table.table_ref}
            WHERE {compiled.sql}
            ORDER BY {self._embedding} {strategy.operator} $1, {self._id}
            LIMIT ${limit_param}
        """
        query_vector = [float(x) for x in request.embedding]

        started = time.perf_counter()
        async with self._db.transaction() as conn:
            for name, value in settings:
                await conn.execute("SELECT set_config($1, $2, true)", name, value)
            try:
                rows = await conn.fetch(sql, query_vector, *compiled.params, request.k)
            except asyncpg.DataError as e:
                if not compiled.params:
                    raise
                # The only other bound values are the vector and k, both checked above
                raise FilterCompilationError(
                    f"Filter value rejected by {self._table.table_ref}: {e}"
                ) from e
        latency = time.perf_counter() - started

        self._metrics.record_search(self._table.table_name, strategy.value, latency)
        logger.debug(
            "Similarity search",
            table=self._table.table_ref,
            strategy=strategy.value,
            k=request.k,
            matches=len(rows),
            latency_ms=round(latency * 1000, 2),
        )
        return [self._row_to_match(row, score=row[RESERVED_COLUMN]) for row in rows]

    async def similarity_search(
        self,
        embedding: list[float],
        k: int | None = None,
        filter: FilterNode | None = None,
        distance_strategy: DistanceStrategy | None = None,
        query_options: QueryOptions | Mapping[str, Any] | None = None,
    ) -> list[SearchMatch]:
        """
        Search with configuration defaults for k and the distance strategy.

        Uses the same implementation as search().
        """
        return await self.search(
            QueryRequest(
                embedding=embedding,
                distance_strategy=distance_strategy or self._config.default_distance_strategy,
                k=k if k is not None else self._config.default_k,
                filter=filter,
                query_options=query_options,
            )
        )

    async def get_by_ids(self, ids: list[str]) -> list[SearchMatch]:
        """
        Retrieve records by id.

        Returns:
            Matches for the ids that exist (score 0.0)
        """
        uuids = [parsed for parsed in (_parse_uuid(i) for i in ids) if parsed is not None]
        if not uuids:
            return []

        sql = f"""
            SELECT {self._select_columns}
            FROM {self._table.table_ref}
            WHERE {self._id} = ANY($1::uuid[])
        """
        rows = await self._db.fetch(sql, uuids)
        return [self._row_to_match(row, score=0.0) for row in rows]

    def _check_dimension(self, embedding: list[float], label: str) -> None:
        if len(embedding) != self._table.vector_size:
            raise ConfigurationError(
                f"{label} has {len(embedding)} dimensions, "
                f"table {self._table.table_ref} expects {self._table.vector_size}"
            )

    def _row_to_match(self, row: Any, score: float) -> SearchMatch:
        """Convert database row to SearchMatch."""
        metadata: dict[str, Any] = {}

        json_column = self._table.metadata_json_column
        if json_column:
            extra = row[json_column]
            if isinstance(extra, str):
                extra = json.loads(extra)
            if isinstance(extra, dict):
                metadata.update(extra)

        # Declared columns win over JSON keys of the same name
        for name in self._table.metadata_column_names:
            metadata[name] = row[name]

        embedding = row[self._table.embedding_column]
        if isinstance(embedding, str):
            embedding = decode_vector(embedding)
        elif embedding is not None:
            embedding = [float(x) for x in embedding]

        return SearchMatch(
            id=str(row[self._table.id_column]),
            score=float(score),
            content=row[self._table.content_column],
            metadata=metadata,
            embedding=embedding,
        )


def _parse_uuid(value: Any) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
