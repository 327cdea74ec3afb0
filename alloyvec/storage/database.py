"""
PostgreSQL database connection management.

Uses asyncpg for async database operations with the pgvector extension.
Provides connection pooling, credential selection (static password or
identity token) and transaction management.
"""

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any

import asyncpg
import httpx
from google.cloud.alloydb.connector import AsyncConnector

from alloyvec.config.settings import Settings, get_settings
from alloyvec.errors import ConfigurationError, ConnectivityError, PoolExhaustedError
from alloyvec.observability.metrics import get_metrics
from alloyvec.storage.credentials import (
    TokenSource,
    explicit_principal,
    introspected_principal,
    resolve_principal,
)

logger = logging.getLogger(__name__)

# Errors raised while establishing a physical connection
CONNECT_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)

IP_TYPES = ("PUBLIC", "PRIVATE", "PSC")

INSTANCE_URI_PATTERN = re.compile(
    r"^projects/[^/]+/locations/[^/]+/clusters/[^/]+/instances/[^/]+$"
)


def build_instance_uri(project: str, region: str, cluster: str, instance: str) -> str:
    """
    Build an AlloyDB instance URI.

    Raises:
        ConfigurationError: If any part is blank
    """
    parts = {"project": project, "region": region, "cluster": cluster, "instance": instance}
    for name, value in parts.items():
        if _blank(value):
            raise ConfigurationError(f"AlloyDB {name} cannot be blank")
    return (
        f"projects/{project.strip()}/locations/{region.strip()}"
        f"/clusters/{cluster.strip()}/instances/{instance.strip()}"
    )


def encode_vector(value: Sequence[float]) -> str:
    """Render a float sequence in pgvector text format."""
    return "[" + ",".join(str(float(x)) for x in value) + "]"


def decode_vector(value: str) -> list[float]:
    """Parse pgvector text format into a list of floats."""
    body = value.strip().strip("[]")
    if not body:
        return []
    return [float(x) for x in body.split(",")]


async def init_connection(conn: asyncpg.Connection) -> None:
    """
    Prepare a new physical connection.

    Runs once per physical connection (asyncpg pool ``init`` hook), not
    per checkout: makes sure the vector extension exists and registers a
    codec so vectors travel as Python lists.
    """
    await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
    schema = await conn.fetchval(
        """
        SELECT n.nspname
        FROM pg_type t
        JOIN pg_namespace n ON n.oid = t.typnamespace
        WHERE t.typname = 'vector'
        """
    )
    await conn.set_type_codec(
        "vector",
        schema=schema or "public",
        encoder=encode_vector,
        decoder=decode_vector,
        format="text",
    )


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


class Database:
    """
    Async PostgreSQL database connection manager.

    Uses an asyncpg connection pool for efficient connection reuse.
    Credentials are either a static user/password pair or, when both are
    absent, a short-lived identity token for a principal resolved from the
    cloud identity provider.

    Usage:
        db = Database(host="10.0.0.5", database="vectors", user="app", password="...")
        await db.connect()

        async with db.transaction() as conn:
            await conn.execute("INSERT INTO ...")

        await db.close()
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        iam_account_email: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        acquire_timeout: float | None = None,
        command_timeout: float | None = None,
        settings: Settings | None = None,
        token_source: TokenSource | None = None,
        http_client: httpx.AsyncClient | None = None,
        instance_uri: str | None = None,
        ip_type: str | None = None,
        connector: AsyncConnector | None = None,
    ):
        """
        Initialize database connection manager.

        Args:
            host: Database host (ignored when instance_uri is set)
            port: Database port (ignored when instance_uri is set)
            database: Database name
            user: Database user (omit together with password for identity auth)
            password: Database password
            iam_account_email: Principal to log in as under identity auth
            min_size: Minimum pool size
            max_size: Maximum pool size
            acquire_timeout: Seconds to wait for a free pooled connection
            command_timeout: Per-statement timeout in seconds
            settings: Settings to read defaults from
            token_source: Access token source for identity auth
            http_client: HTTP client for identity introspection
            instance_uri: AlloyDB instance URI
                (projects/<p>/locations/<r>/clusters/<c>/instances/<i>); when
                set, connections go through the AlloyDB connector
            ip_type: Instance address the connector dials: PUBLIC, PRIVATE or PSC
            connector: AlloyDB connector to use (one is created on connect if None)

        Raises:
            ConfigurationError: If exactly one of user and password is given,
                or the instance URI or IP type is malformed
        """
        settings = settings or get_settings()
        self._settings = settings

        self._host = host or settings.db_host
        self._port = port or settings.db_port
        self._database = database or settings.db_name
        self._min_size = min_size if min_size is not None else settings.db_pool_min_size
        self._max_size = max_size or settings.db_pool_max_size
        self._acquire_timeout = acquire_timeout or settings.db_acquire_timeout
        self._command_timeout = command_timeout or settings.db_command_timeout

        if user is None and password is None:
            user = settings.db_user
            if settings.db_password is not None:
                password = settings.db_password.get_secret_value()

        if _blank(user) and _blank(password):
            self._iam_auth = True
            self._user: str | None = None
            self._password: str | None = None
        elif not _blank(user) and not _blank(password):
            self._iam_auth = False
            self._user = user
            self._password = password
            logger.debug("Found user and password, IAM auth disabled")
        else:
            raise ConfigurationError(
                "Either user or password is blank; expected both to be set "
                "or both to be empty"
            )

        self._iam_account_email = iam_account_email or settings.db_iam_account_email
        self._token_source = token_source
        self._http_client = http_client

        self._instance_uri = instance_uri or settings.db_instance_uri
        if self._instance_uri is not None and not INSTANCE_URI_PATTERN.match(self._instance_uri):
            raise ConfigurationError(
                f"Invalid AlloyDB instance URI {self._instance_uri!r}; expected "
                "projects/<project>/locations/<region>/clusters/<cluster>/instances/<instance>"
            )
        self._ip_type = (ip_type or settings.db_ip_type).upper()
        if self._ip_type not in IP_TYPES:
            raise ConfigurationError(
                f"Invalid IP type {self._ip_type!r}; expected one of {list(IP_TYPES)}"
            )
        self._connector = connector
        self._owns_connector = False

        self._pool: asyncpg.Pool | None = None

    @property
    def uses_iam_auth(self) -> bool:
        """Whether identity-token auth is selected."""
        return self._iam_auth

    @property
    def user(self) -> str | None:
        """Database role in use (resolved during connect under identity auth)."""
        return self._user

    async def connect(self) -> None:
        """
        Establish database connection pool.

        Under identity auth, starts the token refresher and resolves the
        principal first. Any failure here is fatal. Calling connect() on a
        connected instance does nothing.

        Raises:
            IdentityResolutionError: If the principal cannot be resolved
            ConnectivityError: If the pool cannot be created
        """
        if self._pool is not None:
            logger.debug("Database already connected")
            return

        password: Any = self._password

        if self._iam_auth:
            if self._token_source is None:
                self._token_source = TokenSource(
                    refresh_margin=self._settings.token_refresh_margin_seconds
                )
            try:
                await self._token_source.start()
                self._user = await resolve_principal([
                    explicit_principal(self._iam_account_email),
                    introspected_principal(
                        self._token_source,
                        self._settings.tokeninfo_url,
                        http_client=self._http_client,
                        timeout=self._settings.identity_http_timeout,
                    ),
                ])
            except ConnectivityError:
                get_metrics().record_connection_error("identity")
                await self._token_source.close()
                raise
            password = self._token_source.get_token

        if self._instance_uri is not None:
            if self._connector is None:
                self._connector = AsyncConnector()
                self._owns_connector = True
            target = {"connect": self._connector_connect}
        else:
            target = {
                "host": self._host,
                "port": self._port,
                "user": self._user,
                "password": password,
                "database": self._database,
            }

        try:
            self._pool = await asyncpg.create_pool(
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
                init=init_connection,
                **target,
            )
        except CONNECT_ERRORS as e:
            logger.error(f"Failed to connect to database: {e}")
            get_metrics().record_connection_error("connect_failed")
            await self._close_auth()
            raise ConnectivityError(f"Failed to connect to database: {e}") from e

        logger.info(
            f"Database connected (pool: {self._min_size}-{self._max_size}, "
            f"auth: {'iam' if self._iam_auth else 'password'}, "
            f"target: {self._instance_uri or f'{self._host}:{self._port}'})"
        )

    async def _connector_connect(self, *args: Any, **kwargs: Any) -> asyncpg.Connection:
        """Open one physical connection through the AlloyDB connector."""
        credentials = {} if self._iam_auth else {"password": self._password}
        return await self._connector.connect(
            self._instance_uri,
            "asyncpg",
            user=self._user,
            db=self._database,
            enable_iam_auth=self._iam_auth,
            ip_type=self._ip_type,
            **credentials,
            **kwargs,
        )

    async def _close_auth(self) -> None:
        if self._token_source is not None:
            await self._token_source.close()
        if self._connector is not None:
            await self._connector.close()
            if self._owns_connector:
                self._connector = None
                self._owns_connector = False

    async def close(self) -> None:
        """Close database connection pool, the connector and token refresh."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database connection closed")
        await self._close_auth()

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def pool(self) -> asyncpg.Pool:
        """Get connection pool, raising if not connected."""
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Acquire a connection from the pool.

        Blocks until a pool slot frees up, for at most the acquire timeout.

        Usage:
            async with db.acquire() as conn:
                await conn.execute("...")

        Raises:
            PoolExhaustedError: If no connection frees up in time
            ConnectivityError: If a new physical connection cannot be opened
        """
        pool = self.pool
        try:
            conn = await pool.acquire(timeout=self._acquire_timeout)
        except asyncio.TimeoutError as e:
            get_metrics().record_connection_error("pool_exhausted")
            raise PoolExhaustedError(
                f"No database connection available within {self._acquire_timeout}s"
            ) from e
        except CONNECT_ERRORS as e:
            get_metrics().record_connection_error("connect_failed")
            raise ConnectivityError(f"Failed to open database connection: {e}") from e

        try:
            yield conn
        finally:
            await pool.release(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Start a transaction.

        Usage:
            async with db.transaction() as conn:
                await conn.execute("INSERT INTO ...")
                await conn.execute("UPDATE ...")
        """
        async with self.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def execute(self, query: str, *args: Any) -> str:
        """
        Execute a query without returning results.

        Args:
            query: SQL query
            *args: Query parameters

        Returns:
            Status string from PostgreSQL
        """
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        """Execute a query and fetch all results."""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        """Execute a query and fetch one result."""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        """Execute a query and fetch a single value."""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def health_check(self) -> bool:
        """
        Check if database is healthy.

        Returns:
            True if database is accessible
        """
        try:
            result = await self.fetchval("SELECT 1")
            return result == 1
        except (ConnectivityError, *CONNECT_ERRORS) as e:
            logger.warning(f"Database health check failed: {e}")
            return False


# Global database instance
_database: Database | None = None


async def get_database() -> Database:
    """
    Get global database instance.

    Creates and connects if not already connected.

    Returns:
        Connected Database instance
    """
    global _database

    if _database is None:
        database = Database()
        await database.connect()
        _database = database

    return _database


async def close_database() -> None:
    """Close global database connection."""
    global _database

    if _database is not None:
        await _database.close()
        _database = None
