"""Tests for Database connection management."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import httpx
import pytest
import respx

from alloyvec.config.settings import get_settings
from alloyvec.errors import (
    ConfigurationError,
    ConnectivityError,
    IdentityResolutionError,
    PoolExhaustedError,
)
from alloyvec.storage.credentials import TokenSource
from alloyvec.storage.database import (
    Database,
    build_instance_uri,
    close_database,
    decode_vector,
    encode_vector,
    get_database,
    init_connection,
)


@pytest.fixture
def mock_pool():
    """Mock asyncpg Pool handing out one connection."""
    conn = AsyncMock()
    conn.fetchval = AsyncMock(return_value=1)
    pool = MagicMock()
    pool.acquire = AsyncMock(return_value=conn)
    pool.release = AsyncMock()
    pool.close = AsyncMock()
    pool.conn = conn
    return pool


@pytest.fixture
def create_pool(monkeypatch, mock_pool):
    """Patch asyncpg.create_pool to return mock_pool."""
    mock = AsyncMock(return_value=mock_pool)
    monkeypatch.setattr(asyncpg, "create_pool", mock)
    return mock


@pytest.fixture
def token_source():
    source = MagicMock(spec=TokenSource)
    source.get_token.return_value = "access-token"
    return source


class TestVectorCodec:
    """Tests for the pgvector text codec."""

    def test_encode(self):
        assert encode_vector([1, 0.5, -2]) == "[1.0,0.5,-2.0]"

    def test_decode(self):
        assert decode_vector("[1,0.5,-2]") == [1.0, 0.5, -2.0]

    def test_decode_empty(self):
        assert decode_vector("[]") == []


class TestInitConnection:
    """Tests for the per-connection init hook."""

    @pytest.mark.asyncio
    async def test_registers_extension_and_codec(self):
        conn = AsyncMock()
        conn.fetchval = AsyncMock(return_value="extensions")

        await init_connection(conn)

        conn.execute.assert_called_once_with("CREATE EXTENSION IF NOT EXISTS vector")
        conn.set_type_codec.assert_called_once_with(
            "vector",
            schema="extensions",
            encoder=encode_vector,
            decoder=decode_vector,
            format="text",
        )


class TestCredentialSelection:
    """Tests for static vs identity-token credential selection."""

    def test_static_credentials(self, iam_settings):
        db = Database(user="app", password="secret", settings=iam_settings)
        assert not db.uses_iam_auth
        assert db.user == "app"

    def test_credentials_from_settings(self, test_settings):
        db = Database(settings=test_settings)
        assert not db.uses_iam_auth
        assert db.user == "postgres"

    def test_identity_auth_when_both_absent(self, iam_settings):
        db = Database(settings=iam_settings)
        assert db.uses_iam_auth
        assert db.user is None

    def test_blank_strings_select_identity_auth(self, iam_settings):
        assert Database(user="", password=" ", settings=iam_settings).uses_iam_auth

    @pytest.mark.parametrize("user,password", [("app", ""), (None, "secret"), ("", "secret")])
    def test_exactly_one_is_an_error(self, iam_settings, user, password):
        with pytest.raises(ConfigurationError, match="Either user or password is blank"):
            Database(user=user, password=password, settings=iam_settings)


class TestConnect:
    """Tests for Database.connect()."""

    @pytest.mark.asyncio
    async def test_static_connect(self, test_settings, create_pool):
        db = Database(settings=test_settings)

        await db.connect()

        kwargs = create_pool.call_args.kwargs
        assert kwargs["user"] == "postgres"
        assert kwargs["password"] == "postgres"
        assert kwargs["database"] == "alloyvec_test"
        assert kwargs["init"] is init_connection

    @pytest.mark.asyncio
    async def test_identity_connect_with_explicit_email(
        self, iam_settings, create_pool, token_source
    ):
        db = Database(
            settings=iam_settings,
            iam_account_email="svc@proj.iam.gserviceaccount.com",
            token_source=token_source,
        )

        await db.connect()

        token_source.start.assert_awaited_once()
        kwargs = create_pool.call_args.kwargs
        assert kwargs["user"] == "svc@proj.iam.gserviceaccount.com"
        assert kwargs["password"] is token_source.get_token
        assert db.user == "svc@proj.iam.gserviceaccount.com"

    @pytest.mark.asyncio
    @respx.mock
    async def test_identity_connect_introspects(self, iam_settings, create_pool, token_source):
        route = respx.get(iam_settings.tokeninfo_url).mock(
            return_value=httpx.Response(200, json={"email": "loader@proj.iam.gserviceaccount.com"})
        )
        db = Database(settings=iam_settings, token_source=token_source)

        await db.connect()

        assert "access_token=access-token" in str(route.calls.last.request.url)
        assert create_pool.call_args.kwargs["user"] == "loader@proj.iam"

    @pytest.mark.asyncio
    @respx.mock
    async def test_identity_failure_is_fatal(self, iam_settings, create_pool, token_source):
        respx.get(iam_settings.tokeninfo_url).mock(return_value=httpx.Response(500))
        db = Database(settings=iam_settings, token_source=token_source)

        with pytest.raises(IdentityResolutionError, match="cannot resolve identity"):
            await db.connect()

        create_pool.assert_not_called()
        token_source.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_failure(self, test_settings, monkeypatch):
        monkeypatch.setattr(
            asyncpg, "create_pool", AsyncMock(side_effect=OSError("connection refused"))
        )
        db = Database(settings=test_settings)

        with pytest.raises(ConnectivityError, match="connection refused"):
            await db.connect()

    @pytest.mark.asyncio
    async def test_context_manager(self, test_settings, create_pool, mock_pool):
        async with Database(settings=test_settings) as db:
            assert db.pool is mock_pool
        mock_pool.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_twice_keeps_pool(self, test_settings, create_pool, mock_pool):
        db = Database(settings=test_settings)

        await db.connect()
        await db.connect()

        create_pool.assert_awaited_once()
        assert db.pool is mock_pool
        mock_pool.close.assert_not_called()


INSTANCE = "projects/acme/locations/us-central1/clusters/vectors/instances/primary"


@pytest.fixture
def connector():
    """Stand-in for the AlloyDB AsyncConnector."""
    connector = MagicMock()
    connector.connect = AsyncMock(return_value=MagicMock(name="connection"))
    connector.close = AsyncMock()
    return connector


class TestAlloyDBConnector:
    """Tests for connecting through an instance URI."""

    def test_build_instance_uri(self):
        assert build_instance_uri("acme", "us-central1", "vectors", "primary") == INSTANCE

    @pytest.mark.parametrize("blank", ["project", "region", "cluster", "instance"])
    def test_build_instance_uri_rejects_blank(self, blank):
        parts = {"project": "acme", "region": "us-central1", "cluster": "vectors", "instance": "primary"}
        parts[blank] = "  "
        with pytest.raises(ConfigurationError, match=f"AlloyDB {blank} cannot be blank"):
            build_instance_uri(**parts)

    @pytest.mark.parametrize(
        "uri",
        ["acme/us-central1/vectors/primary", "projects/acme/locations/us-central1/clusters/vectors"],
    )
    def test_malformed_instance_uri(self, test_settings, uri):
        with pytest.raises(ConfigurationError, match="Invalid AlloyDB instance URI"):
            Database(settings=test_settings, instance_uri=uri)

    def test_unknown_ip_type(self, test_settings):
        with pytest.raises(ConfigurationError, match="Invalid IP type"):
            Database(settings=test_settings, instance_uri=INSTANCE, ip_type="internal")

    def test_instance_uri_from_settings(self, monkeypatch):
        from alloyvec.config.settings import Settings

        monkeypatch.setenv("DB_INSTANCE_URI", INSTANCE)
        monkeypatch.setenv("DB_IP_TYPE", "PSC")
        settings = Settings(_env_file=None)

        assert settings.db_instance_uri == INSTANCE
        assert settings.db_ip_type == "PSC"

    @pytest.mark.asyncio
    async def test_static_credentials(self, test_settings, create_pool, connector):
        db = Database(
            settings=test_settings, instance_uri=INSTANCE, ip_type="private", connector=connector
        )

        await db.connect()

        kwargs = create_pool.call_args.kwargs
        assert "host" not in kwargs
        assert kwargs["init"] is init_connection
        await kwargs["connect"]("", command_timeout=60.0)

        connector.connect.assert_awaited_once_with(
            INSTANCE,
            "asyncpg",
            user="postgres",
            db="alloyvec_test",
            enable_iam_auth=False,
            ip_type="PRIVATE",
            password="postgres",
            command_timeout=60.0,
        )

    @pytest.mark.asyncio
    async def test_identity_auth(self, iam_settings, create_pool, token_source, connector):
        db = Database(
            settings=iam_settings,
            iam_account_email="svc@proj.iam",
            instance_uri=INSTANCE,
            token_source=token_source,
            connector=connector,
        )

        await db.connect()
        await create_pool.call_args.kwargs["connect"]("")

        call = connector.connect.call_args
        assert call.kwargs["user"] == "svc@proj.iam"
        assert call.kwargs["enable_iam_auth"] is True
        assert call.kwargs["ip_type"] == "PUBLIC"
        assert "password" not in call.kwargs

    @pytest.mark.asyncio
    async def test_close_closes_connector(self, test_settings, create_pool, mock_pool, connector):
        db = Database(settings=test_settings, instance_uri=INSTANCE, connector=connector)

        await db.connect()
        await db.close()

        mock_pool.close.assert_awaited_once()
        connector.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_failure_closes_connector(self, test_settings, monkeypatch, connector):
        monkeypatch.setattr(
            asyncpg, "create_pool", AsyncMock(side_effect=OSError("no route to instance"))
        )
        db = Database(settings=test_settings, instance_uri=INSTANCE, connector=connector)

        with pytest.raises(ConnectivityError, match="no route to instance"):
            await db.connect()
        connector.close.assert_awaited_once()


class TestPoolUsage:
    """Tests for acquire(), queries and health checks."""

    def test_pool_requires_connect(self, test_settings):
        with pytest.raises(RuntimeError, match="not connected"):
            Database(settings=test_settings).pool

    @pytest.mark.asyncio
    async def test_acquire_releases(self, test_settings, create_pool, mock_pool):
        db = Database(settings=test_settings, acquire_timeout=2.5)
        await db.connect()

        async with db.acquire() as conn:
            assert conn is mock_pool.conn

        mock_pool.acquire.assert_awaited_once_with(timeout=2.5)
        mock_pool.release.assert_awaited_once_with(mock_pool.conn)

    @pytest.mark.asyncio
    async def test_pool_exhausted(self, test_settings, create_pool, mock_pool):
        mock_pool.acquire = AsyncMock(side_effect=asyncio.TimeoutError())
        db = Database(settings=test_settings)
        await db.connect()

        with pytest.raises(PoolExhaustedError, match="No database connection available"):
            await db.fetchval("SELECT 1")

    @pytest.mark.asyncio
    async def test_fetchval(self, test_settings, create_pool, mock_pool):
        db = Database(settings=test_settings)
        await db.connect()

        assert await db.fetchval("SELECT $1::int", 1) == 1
        mock_pool.conn.fetchval.assert_awaited_once_with("SELECT $1::int", 1)

    @pytest.mark.asyncio
    async def test_health_check(self, test_settings, create_pool, mock_pool):
        db = Database(settings=test_settings)
        await db.connect()

        assert await db.health_check() is True

        mock_pool.acquire = AsyncMock(side_effect=asyncio.TimeoutError())
        assert await db.health_check() is False


class TestGlobalDatabase:
    """Tests for get_database() / close_database()."""

    @pytest.mark.asyncio
    async def test_singleton(self, monkeypatch, create_pool, mock_pool):
        monkeypatch.setenv("DB_USER", "app")
        monkeypatch.setenv("DB_PASSWORD", "secret")
        get_settings.cache_clear()
        try:
            first = await get_database()
            second = await get_database()

            assert first is second
            create_pool.assert_awaited_once()

            await close_database()
            mock_pool.close.assert_awaited_once()
        finally:
            get_settings.cache_clear()
