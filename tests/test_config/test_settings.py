"""Tests for application and vector store settings."""

import pytest
from pydantic import ValidationError

from alloyvec.config.settings import Settings
from alloyvec.vectorstore.config import VectorStoreConfig
from alloyvec.vectorstore.indexes import DistanceStrategy


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.db_port == 5432
        assert settings.db_pool_max_size == 10
        assert settings.tokeninfo_url == "https://oauth2.googleapis.com/tokeninfo"
        assert not settings.is_production

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DB_HOST", "10.0.0.5")
        monkeypatch.setenv("DB_USER", "app")
        monkeypatch.setenv("DB_PASSWORD", "secret")

        settings = Settings(_env_file=None)

        assert settings.db_host == "10.0.0.5"
        assert settings.db_password.get_secret_value() == "secret"
        assert settings.static_credentials_configured

    def test_password_hidden_in_repr(self):
        settings = Settings(_env_file=None, db_user="app", db_password="secret")
        assert "secret" not in repr(settings)

    def test_invalid_port(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, db_port=70000)


class TestVectorStoreConfig:
    """Tests for VectorStoreConfig."""

    def test_defaults(self):
        config = VectorStoreConfig()
        assert config.default_k == 4
        assert config.max_k == 10_000
        assert config.default_distance_strategy is DistanceStrategy.COSINE_DISTANCE
        assert config.validate_on_create

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("VECTORSTORE_DEFAULT_K", "20")
        monkeypatch.setenv("VECTORSTORE_DEFAULT_DISTANCE_STRATEGY", "inner_product")

        config = VectorStoreConfig()

        assert config.default_k == 20
        assert config.default_distance_strategy is DistanceStrategy.INNER_PRODUCT

    def test_invalid_default_k(self):
        with pytest.raises(ValidationError):
            VectorStoreConfig(default_k=0)
