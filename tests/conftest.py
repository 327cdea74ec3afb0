"""Pytest fixtures for alloyvec tests."""

import math
import random

import pytest
from prometheus_client import CollectorRegistry

from alloyvec.config.settings import Settings
from alloyvec.observability.metrics import MetricsCollector


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing, ignoring any .env file."""
    return Settings(
        _env_file=None,
        environment="development",
        log_level="DEBUG",
        db_host="localhost",
        db_port=5432,
        db_name="alloyvec_test",
        db_user="postgres",
        db_password="postgres",
        db_acquire_timeout=5.0,
    )


@pytest.fixture
def iam_settings() -> Settings:
    """Settings with no static credentials (identity-token auth)."""
    return Settings(
        _env_file=None,
        db_host="localhost",
        db_name="alloyvec_test",
        db_user=None,
        db_password=None,
        tokeninfo_url="https://oauth2.example.test/tokeninfo",
    )


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def make_vector():
    """Factory for random unit vectors, seeded for repeatability."""
    rng = random.Random(42)

    def _make(dim: int) -> list[float]:
        vec = [rng.uniform(-1.0, 1.0) for _ in range(dim)]
        norm = math.sqrt(sum(x * x for x in vec)) or 1.0
        return [x / norm for x in vec]

    return _make
