import os

import pytest

from tests.fakes import BookStorePool, FakePool


def pytest_addoption(parser):
    parser.addoption(
        "--postgres",
        action="store_true",
        default=False,
        help="Run tests against the PostgreSQL database in DATABASE_URL / POSTGRES_*",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--postgres"):
        return
    skip = pytest.mark.skip(reason="needs --postgres")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)


def pytest_configure(config):
    config.addinivalue_line("markers", "postgres: test talks to a real PostgreSQL server")


@pytest.fixture
def fake_pool():
    return FakePool()


@pytest.fixture
def book_store():
    return BookStorePool()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove catalog settings from the environment for the duration of a test."""
    for key in list(os.environ):
        if key.startswith("POSTGRES_") or key.startswith("POOL_") or key in (
            "DATABASE_URL",
            "LOG_LEVEL",
            "RUN_MIGRATIONS",
        ):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch
