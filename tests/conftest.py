"""Shared test fixtures for PricePilot."""

import sys
from pathlib import Path

import pytest

# Ensure the package is importable without installation
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from pricepilot.common.config import Config
from pricepilot.common.database import get_connection, init_db
from pricepilot.market_value.models import VehicleQuery

_ENV_OVERRIDES = (
    "REQUEST_TIMEOUT",
    "MAX_ATTEMPTS",
    "PROXY_LIST_URL",
    "PROXY_PROBE_URL",
    "AGGREGATION_TIMEOUT",
    "DURABLE_CACHE_TTL",
    "SOURCE_CACHE_TTL",
    "PRICE_MIN",
    "PRICE_MAX",
    "ENABLED_SOURCES",
    "BOT_CONTACT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer .env / shell overrides out of Config during tests."""
    for name in _ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the test fixtures directory."""
    return PROJECT_ROOT / "tests" / "fixtures"


@pytest.fixture
def load_fixture(fixtures_dir):
    """Read an HTML fixture by file name."""
    def _load(name: str) -> str:
        return (fixtures_dir / name).read_text(encoding="utf-8")
    return _load


@pytest.fixture
def temp_db(tmp_path):
    """Provide a Config pointing to a temporary SQLite database, proxy pool disabled."""
    db_file = tmp_path / "test_pricepilot.db"
    config = Config(database_path=str(db_file), proxy_list_url="")
    init_db(config)
    return config


@pytest.fixture
def db_conn(temp_db):
    """Provide an initialized SQLite connection from temp_db."""
    conn = get_connection(temp_db)
    yield conn
    conn.close()


@pytest.fixture
def civic_query() -> VehicleQuery:
    """2018 Honda Civic with no optional fields."""
    return VehicleQuery(make="Honda", model="Civic", year=2018)


@pytest.fixture
def camry_query() -> VehicleQuery:
    """2020 Toyota Camry with every optional field set."""
    return VehicleQuery.from_payload(
        {
            "make": "Toyota",
            "model": "Camry",
            "year": 2020,
            "mileage": 42000,
            "trim": "LE",
            "zipCode": "10001",
        }
    )
