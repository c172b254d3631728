"""
Pytest fixtures shared by the test suite.

Statistics tests run against every store flavour the service can be
configured with: the in-memory dictionary (``off``), a volatile SQLite
database (``:memory:``) and a SQLite file in a temporary directory.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path so tests can import the fizzbuzz_api package
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from fizzbuzz_api.app.services.stats_service import open_stats  # noqa: E402

STORE_KINDS = ("off", "memory_db", "file_db")


def data_source_for(kind: str, tmp_path: Path) -> str:
    """Map a store flavour to the ``database_url`` value that selects it."""
    if kind == "off":
        return "off"
    if kind == "memory_db":
        return ":memory:"
    return str(tmp_path / "stats" / "data.db")


@pytest.fixture(params=STORE_KINDS)
def data_source(request, tmp_path) -> str:
    return data_source_for(request.param, tmp_path)


@pytest.fixture
def stats(data_source):
    """An open statistics store of each flavour, closed after the test."""
    store = open_stats(data_source)
    yield store
    store.close()
