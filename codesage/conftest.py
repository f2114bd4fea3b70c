# codesage/conftest.py
import sys
import pytest
from pathlib import Path

# Add repo root to PYTHONPATH so `codesage.*` imports resolve without install
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture(scope="function")
def sqlite_db(monkeypatch):
    """
    Fresh in-memory SQLite database for one test.

    StaticPool keeps a single shared connection, so every session in the test
    (limiter, audit trail, snapshot rows) sees the same data.
    """
    from codesage.core import database

    url = "sqlite:///:memory:"
    monkeypatch.setenv("TEST_DATABASE_URL", url)
    database.dispose_engine()
    database.init_engine(url)
    database.create_all_tables()
    yield url
    database.dispose_engine()


@pytest.fixture(scope="function")
def no_db(monkeypatch):
    """No database configured at all (audit falls back to its memory buffer)."""
    from codesage.core import database
    from codesage.core.config import settings

    monkeypatch.delenv("TEST_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr(settings, "TEST_DATABASE_URL", None)
    monkeypatch.setattr(settings, "DATABASE_URL", None)
    database.dispose_engine()
    yield
    database.dispose_engine()


@pytest.fixture(scope="function", autouse=True)
def clear_security_buffer():
    """The audit fallback buffer is process-global; start every test empty."""
    from codesage.features.audit import service as audit_service

    audit_service._memory_events.clear()
    yield
    audit_service._memory_events.clear()
