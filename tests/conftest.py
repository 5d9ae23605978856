"""
Pytest configuration and shared fixtures for Clinic Records API tests

APPROACH: most tests run against FakeDatabase (tests/fake_db.py)
- Catalog probes are answered from a per-test table dictionary
- Every other statement is recorded with its parameters, results are scripted
- Repositories receive the fake exactly where production passes DatabaseConnection

The Postgres round-trip suite (test_postgres_integration.py) brings its own
fixtures and skips when no test database is reachable.
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from container import RepositoryContainer
from query.access import Caller, Role
from tests.fake_db import FakeDatabase, STANDARD_TABLES


def pytest_configure(config):
    """Run configuration loading in test mode"""
    os.environ.setdefault('APP_ENV', 'test')


@pytest.fixture
def fake_db():
    """Fake executor seeded with the reference schema (schema.sql)"""
    return FakeDatabase(STANDARD_TABLES)


@pytest.fixture
def repos(fake_db):
    """Repository container over the fake executor"""
    return RepositoryContainer(fake_db)


@pytest.fixture
def clinician():
    return Caller(id=7, role=Role.CLINICIAN, first_name="Ana", last_name="Ruiz")


@pytest.fixture
def other_clinician():
    return Caller(id=8, role=Role.CLINICIAN, first_name="Luis", last_name="Soto")


@pytest.fixture
def admin():
    return Caller(id=1, role=Role.ADMINISTRATOR, first_name="Root", last_name="Admin")
