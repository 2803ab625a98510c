"""Root conftest for test suite.

Auto-skips slow tests and tests that need a live Postgres.
Run explicitly with: pytest -m slow
                  or: DATABASE_URL=... pytest -m postgres
"""

import os

import pytest


def pytest_collection_modifyitems(config, items):
    """Skip slow and postgres tests unless explicitly requested.

    Postgres tests also need DATABASE_URL pointing at a database with the
    schema from scripts/apply_schema.py applied.
    """
    markexpr = config.getoption("-m", default="")
    explicit_slow = "slow" in markexpr
    explicit_postgres = "postgres" in markexpr
    have_database = bool(os.environ.get("DATABASE_URL"))

    skip_slow = pytest.mark.skip(
        reason="slow tests skipped by default. Run with: pytest -m slow"
    )
    skip_postgres = pytest.mark.skip(
        reason="postgres tests need DATABASE_URL. Run with: pytest -m postgres"
    )

    for item in items:
        if "slow" in item.keywords and not explicit_slow:
            item.add_marker(skip_slow)

        if "postgres" in item.keywords and not (explicit_postgres and have_database):
            item.add_marker(skip_postgres)
