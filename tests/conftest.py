"""
Global pytest configuration and fixtures for dbmigrate tests

Provides:
- Migration directory factory
- SQLite-backed MigrationDatabase
- MigrationRunner wired to both
"""

import pytest
from sqlalchemy import text

from dbmigrate.config import Environment
from dbmigrate.database import MigrationDatabase
from dbmigrate.migrations import MigrationRunner


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom settings"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


# ============================================================================
# Migration Files
# ============================================================================

@pytest.fixture
def migrations_dir(tmp_path):
    """Empty migrations directory."""
    path = tmp_path / "migrations"
    path.mkdir()
    return path


@pytest.fixture
def write_migration(migrations_dir):
    """Factory writing a migration file with UP and optional DOWN sections."""
    def _write(filename: str, up_sql: str, down_sql: str = None):
        content = f"-- UP MIGRATION\n{up_sql}\n"
        if down_sql is not None:
            content += f"\n-- DOWN MIGRATION\n{down_sql}\n"
        path = migrations_dir / filename
        path.write_text(content, encoding='utf-8')
        return path
    return _write


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
async def database(tmp_path):
    """File-backed SQLite database, disposed after the test."""
    db = MigrationDatabase(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        environment=Environment.TEST
    )
    yield db
    await db.close()


@pytest.fixture
async def runner(database, migrations_dir):
    """Runner in development mode over the test database."""
    return MigrationRunner(database, migrations_dir)


@pytest.fixture
def table_names(database):
    """Coroutine returning the user tables currently in the test database."""
    async def _table_names():
        async with database.transaction() as conn:
            result = await conn.execute(text(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ))
            return {row[0] for row in result}
    return _table_names
