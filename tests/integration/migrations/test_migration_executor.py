#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Integration tests for MigrationExecutor against SQLite.

Tests transactional apply, failure recording, timeouts, cancellation and
rollback behaviour.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import text

from dbmigrate.migrations import (
    Migration,
    MigrationExecutor,
    MigrationHistory,
    MigrationHistoryError,
    RollbackUnavailableError,
)
from dbmigrate.migrations.exceptions import MigrationError


def make_migration(migration_id, up_sql, down_sql=None, name='step'):
    return Migration(
        id=migration_id,
        name=name,
        filename=f'{migration_id}_{name}.sql',
        up_sql=up_sql,
        down_sql=down_sql,
        checksum=f'checksum-{migration_id}'
    )


@pytest.fixture
def history(database):
    return MigrationHistory(database)


@pytest.fixture
def executor(database, history):
    return MigrationExecutor(database, history)


class TestExecuteMigration:

    async def test_apply_success(self, executor, history, table_names):
        migration = make_migration(
            '0001',
            "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT);\n"
            "INSERT INTO users (name) VALUES ('alice');"
        )

        result = await executor.execute_migration(migration)

        assert result.success is True
        assert result.migration_id == '0001'
        assert result.execution_time_ms >= 0
        assert 'users' in await table_names()

        [record] = await history.get_applied_migrations()
        assert record.id == '0001'
        assert record.success is True
        assert record.checksum == 'checksum-0001'

    async def test_failure_recorded_and_reraised(self, executor, history):
        """The original database error propagates and a failed row is written."""
        migration = make_migration('0001', "INSERT INTO missing_table VALUES (1);")

        with pytest.raises(Exception) as exc_info:
            await executor.execute_migration(migration)

        assert not isinstance(exc_info.value, MigrationError)
        assert 'missing_table' in str(exc_info.value)

        [record] = await history.get_applied_migrations()
        assert record.success is False
        assert 'missing_table' in record.error_message

    async def test_failure_rolls_back_ddl(self, executor, table_names):
        """Statements before the failing one are rolled back too."""
        migration = make_migration(
            '0001',
            "CREATE TABLE partial (id INTEGER);\n"
            "INSERT INTO partial VALUES (1);\n"
            "INSERT INTO missing_table VALUES (1);"
        )

        with pytest.raises(Exception):
            await executor.execute_migration(migration)

        assert 'partial' not in await table_names()

    async def test_retry_after_failure(self, database, executor, history):
        """A retried migration overwrites its failed row."""
        failing = make_migration('0001', "INSERT INTO later VALUES (1);")
        with pytest.raises(Exception):
            await executor.execute_migration(failing)

        async with database.transaction() as conn:
            await conn.execute(text("CREATE TABLE later (id INTEGER)"))

        await executor.execute_migration(failing)

        [record] = await history.get_applied_migrations()
        assert record.success is True
        assert record.error_message is None

    async def test_script_with_colons_runs_verbatim(self, executor, database):
        """':name' in a script is SQL text, not a bind parameter."""
        migration = make_migration(
            '0001',
            "CREATE TABLE notes (body TEXT);\n"
            "INSERT INTO notes VALUES ('time: 10:30 :label');"
        )

        await executor.execute_migration(migration)

        async with database.transaction() as conn:
            body = (await conn.execute(text("SELECT body FROM notes"))).scalar()
        assert body == 'time: 10:30 :label'

    async def test_trigger_migration(self, executor, history, database):
        """A trigger body with inner semicolons runs as one statement."""
        migration = make_migration(
            '0001',
            "CREATE TABLE items (id INTEGER PRIMARY KEY, touched INTEGER DEFAULT 0);\n"
            "CREATE TABLE audit (item_id INTEGER);\n"
            "CREATE TRIGGER items_audit AFTER INSERT ON items\n"
            "BEGIN\n"
            "    INSERT INTO audit (item_id) VALUES (NEW.id);\n"
            "    UPDATE items SET touched = 1 WHERE id = NEW.id;\n"
            "END;"
        )

        await executor.execute_migration(migration)

        async with database.transaction() as conn:
            await conn.execute(text("INSERT INTO items (id) VALUES (7)"))
            audited = (await conn.execute(text("SELECT item_id FROM audit"))).scalar()
            touched = (await conn.execute(text("SELECT touched FROM items"))).scalar()
        assert audited == 7
        assert touched == 1

        [record] = await history.get_applied_migrations()
        assert record.success is True

    async def test_timeout_recorded_as_failure(self, database, history, monkeypatch):
        executor = MigrationExecutor(database, history, timeout=0.05)

        async def slow_script(conn, sql):
            await asyncio.sleep(5)

        monkeypatch.setattr(executor, '_execute_script', slow_script)

        with pytest.raises(TimeoutError):
            await executor.execute_migration(make_migration('0001', 'SELECT 1;'))

        [record] = await history.get_applied_migrations()
        assert record.success is False
        assert record.error_message == 'TimeoutError'

    async def test_cancellation_recorded_as_failure(self, executor, history, monkeypatch):
        started = asyncio.Event()

        async def hanging_script(conn, sql):
            started.set()
            await asyncio.sleep(30)

        monkeypatch.setattr(executor, '_execute_script', hanging_script)

        task = asyncio.create_task(
            executor.execute_migration(make_migration('0001', 'SELECT 1;'))
        )
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        [record] = await history.get_applied_migrations()
        assert record.success is False
        assert record.error_message == 'CancelledError'

    async def test_failure_to_record_failure_keeps_original_error(self, database):
        """If the failure row cannot be written, the migration error still wins."""
        history = MigrationHistory(database)
        history.record_migration = AsyncMock(
            side_effect=MigrationHistoryError('history offline')
        )
        executor = MigrationExecutor(database, history)

        with pytest.raises(Exception) as exc_info:
            await executor.execute_migration(
                make_migration('0001', "INSERT INTO missing_table VALUES (1);")
            )

        assert 'missing_table' in str(exc_info.value)
        assert history.record_migration.await_count == 1


class TestRollbackMigration:

    async def test_rollback_success(self, executor, history, table_names):
        migration = make_migration(
            '0001',
            "CREATE TABLE users (id INTEGER);",
            "DROP TABLE users;"
        )
        await executor.execute_migration(migration)

        result = await executor.rollback_migration(migration)

        assert result.success is True
        assert 'users' not in await table_names()

        # History is not modified by a rollback
        [record] = await history.get_applied_migrations()
        assert record.success is True

    async def test_rollback_without_down_script_makes_no_writes(self):
        """Missing DOWN section fails before touching the database."""
        database = MagicMock()
        history = MagicMock()
        history.ensure_table = AsyncMock()
        history.record_migration = AsyncMock()
        executor = MigrationExecutor(database, history)

        with pytest.raises(RollbackUnavailableError, match="Migration 0007"):
            await executor.rollback_migration(
                make_migration('0007', "CREATE TABLE t (id INTEGER);")
            )

        database.transaction.assert_not_called()
        history.ensure_table.assert_not_awaited()
        history.record_migration.assert_not_awaited()

    async def test_rollback_failure_propagates_without_record(self, executor, history,
                                                              table_names):
        migration = make_migration(
            '0001',
            "CREATE TABLE users (id INTEGER);",
            "DROP TABLE users;\nDROP TABLE never_existed;"
        )
        await executor.execute_migration(migration)

        with pytest.raises(Exception, match="never_existed"):
            await executor.rollback_migration(migration)

        # DOWN statements rolled back together
        assert 'users' in await table_names()

        [record] = await history.get_applied_migrations()
        assert record.success is True
        assert record.error_message is None
