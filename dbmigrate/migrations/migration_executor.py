#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration executor with transaction management and tracking.

Executes schema migrations safely within database transactions and records
every forward attempt, successful or not, in the history table.
"""
import asyncio
import logging
import re
import time
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncConnection

from dbmigrate.migrations.exceptions import (
    MigrationHistoryError,
    RollbackUnavailableError,
)
from dbmigrate.migrations.migration import Migration, MigrationResult

logger = logging.getLogger(__name__)

# SQLite trigger with a BEGIN ... END body
TRIGGER_BODY_PATTERN = re.compile(
    r'^CREATE\s+(?:TEMP\s+|TEMPORARY\s+)?TRIGGER\b.*?\bBEGIN\b',
    re.IGNORECASE | re.DOTALL
)
BODY_END_PATTERN = re.compile(r'\bEND$', re.IGNORECASE)


def _inside_trigger_body(statement: str) -> bool:
    """True while a trigger's body is still open (its ';' is not a terminator)."""
    return (
        TRIGGER_BODY_PATTERN.match(statement) is not None
        and BODY_END_PATTERN.search(statement) is None
    )


def split_sql_statements(sql: str) -> List[str]:
    """Split SQL string into individual statements.

    Handles semicolon-separated statements while preserving string
    literals, quoted identifiers, PostgreSQL dollar-quoted bodies and
    SQLite trigger bodies (a semicolon inside CREATE TRIGGER ... BEGIN
    only ends the statement after END). Comments outside literals are
    dropped. Required for SQLite which can only execute one statement
    at a time.

    Args:
        sql: SQL string with one or more statements

    Returns:
        List of individual SQL statements (without trailing semicolons)

    Example:
        >>> split_sql_statements("CREATE TABLE a (x TEXT DEFAULT ';'); DROP TABLE b;")
        ["CREATE TABLE a (x TEXT DEFAULT ';')", 'DROP TABLE b']
    """
    statements = []
    current = []
    i = 0
    length = len(sql)

    while i < length:
        char = sql[i]

        # Line comment: skip to end of line
        if sql.startswith('--', i):
            end = sql.find('\n', i)
            i = length if end == -1 else end
            continue

        # Block comment
        if sql.startswith('/*', i):
            end = sql.find('*/', i + 2)
            i = length if end == -1 else end + 2
            current.append(' ')
            continue

        # Quoted literal or identifier; doubled quotes are escapes
        if char in ("'", '"'):
            j = i + 1
            while j < length:
                if sql[j] == char:
                    if j + 1 < length and sql[j + 1] == char:
                        j += 2
                        continue
                    break
                j += 1
            current.append(sql[i:j + 1])
            i = j + 1
            continue

        # Dollar-quoted body: $$ ... $$ or $tag$ ... $tag$
        if char == '$':
            close = sql.find('$', i + 1)
            tag = sql[i:close + 1] if close != -1 else ''
            if tag and (tag == '$$' or tag[1:-1].isidentifier()):
                end = sql.find(tag, close + 1)
                end = length if end == -1 else end + len(tag)
                current.append(sql[i:end])
                i = end
                continue

        if char == ';':
            stmt = ''.join(current).strip()
            if _inside_trigger_body(stmt):
                current.append(char)
            else:
                if stmt:
                    statements.append(stmt)
                current = []
        else:
            current.append(char)
        i += 1

    # Add final statement if any
    stmt = ''.join(current).strip()
    if stmt:
        statements.append(stmt)

    return statements


class MigrationExecutor:
    """
    Executes schema migrations with transaction safety.

    Wraps SQL execution in transactions and tracks forward attempts in the
    history table. All operations are atomic: either fully applied or fully
    rolled back.

    Rollbacks are not written to the history table, whether they succeed
    or fail.

    Attributes:
        database: MigrationDatabase instance
        history: MigrationHistory used to record attempts
        timeout: Per-migration time limit in seconds (None for no limit)

    Example:
        executor = MigrationExecutor(database, history)

        # Apply migration
        result = await executor.execute_migration(migration)

        # Rollback migration
        await executor.rollback_migration(migration)
    """

    def __init__(self, database, history, timeout: Optional[float] = None):
        """
        Initialize migration executor.

        Args:
            database: MigrationDatabase instance
            history: MigrationHistory instance
            timeout: Seconds before a running migration is aborted
        """
        self.database = database
        self.history = history
        self.timeout = timeout

    async def execute_migration(self, migration: Migration) -> MigrationResult:
        """
        Apply migration UP section to database.

        The UP statements and the success record are written in a single
        transaction. On any failure (SQL error, timeout, cancellation) the
        transaction is rolled back, a failure record is written outside it,
        and the original error is re-raised.

        Args:
            migration: Migration to apply

        Returns:
            MigrationResult with execution time

        Raises:
            MigrationHistoryError: If the history table cannot be prepared
            Exception: Whatever the database raised while running the script
        """
        await self.history.ensure_table()

        start_time = time.monotonic()
        logger.info('Executing migration %s: %s', migration.id, migration.name)

        try:
            async with asyncio.timeout(self.timeout):
                async with self.database.transaction() as conn:
                    await self._execute_script(conn, migration.up_sql)
                    await self.history.record_migration(
                        migration, success=True, connection=conn
                    )
        except (Exception, asyncio.CancelledError) as e:
            error_message = str(e) or type(e).__name__
            logger.error(
                'Failed to execute migration %s: %s',
                migration.id,
                error_message
            )
            # The failed transaction is gone; record on a fresh one
            await self._record_failure(migration, error_message)
            raise

        execution_time_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            'Successfully executed migration %s (%dms)',
            migration.id,
            execution_time_ms
        )

        return MigrationResult(
            migration_id=migration.id,
            success=True,
            execution_time_ms=execution_time_ms
        )

    async def rollback_migration(self, migration: Migration) -> MigrationResult:
        """
        Roll back migration DOWN section from database.

        Executes the DOWN statements within a transaction. The history table
        is left untouched.

        Args:
            migration: Migration to roll back

        Returns:
            MigrationResult with execution time

        Raises:
            RollbackUnavailableError: If the migration has no DOWN section
                (raised before any database access)
            Exception: Whatever the database raised while running the script
        """
        if migration.down_sql is None:
            raise RollbackUnavailableError(migration.id)

        start_time = time.monotonic()
        logger.info(
            'Rolling back migration %s: %s', migration.id, migration.name
        )

        try:
            async with asyncio.timeout(self.timeout):
                async with self.database.transaction() as conn:
                    await self._execute_script(conn, migration.down_sql)
        except Exception as e:
            logger.error(
                'Failed to roll back migration %s: %s',
                migration.id,
                str(e) or type(e).__name__
            )
            raise

        execution_time_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            'Successfully rolled back migration %s (%dms)',
            migration.id,
            execution_time_ms
        )

        return MigrationResult(
            migration_id=migration.id,
            success=True,
            execution_time_ms=execution_time_ms
        )

    async def _execute_script(self, conn: AsyncConnection, sql: str) -> None:
        """Run each statement of a script on an open transaction."""
        statements = split_sql_statements(sql)
        for i, stmt in enumerate(statements, 1):
            # Verbatim: no bind-parameter parsing of ':name' or '%'
            await conn.exec_driver_sql(stmt)
            logger.debug('  Executed statement %d/%d', i, len(statements))

    async def _record_failure(
        self,
        migration: Migration,
        error_message: str
    ) -> None:
        """Write a failed attempt to the history table.

        A failure here is logged; the caller re-raises the migration error.
        """
        try:
            await self.history.record_migration(
                migration, success=False, error_message=error_message
            )
        except MigrationHistoryError as record_error:
            logger.error(
                'Failed to record migration failure for %s: %s',
                migration.id,
                record_error
            )
