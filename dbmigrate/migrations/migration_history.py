#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration history store.

Keeps one row per migration id in the history table, recording the outcome
of the most recent attempt to run it. Rows are inserted or updated, never
deleted.
"""
import logging
import re
from datetime import datetime, timezone
from typing import List, Mapping, Optional

from sqlalchemy import Boolean, DateTime, bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from dbmigrate.migrations.exceptions import MigrationHistoryError
from dbmigrate.migrations.migration import AppliedMigration, Migration

logger = logging.getLogger(__name__)

TABLE_NAME_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

HISTORY_COLUMNS = (
    'id', 'name', 'executed_at', 'checksum', 'success', 'error_message'
)


def utcnow() -> datetime:
    """Current time as naive UTC, the format stored in the history table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def decode_row(row: Mapping) -> AppliedMigration:
    """
    Decode one history table row into an AppliedMigration.

    Args:
        row: Row mapping with the history table columns

    Returns:
        AppliedMigration

    Raises:
        MigrationHistoryError: If a column is missing or holds a value of
            the wrong type
    """
    missing = [column for column in HISTORY_COLUMNS if column not in row]
    if missing:
        raise MigrationHistoryError(
            f"History row is missing columns: {', '.join(missing)}"
        )

    executed_at = row['executed_at']
    if isinstance(executed_at, str):
        try:
            executed_at = datetime.fromisoformat(executed_at)
        except ValueError:
            raise MigrationHistoryError(
                f"History row {row['id']} has invalid executed_at: "
                f"{executed_at!r}"
            ) from None
    if not isinstance(executed_at, datetime):
        raise MigrationHistoryError(
            f"History row {row['id']} has invalid executed_at: "
            f"{executed_at!r}"
        )

    success = row['success']
    if success not in (True, False, 0, 1):
        raise MigrationHistoryError(
            f"History row {row['id']} has invalid success flag: {success!r}"
        )

    try:
        return AppliedMigration(
            id=str(row['id']),
            name=str(row['name']),
            executed_at=executed_at,
            checksum=str(row['checksum']),
            success=bool(success),
            error_message=row['error_message'],
        )
    except ValueError as e:
        raise MigrationHistoryError(
            f"History row {row['id']} is inconsistent: {e}"
        ) from e


class MigrationHistory:
    """
    Durable bookkeeping of which migrations have run.

    Every public operation ensures the history table exists before touching
    it, so callers never need to call ensure_table() up front.

    Attributes:
        database: MigrationDatabase instance
        table_name: Name of the history table

    Example:
        history = MigrationHistory(database)
        await history.ensure_table()
        applied = await history.get_applied_migrations()
    """

    def __init__(self, database, table_name: str = 'schema_migrations'):
        """
        Initialize migration history store.

        Args:
            database: MigrationDatabase instance
            table_name: History table name (letters, digits, underscores)

        Raises:
            ValueError: If table_name is not a plain SQL identifier
        """
        if not TABLE_NAME_PATTERN.match(table_name):
            raise ValueError(f"Invalid history table name: '{table_name}'")

        self.database = database
        self.table_name = table_name
        self.index_name = f'idx_{table_name}_executed_at'

    async def ensure_table(self) -> None:
        """Ensure the history table and its executed_at index exist.

        Safe to call multiple times (uses IF NOT EXISTS).

        Raises:
            MigrationHistoryError: On table creation failure
        """
        create_table_sql = text(f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                id VARCHAR(255) PRIMARY KEY,
                name VARCHAR(255) NOT NULL,
                executed_at TIMESTAMP NOT NULL,
                checksum VARCHAR(64) NOT NULL,
                success BOOLEAN NOT NULL DEFAULT TRUE,
                error_message TEXT
            )
        """)

        create_index_sql = text(f"""
            CREATE INDEX IF NOT EXISTS {self.index_name}
            ON {self.table_name}(executed_at)
        """)

        try:
            async with self.database.transaction() as conn:
                await conn.execute(create_table_sql)
                await conn.execute(create_index_sql)
        except (SQLAlchemyError, OSError) as e:
            logger.error('Failed to ensure history table: %s', e)
            raise MigrationHistoryError(
                f"Failed to ensure history table {self.table_name}: {e}"
            ) from e

        logger.debug('Ensured %s table exists', self.table_name)

    async def get_applied_migrations(self) -> List[AppliedMigration]:
        """
        Get every history row, oldest attempt first.

        Returns:
            List of AppliedMigration (successful and failed)

        Raises:
            MigrationHistoryError: On query failure or undecodable rows
        """
        await self.ensure_table()

        query = text(f"""
            SELECT id, name, executed_at, checksum, success, error_message
            FROM {self.table_name}
            ORDER BY executed_at ASC
        """).columns(executed_at=DateTime(), success=Boolean())

        try:
            async with self.database.transaction() as conn:
                result = await conn.execute(query)
                rows = result.mappings().all()
        except (SQLAlchemyError, OSError) as e:
            logger.error('Failed to get applied migrations: %s', e)
            raise MigrationHistoryError(
                f"Failed to read {self.table_name}: {e}"
            ) from e

        return [decode_row(row) for row in rows]

    async def record_migration(
        self,
        migration: Migration,
        success: bool,
        error_message: Optional[str] = None,
        connection: Optional[AsyncConnection] = None
    ) -> None:
        """
        Record the outcome of a migration attempt.

        Inserts a row, or overwrites the existing row for the same id, so the
        table always reflects the latest attempt.

        Args:
            migration: Migration that was executed
            success: Whether the attempt succeeded
            error_message: Error text if failed (ignored on success)
            connection: Open transaction to join; when omitted the write runs
                in its own transaction

        Raises:
            MigrationHistoryError: On database write failure
        """
        query = text(f"""
            INSERT INTO {self.table_name} (
                id, name, executed_at, checksum, success, error_message
            ) VALUES (
                :id, :name, :executed_at, :checksum, :success, :error_message
            )
            ON CONFLICT (id) DO UPDATE SET
                name = excluded.name,
                executed_at = excluded.executed_at,
                checksum = excluded.checksum,
                success = excluded.success,
                error_message = excluded.error_message
        """).bindparams(
            bindparam('executed_at', type_=DateTime()),
            bindparam('success', type_=Boolean()),
        )

        params = {
            'id': migration.id,
            'name': migration.name,
            'executed_at': utcnow(),
            'checksum': migration.checksum,
            'success': success,
            'error_message': None if success else error_message,
        }

        try:
            if connection is not None:
                await connection.execute(query, params)
            else:
                await self.ensure_table()
                async with self.database.transaction() as conn:
                    await conn.execute(query, params)
        except (SQLAlchemyError, OSError) as e:
            raise MigrationHistoryError(
                f"Failed to record migration {migration.id}: {e}"
            ) from e
