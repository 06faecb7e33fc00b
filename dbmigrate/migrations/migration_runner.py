#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration runner: the entry point for common migration workflows.

Ties a migrations directory and a database together:
- initialize: create the history table
- status / has pending: reconcile files against history
- run pending: apply pending migrations in order, stopping at the first failure
- rollback: run one migration's DOWN section
- validate / health check: report integrity problems
- auto-migrate: run pending migrations, in development only

The runner assumes it is the only process migrating its database. Mutating
operations are serialized within one runner; nothing coordinates separate
processes.
"""
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from dbmigrate.config import Environment, MigrationConfig
from dbmigrate.database import MigrationDatabase
from dbmigrate.migrations.exceptions import MigrationHistoryError
from dbmigrate.migrations.migration import (
    HealthReport,
    Migration,
    MigrationResult,
    MigrationRunResult,
    MigrationStatus,
    ValidationResult,
)
from dbmigrate.migrations.migration_executor import MigrationExecutor
from dbmigrate.migrations.migration_history import MigrationHistory
from dbmigrate.migrations.migration_loader import MigrationLoader
from dbmigrate.migrations.migration_validator import MigrationValidator

logger = logging.getLogger(__name__)


class MigrationRunner:
    """
    Orchestrates loading, tracking, executing and validating migrations.

    Migration files are re-read on every call.

    Attributes:
        database: MigrationDatabase instance
        environment: Deployment context (gates auto_migrate)
        loader: MigrationLoader for the migrations directory
        history: MigrationHistory for the history table
        executor: MigrationExecutor
        validator: MigrationValidator

    Example:
        database = MigrationDatabase('sqlite+aiosqlite:///app.db')
        runner = MigrationRunner(database, 'migrations')
        await runner.initialize()
        result = await runner.run_pending_migrations()
        print(result.executed, result.failed)
    """

    def __init__(
        self,
        database: MigrationDatabase,
        migrations_dir,
        environment: Environment = Environment.DEVELOPMENT,
        history_table: str = 'schema_migrations',
        timeout: Optional[float] = None
    ):
        """
        Initialize migration runner.

        Args:
            database: MigrationDatabase instance
            migrations_dir: Directory containing migration files
            environment: Deployment context
            history_table: Name of the history table
            timeout: Per-migration time limit in seconds
        """
        self.database = database
        self.migrations_dir = Path(migrations_dir)
        self.environment = Environment.parse(environment)
        self.loader = MigrationLoader(self.migrations_dir)
        self.history = MigrationHistory(database, history_table)
        self.executor = MigrationExecutor(database, self.history, timeout)
        self.validator = MigrationValidator()
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: MigrationConfig,
        database: Optional[MigrationDatabase] = None
    ) -> 'MigrationRunner':
        """Build a runner (and its database, unless given) from a MigrationConfig."""
        if database is None:
            database = MigrationDatabase(
                config.database_url, environment=config.environment
            )
        return cls(
            database,
            config.migrations_dir,
            environment=config.environment,
            history_table=config.history_table,
            timeout=config.timeout,
        )

    async def initialize(self) -> None:
        """Create the history table if it does not exist. Idempotent."""
        await self.history.ensure_table()
        logger.info('Migration system initialized')

    def load_migrations(self) -> List[Migration]:
        return self.loader.load_migrations()

    async def get_migration_status(self) -> MigrationStatus:
        """
        Reconcile migration files against the history table.

        Raises:
            MigrationLoadError: If the migrations directory cannot be loaded
            MigrationHistoryError: If the history table cannot be read
        """
        migrations = self.load_migrations()
        applied = await self.history.get_applied_migrations()
        return self.validator.build_status(migrations, applied)

    async def has_pending_migrations(self) -> bool:
        status = await self.get_migration_status()
        return bool(status.pending)

    async def run_pending_migrations(self) -> MigrationRunResult:
        """
        Apply all pending migrations in ascending id order.

        Stops at the first failure; later migrations are left pending and
        listed in ``skipped``. A failed migration is recorded in the history
        table by the executor and reported here rather than raised. A
        pending id claimed by several files counts as a failure without
        running either file or writing history.

        Returns:
            MigrationRunResult

        Raises:
            MigrationLoadError: If the migrations directory cannot be loaded
            MigrationHistoryError: If the history table cannot be read or
                written
        """
        async with self._lock:
            result = MigrationRunResult()
            migrations = self.load_migrations()
            applied = await self.history.get_applied_migrations()
            status = self.validator.build_status(migrations, applied)
            duplicates = self.validator.find_duplicate_ids(migrations)

            if not status.pending:
                logger.info('No pending migrations')
                return result

            logger.info('Found %d pending migrations', len(status.pending))

            for index, migration in enumerate(status.pending):
                error = duplicates.get(migration.number)
                if error is None:
                    try:
                        await self.executor.execute_migration(migration)
                    except MigrationHistoryError:
                        # Broken history store, not a failed migration
                        raise
                    except Exception as e:
                        error = str(e) or type(e).__name__
                else:
                    logger.error(
                        'Refusing to apply migration %s: %s', migration.id, error
                    )

                if error is not None:
                    result.failed.append(migration.id)
                    result.errors[migration.id] = error
                    result.skipped.extend(
                        m.id for m in status.pending[index + 1:]
                        if m.number != migration.number
                    )
                    # Later migrations may depend on this one
                    break
                result.executed.append(migration.id)

            logger.info(
                'Migration run completed: %d executed, %d failed, %d skipped',
                len(result.executed),
                len(result.failed),
                len(result.skipped)
            )
            return result

    async def apply_migration(self, migration_id: str) -> MigrationResult:
        """
        Apply one migration regardless of its history row.

        Used to retry a failed migration or to re-apply one after a rollback.

        Raises:
            MigrationNotFoundError: If no file has this id
            Exception: Whatever the database raised while running the script
        """
        async with self._lock:
            migration = self.loader.find_migration(migration_id)
            return await self.executor.execute_migration(migration)

    async def rollback_migration(self, migration_id: str) -> MigrationResult:
        """
        Roll back one migration by running its DOWN section.

        The history table is not modified.

        Raises:
            MigrationNotFoundError: If no file has this id
            RollbackUnavailableError: If the migration has no DOWN section
            Exception: Whatever the database raised while running the script
        """
        async with self._lock:
            migration = self.loader.find_migration(migration_id)
            return await self.executor.rollback_migration(migration)

    async def validate_migrations(self) -> ValidationResult:
        """
        Check migration files against the history table.

        Never raises: a failure to load files or read history is reported as
        a single validation issue.
        """
        try:
            migrations = self.load_migrations()
            applied = await self.history.get_applied_migrations()
        except Exception as e:
            logger.error('Migration validation failed: %s', e)
            return ValidationResult(
                valid=False,
                issues=[f"Validation failed: {e}"]
            )

        result = self.validator.validate(migrations, applied)
        for issue in result.issues:
            logger.warning('Migration integrity issue: %s', issue)
        return result

    async def health_check(self) -> HealthReport:
        """Combine status and validation: healthy means no failures and no issues."""
        status = await self.get_migration_status()
        validation = await self.validate_migrations()
        return HealthReport(
            healthy=not status.failed and validation.valid,
            issues=validation.issues,
            status=status,
        )

    async def auto_migrate(self) -> bool:
        """
        Run pending migrations, but only in development.

        Returns:
            True if every pending migration was applied, False if one failed
            or the environment is not development
        """
        if self.environment is not Environment.DEVELOPMENT:
            logger.warning(
                'Auto-migration is only available in development mode '
                '(environment: %s)',
                self.environment.value
            )
            return False

        logger.info('Running pending migrations in development mode')
        result = await self.run_pending_migrations()
        return result.success
