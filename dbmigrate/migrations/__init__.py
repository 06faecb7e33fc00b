"""
Versioned schema migrations.

This package provides:
- Migration: Data model for migration files
- AppliedMigration: Data model for history table rows
- MigrationLoader: Discovery and parsing of migration files
- MigrationHistory: The migration history table
- MigrationExecutor: Execution of migrations with transaction safety
- MigrationValidator: Status reconciliation and integrity checks
- MigrationRunner: Common workflows over all of the above
"""

from .exceptions import (
    MigrationError,
    MigrationHistoryError,
    MigrationLoadError,
    MigrationNotFoundError,
    RollbackUnavailableError,
)
from .migration import (
    AppliedMigration,
    HealthReport,
    Migration,
    MigrationResult,
    MigrationRunResult,
    MigrationStatus,
    ValidationResult,
)
from .migration_executor import MigrationExecutor, split_sql_statements
from .migration_history import MigrationHistory
from .migration_loader import MigrationLoader
from .migration_runner import MigrationRunner
from .migration_validator import MigrationValidator

__all__ = [
    'Migration',
    'AppliedMigration',
    'MigrationStatus',
    'ValidationResult',
    'MigrationResult',
    'MigrationRunResult',
    'HealthReport',
    'MigrationLoader',
    'MigrationHistory',
    'MigrationExecutor',
    'MigrationValidator',
    'MigrationRunner',
    'split_sql_statements',
    'MigrationError',
    'MigrationLoadError',
    'MigrationHistoryError',
    'MigrationNotFoundError',
    'RollbackUnavailableError',
]
