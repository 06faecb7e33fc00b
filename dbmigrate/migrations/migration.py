"""
Migration data models for versioned schema evolution.

This module defines the core data structures for managing migrations:
- Migration: A migration file loaded from the filesystem
- AppliedMigration: A row in the migration history table
- MigrationStatus: Reconciliation of files against history
- ValidationResult: Integrity problems found in the migration history
- MigrationRunResult: Outcome of a batch apply
- HealthReport: Status and validation combined

Migration and AppliedMigration are produced by MigrationLoader and
MigrationHistory; the remaining models are computed on demand and never
persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Migration:
    """
    Represents a single migration file with metadata.

    A migration file contains an UP section and an optional DOWN section:
    - UP: SQL statements to apply the migration (forward)
    - DOWN: SQL statements to roll back the migration (backward)

    Attributes:
        id: Zero-padded sequence token from the filename (e.g., '0001')
        name: Slug from the filename remainder (e.g., 'create_users')
        filename: Original filename (e.g., '0001_create_users.sql')
        up_sql: SQL statements for applying the migration
        down_sql: SQL statements for rolling back, or None if irreversible
        checksum: SHA-256 hash of the UP and DOWN text
        file_path: Absolute path to the migration file

    Example:
        >>> migration = Migration(
        ...     id='0001',
        ...     name='create_users',
        ...     filename='0001_create_users.sql',
        ...     up_sql='CREATE TABLE users (id INTEGER PRIMARY KEY);',
        ...     down_sql='DROP TABLE users;',
        ...     checksum='a1b2c3d4...'
        ... )
        >>> print(migration)
        <Migration(0001, create_users)>
    """

    id: str
    name: str
    filename: str
    up_sql: str
    down_sql: Optional[str]
    checksum: str
    file_path: str = ''

    def __post_init__(self):
        """Validate migration after initialization."""
        if not self.id.isdigit():
            raise ValueError(
                f"Migration id must be numeric, got '{self.id}'"
            )

        if not self.up_sql.strip():
            raise ValueError(
                f"Migration {self.filename} has empty UP section"
            )

    @property
    def number(self) -> int:
        """Numeric value of the id, used for ordering and gap detection."""
        return int(self.id)

    @property
    def reversible(self) -> bool:
        return self.down_sql is not None

    def __lt__(self, other: 'Migration') -> bool:
        """
        Allow sorting migrations by numeric id.

        Example:
            >>> sorted([Migration(id='0010', ...), Migration(id='0002', ...)])
            [<Migration(0002, ...)>, <Migration(0010, ...)>]
        """
        if not isinstance(other, Migration):
            return NotImplemented
        return self.number < other.number

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Migration({self.id}, {self.name})>"


@dataclass
class AppliedMigration:
    """
    Represents the most recent attempt to run a migration.

    This corresponds to a row in the history table. There is exactly one
    row per migration id; a later attempt overwrites an earlier one.

    Attributes:
        id: Migration id that was run
        name: Migration name at execution time
        executed_at: When the attempt completed (naive UTC)
        checksum: Checksum of the file at execution time
        success: Whether the attempt succeeded
        error_message: Error text if the attempt failed

    Example:
        >>> applied = AppliedMigration(
        ...     id='0001',
        ...     name='create_users',
        ...     executed_at=datetime(2025, 11, 24, 10, 0, 0),
        ...     checksum='a1b2c3d4...',
        ...     success=True
        ... )
        >>> print(applied)
        <AppliedMigration(0001, success)>
    """

    id: str
    name: str
    executed_at: datetime
    checksum: str
    success: bool = True
    error_message: Optional[str] = None

    def __post_init__(self):
        """Validate applied migration after initialization."""
        if not self.id.isdigit():
            raise ValueError(
                f"Migration id must be numeric, got '{self.id}'"
            )

        if self.success and self.error_message is not None:
            raise ValueError(
                f"Successful migration {self.id} cannot carry an error message"
            )

    @property
    def number(self) -> int:
        return int(self.id)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'name': self.name,
            'executed_at': self.executed_at.isoformat(),
            'checksum': self.checksum,
            'success': self.success,
            'error_message': self.error_message,
        }

    def __repr__(self) -> str:
        """String representation for debugging."""
        outcome = 'success' if self.success else 'failed'
        return f"<AppliedMigration({self.id}, {outcome})>"


@dataclass
class MigrationStatus:
    """
    Migration files reconciled against the history table.

    A migration appears in at most one of applied, failed and pending.

    Attributes:
        total: Number of migration files discovered
        applied: Successful history rows that match a known file
        failed: History rows whose last attempt failed
        pending: Migration files with no history row at all
    """

    total: int
    applied: List[AppliedMigration] = field(default_factory=list)
    failed: List[AppliedMigration] = field(default_factory=list)
    pending: List[Migration] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'total': self.total,
            'applied': [record.to_dict() for record in self.applied],
            'failed': [record.to_dict() for record in self.failed],
            'pending': [
                {'id': m.id, 'name': m.name, 'filename': m.filename}
                for m in self.pending
            ],
        }


@dataclass
class ValidationResult:
    """Outcome of an integrity check. Issues are human-readable and ordered."""

    valid: bool
    issues: List[str] = field(default_factory=list)

    @classmethod
    def from_issues(cls, issues: List[str]) -> 'ValidationResult':
        return cls(valid=not issues, issues=list(issues))

    def to_dict(self) -> dict:
        return {'valid': self.valid, 'issues': list(self.issues)}


@dataclass
class MigrationResult:
    """
    Result of executing a single migration.

    Attributes:
        migration_id: Migration id that was executed
        success: Whether the migration completed successfully
        execution_time_ms: Execution time in milliseconds
        error_message: Error message if failed (None if success)
    """
    migration_id: str
    success: bool
    execution_time_ms: int
    error_message: Optional[str] = None


@dataclass
class MigrationRunResult:
    """
    Outcome of applying all pending migrations.

    Execution stops at the first failure, so ``failed`` holds at most one id
    and ``skipped`` lists the pending migrations that were never attempted.
    """

    executed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'executed': list(self.executed),
            'failed': list(self.failed),
            'skipped': list(self.skipped),
            'errors': dict(self.errors),
        }


@dataclass
class HealthReport:
    """Migration status and validation combined into one verdict."""

    healthy: bool
    issues: List[str]
    status: MigrationStatus

    def to_dict(self) -> dict:
        return {
            'healthy': self.healthy,
            'issues': list(self.issues),
            'status': self.status.to_dict(),
        }
