"""Exceptions raised by the migration engine."""


class MigrationError(Exception):
    """Base class for migration engine errors."""
    pass


class MigrationLoadError(MigrationError):
    """Migration directory or file could not be read or parsed.

    The migration set cannot be trusted, so the whole load is aborted.
    """
    pass


class MigrationHistoryError(MigrationError):
    """History table could not be created, read or written."""
    pass


class MigrationNotFoundError(MigrationError):
    """No migration file exists for the requested id."""

    def __init__(self, migration_id: str):
        super().__init__(f"Migration not found: {migration_id}")
        self.migration_id = migration_id


class RollbackUnavailableError(MigrationError):
    """Migration has no DOWN section and cannot be rolled back."""

    def __init__(self, migration_id: str):
        super().__init__(
            f"Migration {migration_id} does not have a rollback script"
        )
        self.migration_id = migration_id
