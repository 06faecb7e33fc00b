"""Versioned SQL schema migrations for SQLite and PostgreSQL."""
from .config import Environment, MigrationConfig, configure_logging, load_config
from .database import MigrationDatabase
from .migrations import MigrationRunner

__version__ = '1.0.0'

__all__ = [
    'Environment',
    'MigrationConfig',
    'MigrationDatabase',
    'MigrationRunner',
    'configure_logging',
    'load_config',
]
