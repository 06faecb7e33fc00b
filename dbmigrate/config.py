#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration and logging setup for the migration engine.

Settings are resolved once at startup, in increasing priority:
1. Built-in defaults
2. Config file (JSON, or YAML for .yaml/.yml)
3. DBMIGRATE_* environment variables
4. Explicit overrides (e.g., CLI arguments)

The resulting MigrationConfig is passed to MigrationRunner. Nothing in the
engine reads the process environment after that.
"""
import json
import logging
import os
from dataclasses import dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

import yaml

LOG_FORMAT = '[%(asctime).19s] [%(name)s] [%(levelname)s] %(message)s'

ENV_PREFIX = 'DBMIGRATE_'


class ConfigError(ValueError):
    """Configuration file or value is invalid."""
    pass


class Environment(Enum):
    """Deployment context the migration engine runs in."""
    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def parse(cls, value) -> 'Environment':
        """
        Parse an environment name, accepting common aliases.

        Example:
            >>> Environment.parse('prod')
            <Environment.PRODUCTION: 'production'>
        """
        if isinstance(value, cls):
            return value

        name = str(value).strip().lower()
        aliases = {
            'dev': cls.DEVELOPMENT,
            'local': cls.DEVELOPMENT,
            'testing': cls.TEST,
            'stage': cls.STAGING,
            'prod': cls.PRODUCTION,
        }
        if name in aliases:
            return aliases[name]

        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown environment: '{value}'") from None


@dataclass
class MigrationConfig:
    """
    Resolved migration engine settings.

    Attributes:
        database_url: SQLAlchemy URL or SQLite file path
        migrations_dir: Directory containing NNNN_name.sql files
        environment: Deployment context (gates auto-migration)
        history_table: Name of the migration history table
        timeout: Per-migration timeout in seconds (None for no limit)
        log_level: Logging level name
        log_file: Log file path (None for stderr)
    """
    database_url: str = 'sqlite+aiosqlite:///migrations.db'
    migrations_dir: str = 'migrations'
    environment: Environment = Environment.DEVELOPMENT
    history_table: str = 'schema_migrations'
    timeout: Optional[float] = None
    log_level: str = 'info'
    log_file: Optional[str] = None

    def __post_init__(self):
        self.environment = Environment.parse(self.environment)
        if self.timeout is not None:
            self.timeout = float(self.timeout)
            if self.timeout <= 0:
                raise ConfigError(
                    f"timeout must be positive, got {self.timeout}"
                )


def _read_config_file(path: Path) -> dict:
    """Load a JSON or YAML config file into a dictionary."""
    try:
        with open(path, 'r', encoding='utf-8') as fp:
            if path.suffix in ('.yaml', '.yml'):
                data = yaml.safe_load(fp) or {}
            else:
                data = json.load(fp)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    # Allow the settings to live under a "migrations" section
    if isinstance(data.get('migrations'), dict):
        data = data['migrations']

    return data


def load_config(path=None, environ: Optional[Mapping[str, str]] = None,
                **overrides) -> MigrationConfig:
    """
    Resolve configuration from file, environment variables and overrides.

    Args:
        path: Optional JSON/YAML config file
        environ: Environment mapping (defaults to os.environ)
        **overrides: Explicit values; None values are ignored

    Returns:
        MigrationConfig

    Raises:
        ConfigError: If the file is unreadable or a value is invalid

    Example:
        >>> config = load_config('dbmigrate.yaml', database_url='test.db')
        >>> config.database_url
        'test.db'
    """
    environ = os.environ if environ is None else environ
    known = {f.name for f in fields(MigrationConfig)}
    values = {}

    if path is not None:
        file_values = _read_config_file(Path(path))
        unknown = set(file_values) - known
        if unknown:
            raise ConfigError(
                f"Unknown config keys: {', '.join(sorted(unknown))}"
            )
        values.update(file_values)

    for name in known:
        env_value = environ.get(ENV_PREFIX + name.upper())
        if env_value:
            values[name] = env_value
    # Shorter alias for the one setting people most often export
    if environ.get(ENV_PREFIX + 'ENV'):
        values['environment'] = environ[ENV_PREFIX + 'ENV']

    for name, value in overrides.items():
        if name not in known:
            raise ConfigError(f"Unknown config override: {name}")
        if value is not None:
            values[name] = value

    try:
        return replace(MigrationConfig(), **values)
    except ConfigError:
        raise
    except (TypeError, ValueError) as e:
        raise ConfigError(str(e)) from e


def configure_logging(log_level='info', log_file=None):
    """Configure the root logger with a file or stream handler

    Args:
        log_level: Level name ('debug', 'info', ...) or logging constant
        log_file: File path string (None for stderr)

    Returns:
        The root logger
    """
    if isinstance(log_level, str):
        level = logging.getLevelName(log_level.upper())
        if not isinstance(level, int):
            raise ConfigError(f"Unknown log level: '{log_level}'")
    else:
        level = log_level

    if log_file:
        handler = logging.FileHandler(
            log_file, mode='a', encoding='utf-8', errors='replace'
        )
    else:
        handler = logging.StreamHandler()  # Default to stderr
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level)
    return root
