#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Command line interface for the migration engine.

Usage:
    dbmigrate status
    dbmigrate up
    dbmigrate down 0003
    dbmigrate apply 0003
    dbmigrate validate
    dbmigrate health --json
    dbmigrate --config dbmigrate.yaml --env production status

Exit codes:
    0  success or nothing to do
    1  a migration failed, validation found issues, or health is bad
    2  fatal error (bad config, unreadable migrations, database unreachable)
"""
import argparse
import asyncio
import json
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from dbmigrate.config import ConfigError, configure_logging, load_config
from dbmigrate.migrations import MigrationError, MigrationRunner

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dbmigrate',
        description='Apply, roll back and validate versioned SQL migrations'
    )
    parser.add_argument('--config', help='JSON or YAML config file')
    parser.add_argument('--database-url', help='SQLAlchemy URL or SQLite path')
    parser.add_argument('--migrations-dir', help='Directory of NNNN_name.sql files')
    parser.add_argument('--env', dest='environment',
                        help='development, test, staging or production')
    parser.add_argument('--table', dest='history_table',
                        help='History table name (default: schema_migrations)')
    parser.add_argument('--log-level', help='Logging level (default: info)')
    parser.add_argument('--json', action='store_true',
                        help='Print results as JSON')

    commands = parser.add_subparsers(dest='command', required=True)
    commands.add_parser('init', help='Create the history table')
    commands.add_parser('status', help='Show applied, failed and pending migrations')
    commands.add_parser('up', help='Apply all pending migrations')
    down = commands.add_parser('down', help='Roll back one migration')
    down.add_argument('id', help='Migration id, e.g. 0003')
    apply = commands.add_parser('apply', help='Apply (or retry) one migration')
    apply.add_argument('id', help='Migration id, e.g. 0003')
    commands.add_parser('validate', help='Check migration history integrity')
    commands.add_parser('health', help='Status and validation combined')
    return parser


def _emit(args, data: dict, text_lines) -> None:
    if args.json:
        print(json.dumps(data, indent=2))
    else:
        for line in text_lines:
            print(line)


async def run_command(args, runner: MigrationRunner) -> int:
    """Run one CLI command against a runner and print the result."""
    if args.command == 'init':
        await runner.initialize()
        _emit(args, {'initialized': True}, ['✓ History table ready'])
        return EXIT_OK

    if args.command == 'status':
        status = await runner.get_migration_status()
        lines = [
            f"Total: {status.total}  Applied: {len(status.applied)}  "
            f"Failed: {len(status.failed)}  Pending: {len(status.pending)}"
        ]
        lines += [f"  ✓ {r.id} {r.name}" for r in status.applied]
        lines += [f"  ✗ {r.id} {r.name}: {r.error_message}" for r in status.failed]
        lines += [f"  · {m.id} {m.name}" for m in status.pending]
        _emit(args, status.to_dict(), lines)
        return EXIT_OK

    if args.command == 'up':
        result = await runner.run_pending_migrations()
        if not result.executed and not result.failed:
            lines = ['✓ No pending migrations']
        else:
            lines = [
                f"{len(result.executed)} executed, {len(result.failed)} failed, "
                f"{len(result.skipped)} not attempted"
            ]
            lines += [f"  ✓ {mid}" for mid in result.executed]
            lines += [f"  ✗ {mid}: {result.errors[mid]}" for mid in result.failed]
            lines += [f"  · {mid}" for mid in result.skipped]
        _emit(args, result.to_dict(), lines)
        return EXIT_OK if result.success else EXIT_FAILED

    if args.command in ('down', 'apply'):
        try:
            if args.command == 'down':
                result = await runner.rollback_migration(args.id)
                verb = 'Rolled back'
            else:
                result = await runner.apply_migration(args.id)
                verb = 'Applied'
        except (SQLAlchemyError, TimeoutError) as e:
            # Script errors; MigrationError subclasses stay fatal
            error = str(e) or type(e).__name__
            _emit(
                args,
                {'success': False, 'id': args.id, 'error': error},
                [f"✗ {args.command} {args.id} failed: {error}"]
            )
            return EXIT_FAILED
        _emit(
            args,
            {'success': True, 'id': result.migration_id,
             'execution_time_ms': result.execution_time_ms},
            [f"✓ {verb} {result.migration_id} ({result.execution_time_ms}ms)"]
        )
        return EXIT_OK

    if args.command == 'validate':
        validation = await runner.validate_migrations()
        lines = ['✓ Migrations valid'] if validation.valid else (
            ['✗ Migration validation failed:'] +
            [f"  - {issue}" for issue in validation.issues]
        )
        _emit(args, validation.to_dict(), lines)
        return EXIT_OK if validation.valid else EXIT_FAILED

    if args.command == 'health':
        report = await runner.health_check()
        lines = [f"{'✓ Healthy' if report.healthy else '✗ Unhealthy'}"]
        lines += [f"  - {issue}" for issue in report.issues]
        lines += [f"  ✗ {r.id} failed: {r.error_message}" for r in report.status.failed]
        _emit(args, report.to_dict(), lines)
        return EXIT_OK if report.healthy else EXIT_FAILED

    raise ValueError(f"Unknown command: {args.command}")


async def _main(args, config) -> int:
    runner = MigrationRunner.from_config(config)
    try:
        return await run_command(args, runner)
    finally:
        await runner.database.close()


def main(argv=None) -> int:
    """Entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(
            args.config,
            database_url=args.database_url,
            migrations_dir=args.migrations_dir,
            environment=args.environment,
            history_table=args.history_table,
            log_level=args.log_level,
        )
        configure_logging(config.log_level, config.log_file)
        return asyncio.run(_main(args, config))
    except (ConfigError, MigrationError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return EXIT_ERROR
    except Exception as e:
        logger.error('Unexpected error: %s', e, exc_info=True)
        print(f"✗ {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == '__main__':
    sys.exit(main())
