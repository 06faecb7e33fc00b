#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Integration tests for the dbmigrate command line interface.

Each test runs main() against a SQLite file in tmp_path and checks the
printed output and exit code.
"""
import json
import logging
import os
from unittest.mock import AsyncMock

import pytest

from dbmigrate.cli import EXIT_ERROR, EXIT_FAILED, EXIT_OK, build_parser, main
from dbmigrate.migrations import MigrationExecutor, MigrationHistoryError


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep DBMIGRATE_* variables and root handlers from leaking between tests."""
    for key in list(os.environ):
        if key.startswith('DBMIGRATE_'):
            monkeypatch.delenv(key)

    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def cli(tmp_path, migrations_dir, capsys):
    """Run the CLI against a temp database; returns (exit code, stdout, stderr)."""
    def _run(*argv):
        code = main([
            '--database-url', str(tmp_path / 'cli.db'),
            '--migrations-dir', str(migrations_dir),
            '--log-level', 'error',
            *argv
        ])
        captured = capsys.readouterr()
        return code, captured.out, captured.err
    return _run


class TestParser:

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_global_options(self):
        args = build_parser().parse_args(
            ['--env', 'prod', '--table', 'app_migrations', '--json', 'down', '0003']
        )

        assert args.environment == 'prod'
        assert args.history_table == 'app_migrations'
        assert args.json is True
        assert args.command == 'down'
        assert args.id == '0003'


class TestCommands:

    def test_init(self, cli):
        code, out, _ = cli('init')

        assert code == EXIT_OK
        assert 'History table ready' in out

    def test_up_then_status(self, cli, write_migration):
        write_migration("0001_init.sql", "CREATE TABLE a (id INTEGER);")
        write_migration("0002_more.sql", "CREATE TABLE b (id INTEGER);")

        code, out, _ = cli('up')
        assert code == EXIT_OK
        assert '2 executed, 0 failed, 0 not attempted' in out

        code, out, _ = cli('--json', 'status')
        assert code == EXIT_OK
        status = json.loads(out)
        assert status['total'] == 2
        assert [r['id'] for r in status['applied']] == ['0001', '0002']
        assert status['pending'] == []

    def test_up_nothing_pending(self, cli):
        code, out, _ = cli('up')

        assert code == EXIT_OK
        assert 'No pending migrations' in out

    def test_up_partial_failure(self, cli, write_migration):
        write_migration("0001_ok.sql", "CREATE TABLE a (id INTEGER);")
        write_migration("0002_bad.sql", "INSERT INTO nowhere VALUES (1);")
        write_migration("0003_never.sql", "CREATE TABLE c (id INTEGER);")

        code, out, _ = cli('up')

        assert code == EXIT_FAILED
        assert '1 executed, 1 failed, 1 not attempted' in out
        assert '✗ 0002' in out

    def test_up_json(self, cli, write_migration):
        write_migration("0001_bad.sql", "INSERT INTO nowhere VALUES (1);")

        code, out, _ = cli('--json', 'up')

        assert code == EXIT_FAILED
        result = json.loads(out)
        assert result['success'] is False
        assert result['failed'] == ['0001']
        assert 'nowhere' in result['errors']['0001']

    def test_down_and_apply(self, cli, write_migration):
        write_migration("0001_init.sql", "CREATE TABLE a (id INTEGER);", "DROP TABLE a;")
        cli('up')

        code, out, _ = cli('down', '0001')
        assert code == EXIT_OK
        assert 'Rolled back 0001' in out

        code, out, _ = cli('apply', '0001')
        assert code == EXIT_OK
        assert 'Applied 0001' in out

    def test_down_without_script_is_fatal(self, cli, write_migration):
        write_migration("0001_init.sql", "CREATE TABLE a (id INTEGER);")
        cli('up')

        code, _, err = cli('down', '0001')

        assert code == EXIT_ERROR
        assert 'does not have a rollback script' in err

    def test_down_unknown_id(self, cli, write_migration):
        write_migration("0001_init.sql", "CREATE TABLE a (id INTEGER);")

        code, _, err = cli('down', '0042')

        assert code == EXIT_ERROR
        assert 'Migration not found: 0042' in err

    def test_apply_failure(self, cli, write_migration):
        write_migration("0001_bad.sql", "INSERT INTO nowhere VALUES (1);")

        code, out, _ = cli('apply', '0001')

        assert code == EXIT_FAILED
        assert 'apply 0001 failed' in out

    def test_validate_clean(self, cli, write_migration):
        write_migration("0001_init.sql", "CREATE TABLE a (id INTEGER);")
        cli('up')

        code, out, _ = cli('validate')

        assert code == EXIT_OK
        assert 'Migrations valid' in out

    def test_validate_gap(self, cli, write_migration):
        write_migration("0001_a.sql", "SELECT 1;")
        write_migration("0003_c.sql", "SELECT 3;")

        code, out, _ = cli('--json', 'validate')

        assert code == EXIT_FAILED
        assert json.loads(out) == {
            'valid': False,
            'issues': ['Gap in migration sequence between 0001 and 0003'],
        }

    def test_health(self, cli, write_migration):
        write_migration("0001_bad.sql", "INSERT INTO nowhere VALUES (1);")
        cli('up')

        code, out, _ = cli('health')

        assert code == EXIT_FAILED
        assert 'Unhealthy' in out
        assert '0001 failed' in out


class TestFatalErrors:

    def test_missing_migrations_dir(self, tmp_path, capsys):
        code = main([
            '--database-url', str(tmp_path / 'cli.db'),
            '--migrations-dir', str(tmp_path / 'absent'),
            '--log-level', 'error',
            'status'
        ])

        assert code == EXIT_ERROR
        assert 'Failed to read migrations directory' in capsys.readouterr().err

    def test_bad_environment(self, cli):
        code, _, err = cli('--env', 'moon', 'status')

        assert code == EXIT_ERROR
        assert 'Unknown environment' in err

    def test_environment_variable(self, cli, monkeypatch):
        monkeypatch.setenv('DBMIGRATE_HISTORY_TABLE', 'bad-name')

        code, _, err = cli('init')

        assert code == EXIT_ERROR
        assert 'Invalid history table name' in err

    def test_history_error_during_up(self, cli, write_migration, monkeypatch):
        write_migration("0001_init.sql", "CREATE TABLE a (id INTEGER);")
        monkeypatch.setattr(
            MigrationExecutor, 'execute_migration',
            AsyncMock(side_effect=MigrationHistoryError('history offline'))
        )

        code, _, err = cli('up')

        assert code == EXIT_ERROR
        assert 'history offline' in err


class TestDuplicateIds:

    @pytest.fixture
    def duplicated(self, write_migration):
        write_migration("0001_a.sql", "SELECT 1;")
        write_migration("0002_b.sql", "SELECT 2;")
        write_migration("0002_c.sql", "SELECT 3;")

    def test_status_still_works(self, cli, duplicated):
        code, out, _ = cli('status')

        assert code == EXIT_OK
        assert 'Pending: 3' in out

    def test_validate_names_both_files(self, cli, duplicated):
        code, out, _ = cli('validate')

        assert code == EXIT_FAILED
        assert 'Duplicate migration id 0002: 0002_b.sql and 0002_c.sql' in out

    def test_up_refuses_ambiguous_id(self, cli, duplicated):
        code, out, _ = cli('up')

        assert code == EXIT_FAILED
        assert '1 executed, 1 failed, 0 not attempted' in out


class TestScriptFailures:

    def test_down_script_error(self, cli, write_migration):
        write_migration(
            "0001_init.sql", "CREATE TABLE a (id INTEGER);", "DROP TABLE missing;"
        )
        cli('up')

        code, out, _ = cli('down', '0001')

        assert code == EXIT_FAILED
        assert 'down 0001 failed' in out
        assert 'missing' in out
