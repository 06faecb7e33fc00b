#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration status and integrity validation.

Reconciles migration files against history rows. Everything here is a pure
function of its arguments: loading files and reading history is the
caller's job (see MigrationRunner).

Integrity checks:
- Checksum drift: a file was edited after its migration ran
- Orphan records: a file was deleted after its migration ran
- Duplicate ids: two files claim the same migration id
- Sequence gaps: a file is missing or misnamed
"""
from typing import Dict, List, Optional, Sequence

from dbmigrate.migrations.migration import (
    AppliedMigration,
    Migration,
    MigrationStatus,
    ValidationResult,
)


class MigrationValidator:
    """
    Computes migration status and integrity issues.

    Ids are compared by numeric value, so a history row for '1' matches the
    file '0001_init.sql'.

    Example:
        >>> validator = MigrationValidator()
        >>> status = validator.build_status(migrations, applied)
        >>> [m.id for m in status.pending]
        ['0002', '0003']
        >>> result = validator.validate(migrations, applied)
        >>> result.valid
        True
    """

    def build_status(
        self,
        migrations: Sequence[Migration],
        applied: Sequence[AppliedMigration]
    ) -> MigrationStatus:
        """
        Partition migrations into applied, failed and pending.

        A migration whose last attempt failed is reported as failed, not
        pending: it is only retried when applied explicitly.

        Args:
            migrations: Migration files
            applied: History rows

        Returns:
            MigrationStatus
        """
        known = {m.number for m in migrations}
        recorded = {record.number for record in applied}

        return MigrationStatus(
            total=len(migrations),
            applied=[
                record for record in applied
                if record.success and record.number in known
            ],
            failed=[record for record in applied if not record.success],
            pending=sorted(m for m in migrations if m.number not in recorded),
        )

    def validate(
        self,
        migrations: Sequence[Migration],
        applied: Sequence[AppliedMigration]
    ) -> ValidationResult:
        """
        Check the migration history for integrity problems.

        Issues are reported in order: checksum mismatches, orphan records,
        duplicate ids, then sequence gaps. A record whose id is claimed by
        several files is reported as a duplicate only.

        Args:
            migrations: Migration files
            applied: History rows

        Returns:
            ValidationResult (valid when no issues were found)
        """
        by_number: Dict[int, Migration] = {m.number: m for m in migrations}
        duplicates = self.find_duplicate_ids(migrations)
        issues = []

        for record in applied:
            migration = by_number.get(record.number)
            if migration is not None and record.number not in duplicates:
                issue = self.verify_checksum(migration, record.checksum)
                if issue:
                    issues.append(issue)

        for record in applied:
            if record.number not in by_number:
                issues.append(
                    f"Applied migration {record.id} has no corresponding file"
                )

        issues.extend(duplicates.values())
        issues.extend(self.find_sequence_gaps(migrations))

        return ValidationResult.from_issues(issues)

    def find_duplicate_ids(self, migrations: Sequence[Migration]) -> Dict[int, str]:
        """
        Find ids claimed by more than one file.

        Returns:
            Mapping of numeric id to an issue message, in id order, e.g.
            {2: 'Duplicate migration id 0002: 0002_b.sql and 0002_c.sql'}
        """
        groups: Dict[int, List[Migration]] = {}
        for migration in sorted(migrations):
            groups.setdefault(migration.number, []).append(migration)

        duplicates = {}
        for number, group in groups.items():
            if len(group) > 1:
                filenames = [m.filename for m in group]
                duplicates[number] = (
                    f"Duplicate migration id {group[0].id}: "
                    f"{', '.join(filenames[:-1])} and {filenames[-1]}"
                )
        return duplicates

    def verify_checksum(
        self,
        migration: Migration,
        stored_checksum: str
    ) -> Optional[str]:
        """
        Verify migration file checksum matches stored checksum.

        Args:
            migration: Migration object with current checksum
            stored_checksum: Checksum from the history table

        Returns:
            Issue message if the file changed, None if it matches
        """
        if migration.checksum != stored_checksum:
            return (
                f"Migration {migration.id} checksum mismatch - "
                f"file may have been modified after execution"
            )
        return None

    def find_sequence_gaps(self, migrations: Sequence[Migration]) -> List[str]:
        """Report every pair of neighbouring migrations with ids missing between them."""
        ordered = sorted(migrations)
        return [
            f"Gap in migration sequence between {previous.id} and {current.id}"
            for previous, current in zip(ordered, ordered[1:])
            if current.number > previous.number + 1
        ]
