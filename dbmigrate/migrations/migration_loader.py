"""
Migration loader for versioned schema evolution.

This module provides the MigrationLoader class which handles:
- Discovery of migration files in a migrations directory
- Parsing of migration files (extracting UP/DOWN SQL sections)
- Checksum computation for drift detection

Migration files follow the naming convention: NNNN_description.sql
Example: 0001_create_users.sql, 0002_add_email.sql

File format:
    -- UP MIGRATION
    CREATE TABLE users (id INTEGER PRIMARY KEY);

    -- DOWN MIGRATION
    DROP TABLE users;

The DOWN section is optional. A migration without one cannot be rolled back.
"""

import hashlib
import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from .exceptions import MigrationLoadError, MigrationNotFoundError
from .migration import Migration

logger = logging.getLogger(__name__)


class MigrationLoader:
    """
    Loads migration files from a directory.

    Responsibilities:
    - Discover migration files in the migrations directory
    - Parse migration files (extract UP/DOWN sections)
    - Compute checksums for drift detection

    Does NOT touch the database (see MigrationHistory and MigrationExecutor).
    Files are read fresh on every call; nothing is cached.

    Example:
        >>> loader = MigrationLoader(Path('/opt/app/migrations'))
        >>> migrations = loader.load_migrations()
        >>> print(migrations)
        [<Migration(0001, create users)>, <Migration(0002, add email)>]
    """

    # Migration filename pattern: NNNN_description.sql
    # Examples: 0001_create_table.sql, 42_add_index.sql
    MIGRATION_PATTERN = re.compile(r'^(\d+)_(.+)\.sql$')

    # Section markers in migration files
    UP_MARKER = '-- UP MIGRATION'
    DOWN_MARKER = '-- DOWN MIGRATION'

    def __init__(self, migrations_dir):
        """
        Initialize migration loader.

        Args:
            migrations_dir: Directory containing migration files
                Expected structure:
                    migrations/
                        0001_create_users.sql
                        0002_add_email.sql
                        README.md          (skipped with a warning)
        """
        self.migrations_dir = Path(migrations_dir)

    def load_migrations(self) -> List[Migration]:
        """
        Load all migration files from the migrations directory.

        Scans the directory for files matching NNNN_description.sql,
        parses them, and returns them sorted by numeric id.

        Returns:
            List of Migration objects sorted by id ascending

        Files sharing an id are all returned; the validator reports them
        and the runner refuses to apply an ambiguous id.

        Raises:
            MigrationLoadError: If the directory or any migration file cannot
                be read, or a file has an empty UP section

        Example:
            >>> loader = MigrationLoader(Path('migrations'))
            >>> [m.id for m in loader.load_migrations()]
            ['0001', '0002', '0010']
        """
        try:
            entries = sorted(self.migrations_dir.iterdir())
        except OSError as e:
            raise MigrationLoadError(
                f"Failed to read migrations directory {self.migrations_dir}: {e}"
            ) from e

        migrations = []

        for file_path in entries:
            if file_path.is_dir():
                continue

            match = self.MIGRATION_PATTERN.match(file_path.name)
            if not match:
                logger.warning(
                    'Skipping invalid migration filename: %s', file_path.name
                )
                continue

            migration = self.parse_migration_file(file_path)
            migrations.append(migration)
            logger.debug('Discovered migration: %r', migration)

        return sorted(migrations)

    def parse_migration_file(self, file_path: Path) -> Migration:
        """
        Parse a migration file and extract UP/DOWN sections.

        Migration file format:
        ```sql
        -- UP MIGRATION
        CREATE TABLE my_table (id INTEGER PRIMARY KEY);
        CREATE INDEX idx_my_table_id ON my_table(id);

        -- DOWN MIGRATION
        DROP INDEX idx_my_table_id;
        DROP TABLE my_table;
        ```

        Args:
            file_path: Path to migration file

        Returns:
            Migration object with UP/DOWN SQL extracted

        Raises:
            MigrationLoadError: If the file cannot be read, its name does not
                follow the convention, or its UP section is empty
        """
        file_path = Path(file_path)

        match = self.MIGRATION_PATTERN.match(file_path.name)
        if not match:
            raise MigrationLoadError(
                f"Invalid migration filename: {file_path.name}"
            )

        migration_id, name = match.groups()

        try:
            content = file_path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise MigrationLoadError(
                f"Failed to read migration file {file_path.name}: {e}"
            ) from e

        up_sql, down_sql = self._parse_sections(content)

        if not up_sql:
            raise MigrationLoadError(
                f"Migration {file_path.name} has empty UP section"
            )

        return Migration(
            id=migration_id,
            name=name.replace('_', ' '),
            filename=file_path.name,
            up_sql=up_sql,
            down_sql=down_sql,
            checksum=self.compute_checksum(up_sql, down_sql),
            file_path=str(file_path.absolute()),
        )

    def _parse_sections(self, content: str) -> Tuple[str, Optional[str]]:
        """
        Split migration file content into UP and DOWN sections.

        Marker lines are matched case-insensitively after stripping
        surrounding whitespace. Everything before the DOWN marker belongs to
        the UP section, so the UP marker itself is optional.

        Args:
            content: Full file content

        Returns:
            Tuple of (up_sql, down_sql); down_sql is None when the file has
            no DOWN marker or the DOWN section is empty
        """
        up_lines = []
        down_lines = None

        for line in content.splitlines():
            marker = line.strip().upper()
            if marker == self.UP_MARKER:
                continue
            if marker == self.DOWN_MARKER and down_lines is None:
                down_lines = []
                continue

            if down_lines is None:
                up_lines.append(line)
            else:
                down_lines.append(line)

        up_sql = '\n'.join(up_lines).strip()
        down_sql = None
        if down_lines is not None:
            down_sql = '\n'.join(down_lines).strip() or None

        return up_sql, down_sql

    def compute_checksum(self, up_sql: str, down_sql: Optional[str]) -> str:
        """
        Compute SHA-256 checksum of the UP and DOWN scripts.

        Used to detect files edited after their migration was applied.
        Changing a single character in either script changes the checksum;
        identical scripts always produce the same checksum.

        Args:
            up_sql: Trimmed UP section
            down_sql: Trimmed DOWN section or None

        Returns:
            Hexadecimal SHA-256 hash (64 characters)

        Example:
            >>> loader = MigrationLoader(Path('migrations'))
            >>> len(loader.compute_checksum('CREATE TABLE t (id INT);', None))
            64
        """
        normalized = f"{up_sql}\n{self.DOWN_MARKER}\n{down_sql or ''}"
        return hashlib.sha256(normalized.encode('utf-8')).hexdigest()

    def find_migration(self, migration_id: str) -> Migration:
        """
        Find a specific migration by id.

        Ids are compared by numeric value, so '2' finds '0002'.

        Args:
            migration_id: Migration id

        Returns:
            Migration object

        Raises:
            MigrationNotFoundError: If no migration file has this id
            MigrationLoadError: If the migrations directory cannot be loaded,
                or more than one file has this id

        Example:
            >>> loader = MigrationLoader(Path('migrations'))
            >>> migration = loader.find_migration('0003')
            >>> print(migration.checksum)
        """
        if not str(migration_id).isdigit():
            raise MigrationNotFoundError(migration_id)

        number = int(migration_id)
        matches = [m for m in self.load_migrations() if m.number == number]

        if not matches:
            raise MigrationNotFoundError(migration_id)
        if len(matches) > 1:
            raise MigrationLoadError(
                f"Ambiguous migration id {migration_id}: "
                + ' and '.join(m.filename for m in matches)
            )
        return matches[0]
