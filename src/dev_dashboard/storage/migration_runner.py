# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""SQL migration runner for the local cache database.

Applies the numbered ``*.sql`` files shipped in ``cache/migrations`` and
records each applied file in a ``schema_migrations`` table. Files are also
written to be idempotent, so re-running one that was applied by an older
client without the bookkeeping table is harmless.

Usage:
    runner = MigrationRunner.packaged()
    success, msg = await runner.run_migrations_async("/path/to/local_cache.db")

    conn = sqlite3.connect("/path/to/local_cache.db")
    success, msg = runner.run_migrations_sync(conn)
"""

import logging
import sqlite3
import time
from pathlib import Path
from typing import List, Optional, Set, Tuple

import aiosqlite

logger = logging.getLogger(__name__)

PACKAGED_MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / 'cache' / 'migrations'

_BOOKKEEPING_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    filename TEXT PRIMARY KEY,
    applied_at REAL NOT NULL
)
"""


class MigrationRunner:
    """Executes SQL migration files against a SQLite database.

    Attributes:
        migrations_dir: Directory containing ``NNN_description.sql`` files
    """

    def __init__(self, migrations_dir: Path):
        self.migrations_dir = Path(migrations_dir)

    @classmethod
    def packaged(cls) -> 'MigrationRunner':
        """Runner for the migrations that ship with this package."""
        return cls(PACKAGED_MIGRATIONS_DIR)

    def available_migrations(self) -> List[str]:
        """All migration filenames in apply order."""
        if not self.migrations_dir.is_dir():
            logger.warning(f"Migrations directory not found: {self.migrations_dir}")
            return []
        return sorted(p.name for p in self.migrations_dir.glob('*.sql'))

    def _get_migration_sql(self, filename: str) -> Optional[str]:
        migration_path = self.migrations_dir / filename
        if not migration_path.exists():
            logger.warning(f"Migration file not found: {filename}")
            return None
        return migration_path.read_text()

    @staticmethod
    def _is_idempotent_error(error: Exception) -> bool:
        """True if the error indicates the migration was already applied."""
        error_msg = str(error).lower()
        return "duplicate column" in error_msg or "already exists" in error_msg

    @staticmethod
    def _format_result_message(executed_count: int, skipped_count: int) -> str:
        message = f"Successfully executed {executed_count} migrations"
        if skipped_count > 0:
            message += f" ({skipped_count} already applied)"
        return message

    def _select(self, migration_files: Optional[List[str]], applied: Set[str]) -> List[str]:
        files = migration_files if migration_files is not None else self.available_migrations()
        return [f for f in sorted(files) if f not in applied]

    def run_migrations_sync(self, conn: sqlite3.Connection,
                            migration_files: Optional[List[str]] = None) -> Tuple[bool, str]:
        """Apply pending migrations over an open ``sqlite3`` connection.

        Args:
            conn: Open sqlite3.Connection
            migration_files: Filenames to apply; defaults to every packaged file

        Returns:
            Tuple[bool, str]: (success, summary message)
        """
        try:
            conn.executescript(_BOOKKEEPING_SQL)
            applied = {row[0] for row in conn.execute("SELECT filename FROM schema_migrations")}
            skipped_count = len(applied.intersection(migration_files or self.available_migrations()))
            executed_count = 0

            for filename in self._select(migration_files, applied):
                sql = self._get_migration_sql(filename)
                if sql is None:
                    continue

                logger.info(f"Executing migration: {filename}")
                try:
                    conn.executescript(sql)
                    executed_count += 1
                except sqlite3.OperationalError as e:
                    if not self._is_idempotent_error(e):
                        raise
                    logger.info(f"Migration {filename} already applied (skipped): {e}")
                    skipped_count += 1

                conn.execute("INSERT OR REPLACE INTO schema_migrations (filename, applied_at) VALUES (?, ?)",
                             (filename, time.time()))
                conn.commit()

            return True, self._format_result_message(executed_count, skipped_count)

        except Exception as e:
            logger.error(f"Migration failed: {e}")
            return False, f"Migration error: {str(e)}"

    async def run_migrations_async(self, db_path: str,
                                   migration_files: Optional[List[str]] = None) -> Tuple[bool, str]:
        """Apply pending migrations to the database at ``db_path`` with aiosqlite.

        Args:
            db_path: Path to SQLite database file
            migration_files: Filenames to apply; defaults to every packaged file

        Returns:
            Tuple[bool, str]: (success, summary message)
        """
        try:
            async with aiosqlite.connect(db_path) as conn:
                await conn.executescript(_BOOKKEEPING_SQL)
                async with conn.execute("SELECT filename FROM schema_migrations") as cursor:
                    applied = {row[0] for row in await cursor.fetchall()}
                skipped_count = len(applied.intersection(migration_files or self.available_migrations()))
                executed_count = 0

                for filename in self._select(migration_files, applied):
                    sql = self._get_migration_sql(filename)
                    if sql is None:
                        continue

                    logger.info(f"Executing migration: {filename}")
                    try:
                        await conn.executescript(sql)
                        executed_count += 1
                    except aiosqlite.OperationalError as e:
                        if not self._is_idempotent_error(e):
                            raise
                        logger.info(f"Migration {filename} already applied (skipped): {e}")
                        skipped_count += 1

                    await conn.execute(
                        "INSERT OR REPLACE INTO schema_migrations (filename, applied_at) VALUES (?, ?)",
                        (filename, time.time())
                    )
                    await conn.commit()

            return True, self._format_result_message(executed_count, skipped_count)

        except Exception as e:
            logger.error(f"Migration failed: {e}")
            return False, f"Migration error: {str(e)}"
