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

"""
SQLite local cache store.

Persists the key-value data in a single SQLite file using WAL mode so the
synchronous identity lookup can read while the async connection is open.
Schema is managed by the packaged SQL migrations.
"""

import asyncio
import logging
import os
import sqlite3
import time
from pathlib import Path
from typing import List, Optional

import aiosqlite

from .base import LocalCacheStore
from ..storage.errors import LocalCacheError
from ..storage.migration_runner import MigrationRunner

logger = logging.getLogger(__name__)


class SqliteLocalCache(LocalCacheStore):
    """SQLite-backed LocalCacheStore."""

    def __init__(self, db_path: str):
        """
        Initialize the SQLite cache.

        Args:
            db_path: Path to the SQLite file (created if it doesn't exist)
        """
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._initialized = False

        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            Path(db_dir).mkdir(parents=True, exist_ok=True)

        logger.info(f"Initialized SQLite local cache at {db_path}")

    async def initialize(self) -> None:
        await self._get_connection()

    async def _get_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            if not self._initialized:
                success, message = await MigrationRunner.packaged().run_migrations_async(self.db_path)
                if not success:
                    raise LocalCacheError(f"Could not prepare local cache schema: {message}")
                logger.debug(f"Local cache schema ready: {message}")
                self._initialized = True
            try:
                self._connection = await aiosqlite.connect(self.db_path)
                await self._connection.execute("PRAGMA journal_mode=WAL")
                await self._connection.execute("PRAGMA busy_timeout=5000")
            except aiosqlite.Error as e:
                raise LocalCacheError(f"Could not open local cache {self.db_path}: {e}") from e
        return self._connection

    async def get_item(self, key: str) -> Optional[str]:
        async with self._lock:
            conn = await self._get_connection()
            try:
                async with conn.execute("SELECT value FROM key_value_store WHERE key = ?", (key,)) as cursor:
                    row = await cursor.fetchone()
            except aiosqlite.Error as e:
                raise LocalCacheError(f"Error reading local key {key!r}: {e}") from e
        return row[0] if row else None

    def get_item_sync(self, key: str) -> Optional[str]:
        if not os.path.exists(self.db_path):
            return None
        try:
            conn = sqlite3.connect(self.db_path, timeout=5)
            try:
                row = conn.execute("SELECT value FROM key_value_store WHERE key = ?", (key,)).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.debug(f"Synchronous read of {key!r} failed: {e}")
            return None
        return row[0] if row else None

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            conn = await self._get_connection()
            try:
                await conn.execute(
                    """
                    INSERT INTO key_value_store (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (key, value, time.time())
                )
                await conn.commit()
            except aiosqlite.Error as e:
                raise LocalCacheError(f"Error writing local key {key!r}: {e}") from e

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            conn = await self._get_connection()
            try:
                await conn.execute("DELETE FROM key_value_store WHERE key = ?", (key,))
                await conn.commit()
            except aiosqlite.Error as e:
                raise LocalCacheError(f"Error removing local key {key!r}: {e}") from e

    async def keys(self) -> List[str]:
        async with self._lock:
            conn = await self._get_connection()
            async with conn.execute("SELECT key FROM key_value_store ORDER BY key") as cursor:
                rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def close(self) -> None:
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("SQLite local cache connection closed")
