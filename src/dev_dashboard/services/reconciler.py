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
Recovery of records stranded under an earlier identity.

Records created while signed out live remotely under ``"anonymous"`` (or
only in the local cache). After sign-in they are copied forward to the
current identity. Sources are never deleted, so every step can be retried
safely; a reconcile is skipped as soon as the current identity owns any
record.
"""

import json
import logging
from dataclasses import dataclass
from typing import List, Optional

from ..cache.base import ANONYMOUS_ID_KEY, MIGRATION_COMPLETED_KEY, TOOLS_BACKUP_KEY, TOOLS_KEY
from ..config import ANONYMOUS_USER_ID, LEGACY_SENTINEL_CATEGORY
from ..models.tool import Tool
from ..storage.errors import ToolStoreError
from ..storage.normalizer import from_local_dict, from_remote_row
from .tool_service import ToolService

logger = logging.getLogger(__name__)


class MigrationReconciler:
    """Copies records from previous identities to the current one."""

    def __init__(self, service: ToolService):
        self.service = service
        self.last_copied = 0

    async def _owns_records(self, user_id: str) -> bool:
        rows = await self.service.remote.select({'user_id': user_id}, columns='id', limit=1)
        return bool(rows)

    async def _candidate_identities(self, current: str) -> List[str]:
        identity = self.service.identity
        anonymous_id = await self.service.cache.get_item(ANONYMOUS_ID_KEY) or ANONYMOUS_USER_ID
        if anonymous_id != current:
            await identity.remember_identity(anonymous_id)
        return [user_id for user_id in await identity.previous_user_ids() if user_id != current]

    async def reconcile_anonymous_data(self) -> bool:
        """
        Copy stranded records to the current identity.

        Order of sources: the local cache first, then each previously seen
        identity; the first source that yields records ends the run.

        Returns:
            True if any records were copied. Never raises.
        """
        self.last_copied = 0
        current = self.service.identity.get_user_id()

        if current == ANONYMOUS_USER_ID:
            logger.debug("Not signed in, nothing to reconcile")
            return False

        availability = await self.service.check_availability()
        if not availability:
            logger.info(f"Remote unavailable ({availability.reason}), skipping reconciliation")
            return False

        try:
            if await self._owns_records(current):
                logger.info(f"User {current} already owns tools, skipping reconciliation")
                return False

            candidates = await self._candidate_identities(current)
            logger.info(f"Reconciling tools for user {current}; previous identities: {candidates}")

            local_tools = await self.service.cache.load_tools(self.service.sentinel)
            if local_tools:
                self.last_copied = await self.service.copy_to_remote(local_tools, current)
                logger.info(f"Copied {self.last_copied} of {len(local_tools)} cached tools to user {current}")
                return self.last_copied > 0

            for previous in candidates:
                try:
                    rows = await self.service.remote.select({'user_id': previous})
                except ToolStoreError as e:
                    logger.error(f"Error reading tools of previous user {previous}: {e}")
                    continue

                if not rows:
                    continue

                tools = [from_remote_row(row, self.service.sentinel) for row in rows]
                self.last_copied = await self.service.copy_to_remote(tools, current)
                logger.info(f"Copied {self.last_copied} of {len(tools)} tools from user {previous} to {current}")
                return self.last_copied > 0

            logger.info("No stranded tools found")
            return False

        except ToolStoreError as e:
            logger.error(f"Error reconciling tools for user {current}: {e}")
            return False


@dataclass
class MigrationResult:
    success: bool
    count: int = 0
    error: Optional[str] = None


class LocalMigration:
    """
    One-shot upload of a local-only collection to the remote backend.

    Used by installations that kept their tools in the local cache before
    a remote backend existed. Tools whose URL already exists remotely are
    skipped. On success the local collection is backed up and the
    migration is flagged as done.
    """

    def __init__(self, service: ToolService):
        self.service = service

    async def _legacy_local_tools(self) -> List[Tool]:
        data = await self.service.cache.get_json(TOOLS_KEY, [])
        if not isinstance(data, list):
            return []
        return [from_local_dict(entry, LEGACY_SENTINEL_CATEGORY) for entry in data if isinstance(entry, dict)]

    async def is_completed(self) -> bool:
        return await self.service.cache.get_item(MIGRATION_COMPLETED_KEY) == 'true'

    async def check_migration_needed(self) -> bool:
        """True when local tools exist and the remote collection has fewer."""
        if await self.is_completed():
            return False

        local_tools = await self._legacy_local_tools()
        if not local_tools:
            return False

        availability = await self.service.check_availability()
        if not availability:
            return False

        try:
            remote_count = await self.service.remote.count({'user_id': self.service.identity.get_user_id()})
        except ToolStoreError as e:
            logger.error(f"Error checking migration status: {e}")
            return False
        return remote_count < len(local_tools)

    async def migrate(self) -> MigrationResult:
        """Upload local tools whose URL is not yet stored remotely."""
        availability = await self.service.check_availability()
        if not availability:
            return MigrationResult(False, error=f"Remote backend unavailable ({availability.reason})")

        local_tools = await self._legacy_local_tools()
        if not local_tools:
            return MigrationResult(True, 0)

        user_id = self.service.identity.get_user_id()
        try:
            rows = await self.service.remote.select({'user_id': user_id}, columns='url')
            existing_urls = {row.get('url') for row in rows}
            pending = [tool for tool in local_tools if tool.url not in existing_urls]

            if not pending:
                logger.info("All local tools already exist remotely")
            else:
                await self.service.copy_to_remote(pending, user_id, atomic=True)
                logger.info(f"Migrated {len(pending)} local tools to user {user_id}")

            raw = await self.service.cache.get_item(TOOLS_KEY)
            if raw is not None:
                await self.service.cache.set_item(TOOLS_BACKUP_KEY, raw)
            await self.service.cache.set_item(MIGRATION_COMPLETED_KEY, json.dumps(True))
            return MigrationResult(True, len(pending))

        except ToolStoreError as e:
            logger.error(f"Error migrating local tools: {e}")
            return MigrationResult(False, error=str(e))
