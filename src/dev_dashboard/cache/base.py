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
Abstract base class for the local cache store.

The local cache is a small key-value store with the lifetime of the client
installation. The full tool collection lives under a single key as a JSON
array; the remaining keys hold session and migration bookkeeping. The
collection is NOT scoped per identity.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from ..config import SENTINEL_CATEGORY
from ..models.tool import Tool
from ..storage.errors import LocalCacheError
from ..storage.normalizer import from_local_dict, to_local_dict

logger = logging.getLogger(__name__)

TOOLS_KEY = 'dev-dashboard-tools'
TOOLS_BACKUP_KEY = 'dev-dashboard-tools-backup'
SESSION_KEY = 'dev-dashboard-auth-session'
ANONYMOUS_ID_KEY = 'dev-dashboard-anonymous-id'
PREVIOUS_IDS_KEY = 'dev-dashboard-previous-user-ids'
MIGRATION_COMPLETED_KEY = 'migration-completed'


class LocalCacheStore(ABC):
    """
    Key-value persistence on the client.

    Concrete implementations provide raw string storage; the tool collection
    helpers below handle (de)serialization through the schema normalizer.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the store (create schema, open connections)."""
        pass

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """
        Read a raw value.

        Returns:
            Stored string, or None when the key is absent

        Raises:
            LocalCacheError: If the store cannot be read
        """
        pass

    @abstractmethod
    def get_item_sync(self, key: str) -> Optional[str]:
        """
        Synchronous read for callers that cannot await (identity resolution).

        Never raises; an unreadable store is reported as a missing key.
        """
        pass

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """
        Write a raw value.

        Raises:
            LocalCacheError: If the value could not be persisted
        """
        pass

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Delete a key; missing keys are ignored."""
        pass

    @abstractmethod
    async def keys(self) -> List[str]:
        """All keys currently stored."""
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        pass

    async def get_json(self, key: str, default: Any = None) -> Any:
        """Read and decode a JSON value; malformed JSON is logged and yields ``default``."""
        raw = await self.get_item(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Malformed JSON under local key {key!r}: {e}")
            return default

    async def set_json(self, key: str, value: Any) -> None:
        await self.set_item(key, json.dumps(value))

    async def load_tools(self, sentinel: str = SENTINEL_CATEGORY, strict: bool = False) -> List[Tool]:
        """
        Load the cached tool collection, most recent first.

        Entries that cannot be decoded are skipped and a corrupt collection
        reads as empty.

        Args:
            sentinel: Category given to entries that carry none
            strict: Propagate read failures instead of reading as empty.
                Callers that write the collection back must load strictly.

        Raises:
            LocalCacheError: If ``strict`` and the store could not be read
        """
        try:
            data = await self.get_json(TOOLS_KEY, [])
        except LocalCacheError as e:
            if strict:
                raise
            logger.error(f"Error reading tools from local cache: {e}")
            return []

        if not isinstance(data, list):
            logger.error(f"Local tool collection has unexpected type {type(data).__name__}, ignoring it")
            return []

        tools = []
        for entry in data:
            if not isinstance(entry, dict):
                logger.warning(f"Skipping malformed local tool entry: {entry!r}")
                continue
            tools.append(from_local_dict(entry, sentinel))
        return tools

    async def save_tools(self, tools: List[Tool]) -> None:
        """
        Replace the cached tool collection.

        Raises:
            LocalCacheError: If the collection could not be written
        """
        await self.set_json(TOOLS_KEY, [to_local_dict(tool) for tool in tools])

    async def has_tools(self) -> bool:
        return bool(await self.load_tools())
