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
In-memory local cache store.

Contents are lost when the process exits. Useful for tests and for
ephemeral sessions that should not leave anything on disk.
"""

import asyncio
from typing import Dict, List, Optional

from .base import LocalCacheStore


class MemoryLocalCache(LocalCacheStore):
    """Dictionary-backed LocalCacheStore."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        pass

    async def get_item(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._items.get(key)

    def get_item_sync(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            self._items[key] = value

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            self._items.pop(key, None)

    async def keys(self) -> List[str]:
        async with self._lock:
            return sorted(self._items)
