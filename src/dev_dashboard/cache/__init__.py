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

"""Local fallback store for the tool collection."""

from .base import (
    LocalCacheStore,
    TOOLS_KEY,
    TOOLS_BACKUP_KEY,
    SESSION_KEY,
    ANONYMOUS_ID_KEY,
    PREVIOUS_IDS_KEY,
    MIGRATION_COMPLETED_KEY,
)
from .memory import MemoryLocalCache
from .sqlite import SqliteLocalCache
from .factory import create_local_cache

__all__ = [
    'LocalCacheStore',
    'MemoryLocalCache',
    'SqliteLocalCache',
    'create_local_cache',
    'TOOLS_KEY',
    'TOOLS_BACKUP_KEY',
    'SESSION_KEY',
    'ANONYMOUS_ID_KEY',
    'PREVIOUS_IDS_KEY',
    'MIGRATION_COMPLETED_KEY',
]
