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
Factory for creating local cache store instances.

Supported backends: "sqlite" (default, persistent) and "memory".
"""

import logging
from typing import Optional

from .base import LocalCacheStore
from .memory import MemoryLocalCache
from .sqlite import SqliteLocalCache

logger = logging.getLogger(__name__)


def create_local_cache(backend_type: Optional[str] = None, **kwargs) -> LocalCacheStore:
    """
    Create a local cache store.

    Args:
        backend_type: "sqlite" or "memory"; defaults to DEV_DASHBOARD_LOCAL_BACKEND
        **kwargs: Backend-specific options
                 - db_path: SQLite database path (for "sqlite"; defaults to DEV_DASHBOARD_LOCAL_PATH)

    Returns:
        LocalCacheStore instance of the requested type

    Raises:
        ValueError: If backend_type is unsupported

    Examples:
        cache = create_local_cache("memory")
        cache = create_local_cache("sqlite", db_path="./data/local_cache.db")
    """
    from ..config import LOCAL_BACKEND, LOCAL_PATH

    backend = (backend_type or LOCAL_BACKEND).lower()

    if backend == "memory":
        logger.info("Creating in-memory local cache")
        return MemoryLocalCache()

    elif backend == "sqlite":
        db_path = kwargs.get("db_path") or LOCAL_PATH
        logger.info(f"Creating SQLite local cache at {db_path}")
        return SqliteLocalCache(db_path=db_path)

    else:
        raise ValueError(
            f"Unsupported local cache backend: {backend_type}. "
            f"Supported backends: memory, sqlite"
        )
