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
Abstract interface for the remote tools backend.

Backends deal in raw rows (dicts keyed by column name). Conversion to and
from the canonical Tool lives in storage.normalizer, so a backend never
needs to know about historical column encodings.

Every method raises one of the errors in storage.errors on failure instead
of returning sentinel values, so callers can decide whether to fall back.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

Row = Dict[str, Any]
Filters = Dict[str, Any]


class RemoteToolBackend(ABC):
    """Row-level access to the remote ``tools`` relation."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (open sessions, etc.). Must not probe the network."""
        pass

    @abstractmethod
    async def ping(self) -> None:
        """
        Lightweight reachability probe.

        Raises:
            UnreachableError: If the endpoint does not answer with HTTP 200
        """
        pass

    @abstractmethod
    async def probe_relation(self) -> None:
        """
        Minimal existence probe against the tools relation.

        Raises:
            SchemaMissingError: If the relation does not exist
            RemoteOperationError: For any other remote error
            UnreachableError: On transport failure
        """
        pass

    @abstractmethod
    async def select(self, filters: Filters, columns: str = '*',
                     limit: Optional[int] = None) -> List[Row]:
        """
        Select rows matching all equality ``filters``.

        Args:
            filters: Column -> value equality filters (ANDed)
            columns: Comma-separated column list
            limit: Optional maximum number of rows

        Returns:
            Matching rows, newest first
        """
        pass

    @abstractmethod
    async def insert(self, rows: List[Row]) -> List[Row]:
        """Insert rows in one request; returns the stored rows."""
        pass

    @abstractmethod
    async def update(self, filters: Filters, values: Row) -> List[Row]:
        """Update rows matching ``filters``; returns the updated rows."""
        pass

    @abstractmethod
    async def delete(self, filters: Filters) -> List[Row]:
        """Delete rows matching ``filters``; returns the deleted rows."""
        pass

    async def count(self, filters: Filters) -> int:
        """Count rows matching ``filters``."""
        rows = await self.select(filters, columns='id')
        return len(rows)

    def describe(self) -> Dict[str, Any]:
        """Static description of this backend for diagnostics."""
        return {"backend": self.__class__.__name__}

    async def close(self) -> None:
        """Release any resources held by the backend."""
        pass
