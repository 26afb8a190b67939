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
Canonical tool model.

A Tool is the in-memory representation every storage path converts to and
from. It is independent of the remote row shape and of the local cache's
JSON shape (see storage.normalizer).
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from ..config import SENTINEL_CATEGORY
from ..storage.errors import ToolValidationError


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _dedupe(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


@dataclass
class ToolDraft:
    """
    Caller-supplied fields for a tool that has not been persisted yet.

    ``category`` is accepted for older callers that only know the legacy
    scalar; it is folded into ``categories`` on canonicalization.

    Example:
        draft = ToolDraft(
            name="Figma",
            url="https://figma.com",
            categories=["Design"],
            tags=["ui", "ux"]
        )
    """
    name: str
    url: str
    description: Optional[str] = None
    notes: Optional[str] = None
    email: Optional[str] = None
    api_key: Optional[str] = None
    favicon: Optional[str] = None
    rating: Optional[float] = None
    tags: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    category: Optional[str] = None
    is_pinned: bool = False
    is_favorite: bool = False
    usage_count: int = 0
    last_used: Optional[datetime] = None

    def validate(self) -> None:
        """
        Check required fields before any backend is contacted.

        Raises:
            ToolValidationError: If name/url are blank or list fields are malformed
        """
        if not isinstance(self.name, str) or not self.name.strip():
            raise ToolValidationError("Tool name is required")
        if not isinstance(self.url, str) or not self.url.strip():
            raise ToolValidationError("Tool url is required")
        if not isinstance(self.tags, list) or not all(isinstance(t, str) for t in self.tags):
            raise ToolValidationError("tags must be a list of strings")
        if not isinstance(self.categories, list) or not all(isinstance(c, str) for c in self.categories):
            raise ToolValidationError("categories must be a list of strings")
        if not isinstance(self.usage_count, int) or self.usage_count < 0:
            raise ToolValidationError(f"usage_count must be a non-negative integer, got {self.usage_count!r}")


@dataclass
class Tool:
    """
    Canonical bookmarked developer tool.

    Invariants:
        - ``categories`` is never empty; the sentinel category stands in
          for "no category".
        - ``category`` always equals ``categories[0]``.
        - ``id`` and ``created_at`` never change after creation.
    """
    id: str
    name: str
    url: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    notes: Optional[str] = None
    email: Optional[str] = None
    api_key: Optional[str] = None
    favicon: Optional[str] = None
    rating: Optional[float] = None
    tags: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    is_pinned: bool = False
    is_favorite: bool = False
    usage_count: int = 0
    last_used: Optional[datetime] = None

    def __post_init__(self):
        self.tags = _dedupe([t for t in (self.tags or []) if t])
        self.categories = _dedupe([c for c in (self.categories or []) if c]) or [SENTINEL_CATEGORY]
        self.usage_count = max(int(self.usage_count or 0), 0)
        if self.updated_at < self.created_at:
            self.updated_at = self.created_at

    @property
    def category(self) -> str:
        """Legacy single-category view kept for older records and callers."""
        return self.categories[0]

    def replace(self, **changes) -> 'Tool':
        """Return a copy with ``changes`` applied; id and created_at are preserved."""
        changes.pop('id', None)
        changes.pop('created_at', None)
        return dataclasses.replace(self, **changes)

    def touch(self, **changes) -> 'Tool':
        """Like replace(), and also refreshes ``updated_at``."""
        changes['updated_at'] = utc_now()
        return self.replace(**changes)
