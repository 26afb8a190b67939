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
Persistence gateway for the tool collection.

Every operation probes the remote backend, runs against it when available
and degrades to the local cache when it is unavailable or fails. Callers
always get canonical Tool objects back. Only ToolValidationError (raised
before any backend is touched) and LocalCacheError (the fallback itself
failed) propagate.
"""

import dataclasses
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from ..cache.base import LocalCacheStore
from ..config import SENTINEL_CATEGORY
from ..models.tool import Tool, ToolDraft, utc_now
from ..storage.availability import AvailabilityProber, AvailabilityResult
from ..storage.base import RemoteToolBackend
from ..storage.errors import (
    RemoteOperationError,
    SchemaMissingError,
    ToolValidationError,
    UnreachableError,
)
from ..storage.normalizer import (
    CategoryEncoding,
    canonicalize,
    classify_categories,
    format_timestamp,
    from_remote_row,
    normalize_categories,
    to_remote_insert,
    to_remote_update,
)
from .identity import IdentityResolver

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Remote errors recovered by falling back to the local cache
RECOVERABLE_ERRORS = (UnreachableError, SchemaMissingError, RemoteOperationError)

# Returned by a remote call when the record is not stored remotely
_NOT_FOUND = object()


@dataclass
class RepairReport:
    """Outcome of a categories column repair run."""
    updated: int = 0
    total: int = 0
    already_normalized: bool = False
    skipped_reason: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.skipped_reason is None and self.updated == self.total


class ToolService:
    """
    Remote-first, local-fallback CRUD and usage tracking for tools.

    All operations are scoped to the identity returned by the
    IdentityResolver at call time.
    """

    def __init__(self,
                 cache: LocalCacheStore,
                 remote: Optional[RemoteToolBackend] = None,
                 identity: Optional[IdentityResolver] = None,
                 prober: Optional[AvailabilityProber] = None,
                 sentinel: str = SENTINEL_CATEGORY):
        self.cache = cache
        self.remote = remote
        self.identity = identity or IdentityResolver(cache)
        self.prober = prober or AvailabilityProber(remote)
        self.sentinel = sentinel

    async def initialize(self) -> None:
        await self.cache.initialize()
        if self.remote:
            await self.remote.initialize()

    async def close(self) -> None:
        if self.remote:
            await self.remote.close()
        await self.cache.close()

    async def check_availability(self) -> AvailabilityResult:
        return await self.prober.check_availability()

    # ------------------------------------------------------------------
    # Fallback combinator
    # ------------------------------------------------------------------

    async def _attempt_remote(self,
                              operation: str,
                              remote_call: Callable[[], Awaitable[Any]],
                              local_call: Callable[[], Awaitable[T]],
                              availability: Optional[AvailabilityResult] = None) -> T:
        """
        Run ``remote_call`` when the backend is available, else ``local_call``.

        Recoverable remote errors, and remote calls reporting that the record
        is not stored remotely, are answered by ``local_call``. Errors from
        ``local_call`` propagate.
        """
        if availability is None:
            availability = await self.check_availability()

        if not availability:
            logger.info(f"{operation}: remote unavailable ({availability.reason}), using local cache")
            return await local_call()

        try:
            result = await remote_call()
        except RECOVERABLE_ERRORS as e:
            logger.warning(
                f"{operation} failed remotely for user {self.identity.get_user_id()}, "
                f"falling back to local cache: {type(e).__name__}: {e}"
            )
            return await local_call()

        if result is _NOT_FOUND:
            logger.debug(f"{operation}: record not stored remotely, trying local cache")
            return await local_call()
        return result

    def _owner_filter(self, tool_id: Optional[str] = None) -> Dict[str, Any]:
        filters = {'user_id': self.identity.get_user_id()}
        if tool_id is not None:
            filters['id'] = tool_id
        return filters

    def _to_tool(self, row: Dict[str, Any]) -> Tool:
        return from_remote_row(row, self.sentinel)

    async def _fetch_remote_row(self, tool_id: str) -> Optional[Dict[str, Any]]:
        rows = await self.remote.select(self._owner_filter(tool_id), limit=1)
        return rows[0] if rows else None

    async def _update_remote_row(self, tool_id: str, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Update one owned row.

        Legacy deployments declared ``categories`` as a text/json column; a
        type mismatch there is retried once with the array JSON-encoded.
        """
        filters = self._owner_filter(tool_id)
        try:
            return await self.remote.update(filters, values)
        except RemoteOperationError as e:
            if 'categories' not in values or not e.is_column_type_error:
                raise
            logger.warning(f"categories column rejected an array for tool {tool_id}, retrying as JSON text: {e}")
            retry_values = dict(values, categories=json.dumps(values['categories']))
            return await self.remote.update(filters, retry_values)

    # ------------------------------------------------------------------
    # Local cache primitives
    # ------------------------------------------------------------------

    async def _local_get(self, tool_id: str) -> Optional[Tool]:
        for tool in await self.cache.load_tools(self.sentinel):
            if tool.id == tool_id:
                return tool
        return None

    async def _local_prepend(self, new_tools: List[Tool]) -> List[Tool]:
        tools = await self.cache.load_tools(self.sentinel, strict=True)
        await self.cache.save_tools(list(new_tools) + tools)
        return list(new_tools)

    async def _local_mutate(self, tool_id: str,
                            mutate: Callable[[Tool], Optional[Tool]]) -> Optional[Tool]:
        """
        Apply ``mutate`` to the cached copy of a tool.

        ``mutate`` returns the replacement, or None to leave the cache
        untouched. Returns the resulting tool, or None if it is not cached.
        The stored id and created_at always survive the replacement.
        """
        tools = await self.cache.load_tools(self.sentinel, strict=True)
        for index, tool in enumerate(tools):
            if tool.id != tool_id:
                continue
            updated = mutate(tool)
            if updated is None:
                return tool
            updated = dataclasses.replace(updated, id=tool.id, created_at=tool.created_at)
            tools[index] = updated
            await self.cache.save_tools(tools)
            return updated
        logger.info(f"Tool {tool_id} not found in local cache")
        return None

    async def _local_delete(self, tool_id: str) -> bool:
        tools = await self.cache.load_tools(self.sentinel, strict=True)
        remaining = [tool for tool in tools if tool.id != tool_id]
        if len(remaining) == len(tools):
            return False
        await self.cache.save_tools(remaining)
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_all(self) -> List[Tool]:
        """All tools owned by the current identity, most recent first."""
        async def remote():
            rows = await self.remote.select(self._owner_filter())
            return [self._to_tool(row) for row in rows]

        return await self._attempt_remote('get_all', remote,
                                         lambda: self.cache.load_tools(self.sentinel))

    async def get_by_id(self, tool_id: str) -> Optional[Tool]:
        """A single tool, or None if neither backend has it."""
        async def remote():
            row = await self._fetch_remote_row(tool_id)
            return self._to_tool(row) if row else _NOT_FOUND

        return await self._attempt_remote(f'get_by_id({tool_id})', remote,
                                          lambda: self._local_get(tool_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, draft: ToolDraft) -> Tool:
        """
        Create a tool with a fresh id and timestamps.

        Raises:
            ToolValidationError: If the draft is invalid (no backend is contacted)
        """
        tool = canonicalize(draft, self.sentinel)

        async def remote():
            rows = await self.remote.insert([to_remote_insert(tool, self.identity.get_user_id(), self.sentinel)])
            return self._to_tool(rows[0]) if rows else tool

        async def local():
            await self._local_prepend([tool])
            return tool

        created = await self._attempt_remote(f'create({tool.name})', remote, local)
        logger.info(f"Created tool {created.id} ({created.name})")
        return created

    async def create_many(self, drafts: List[ToolDraft]) -> List[Tool]:
        """
        Create several tools in one batch.

        The whole batch lands in exactly one backend: a remote failure
        writes every tool of the batch to the local cache.
        """
        tools = [canonicalize(draft, self.sentinel) for draft in drafts]
        if not tools:
            return []

        async def remote():
            user_id = self.identity.get_user_id()
            rows = await self.remote.insert([to_remote_insert(tool, user_id, self.sentinel) for tool in tools])
            if len(rows) != len(tools):
                logger.warning(f"Remote batch insert returned {len(rows)} of {len(tools)} rows")
            return [self._to_tool(row) for row in rows] if rows else tools

        created = await self._attempt_remote(f'create_many({len(tools)})', remote,
                                             lambda: self._local_prepend(tools))
        logger.info(f"Created {len(created)} tools")
        return created

    async def update(self, tool: Tool) -> Optional[Tool]:
        """
        Replace a stored tool with ``tool``; refreshes ``updated_at``.

        Returns:
            The stored tool, or None when neither backend has it
        """
        if not tool.name or not tool.name.strip() or not tool.url or not tool.url.strip():
            raise ToolValidationError("Tool name and url are required")
        updated = tool.touch()

        async def remote():
            rows = await self._update_remote_row(updated.id, to_remote_update(updated, self.identity.get_user_id()))
            return self._to_tool(rows[0]) if rows else _NOT_FOUND

        return await self._attempt_remote(f'update({tool.id})', remote,
                                          lambda: self._local_mutate(tool.id, lambda _: updated))

    async def _toggle(self, tool_id: str, attribute: str, column: str) -> Optional[Tool]:
        async def remote():
            row = await self._fetch_remote_row(tool_id)
            if row is None:
                return _NOT_FOUND
            current = self._to_tool(row)
            flipped = current.touch(**{attribute: not getattr(current, attribute)})
            rows = await self._update_remote_row(tool_id, {
                column: getattr(flipped, attribute),
                'updated_at': format_timestamp(flipped.updated_at),
            })
            return self._to_tool(rows[0]) if rows else flipped

        def flip(tool: Tool) -> Tool:
            return tool.touch(**{attribute: not getattr(tool, attribute)})

        return await self._attempt_remote(f'toggle {attribute}({tool_id})', remote,
                                          lambda: self._local_mutate(tool_id, flip))

    async def toggle_pin(self, tool_id: str) -> Optional[Tool]:
        """Flip ``is_pinned``; None when the tool is not found."""
        return await self._toggle(tool_id, 'is_pinned', 'is_pinned')

    async def toggle_favorite(self, tool_id: str) -> Optional[Tool]:
        """Flip ``is_favorite``; None when the tool is not found."""
        return await self._toggle(tool_id, 'is_favorite', 'is_favorite')

    async def track_usage(self, tool_id: str) -> Optional[Tool]:
        """Record a launch: ``usage_count`` + 1 and ``last_used`` = now."""
        async def remote():
            row = await self._fetch_remote_row(tool_id)
            if row is None:
                return _NOT_FOUND
            current = self._to_tool(row)
            now = utc_now()
            used = current.replace(usage_count=current.usage_count + 1, last_used=now, updated_at=now)
            rows = await self._update_remote_row(tool_id, {
                'usage_count': used.usage_count,
                'last_used': format_timestamp(now),
                'updated_at': format_timestamp(now),
            })
            return self._to_tool(rows[0]) if rows else used

        def launch(tool: Tool) -> Tool:
            now = utc_now()
            return tool.replace(usage_count=tool.usage_count + 1, last_used=now, updated_at=now)

        return await self._attempt_remote(f'track_usage({tool_id})', remote,
                                          lambda: self._local_mutate(tool_id, launch))

    def _with_category(self, tool: Tool, category: str) -> Optional[List[str]]:
        if category in tool.categories:
            return None
        if tool.categories == [self.sentinel]:
            return [category]
        return tool.categories + [category]

    def _without_category(self, tool: Tool, category: str) -> Optional[List[str]]:
        if category not in tool.categories:
            return None
        remaining = [c for c in tool.categories if c != category] or [self.sentinel]
        return None if remaining == tool.categories else remaining

    async def _change_categories(self, tool_id: str, category: str, operation: str,
                                 compute: Callable[[Tool, str], Optional[List[str]]]) -> Optional[Tool]:
        category = (category or '').strip()
        if not category:
            raise ToolValidationError("Category name is required")

        async def remote():
            row = await self._fetch_remote_row(tool_id)
            if row is None:
                return _NOT_FOUND
            current = self._to_tool(row)
            categories = compute(current, category)
            if categories is None:
                logger.debug(f"{operation}: tool {tool_id} already consistent for {category!r}, no write")
                return current
            changed = current.touch(categories=categories)
            rows = await self._update_remote_row(tool_id, {
                'categories': categories,
                'category': categories[0],
                'updated_at': format_timestamp(changed.updated_at),
            })
            return self._to_tool(rows[0]) if rows else changed

        def local_change(tool: Tool) -> Optional[Tool]:
            categories = compute(tool, category)
            return None if categories is None else tool.touch(categories=categories)

        return await self._attempt_remote(f'{operation}({tool_id}, {category})', remote,
                                          lambda: self._local_mutate(tool_id, local_change))

    async def add_to_category(self, tool_id: str, category: str) -> Optional[Tool]:
        """
        Add ``category`` to a tool. Idempotent: no write if already present.

        A tool sitting only in the sentinel category moves out of it.
        """
        return await self._change_categories(tool_id, category, 'add_to_category', self._with_category)

    async def remove_from_category(self, tool_id: str, category: str) -> Optional[Tool]:
        """Remove ``category``; the sentinel category replaces an emptied list."""
        return await self._change_categories(tool_id, category, 'remove_from_category', self._without_category)

    async def delete(self, tool_id: str) -> bool:
        """
        Permanently delete a tool.

        The local copy is removed whatever happens remotely so a deleted
        tool cannot come back from the cache.

        Returns:
            True if either backend held the tool
        """
        async def remote():
            deleted = await self.remote.delete(self._owner_filter(tool_id))
            removed_locally = await self._local_delete(tool_id)
            return bool(deleted) or removed_locally

        removed = await self._attempt_remote(f'delete({tool_id})', remote, lambda: self._local_delete(tool_id))
        if removed:
            logger.info(f"Deleted tool {tool_id}")
        return removed

    # ------------------------------------------------------------------
    # Copy-forward primitive (used by reconciliation and local migration)
    # ------------------------------------------------------------------

    async def copy_to_remote(self, tools: List[Tool], owner_id: str, atomic: bool = False) -> int:
        """
        Insert copies of ``tools`` remotely under ``owner_id`` with fresh ids.

        Args:
            tools: Tools to copy
            owner_id: Identity that will own the copies
            atomic: Insert in one request and raise on failure; otherwise
                insert one by one, logging and skipping failures

        Returns:
            Number of tools copied
        """
        if self.remote is None or not tools:
            return 0

        rows = []
        for tool in tools:
            row = to_remote_insert(tool, owner_id, self.sentinel)
            row['id'] = str(uuid.uuid4())
            rows.append(row)

        if atomic:
            await self.remote.insert(rows)
            return len(rows)

        copied = 0
        for row in rows:
            try:
                await self.remote.insert([row])
                copied += 1
            except RECOVERABLE_ERRORS as e:
                logger.error(f"Error copying tool {row.get('title')!r} to user {owner_id}: {e}")
        return copied

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def normalize_categories_column_if_needed(self) -> RepairReport:
        """
        Repair ``categories`` values stored in a non-array encoding.

        Looks at one sample row; if it already holds an array nothing is
        written. Otherwise every row of the current identity is rewritten
        with a normalized array. Row failures are logged and counted.
        """
        availability = await self.check_availability()
        if not availability:
            logger.info(f"Remote unavailable ({availability.reason}), cannot check categories column")
            return RepairReport(skipped_reason=availability.reason)

        user_id = self.identity.get_user_id()
        try:
            sample = await self.remote.select({'user_id': user_id}, columns='categories', limit=1)
        except RECOVERABLE_ERRORS as e:
            logger.error(f"Error getting sample tool for categories check: {e}")
            return RepairReport(skipped_reason=str(e))

        if not sample or classify_categories(sample[0].get('categories')).encoding is CategoryEncoding.ARRAY:
            logger.info("Categories column already holds arrays, no repair needed")
            return RepairReport(already_normalized=True)

        try:
            rows = await self.remote.select({'user_id': user_id}, columns='id,categories,category')
        except RECOVERABLE_ERRORS as e:
            logger.error(f"Error listing tools for categories repair: {e}")
            return RepairReport(skipped_reason=str(e))

        report = RepairReport(total=len(rows))
        logger.info(f"Repairing categories on {len(rows)} tools for user {user_id}")

        for row in rows:
            raw = row.get('categories')
            categories = normalize_categories(raw, row.get('category'), self.sentinel)
            if classify_categories(raw).encoding is CategoryEncoding.ARRAY and raw == categories:
                report.updated += 1
                continue
            try:
                await self.remote.update({'user_id': user_id, 'id': row.get('id')}, {
                    'categories': categories,
                    'category': categories[0],
                    'updated_at': format_timestamp(utc_now()),
                })
                report.updated += 1
            except RECOVERABLE_ERRORS as e:
                logger.error(f"Error repairing categories of tool {row.get('id')}: {e}")

        logger.info(f"Repaired categories on {report.updated} out of {report.total} tools")
        return report

    async def test_connection(self) -> Dict[str, Any]:
        """Probe the remote backend and describe the outcome."""
        availability = await self.check_availability()
        return {
            'success': availability.available,
            'needs_setup': availability.needs_setup,
            'degraded': availability.degraded,
            'reason': availability.reason,
            'detail': availability.detail,
            'user_id': self.identity.get_user_id(),
            'remote': self.remote.describe() if self.remote else None,
        }

    async def run_diagnostics(self) -> Dict[str, Any]:
        """
        Collect facts useful when the remote table misbehaves.

        Never raises; remote failures are reported in the result.
        """
        user_id = self.identity.get_user_id()
        local_tools = await self.cache.load_tools(self.sentinel)
        report: Dict[str, Any] = {
            'user_id': user_id,
            'local_tools': len(local_tools),
            'local_keys': await self.cache.keys(),
            'connection': await self.test_connection(),
        }

        if not report['connection']['success']:
            return report

        try:
            sample = await self.remote.select({'user_id': user_id}, limit=1)
            report['column_types'] = {
                column: (type(value).__name__ if value is not None else 'null')
                for column, value in (sample[0].items() if sample else [])
            }
            report['remote_tools'] = await self.remote.count({'user_id': user_id})
        except RECOVERABLE_ERRORS as e:
            logger.error(f"Diagnostics query failed: {e}")
            report['error'] = str(e)

        return report


async def create_tool_service(local_backend: Optional[str] = None,
                              db_path: Optional[str] = None,
                              remote_url: Optional[str] = None,
                              api_key: Optional[str] = None) -> ToolService:
    """
    Build and initialize a ToolService from arguments and configuration.

    Args:
        local_backend: "sqlite" or "memory" (DEV_DASHBOARD_LOCAL_BACKEND)
        db_path: SQLite path for the local cache (DEV_DASHBOARD_LOCAL_PATH)
        remote_url: PostgREST URL (DEV_DASHBOARD_REMOTE_URL)
        api_key: Public API key (DEV_DASHBOARD_REMOTE_KEY)
    """
    from ..cache.factory import create_local_cache
    from ..storage.factory import create_remote_backend

    cache = create_local_cache(local_backend, db_path=db_path)
    identity = IdentityResolver(cache)
    remote = create_remote_backend(remote_url, api_key, token_provider=identity.get_access_token)

    service = ToolService(cache, remote=remote, identity=identity)
    await service.initialize()
    logger.info(f"Tool service ready (remote: {'yes' if remote else 'no'})")
    return service
