import copy
import os
import sys
import uuid
from typing import Any, Dict, List, Optional

import pytest

# Add src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

from dev_dashboard.cache.base import SESSION_KEY
from dev_dashboard.cache.memory import MemoryLocalCache
from dev_dashboard.models.tool import ToolDraft
from dev_dashboard.services.identity import IdentityResolver
from dev_dashboard.services.tool_service import ToolService
from dev_dashboard.storage.base import RemoteToolBackend
from dev_dashboard.storage.errors import (
    RemoteOperationError,
    SchemaMissingError,
    UnreachableError,
)


class FakeRemoteBackend(RemoteToolBackend):
    """
    In-memory stand-in for the PostgREST backend.

    Flags switch on the failure modes the service has to survive:
    ``reachable``, ``schema_missing``, ``probe_error`` (degraded probe),
    ``fail_operations`` (names of CRUD calls that raise) and
    ``reject_array_categories`` (legacy text/json ``categories`` column).
    """

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self.rows: List[Dict[str, Any]] = [dict(r) for r in (rows or [])]
        self.reachable = True
        self.schema_missing = False
        self.probe_error = False
        self.fail_operations = set()
        self.reject_array_categories = False
        self.calls: List[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if not self.reachable:
            raise UnreachableError("connection refused")
        if operation in self.fail_operations:
            raise RemoteOperationError(f"{operation} failed", status=500)

    async def initialize(self) -> None:
        pass

    @staticmethod
    def _matches(row, filters) -> bool:
        return all(row.get(key) == value for key, value in filters.items())

    async def ping(self) -> None:
        self.calls.append('ping')
        if not self.reachable:
            raise UnreachableError("connection refused")

    async def probe_relation(self) -> None:
        self.calls.append('probe')
        if self.schema_missing:
            raise SchemaMissingError('relation "public.tools" does not exist')
        if self.probe_error:
            raise RemoteOperationError("permission denied for table tools", status=403, code='42501')

    async def select(self, filters, columns='*', limit=None):
        self._check('select')
        rows = sorted((r for r in self.rows if self._matches(r, filters)),
                      key=lambda r: r.get('created_at') or '', reverse=True)
        if limit is not None:
            rows = rows[:limit]
        if columns != '*':
            wanted = [c.strip() for c in columns.split(',')]
            rows = [{c: r.get(c) for c in wanted} for r in rows]
        return copy.deepcopy(rows)

    async def insert(self, rows):
        self._check('insert')
        stored = []
        for row in rows:
            row = copy.deepcopy(row)
            row.setdefault('id', str(uuid.uuid4()))
            self.rows.append(row)
            stored.append(copy.deepcopy(row))
        return stored

    async def update(self, filters, values):
        self._check('update')
        if self.reject_array_categories and isinstance(values.get('categories'), list):
            raise RemoteOperationError(
                'column "categories" is of type jsonb but expression is of type text[]',
                status=400, code='42804')
        updated = []
        for row in self.rows:
            if self._matches(row, filters):
                row.update(copy.deepcopy(values))
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, filters):
        self._check('delete')
        removed = [r for r in self.rows if self._matches(r, filters)]
        self.rows = [r for r in self.rows if not self._matches(r, filters)]
        return removed

    def describe(self):
        return {"backend": "fake", "url": "fake://tools"}

    def rows_for(self, user_id: str) -> List[Dict[str, Any]]:
        return [r for r in self.rows if r.get('user_id') == user_id]


def make_row(user_id='user-1', title='Tool', url='https://example.com', **extra) -> Dict[str, Any]:
    """Build a remote ``tools`` row the way the table stores it."""
    row = {
        'id': str(uuid.uuid4()),
        'user_id': user_id,
        'title': title,
        'url': url,
        'description': '',
        'category': 'Other',
        'categories': ['Other'],
        'tags': [],
        'is_favorite': False,
        'is_pinned': False,
        'usage_count': 0,
        'last_used': None,
        'created_at': '2024-01-01T00:00:00+00:00',
        'updated_at': '2024-01-01T00:00:00+00:00',
    }
    row.update(extra)
    return row


@pytest.fixture
def remote():
    return FakeRemoteBackend()


@pytest.fixture
def cache():
    return MemoryLocalCache()


@pytest.fixture
def signed_in_cache(cache):
    """Memory cache holding a session for ``user-1``."""
    cache._items[SESSION_KEY] = '{"user": {"id": "user-1"}, "access_token": "token-1"}'
    return cache


@pytest.fixture
def service(remote, signed_in_cache):
    return ToolService(signed_in_cache, remote=remote, identity=IdentityResolver(signed_in_cache))


@pytest.fixture
def local_only_service(signed_in_cache):
    return ToolService(signed_in_cache, remote=None)


@pytest.fixture
def draft():
    def _make(name='GitHub', url='https://github.com', **fields) -> ToolDraft:
        return ToolDraft(name=name, url=url, **fields)
    return _make


@pytest.fixture(name='make_row')
def make_row_fixture():
    return make_row
