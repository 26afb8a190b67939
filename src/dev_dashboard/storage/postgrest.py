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
PostgREST storage backend for the tools relation.

Talks to a PostgREST-compatible REST endpoint (``{base_url}/rest/v1``) with
aiohttp and translates HTTP/transport failures into the storage error
taxonomy.
"""

import aiohttp
import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from .base import RemoteToolBackend, Row, Filters
from .errors import (
    UnreachableError,
    SchemaMissingError,
    RemoteOperationError,
    is_missing_relation,
)

logger = logging.getLogger(__name__)


def _encode_filter(value: Any) -> str:
    """Encode an equality filter value in PostgREST syntax."""
    if value is None:
        return 'is.null'
    if isinstance(value, bool):
        return f"eq.{'true' if value else 'false'}"
    return f"eq.{value}"


class PostgrestToolBackend(RemoteToolBackend):
    """
    PostgREST client for the ``tools`` relation.

    Every request carries the project API key; the Authorization header uses
    the signed-in user's access token when one is available so row level
    security applies to that user.
    """

    def __init__(self,
                 base_url: str,
                 api_key: Optional[str] = None,
                 table: str = 'tools',
                 timeout: Optional[float] = None,
                 token_provider: Optional[Callable[[], Optional[str]]] = None):
        """
        Initialize the PostgREST backend.

        Args:
            base_url: Project URL, e.g. https://xyz.supabase.co
            api_key: Public (anon) API key
            table: Name of the tools relation
            timeout: Total request timeout in seconds; None keeps aiohttp's default
            token_provider: Callable returning the current user's access token
        """
        self.base_url = base_url.rstrip('/')
        self.rest_url = f"{self.base_url}/rest/v1"
        self.api_key = api_key
        self.table = table
        self.timeout = aiohttp.ClientTimeout(total=timeout) if timeout else None
        self.token_provider = token_provider
        self.session: Optional[aiohttp.ClientSession] = None

        logger.info(f"Initialized PostgREST backend for: {self.rest_url}/{self.table}")

    async def initialize(self) -> None:
        """Create the HTTP session."""
        if self.session is None or self.session.closed:
            if self.timeout is not None:
                self.session = aiohttp.ClientSession(timeout=self.timeout)
            else:
                self.session = aiohttp.ClientSession()

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        token = self.token_provider() if self.token_provider else None
        headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        }
        if self.api_key:
            headers['apikey'] = self.api_key
        bearer = token or self.api_key
        if bearer:
            headers['Authorization'] = f"Bearer {bearer}"
        if prefer:
            headers['Prefer'] = prefer
        return headers

    @staticmethod
    def _filter_params(filters: Filters) -> Dict[str, str]:
        return {column: _encode_filter(value) for column, value in filters.items()}

    @staticmethod
    def _raise_for_error(status: int, body: str, operation: str):
        """Translate a non-2xx PostgREST response into a storage error."""
        code = None
        message = body or f"HTTP {status}"
        details = None
        try:
            data = json.loads(body) if body else {}
            if isinstance(data, dict):
                code = data.get('code')
                message = data.get('message') or message
                details = data.get('details') or data.get('hint')
        except json.JSONDecodeError:
            pass

        if is_missing_relation(code, message):
            raise SchemaMissingError(f"{operation}: {message}")
        raise RemoteOperationError(f"{operation} failed: {message}", status=status, code=code, details=details)

    async def _request(self, method: str, url: str, operation: str,
                       params: Optional[Dict[str, str]] = None,
                       payload: Any = None,
                       prefer: Optional[str] = None):
        await self.initialize()
        try:
            async with self.session.request(method, url, params=params, json=payload,
                                            headers=self._headers(prefer)) as response:
                body = await response.text()
                if response.status >= 400:
                    self._raise_for_error(response.status, body, operation)
                if not body:
                    return [], response
                try:
                    return json.loads(body), response
                except json.JSONDecodeError as e:
                    raise RemoteOperationError(f"Invalid JSON response during {operation}: {e}",
                                               status=response.status) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UnreachableError(f"Transport error during {operation}: {type(e).__name__}: {e}") from e

    async def ping(self) -> None:
        """Probe the REST root; anything but HTTP 200 means unreachable."""
        await self.initialize()
        params = {'apikey': self.api_key} if self.api_key else None
        try:
            async with self.session.get(f"{self.rest_url}/", params=params,
                                        headers=self._headers()) as response:
                if response.status != 200:
                    raise UnreachableError(f"Reachability probe returned HTTP {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UnreachableError(f"Reachability probe failed: {type(e).__name__}: {e}") from e

    async def probe_relation(self) -> None:
        """Select at most one id from the tools relation."""
        await self._request('GET', f"{self.rest_url}/{self.table}", 'existence probe',
                            params={'select': 'id', 'limit': '1'})

    async def select(self, filters: Filters, columns: str = '*',
                     limit: Optional[int] = None) -> List[Row]:
        params = self._filter_params(filters)
        params['select'] = columns
        params['order'] = 'created_at.desc'
        if limit is not None:
            params['limit'] = str(limit)
        data, _ = await self._request('GET', f"{self.rest_url}/{self.table}", 'select', params=params)
        return data if isinstance(data, list) else [data]

    async def insert(self, rows: List[Row]) -> List[Row]:
        if not rows:
            return []
        data, _ = await self._request('POST', f"{self.rest_url}/{self.table}", 'insert',
                                      payload=rows, prefer='return=representation')
        return data if isinstance(data, list) else [data]

    async def update(self, filters: Filters, values: Row) -> List[Row]:
        data, _ = await self._request('PATCH', f"{self.rest_url}/{self.table}", 'update',
                                      params=self._filter_params(filters), payload=values,
                                      prefer='return=representation')
        return data if isinstance(data, list) else [data]

    async def delete(self, filters: Filters) -> List[Row]:
        data, _ = await self._request('DELETE', f"{self.rest_url}/{self.table}", 'delete',
                                      params=self._filter_params(filters),
                                      prefer='return=representation')
        return data if isinstance(data, list) else [data]

    async def count(self, filters: Filters) -> int:
        """Count rows using PostgREST's exact count header."""
        params = self._filter_params(filters)
        params['select'] = 'id'
        params['limit'] = '1'
        data, response = await self._request('GET', f"{self.rest_url}/{self.table}", 'count',
                                             params=params, prefer='count=exact')
        content_range = response.headers.get('Content-Range', '')
        total = content_range.rsplit('/', 1)[-1] if '/' in content_range else ''
        if total.isdigit():
            return int(total)
        # Servers without count support: fall back to a full id scan
        return await super().count(filters)

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": "postgrest",
            "url": self.rest_url,
            "table": self.table,
            "authenticated": bool(self.token_provider and self.token_provider()),
        }

    async def close(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
            logger.info("PostgREST backend connection closed")
