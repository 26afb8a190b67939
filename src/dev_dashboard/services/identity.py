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
Identity resolution for storage scoping.

The owner identifier comes from the persisted session written by the
authentication layer. With no session the sentinel ``"anonymous"`` is used;
that is a valid scoping key, and records created under it are picked up
later by the migration reconciler.
"""

import json
import logging
from typing import List, Optional

from ..cache.base import LocalCacheStore, SESSION_KEY, ANONYMOUS_ID_KEY, PREVIOUS_IDS_KEY
from ..config import ANONYMOUS_USER_ID

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Reads (and, for the auth layer, writes) the persisted session."""

    def __init__(self, cache: LocalCacheStore):
        self.cache = cache

    def _read_session(self) -> Optional[dict]:
        raw = self.cache.get_item_sync(SESSION_KEY)
        if not raw:
            return None
        try:
            session = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.error(f"Error parsing stored session, treating as signed out: {e}")
            return None
        return session if isinstance(session, dict) else None

    def get_user_id(self) -> str:
        """
        Current owner identifier.

        Synchronous and never raises; returns ``"anonymous"`` when no
        session is stored.
        """
        session = self._read_session()
        user = session.get('user') if session else None
        user_id = user.get('id') if isinstance(user, dict) else None
        if user_id:
            return str(user_id)
        return ANONYMOUS_USER_ID

    def get_access_token(self) -> Optional[str]:
        """Bearer token of the stored session, or None when anonymous."""
        session = self._read_session()
        token = session.get('access_token') if session else None
        return str(token) if token else None

    def is_anonymous(self) -> bool:
        return self.get_user_id() == ANONYMOUS_USER_ID

    async def previous_user_ids(self) -> List[str]:
        """Identifiers this installation has used before, oldest first."""
        ids = await self.cache.get_json(PREVIOUS_IDS_KEY, [])
        if not isinstance(ids, list):
            logger.warning(f"Ignoring malformed previous user id list: {ids!r}")
            return []
        return [str(i) for i in ids if i]

    async def remember_identity(self, user_id: str) -> bool:
        """
        Add ``user_id`` to the previously-seen identifiers.

        Returns:
            True if the identifier was new
        """
        ids = await self.previous_user_ids()
        if not user_id or user_id in ids:
            return False
        ids.append(user_id)
        await self.cache.set_json(PREVIOUS_IDS_KEY, ids)
        logger.info(f"Recorded previous user id: {user_id}")
        return True

    async def store_session(self, user_id: str, access_token: Optional[str] = None) -> None:
        """
        Persist a session for ``user_id``.

        The identity being replaced is remembered so its records can be
        reconciled to the new identity.
        """
        previous = self.get_user_id()
        if previous != user_id:
            if previous == ANONYMOUS_USER_ID:
                await self.cache.set_item(ANONYMOUS_ID_KEY, previous)
            await self.remember_identity(previous)

        session = {'user': {'id': user_id}}
        if access_token:
            session['access_token'] = access_token
        await self.cache.set_json(SESSION_KEY, session)
        logger.info(f"Stored session for user {user_id}")

    async def clear_session(self) -> None:
        """Forget the stored session; subsequent calls resolve to anonymous."""
        await self.cache.remove_item(SESSION_KEY)
