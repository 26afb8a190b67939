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
Factory for the remote tools backend.

Returns None when no remote URL is configured; the tool service then runs
against the local cache only.
"""

import logging
from typing import Callable, Optional

from .base import RemoteToolBackend

logger = logging.getLogger(__name__)


def create_remote_backend(base_url: Optional[str] = None,
                          api_key: Optional[str] = None,
                          token_provider: Optional[Callable[[], Optional[str]]] = None,
                          table: Optional[str] = None,
                          timeout: Optional[float] = None) -> Optional[RemoteToolBackend]:
    """
    Create the remote backend from arguments, falling back to configuration.

    Args:
        base_url: PostgREST project URL (DEV_DASHBOARD_REMOTE_URL)
        api_key: Public API key (DEV_DASHBOARD_REMOTE_KEY)
        token_provider: Callable returning the current access token, if any
        table: Tools relation name (DEV_DASHBOARD_TOOLS_TABLE)
        timeout: Request timeout in seconds (DEV_DASHBOARD_REMOTE_TIMEOUT)

    Returns:
        Configured backend, or None when no URL is available
    """
    from ..config import REMOTE_URL, REMOTE_API_KEY, REMOTE_TIMEOUT, TOOLS_TABLE

    url = base_url or REMOTE_URL
    if not url:
        logger.info("No remote URL configured, running with the local cache only")
        return None

    from .postgrest import PostgrestToolBackend

    return PostgrestToolBackend(
        base_url=url,
        api_key=api_key or REMOTE_API_KEY,
        table=table or TOOLS_TABLE,
        timeout=timeout if timeout is not None else REMOTE_TIMEOUT,
        token_provider=token_provider,
    )
