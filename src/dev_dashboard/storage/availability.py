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
Availability probing for the remote backend.

Each call returns an explicit AvailabilityResult instead of mutating shared
state, so a batch of gateway operations can carry the result it was
decided on. Nothing is cached: backend state can change mid-session (for
example when the tools table is created after startup).
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .base import RemoteToolBackend
from .errors import UnreachableError, SchemaMissingError, RemoteOperationError

logger = logging.getLogger(__name__)

REASON_OK = 'ok'
REASON_NOT_CONFIGURED = 'not_configured'
REASON_UNREACHABLE = 'unreachable'
REASON_SCHEMA_MISSING = 'schema_missing'
REASON_DEGRADED = 'degraded'


@dataclass(frozen=True)
class AvailabilityResult:
    """Outcome of one availability probe. Truthy when the remote may be used."""
    available: bool
    reason: str = REASON_OK
    needs_setup: bool = False
    degraded: bool = False
    detail: Optional[str] = None

    def __bool__(self) -> bool:
        return self.available


class AvailabilityProber:
    """Decides whether the remote backend should be used for an operation batch."""

    def __init__(self, backend: Optional[RemoteToolBackend]):
        self.backend = backend

    async def check_availability(self) -> AvailabilityResult:
        """
        Run the reachability probe, then the tools relation existence probe.

        Returns:
            AvailabilityResult; unavailable when unreachable or the relation is
            missing, available-but-degraded for any other remote error
        """
        if self.backend is None:
            return AvailabilityResult(False, REASON_NOT_CONFIGURED)

        try:
            await self.backend.ping()
        except UnreachableError as e:
            logger.warning(f"Remote backend unreachable, using local cache: {e}")
            return AvailabilityResult(False, REASON_UNREACHABLE, detail=str(e))

        try:
            await self.backend.probe_relation()
        except SchemaMissingError as e:
            logger.warning(f"Remote backend reachable but tools table is missing (needs setup): {e}")
            return AvailabilityResult(False, REASON_SCHEMA_MISSING, needs_setup=True, detail=str(e))
        except UnreachableError as e:
            logger.warning(f"Remote backend dropped during existence probe: {e}")
            return AvailabilityResult(False, REASON_UNREACHABLE, detail=str(e))
        except RemoteOperationError as e:
            logger.warning(f"Existence probe failed, will still try the remote backend: {e}")
            return AvailabilityResult(True, REASON_DEGRADED, degraded=True, detail=str(e))

        logger.debug("Remote backend available and tools table accessible")
        return AvailabilityResult(True)
