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
Error taxonomy for the tool store.

Remote failures (UnreachableError, SchemaMissingError, RemoteOperationError)
are recovered by falling back to the local cache. ToolValidationError and
LocalCacheError are the only errors that reach callers of ToolService.
"""

from typing import Any, Optional

# PostgreSQL "undefined_table" and PostgREST "table not in schema cache"
MISSING_RELATION_CODES = ('42P01', 'PGRST205')


class ToolStoreError(Exception):
    """Base class for all tool store errors."""


class UnreachableError(ToolStoreError):
    """The remote backend could not be reached at the transport level."""


class SchemaMissingError(ToolStoreError):
    """The remote backend is reachable but the tools relation does not exist."""


class RemoteOperationError(ToolStoreError):
    """A remote CRUD call failed for a reason other than reachability or schema."""

    def __init__(self, message: str, status: Optional[int] = None,
                 code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.details = details

    @property
    def is_column_type_error(self) -> bool:
        """True when the failure is a type mismatch on a legacy column."""
        return 'is of type' in (self.message or '')

    def __str__(self):
        parts = [self.message]
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.code:
            parts.append(f"code={self.code}")
        return ' '.join(parts)


class ToolValidationError(ToolStoreError, ValueError):
    """A caller-supplied draft failed required-field checks."""


class LocalCacheError(ToolStoreError):
    """The local cache could not be read or written."""


def is_missing_relation(code: Optional[str], message: Optional[str] = None) -> bool:
    """Check whether a remote error code/message means the relation is absent."""
    if code in MISSING_RELATION_CODES:
        return True
    msg = (message or '').lower()
    return 'does not exist' in msg and 'relation' in msg
