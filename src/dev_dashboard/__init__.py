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
Dev Dashboard tool store.

Remote-first persistence for a personal collection of developer tools with
a local cache fallback, schema normalization and identity reconciliation.
"""

__version__ = "1.0.0"

from .models import Tool, ToolDraft
from .services import (
    IdentityResolver,
    ToolService,
    MigrationReconciler,
    LocalMigration,
    create_tool_service,
)

__all__ = [
    'Tool',
    'ToolDraft',
    'IdentityResolver',
    'ToolService',
    'MigrationReconciler',
    'LocalMigration',
    'create_tool_service',
]
