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
Configuration for the Dev Dashboard tool store.

All settings are read from the environment once at import time. A ``.env``
file in the working directory is honoured through python-dotenv.
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()


def safe_get_int_env(name: str, default: int, min_value: Optional[int] = None,
                     max_value: Optional[int] = None) -> int:
    """
    Read an integer environment variable without ever failing.

    Values that do not parse, or fall outside ``[min_value, max_value]``,
    are logged and replaced by ``default``.
    """
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default

    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using default {default}")
        return default

    if min_value is not None and value < min_value:
        logger.warning(f"{name}={value} is below minimum {min_value}, using default {default}")
        return default
    if max_value is not None and value > max_value:
        logger.warning(f"{name}={value} is above maximum {max_value}, using default {default}")
        return default

    return value


def safe_get_bool_env(name: str, default: bool) -> bool:
    """Read a boolean environment variable (true/false, 1/0, yes/no)."""
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in ('1', 'true', 'yes', 'on'):
        return True
    if value in ('0', 'false', 'no', 'off'):
        return False
    logger.warning(f"Invalid boolean for {name}: {raw!r}, using default {default}")
    return default


def _default_local_path() -> str:
    base_dir = Path(os.getenv('DEV_DASHBOARD_HOME', Path.home() / '.dev-dashboard'))
    return str(base_dir / 'local_cache.db')


# Remote PostgREST backend
REMOTE_URL = os.getenv('DEV_DASHBOARD_REMOTE_URL', '').rstrip('/') or None
REMOTE_API_KEY = os.getenv('DEV_DASHBOARD_REMOTE_KEY') or None
# Unset means the transport default applies
REMOTE_TIMEOUT = safe_get_int_env('DEV_DASHBOARD_REMOTE_TIMEOUT', 0, min_value=0, max_value=3600) or None
TOOLS_TABLE = os.getenv('DEV_DASHBOARD_TOOLS_TABLE', 'tools')

# Local fallback store
LOCAL_BACKEND = os.getenv('DEV_DASHBOARD_LOCAL_BACKEND', 'sqlite').lower()
LOCAL_PATH = os.getenv('DEV_DASHBOARD_LOCAL_PATH') or _default_local_path()

# Catalog semantics
SENTINEL_CATEGORY = os.getenv('DEV_DASHBOARD_SENTINEL_CATEGORY', 'Other').strip() or 'Other'
LEGACY_SENTINEL_CATEGORY = 'Uncategorized'
ANONYMOUS_USER_ID = 'anonymous'

LOG_LEVEL = os.getenv('LOG_LEVEL', 'WARNING').upper()


def validate_config() -> List[str]:
    """
    Check the loaded configuration for problems.

    Returns:
        List of human-readable warnings. An empty list means the
        configuration is usable as-is.
    """
    warnings = []

    if REMOTE_URL and not REMOTE_URL.startswith(('http://', 'https://')):
        warnings.append(f"DEV_DASHBOARD_REMOTE_URL must start with http:// or https://, got {REMOTE_URL!r}")

    if REMOTE_URL and not REMOTE_API_KEY:
        warnings.append("DEV_DASHBOARD_REMOTE_URL is set but DEV_DASHBOARD_REMOTE_KEY is missing")

    if not REMOTE_URL:
        warnings.append("No remote backend configured, tools are kept in the local cache only")

    if LOCAL_BACKEND not in ('sqlite', 'memory'):
        warnings.append(f"Unknown DEV_DASHBOARD_LOCAL_BACKEND {LOCAL_BACKEND!r}, expected 'sqlite' or 'memory'")

    if LOG_LEVEL not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
        warnings.append(f"Unknown LOG_LEVEL {LOG_LEVEL!r}")

    return warnings
