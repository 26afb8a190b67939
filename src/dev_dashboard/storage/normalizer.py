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
Schema normalizer for tool records.

Converts between the canonical Tool and the two storage encodings:

- remote rows (snake_case columns of the ``tools`` relation)
- local cache entries (camelCase JSON with ISO-8601 dates)

The ``categories`` column has been written three different ways over the
life of the project: as a real array, as a JSON-encoded string, and as a
plain string holding one category name. Older rows may not have it at all
and only carry the legacy ``category`` scalar. Every read goes through
normalize_categories() so callers never see those encodings.
"""

import json
import logging
import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Union

from ..config import SENTINEL_CATEGORY
from ..models.tool import Tool, ToolDraft, utc_now

logger = logging.getLogger(__name__)


class CategoryEncoding(Enum):
    """How a raw multi-valued field was stored."""
    ARRAY = 'array'
    ENCODED_STRING = 'encoded_string'
    SCALAR = 'scalar'
    ABSENT = 'absent'


class CategoriesValue(NamedTuple):
    encoding: CategoryEncoding
    values: List[str]


def classify_categories(raw: Any) -> CategoriesValue:
    """
    Classify a raw categories/tags value into one of the known encodings.

    Examples:
        ["AI Tools", "Design"]       -> ARRAY
        '["AI Tools", "Design"]'     -> ENCODED_STRING
        'Design'                     -> SCALAR
        None / '' / {}               -> ABSENT
    """
    if isinstance(raw, (list, tuple)):
        return CategoriesValue(CategoryEncoding.ARRAY, [str(v).strip() for v in raw if v is not None])

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return CategoriesValue(CategoryEncoding.ABSENT, [])
        try:
            parsed = json.loads(text)
        except (ValueError, TypeError):
            parsed = None
        if isinstance(parsed, list):
            return CategoriesValue(CategoryEncoding.ENCODED_STRING,
                                   [str(v).strip() for v in parsed if v is not None])
        return CategoriesValue(CategoryEncoding.SCALAR, [text])

    return CategoriesValue(CategoryEncoding.ABSENT, [])


def _clean(values: List[str]) -> List[str]:
    result = []
    for value in values:
        if value and value not in result:
            result.append(value)
    return result


def normalize_categories(raw: Any, legacy_category: Optional[str] = None,
                         sentinel: str = SENTINEL_CATEGORY) -> List[str]:
    """
    Produce a non-empty list of category names from any historical encoding.

    Precedence: array, JSON-encoded array, plain string, then the legacy
    ``category`` scalar, then the sentinel category.
    """
    decoded = classify_categories(raw)
    categories = _clean(decoded.values)
    if categories:
        return categories

    if isinstance(legacy_category, str) and legacy_category.strip():
        return [legacy_category.strip()]

    return [sentinel]


def normalize_tags(raw: Any) -> List[str]:
    """Decode tags with the same tolerance as categories; may be empty."""
    return _clean(classify_categories(raw).values)


# fromisoformat before 3.11 only accepts 3 or 6 fractional digits
_FRACTION_RE = re.compile(r'(\d{2}:\d{2}:\d{2})\.(\d+)')


def _normalize_fraction(text: str) -> str:
    return _FRACTION_RE.sub(lambda m: f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}", text, count=1)


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (including a trailing ``Z``) and
    Unix epoch numbers. Anything else is treated as absent.
    """
    if raw is None or isinstance(raw, bool):
        return None

    try:
        if isinstance(raw, datetime):
            value = raw
        elif isinstance(raw, (int, float)):
            value = datetime.fromtimestamp(raw, tz=timezone.utc)
        elif isinstance(raw, str) and raw.strip():
            value = datetime.fromisoformat(_normalize_fraction(raw.strip().replace('Z', '+00:00')))
        else:
            return None
    except (ValueError, OverflowError, OSError) as e:
        logger.debug(f"Ignoring malformed timestamp {raw!r}: {e}")
        return None

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as ISO-8601, or None."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _as_int(raw: Any) -> int:
    try:
        return max(int(raw or 0), 0)
    except (TypeError, ValueError):
        return 0


def _as_float(raw: Any) -> Optional[float]:
    if raw is None or raw == '':
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _as_text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    return str(raw)


def _resolve_times(created_raw: Any, updated_raw: Any):
    created_at = parse_timestamp(created_raw)
    updated_at = parse_timestamp(updated_raw)
    if created_at is None:
        created_at = updated_at or utc_now()
    if updated_at is None:
        updated_at = created_at
    return created_at, updated_at


def from_remote_row(row: Dict[str, Any], sentinel: str = SENTINEL_CATEGORY) -> Tool:
    """Convert a remote ``tools`` row into a canonical Tool."""
    created_at, updated_at = _resolve_times(row.get('created_at'), row.get('updated_at'))

    return Tool(
        id=str(row.get('id') or uuid.uuid4()),
        name=row.get('title') or row.get('name') or '',
        url=row.get('url') or '',
        description=row.get('description') or '',
        notes=_as_text(row.get('notes')),
        email=_as_text(row.get('email')),
        api_key=_as_text(row.get('api_key')),
        favicon=_as_text(row.get('logo_url')),
        rating=_as_float(row.get('rating')),
        tags=normalize_tags(row.get('tags')),
        categories=normalize_categories(row.get('categories'), row.get('category'), sentinel),
        is_pinned=bool(row.get('is_pinned') or False),
        is_favorite=bool(row.get('is_favorite') or False),
        usage_count=_as_int(row.get('usage_count')),
        last_used=parse_timestamp(row.get('last_used')),
        created_at=created_at,
        updated_at=updated_at,
    )


def canonicalize(draft: ToolDraft, sentinel: str = SENTINEL_CATEGORY,
                 tool_id: Optional[str] = None, now: Optional[datetime] = None) -> Tool:
    """
    Turn a validated draft into a canonical Tool with a fresh id and timestamps.

    Raises:
        ToolValidationError: If the draft fails validation
    """
    draft.validate()
    now = now or utc_now()

    return Tool(
        id=tool_id or str(uuid.uuid4()),
        name=draft.name.strip(),
        url=draft.url.strip(),
        description=draft.description or '',
        notes=draft.notes,
        email=draft.email,
        api_key=draft.api_key,
        favicon=draft.favicon,
        rating=draft.rating,
        tags=normalize_tags(draft.tags),
        categories=normalize_categories(draft.categories, draft.category, sentinel),
        is_pinned=bool(draft.is_pinned),
        is_favorite=bool(draft.is_favorite),
        usage_count=draft.usage_count,
        last_used=draft.last_used,
        created_at=now,
        updated_at=now,
    )


def _remote_payload(tool: Tool, user_id: str) -> Dict[str, Any]:
    categories = list(tool.categories)
    return {
        'user_id': user_id,
        'title': tool.name,
        'url': tool.url,
        'description': tool.description,
        'category': categories[0],
        'categories': categories,
        'tags': list(tool.tags),
        'is_favorite': tool.is_favorite,
        'is_pinned': tool.is_pinned,
        'logo_url': tool.favicon,
        'rating': tool.rating,
        'notes': tool.notes,
        'api_key': tool.api_key,
        'email': tool.email,
        'usage_count': tool.usage_count,
        'last_used': format_timestamp(tool.last_used),
    }


def to_remote_insert(tool: Union[Tool, ToolDraft], user_id: str,
                     sentinel: str = SENTINEL_CATEGORY) -> Dict[str, Any]:
    """
    Build the insert payload for a tool.

    Both the legacy ``category`` scalar and the ``categories`` array are
    always written so readers using either convention stay correct.
    """
    if isinstance(tool, ToolDraft):
        tool = canonicalize(tool, sentinel)

    payload = _remote_payload(tool, user_id)
    payload['id'] = tool.id
    payload['created_at'] = format_timestamp(tool.created_at)
    payload['updated_at'] = format_timestamp(tool.updated_at)
    return payload


def to_remote_update(tool: Tool, user_id: str) -> Dict[str, Any]:
    """Build the full-record update payload; stamps a fresh ``updated_at``."""
    payload = _remote_payload(tool, user_id)
    payload['updated_at'] = format_timestamp(utc_now())
    return payload


def to_local_dict(tool: Tool) -> Dict[str, Any]:
    """Serialize a Tool for the local cache (camelCase, ISO-8601 dates)."""
    return {
        'id': tool.id,
        'name': tool.name,
        'url': tool.url,
        'description': tool.description,
        'notes': tool.notes,
        'email': tool.email,
        'apiKey': tool.api_key,
        'favicon': tool.favicon,
        'rating': tool.rating,
        'tags': list(tool.tags),
        'categories': list(tool.categories),
        'category': tool.category,
        'isPinned': tool.is_pinned,
        'isFavorite': tool.is_favorite,
        'usageCount': tool.usage_count,
        'lastUsed': format_timestamp(tool.last_used),
        'createdAt': format_timestamp(tool.created_at),
        'updatedAt': format_timestamp(tool.updated_at),
    }


def from_local_dict(data: Dict[str, Any], sentinel: str = SENTINEL_CATEGORY) -> Tool:
    """Deserialize a local cache entry, tolerating entries written by older clients."""
    created_at, updated_at = _resolve_times(data.get('createdAt'), data.get('updatedAt'))

    return Tool(
        id=str(data.get('id') or uuid.uuid4()),
        name=data.get('name') or '',
        url=data.get('url') or '',
        description=data.get('description') or '',
        notes=_as_text(data.get('notes')),
        email=_as_text(data.get('email')),
        api_key=_as_text(data.get('apiKey')),
        favicon=_as_text(data.get('favicon')),
        rating=_as_float(data.get('rating')),
        tags=normalize_tags(data.get('tags')),
        categories=normalize_categories(data.get('categories'), data.get('category'), sentinel),
        is_pinned=bool(data.get('isPinned') or False),
        is_favorite=bool(data.get('isFavorite') or False),
        usage_count=_as_int(data.get('usageCount')),
        last_used=parse_timestamp(data.get('lastUsed')),
        created_at=created_at,
        updated_at=updated_at,
    )
