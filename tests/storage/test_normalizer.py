"""Tests for converting tool records between remote, local and canonical forms."""
from datetime import datetime, timezone

import pytest

from dev_dashboard.models.tool import Tool, ToolDraft
from dev_dashboard.storage.errors import ToolValidationError
from dev_dashboard.storage.normalizer import (
    CategoryEncoding,
    canonicalize,
    classify_categories,
    from_local_dict,
    from_remote_row,
    normalize_categories,
    normalize_tags,
    parse_timestamp,
    to_local_dict,
    to_remote_insert,
    to_remote_update,
)


@pytest.mark.unit
@pytest.mark.parametrize('raw, encoding, values', [
    (['AI Tools', 'Design'], CategoryEncoding.ARRAY, ['AI Tools', 'Design']),
    ('["AI Tools","Design"]', CategoryEncoding.ENCODED_STRING, ['AI Tools', 'Design']),
    ('Design', CategoryEncoding.SCALAR, ['Design']),
    ('{"not": "a list"}', CategoryEncoding.SCALAR, ['{"not": "a list"}']),
    (None, CategoryEncoding.ABSENT, []),
    ('   ', CategoryEncoding.ABSENT, []),
    ({'a': 1}, CategoryEncoding.ABSENT, []),
])
def test_classify_categories(raw, encoding, values):
    decoded = classify_categories(raw)
    assert decoded.encoding is encoding
    assert decoded.values == values


@pytest.mark.unit
def test_normalize_categories_precedence():
    assert normalize_categories(['A', 'A', '', 'B']) == ['A', 'B']
    assert normalize_categories([], legacy_category='Legacy') == ['Legacy']
    assert normalize_categories(None, legacy_category='  ') == ['Other']
    assert normalize_categories(None, sentinel='Uncategorized') == ['Uncategorized']


@pytest.mark.unit
def test_normalize_tags_may_be_empty():
    assert normalize_tags(None) == []
    assert normalize_tags('["a","b","a"]') == ['a', 'b']


@pytest.mark.unit
def test_from_remote_row_string_encoded_categories():
    tool = from_remote_row({'id': '1', 'title': 'X', 'url': 'https://x.dev',
                            'categories': '["AI Tools","Design"]'})
    assert tool.categories == ['AI Tools', 'Design']
    assert tool.category == 'AI Tools'


@pytest.mark.unit
def test_from_remote_row_defaults_missing_fields():
    tool = from_remote_row({'id': '1', 'title': 'X', 'url': 'https://x.dev',
                            'is_pinned': None, 'usage_count': 'junk', 'last_used': 'yesterday'})

    assert tool.is_pinned is False
    assert tool.is_favorite is False
    assert tool.usage_count == 0
    assert tool.last_used is None
    assert tool.tags == []
    assert tool.categories == ['Other']
    assert tool.updated_at >= tool.created_at


@pytest.mark.unit
def test_remote_round_trip_preserves_fields():
    draft = ToolDraft(name='Figma', url='https://figma.com', description='Design tool',
                      notes='team plan', email='me@example.com', api_key='k', favicon='https://figma.com/f.ico',
                      rating=4.5, tags=['ui', 'ux'], categories=['Design', 'UI'],
                      is_pinned=True, is_favorite=False, usage_count=3)
    canonical = canonicalize(draft)

    restored = from_remote_row(to_remote_insert(canonical, 'user-1'))

    assert restored == canonical


@pytest.mark.unit
def test_remote_payload_writes_legacy_and_array_columns():
    canonical = canonicalize(ToolDraft(name='X', url='https://x.dev', categories=['B', 'C']))

    payload = to_remote_insert(canonical, 'user-1')

    assert payload['user_id'] == 'user-1'
    assert payload['title'] == 'X'
    assert payload['category'] == 'B'
    assert payload['categories'] == ['B', 'C']
    assert 'name' not in payload


@pytest.mark.unit
def test_remote_update_refreshes_updated_at():
    canonical = canonicalize(ToolDraft(name='X', url='https://x.dev'),
                             now=datetime(2020, 1, 1, tzinfo=timezone.utc))

    payload = to_remote_update(canonical, 'user-1')

    assert parse_timestamp(payload['updated_at']) > canonical.updated_at
    assert 'id' not in payload and 'created_at' not in payload


@pytest.mark.unit
def test_local_round_trip():
    canonical = canonicalize(ToolDraft(name='X', url='https://x.dev', tags=['t'], is_favorite=True))

    data = to_local_dict(canonical)

    assert data['isFavorite'] is True
    assert data['category'] == 'Other'
    assert from_local_dict(data) == canonical


@pytest.mark.unit
def test_from_local_dict_tolerates_old_entries():
    tool = from_local_dict({'id': 'a', 'name': 'Old', 'url': 'https://old.dev', 'category': 'Legacy',
                            'createdAt': 1700000000})
    assert tool.categories == ['Legacy']
    assert tool.created_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)


@pytest.mark.unit
def test_canonicalize_validates():
    with pytest.raises(ToolValidationError):
        canonicalize(ToolDraft(name='', url='https://x.dev'))
    with pytest.raises(ToolValidationError):
        canonicalize(ToolDraft(name='X', url='https://x.dev', tags='not-a-list'))


@pytest.mark.unit
def test_canonicalize_assigns_identity():
    first = canonicalize(ToolDraft(name=' X ', url='https://x.dev'))
    second = canonicalize(ToolDraft(name='X', url='https://x.dev'))

    assert first.id != second.id
    assert first.name == 'X'
    assert first.created_at == first.updated_at


@pytest.mark.unit
@pytest.mark.parametrize('raw, expected', [
    ('2024-01-02T03:04:05Z', datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)),
    ('2024-01-02T03:04:05', datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)),
    ('2024-05-01T12:34:56.1+00:00', datetime(2024, 5, 1, 12, 34, 56, 100000, tzinfo=timezone.utc)),
    ('2024-05-01T12:34:56.12+00:00', datetime(2024, 5, 1, 12, 34, 56, 120000, tzinfo=timezone.utc)),
    ('2024-05-01T12:34:56.1234+00:00', datetime(2024, 5, 1, 12, 34, 56, 123400, tzinfo=timezone.utc)),
    ('2024-05-01T12:34:56.12345Z', datetime(2024, 5, 1, 12, 34, 56, 123450, tzinfo=timezone.utc)),
    ('2024-05-01T12:34:56.1234567+02:00', datetime(2024, 5, 1, 10, 34, 56, 123456, tzinfo=timezone.utc)),
    (0, datetime(1970, 1, 1, tzinfo=timezone.utc)),
    ('not a date', None),
    (True, None),
    (None, None),
])
def test_parse_timestamp(raw, expected):
    assert parse_timestamp(raw) == expected


@pytest.mark.unit
def test_tool_invariants_enforced_on_construction():
    now = datetime(2024, 1, 2, tzinfo=timezone.utc)
    tool = Tool(id='1', name='X', url='https://x.dev', created_at=now,
                updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
                tags=['a', 'a'], categories=[], usage_count=-4)

    assert tool.categories == ['Other']
    assert tool.tags == ['a']
    assert tool.usage_count == 0
    assert tool.updated_at == tool.created_at

    moved = tool.touch(id='other', name='Y')
    assert moved.id == '1'
    assert moved.created_at == now
    assert moved.updated_at >= now
