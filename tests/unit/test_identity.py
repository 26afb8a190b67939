"""Unit tests for IdentityResolver."""
import pytest

from dev_dashboard.cache.base import ANONYMOUS_ID_KEY, SESSION_KEY
from dev_dashboard.services.identity import IdentityResolver


@pytest.mark.unit
def test_anonymous_without_session(cache):
    identity = IdentityResolver(cache)
    assert identity.get_user_id() == 'anonymous'
    assert identity.get_access_token() is None
    assert identity.is_anonymous()


@pytest.mark.unit
def test_reads_stored_session(signed_in_cache):
    identity = IdentityResolver(signed_in_cache)
    assert identity.get_user_id() == 'user-1'
    assert identity.get_access_token() == 'token-1'
    assert not identity.is_anonymous()


@pytest.mark.unit
@pytest.mark.parametrize('raw', ['{broken', '[]', '{"user": "nope"}', '{"user": {"id": ""}}'])
def test_malformed_session_reads_as_anonymous(cache, raw):
    cache._items[SESSION_KEY] = raw
    assert IdentityResolver(cache).get_user_id() == 'anonymous'


@pytest.mark.asyncio
async def test_store_session_remembers_anonymous_identity(cache):
    identity = IdentityResolver(cache)

    await identity.store_session('user-1', 'token-1')

    assert identity.get_user_id() == 'user-1'
    assert await identity.previous_user_ids() == ['anonymous']
    assert await cache.get_item(ANONYMOUS_ID_KEY) == 'anonymous'


@pytest.mark.asyncio
async def test_switching_users_records_previous(cache):
    identity = IdentityResolver(cache)
    await identity.store_session('user-1')
    await identity.store_session('user-2')
    await identity.store_session('user-2')

    assert await identity.previous_user_ids() == ['anonymous', 'user-1']


@pytest.mark.asyncio
async def test_remember_identity_is_idempotent(cache):
    identity = IdentityResolver(cache)
    assert await identity.remember_identity('x') is True
    assert await identity.remember_identity('x') is False
    assert await identity.remember_identity('') is False


@pytest.mark.asyncio
async def test_clear_session(signed_in_cache):
    identity = IdentityResolver(signed_in_cache)
    await identity.clear_session()
    assert identity.get_user_id() == 'anonymous'
