"""Tests for MigrationReconciler and LocalMigration."""
import json

import pytest

from dev_dashboard.cache.base import (
    ANONYMOUS_ID_KEY,
    MIGRATION_COMPLETED_KEY,
    PREVIOUS_IDS_KEY,
    TOOLS_BACKUP_KEY,
    TOOLS_KEY,
)
from dev_dashboard.services.reconciler import LocalMigration, MigrationReconciler
from dev_dashboard.services.tool_service import ToolService


@pytest.fixture
def reconciler(service):
    return MigrationReconciler(service)


async def _cache_locally(service, remote, *drafts):
    remote.reachable = False
    await service.create_many(list(drafts))
    remote.reachable = True


class TestReconcileAnonymousData:

    @pytest.mark.asyncio
    async def test_copies_local_cache_to_empty_remote(self, service, remote, reconciler, draft):
        await _cache_locally(service, remote, draft('A', 'https://a.dev'), draft('B', 'https://b.dev'))

        assert await reconciler.reconcile_anonymous_data() is True

        tools = await service.get_all()
        assert sorted((t.name, t.url) for t in tools) == [('A', 'https://a.dev'), ('B', 'https://b.dev')]
        local_ids = {t.id for t in await service.cache.load_tools()}
        assert local_ids.isdisjoint(t.id for t in tools)
        # Sources are left in place
        assert len(await service.cache.load_tools()) == 2

    @pytest.mark.asyncio
    async def test_skips_when_current_user_owns_records(self, service, remote, reconciler, draft, make_row):
        remote.rows = [make_row(title='Existing')]
        await _cache_locally(service, remote, draft('A', 'https://a.dev'))

        assert await reconciler.reconcile_anonymous_data() is False
        assert len(remote.rows) == 1

    @pytest.mark.asyncio
    async def test_rerun_does_not_duplicate(self, service, remote, reconciler, draft):
        await _cache_locally(service, remote, draft('A', 'https://a.dev'))

        await reconciler.reconcile_anonymous_data()
        await reconciler.reconcile_anonymous_data()

        assert len(remote.rows_for('user-1')) == 1

    @pytest.mark.asyncio
    async def test_copies_anonymous_remote_rows(self, service, remote, reconciler, make_row):
        remote.rows = [
            make_row(user_id='anonymous', title='Anon A', categories='["Design"]'),
            make_row(user_id='anonymous', title='Anon B', is_pinned=True),
        ]

        assert await reconciler.reconcile_anonymous_data() is True

        mine = {t.name: t for t in await service.get_all()}
        assert set(mine) == {'Anon A', 'Anon B'}
        assert mine['Anon A'].categories == ['Design']
        assert mine['Anon B'].is_pinned is True
        assert len(remote.rows_for('anonymous')) == 2
        assert 'anonymous' in await service.identity.previous_user_ids()

    @pytest.mark.asyncio
    async def test_uses_recorded_anonymous_id_and_previous_users(self, service, remote, reconciler, make_row):
        await service.cache.set_item(ANONYMOUS_ID_KEY, 'anon-device-7')
        await service.cache.set_json(PREVIOUS_IDS_KEY, ['old-user'])
        remote.rows = [make_row(user_id='anon-device-7', title='Device tool')]

        assert await reconciler.reconcile_anonymous_data() is True

        assert [t.name for t in await service.get_all()] == ['Device tool']
        assert await service.identity.previous_user_ids() == ['old-user', 'anon-device-7']

    @pytest.mark.asyncio
    async def test_first_source_with_records_wins(self, service, remote, reconciler, make_row):
        await service.cache.set_json(PREVIOUS_IDS_KEY, ['old-user', 'older-user'])
        remote.rows = [
            make_row(user_id='old-user', title='From old'),
            make_row(user_id='older-user', title='From older'),
        ]

        await reconciler.reconcile_anonymous_data()

        assert [t.name for t in await service.get_all()] == ['From old']

    @pytest.mark.asyncio
    async def test_nothing_to_reconcile(self, reconciler):
        assert await reconciler.reconcile_anonymous_data() is False
        assert reconciler.last_copied == 0

    @pytest.mark.asyncio
    async def test_anonymous_session_is_skipped(self, cache, remote, draft):
        service = ToolService(cache, remote=remote)
        await _cache_locally(service, remote, draft())

        assert await MigrationReconciler(service).reconcile_anonymous_data() is False
        assert remote.rows == []

    @pytest.mark.asyncio
    async def test_unavailable_remote_returns_false(self, service, remote, reconciler, draft):
        await _cache_locally(service, remote, draft())
        remote.schema_missing = True

        assert await reconciler.reconcile_anonymous_data() is False

    @pytest.mark.asyncio
    async def test_remote_failure_never_raises(self, service, remote, reconciler):
        remote.fail_operations.add('select')

        assert await reconciler.reconcile_anonymous_data() is False

    @pytest.mark.asyncio
    async def test_partial_insert_failure_keeps_going(self, service, remote, reconciler, draft):
        await _cache_locally(service, remote, draft('A', 'https://a.dev'), draft('B', 'https://b.dev'))
        original_insert = remote.insert
        attempts = []

        async def flaky_insert(rows):
            attempts.append(rows)
            if len(attempts) == 1:
                from dev_dashboard.storage.errors import RemoteOperationError
                raise RemoteOperationError("duplicate key", status=409, code='23505')
            return await original_insert(rows)

        remote.insert = flaky_insert

        assert await reconciler.reconcile_anonymous_data() is True
        assert reconciler.last_copied == 1
        assert len(remote.rows_for('user-1')) == 1


def _legacy_entry(name, url, **extra):
    entry = {'id': name.lower(), 'name': name, 'url': url, 'tags': [], 'createdAt': '2023-05-01T10:00:00Z'}
    entry.update(extra)
    return entry


class TestLocalMigration:

    @pytest.mark.asyncio
    async def test_migrates_and_flags_completion(self, service, remote):
        raw = json.dumps([_legacy_entry('A', 'https://a.dev', category='Code'), _legacy_entry('B', 'https://b.dev')])
        await service.cache.set_item(TOOLS_KEY, raw)
        migration = LocalMigration(service)

        assert await migration.check_migration_needed() is True
        result = await migration.migrate()

        assert result.success
        assert result.count == 2
        rows = {r['title']: r for r in remote.rows_for('user-1')}
        assert rows['A']['categories'] == ['Code']
        assert rows['B']['categories'] == ['Uncategorized']
        assert await service.cache.get_item(TOOLS_BACKUP_KEY) == raw
        assert await service.cache.get_item(MIGRATION_COMPLETED_KEY) == 'true'
        assert await migration.check_migration_needed() is False

    @pytest.mark.asyncio
    async def test_skips_urls_already_remote(self, service, remote, make_row):
        remote.rows = [make_row(url='https://a.dev')]
        await service.cache.set_json(TOOLS_KEY, [_legacy_entry('A', 'https://a.dev'), _legacy_entry('B', 'https://b.dev')])

        result = await LocalMigration(service).migrate()

        assert result.count == 1
        assert sorted(r['url'] for r in remote.rows) == ['https://a.dev', 'https://b.dev']

    @pytest.mark.asyncio
    async def test_not_needed_without_local_tools(self, service):
        assert await LocalMigration(service).check_migration_needed() is False

    @pytest.mark.asyncio
    async def test_failure_leaves_flag_unset(self, service, remote):
        await service.cache.set_json(TOOLS_KEY, [_legacy_entry('A', 'https://a.dev')])
        remote.fail_operations.add('insert')

        result = await LocalMigration(service).migrate()

        assert not result.success
        assert 'insert failed' in result.error
        assert await service.cache.get_item(MIGRATION_COMPLETED_KEY) is None
        assert remote.rows == []

    @pytest.mark.asyncio
    async def test_unavailable_remote(self, service, remote):
        await service.cache.set_json(TOOLS_KEY, [_legacy_entry('A', 'https://a.dev')])
        remote.reachable = False

        result = await LocalMigration(service).migrate()

        assert not result.success
        assert 'unreachable' in result.error
