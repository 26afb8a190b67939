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
Main CLI entry point for the Dev Dashboard tool store.
"""

import asyncio
import json
import sys
from pathlib import Path

import click

from .. import __version__
from ..logging_config import configure_logging
from ..models.tool import ToolDraft
from ..storage.errors import LocalCacheError, ToolValidationError

SETUP_SQL_PATH = Path(__file__).resolve().parent.parent / 'storage' / 'sql' / 'create_tools_table.sql'


def _format_tool(tool) -> str:
    flags = ('P' if tool.is_pinned else '-') + ('*' if tool.is_favorite else '-')
    return (f"{flags} {tool.id}  {tool.name}  <{tool.url}>  "
            f"[{', '.join(tool.categories)}]  used {tool.usage_count}x")


def _run(ctx, action):
    """Open the tool service, run ``action(service)`` and close it again."""
    from ..services.tool_service import create_tool_service

    async def runner():
        service = await create_tool_service(
            local_backend=ctx.obj.get('local_backend'),
            db_path=ctx.obj.get('db_path'),
        )
        try:
            return await action(service)
        finally:
            await service.close()

    try:
        return asyncio.run(runner())
    except ToolValidationError as e:
        raise click.BadParameter(str(e))
    except LocalCacheError as e:
        click.echo(f"Error: local cache failure: {e}", err=True)
        sys.exit(1)


def _echo_or_fail(tool, tool_id):
    if tool is None:
        click.echo(f"Tool {tool_id} not found", err=True)
        sys.exit(1)
    click.echo(_format_tool(tool))


@click.group()
@click.version_option(version=__version__, prog_name="Dev Dashboard")
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('--local-backend', default=None, type=click.Choice(['sqlite', 'memory']),
              help='Local cache backend (defaults to DEV_DASHBOARD_LOCAL_BACKEND)')
@click.option('--db-path', default=None, type=click.Path(dir_okay=False),
              help='SQLite local cache path (defaults to DEV_DASHBOARD_LOCAL_PATH)')
@click.pass_context
def cli(ctx, debug, local_backend, db_path):
    """
    Dev Dashboard - bookmark, organize and launch developer tools.

    Tools are stored remotely when a backend is configured and reachable,
    and in the local cache otherwise.
    """
    ctx.ensure_object(dict)
    ctx.obj['local_backend'] = local_backend
    ctx.obj['db_path'] = db_path
    configure_logging('DEBUG' if debug else None)


@cli.command('list')
@click.option('--category', default=None, help='Only show tools in this category')
@click.option('--pinned', is_flag=True, help='Only show pinned tools')
@click.pass_context
def list_tools(ctx, category, pinned):
    """List all tools of the current user."""
    tools = _run(ctx, lambda service: service.get_all())
    if category:
        tools = [t for t in tools if category in t.categories]
    if pinned:
        tools = [t for t in tools if t.is_pinned]
    if not tools:
        click.echo("No tools found")
        return
    for tool in tools:
        click.echo(_format_tool(tool))


@cli.command()
@click.argument('tool_id')
@click.pass_context
def show(ctx, tool_id):
    """Show one tool as JSON."""
    from ..storage.normalizer import to_local_dict

    tool = _run(ctx, lambda service: service.get_by_id(tool_id))
    if tool is None:
        click.echo(f"Tool {tool_id} not found", err=True)
        sys.exit(1)
    click.echo(json.dumps(to_local_dict(tool), indent=2))


@cli.command()
@click.argument('name')
@click.argument('url')
@click.option('--description', '-d', default='', help='Short description')
@click.option('--category', '-c', 'categories', multiple=True, help='Category (repeatable)')
@click.option('--tag', '-t', 'tags', multiple=True, help='Tag (repeatable)')
@click.option('--notes', default=None, help='Free-form notes')
@click.pass_context
def add(ctx, name, url, description, categories, tags, notes):
    """Bookmark a new tool."""
    draft = ToolDraft(name=name, url=url, description=description, notes=notes,
                      categories=list(categories), tags=list(tags))
    tool = _run(ctx, lambda service: service.create(draft))
    click.echo(f"Added {_format_tool(tool)}")


@cli.command()
@click.argument('tool_id')
@click.pass_context
def pin(ctx, tool_id):
    """Toggle the pinned flag of a tool."""
    _echo_or_fail(_run(ctx, lambda service: service.toggle_pin(tool_id)), tool_id)


@cli.command()
@click.argument('tool_id')
@click.pass_context
def favorite(ctx, tool_id):
    """Toggle the favorite flag of a tool."""
    _echo_or_fail(_run(ctx, lambda service: service.toggle_favorite(tool_id)), tool_id)


@cli.command()
@click.argument('tool_id')
@click.option('--open/--no-open', 'open_browser', default=False, help='Open the URL in a browser')
@click.pass_context
def launch(ctx, tool_id, open_browser):
    """Record a launch of a tool."""
    tool = _run(ctx, lambda service: service.track_usage(tool_id))
    _echo_or_fail(tool, tool_id)
    if open_browser:
        click.launch(tool.url)


@cli.command()
@click.argument('tool_id')
@click.argument('category')
@click.pass_context
def categorize(ctx, tool_id, category):
    """Add a tool to a category."""
    _echo_or_fail(_run(ctx, lambda service: service.add_to_category(tool_id, category)), tool_id)


@cli.command()
@click.argument('tool_id')
@click.argument('category')
@click.pass_context
def uncategorize(ctx, tool_id, category):
    """Remove a tool from a category."""
    _echo_or_fail(_run(ctx, lambda service: service.remove_from_category(tool_id, category)), tool_id)


@cli.command()
@click.argument('tool_id')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def delete(ctx, tool_id, yes):
    """Permanently delete a tool."""
    if not yes:
        click.confirm(f"Delete tool {tool_id}?", abort=True)
    if _run(ctx, lambda service: service.delete(tool_id)):
        click.echo(f"Deleted {tool_id}")
    else:
        click.echo(f"Tool {tool_id} not found", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx):
    """Show remote availability and the current identity."""
    result = _run(ctx, lambda service: service.test_connection())

    click.echo("Dev Dashboard Status\n")
    click.echo(f"   Version: {__version__}")
    click.echo(f"   User: {result['user_id']}")
    remote = result['remote']
    click.echo(f"   Remote: {remote.get('url', remote['backend']) if remote else 'not configured'}")
    click.echo(f"   Available: {'yes' if result['success'] else 'no'} ({result['reason']})")
    if result['degraded']:
        click.echo(f"   Degraded: {result['detail']}")
    if result['needs_setup']:
        click.echo("\nThe tools table is missing. Run 'dev-dashboard setup-sql' and execute "
                   "the script against your database.")


@cli.command('repair-categories')
@click.pass_context
def repair_categories(ctx):
    """Rewrite categories stored in a legacy encoding as arrays."""
    report = _run(ctx, lambda service: service.normalize_categories_column_if_needed())
    if report.skipped_reason:
        click.echo(f"Repair skipped: {report.skipped_reason}", err=True)
        sys.exit(1)
    if report.already_normalized:
        click.echo("Categories column already normalized")
        return
    click.echo(f"Repaired {report.updated} of {report.total} tools")
    if not report.success:
        sys.exit(1)


@cli.command()
@click.pass_context
def reconcile(ctx):
    """Copy tools from previous identities to the current user."""
    from ..services.reconciler import MigrationReconciler

    async def action(service):
        reconciler = MigrationReconciler(service)
        copied = await reconciler.reconcile_anonymous_data()
        return copied, reconciler.last_copied

    copied, count = _run(ctx, action)
    click.echo(f"Recovered {count} tools" if copied else "Nothing to reconcile")


@cli.command('migrate-local')
@click.option('--force', is_flag=True, help='Migrate even if already flagged as done')
@click.pass_context
def migrate_local(ctx, force):
    """Upload a local-only tool collection to the remote backend."""
    from ..services.reconciler import LocalMigration

    async def action(service):
        migration = LocalMigration(service)
        if not force and not await migration.check_migration_needed():
            return None
        return await migration.migrate()

    result = _run(ctx, action)
    if result is None:
        click.echo("No migration needed")
    elif result.success:
        click.echo(f"Migrated {result.count} tools")
    else:
        click.echo(f"Migration failed: {result.error}", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def diagnostics(ctx):
    """Print diagnostic information as JSON."""
    report = _run(ctx, lambda service: service.run_diagnostics())
    click.echo(json.dumps(report, indent=2, default=str))


@cli.command('setup-sql')
def setup_sql():
    """Print the SQL that creates the remote tools table."""
    click.echo(SETUP_SQL_PATH.read_text(encoding='utf-8'))


@cli.command()
@click.argument('user_id')
@click.option('--token', default=None, help='Access token sent to the remote backend')
@click.option('--no-reconcile', is_flag=True, help='Skip recovering tools from previous identities')
@click.pass_context
def login(ctx, user_id, token, no_reconcile):
    """Store a session for USER_ID."""
    from ..services.reconciler import MigrationReconciler

    async def action(service):
        await service.identity.store_session(user_id, token)
        if no_reconcile:
            return False
        return await MigrationReconciler(service).reconcile_anonymous_data()

    recovered = _run(ctx, action)
    click.echo(f"Signed in as {user_id}")
    if recovered:
        click.echo("Recovered tools from a previous session")


@cli.command()
@click.pass_context
def logout(ctx):
    """Forget the stored session."""
    _run(ctx, lambda service: service.identity.clear_session())
    click.echo("Signed out")


if __name__ == '__main__':
    cli()
