"""MySideline sync operator CLI commands."""

import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy.exc import SQLAlchemyError

from oldmanfooty.config import ConfigError, MySidelineSettings
from oldmanfooty.services import catalog
from oldmanfooty.services.db import database_reachable, sync_log_table_exists
from oldmanfooty.services.sync_orchestrator import SyncOrchestrator, TriggerOutcome

EXIT_DATABASE_ERROR = 1
EXIT_CONFIG_ERROR = 2

STATUS_COLOURS = {'completed': 'green', 'failed': 'red', 'running': 'yellow'}


def _echo_log(log, detailed):
    data = log.to_dict()
    colour = STATUS_COLOURS.get(data['status'], 'white')
    click.echo(
        f"  #{data['id']} {click.style(data['status'].upper(), fg=colour)} "
        f"started {data['startedAt']} completed {data['completedAt'] or '-'} | "
        f"processed {data['eventsProcessed']}, created {data['eventsCreated']}, updated {data['eventsUpdated']}"
    )
    if data['errorMessage']:
        click.echo(click.style(f"      error: {data['errorMessage']}", fg='red'))
    if detailed and data['metadata']:
        meta = data['metadata']
        click.echo(f"      trigger: {meta.get('trigger', '-')}, attempts: {meta.get('attemptCount', '-')}, "
                   f"batch: {meta.get('batchSize', '-')}")
        for warning in meta.get('parseWarnings', [])[:5]:
            click.echo(f"      warning: {warning}")


@click.group('mysideline')
def mysideline_commands():
    """MySideline carnival sync commands."""
    pass


@mysideline_commands.command('status')
@click.option('--limit', default=10, show_default=True, help='Number of recent sync logs to show')
@click.option('--days', default=30, show_default=True, help='Trailing window for statistics')
@click.option('--detailed', is_flag=True, help='Show run metadata and 20 logs by default')
@with_appcontext
@click.pass_context
def status(ctx, limit, days, detailed):
    """Report sync configuration, database health, recent runs and statistics."""
    if detailed and ctx.get_parameter_source('limit') == click.core.ParameterSource.DEFAULT:
        limit = 20

    click.echo(click.style('MySideline sync status', bold=True))
    click.echo('Configuration:')
    try:
        settings = MySidelineSettings.from_config(current_app.config)
    except ConfigError as exc:
        click.echo(click.style(f'Error: invalid configuration: {exc}', fg='red'))
        ctx.exit(EXIT_CONFIG_ERROR)

    click.echo(f'  enabled:       {settings.enabled}')
    click.echo(f'  useMock:       {settings.use_mock}')
    click.echo(f'  url:           {settings.url}')
    click.echo(f'  timeout:       {settings.timeout_ms} ms')
    click.echo(f'  retryAttempts: {settings.retry_attempts}')
    click.echo(f'  schedule:      {settings.schedule}')

    reachable, error = database_reachable()
    if not reachable:
        click.echo(click.style(f'Error: database unreachable: {error}', fg='red'))
        ctx.exit(EXIT_DATABASE_ERROR)
    click.echo(click.style('Database: reachable', fg='green'))

    try:
        if not sync_log_table_exists():
            click.echo(click.style('Error: sync_logs table is missing; run "flask db upgrade"', fg='red'))
            ctx.exit(EXIT_DATABASE_ERROR)
        click.echo('sync_logs table: present')

        logs = catalog.recent_sync_logs(settings.sync_type, limit=limit)
        stats = catalog.sync_stats(settings.sync_type, days=days)
    except SQLAlchemyError as exc:
        click.echo(click.style(f'Error: database query failed: {exc}', fg='red'))
        ctx.exit(EXIT_DATABASE_ERROR)

    click.echo(f'Recent syncs ({len(logs)}):')
    if not logs:
        click.echo('  none recorded')
    for log in logs:
        _echo_log(log, detailed)

    click.echo(f'Statistics (last {days} days):')
    click.echo(f"  total syncs:      {stats['totalSyncs']}")
    click.echo(f"  successful:       {stats['successful']}")
    click.echo(f"  failed:           {stats['failed']}")
    click.echo(f"  success rate:     {stats['successRate']}%")
    click.echo(f"  events processed: {stats['totalEventsProcessed']}")
    click.echo(f"  events created:   {stats['totalEventsCreated']}")
    click.echo(f"  events updated:   {stats['totalEventsUpdated']}")
    click.echo(f"  last successful:  {stats['lastSuccessfulSync'] or 'never'}")
    click.echo(f"  last failed:      {stats['lastFailedSync'] or 'never'}")


@mysideline_commands.command('sync')
@with_appcontext
@click.pass_context
def sync(ctx):
    """Run one sync in this process."""
    try:
        orchestrator = SyncOrchestrator.from_app()
    except ConfigError as exc:
        click.echo(click.style(f'Error: invalid configuration: {exc}', fg='red'))
        ctx.exit(EXIT_CONFIG_ERROR)

    result = orchestrator.run_once(trigger='cli')
    if result.outcome is TriggerOutcome.SKIPPED:
        click.echo(click.style('Skipped: a MySideline sync is already running', fg='yellow'))
        return

    log = catalog.get_sync_log(result.log_id)
    if log.status.value == 'completed':
        click.echo(click.style(
            f'Sync #{log.id} completed: {log.events_processed} processed, '
            f'{log.events_created} created, {log.events_updated} updated',
            fg='green',
        ))
    else:
        click.echo(click.style(f'Sync #{log.id} failed: {log.error_message}', fg='red'))
        ctx.exit(1)


@mysideline_commands.command('reap')
@with_appcontext
@click.pass_context
def reap(ctx):
    """Mark stale running sync logs as failed (orphaned)."""
    try:
        orchestrator = SyncOrchestrator.from_app()
    except ConfigError as exc:
        click.echo(click.style(f'Error: invalid configuration: {exc}', fg='red'))
        ctx.exit(EXIT_CONFIG_ERROR)

    reaped = orchestrator.reap_orphans()
    if reaped:
        click.echo(click.style(f'Reaped {len(reaped)} orphaned sync log(s): {", ".join(map(str, reaped))}', fg='yellow'))
    else:
        click.echo('No orphaned sync logs found.')
