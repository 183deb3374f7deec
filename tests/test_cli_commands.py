from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select

from oldmanfooty.extensions import db
from oldmanfooty.models import SYSTEM_USER_EMAIL, Carnival, SyncLog, SyncStatus, User, utcnow
from oldmanfooty.services import catalog
from oldmanfooty.services.catalog import SyncOutcome


@pytest.fixture()
def runner(app):
    return app.test_cli_runner()


# ---------------------------------------------------------------------------
# flask mysideline status
# ---------------------------------------------------------------------------

def test_status_with_no_history(runner):
    result = runner.invoke(args=['mysideline', 'status'])

    assert result.exit_code == 0, result.output
    assert 'Database: reachable' in result.output
    assert 'none recorded' in result.output
    assert 'total syncs:      0' in result.output


def test_status_lists_recent_runs(runner):
    log = catalog.open_sync_log(metadata={'trigger': 'cli', 'attemptCount': 2, 'batchSize': 0,
                                          'parseWarnings': ['record 1: skipped']})
    catalog.close_sync_log(log.id, SyncOutcome.failed('httpStatus(503)'))

    result = runner.invoke(args=['mysideline', 'status', '--detailed'])

    assert result.exit_code == 0, result.output
    assert f'#{log.id} FAILED' in result.output
    assert 'error: httpStatus(503)' in result.output
    assert 'trigger: cli' in result.output
    assert 'warning: record 1: skipped' in result.output
    assert 'failed:           1' in result.output


def test_detailed_status_shows_twenty_logs_by_default(runner):
    now = utcnow()
    for offset in range(25):
        log = catalog.open_sync_log(now=now - timedelta(minutes=offset + 1))
        catalog.close_sync_log(log.id, SyncOutcome(status=SyncStatus.COMPLETED))

    assert 'Recent syncs (10):' in runner.invoke(args=['mysideline', 'status']).output
    assert 'Recent syncs (20):' in runner.invoke(args=['mysideline', 'status', '--detailed']).output
    assert 'Recent syncs (3):' in runner.invoke(args=['mysideline', 'status', '--detailed', '--limit', '3']).output


def test_status_exits_2_on_invalid_configuration(app, runner):
    app.config['MYSIDELINE_REQUEST_TIMEOUT'] = 'soon'

    result = runner.invoke(args=['mysideline', 'status'])

    assert result.exit_code == 2
    assert 'invalid configuration' in result.output


def test_status_exits_1_when_database_unreachable(runner):
    with patch('oldmanfooty.commands.mysideline.database_reachable', return_value=(False, 'connection refused')):
        result = runner.invoke(args=['mysideline', 'status'])

    assert result.exit_code == 1
    assert 'database unreachable: connection refused' in result.output


def test_status_exits_1_when_sync_log_table_missing(runner):
    SyncLog.__table__.drop(db.engine)

    result = runner.invoke(args=['mysideline', 'status'])

    assert result.exit_code == 1
    assert 'sync_logs table is missing' in result.output


# ---------------------------------------------------------------------------
# flask mysideline sync / reap
# ---------------------------------------------------------------------------

def test_sync_imports_fixture_in_mock_mode(app, runner):
    app.config['MYSIDELINE_USE_MOCK'] = True

    result = runner.invoke(args=['mysideline', 'sync'])

    assert result.exit_code == 0, result.output
    assert '2 processed, 2 created, 0 updated' in result.output
    ids = set(db.session.execute(select(Carnival.my_sideline_id)).scalars())
    assert ids == {'A1', 'B2'}


def test_sync_exits_1_on_failed_run(runner):
    with patch('oldmanfooty.services.mysideline_fetcher.FetchConfig.from_settings',
               side_effect=OSError('fixture unreadable')):
        result = runner.invoke(args=['mysideline', 'sync'])

    assert result.exit_code == 1
    assert 'failed: unexpected: OSError' in result.output


def test_sync_skipped_while_running(app, runner):
    catalog.open_sync_log()

    result = runner.invoke(args=['mysideline', 'sync'])

    assert result.exit_code == 0
    assert 'already running' in result.output


def test_reap_marks_orphans_failed(runner):
    stale = catalog.open_sync_log(now=utcnow() - timedelta(hours=3))

    result = runner.invoke(args=['mysideline', 'reap'])

    assert result.exit_code == 0
    assert 'Reaped 1 orphaned sync log(s)' in result.output
    assert catalog.get_sync_log(stale.id).error_message == 'orphaned'


def test_reap_with_nothing_to_do(runner):
    result = runner.invoke(args=['mysideline', 'reap'])

    assert 'No orphaned sync logs found.' in result.output


# ---------------------------------------------------------------------------
# flask user
# ---------------------------------------------------------------------------

def test_user_create_and_set_password(runner, club):
    result = runner.invoke(args=[
        'user', 'create',
        '--email', 'Delegate@Redcliffe.com.au',
        '--password', 'first-password',
        '--club', 'Redcliffe Dolphins Masters',
        '--primary-delegate',
    ])
    assert result.exit_code == 0, result.output
    assert 'User created successfully!' in result.output

    user = db.session.execute(select(User).where(User.email == 'delegate@redcliffe.com.au')).scalar_one()
    assert user.club_id == club.id
    assert user.is_primary_delegate
    assert user.check_password('first-password')

    result = runner.invoke(args=['user', 'set-password', '--email', 'delegate@redcliffe.com.au',
                                 '--password', 'second-password'])
    assert 'Password updated.' in result.output
    db.session.refresh(user)
    assert user.check_password('second-password')


def test_user_create_rejects_duplicates_and_unknown_clubs(runner, admin_user):
    result = runner.invoke(args=['user', 'create', '--email', admin_user.email, '--password', 'x'])
    assert 'already exists' in result.output

    result = runner.invoke(args=['user', 'create', '--email', 'new@example.com', '--password', 'x',
                                 '--club', 'Nowhere FC'])
    assert 'not found' in result.output


def test_ensure_system_user_command(runner):
    result = runner.invoke(args=['user', 'ensure-system'])
    assert result.exit_code == 0
    assert SYSTEM_USER_EMAIL in result.output

    result = runner.invoke(args=['user', 'set-password', '--email', SYSTEM_USER_EMAIL, '--password', 'x'])
    assert 'cannot have a password' in result.output
