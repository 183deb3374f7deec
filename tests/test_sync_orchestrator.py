import dataclasses
import threading
from datetime import timedelta
from functools import partial
from unittest.mock import Mock

import pytest
import requests
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from conftest import FIRST_IMPORT, carnival_page, html_payload
from oldmanfooty.config import MySidelineSettings
from oldmanfooty.extensions import db
from oldmanfooty.models import SYSTEM_USER_EMAIL, Carnival, SyncLog, SyncStatus, User, utcnow
from oldmanfooty.services import catalog
from oldmanfooty.services.catalog import InvalidSyncTransition, SyncOutcome
from oldmanfooty.services.mysideline_fetcher import (
    FetchError,
    FetchErrorKind,
    fetch_source,
)
from oldmanfooty.services.reconciler import reconcile
from oldmanfooty.services.sync_orchestrator import (
    SyncDispatchError,
    SyncOrchestrator,
    TriggerOutcome,
)


def static_fetcher(content, attempts=1):
    def fetch(config, deadline=None):
        return html_payload(content, attempts=attempts)
    return fetch


def failing_fetcher(error):
    def fetch(config, deadline=None):
        raise error
    return fetch


@pytest.fixture()
def settings(app):
    return MySidelineSettings.from_config(app.config)


def orchestrator(settings, content=None, **kwargs):
    if content is not None:
        kwargs.setdefault('fetcher', static_fetcher(content))
    return SyncOrchestrator(settings, **kwargs)


def sync_logs():
    return list(db.session.execute(select(SyncLog).order_by(SyncLog.id)).scalars())


def carnivals():
    return {
        c.my_sideline_id: c
        for c in db.session.execute(select(Carnival)).scalars()
    }


# ---------------------------------------------------------------------------
# End-to-end runs
# ---------------------------------------------------------------------------

def test_first_import_of_two_masters_events(settings):
    result = orchestrator(settings, carnival_page(*FIRST_IMPORT)).run_once('scheduled')

    assert result.outcome is TriggerOutcome.STARTED
    (log,) = sync_logs()
    assert log.id == result.log_id
    assert log.status is SyncStatus.COMPLETED
    assert (log.events_processed, log.events_created, log.events_updated) == (2, 2, 0)
    assert log.meta['batchSize'] == 2
    assert log.meta['sampleIds'] == ['A1', 'B2']
    assert log.meta['trigger'] == 'scheduled'

    system_user = db.session.execute(select(User).where(User.email == SYSTEM_USER_EMAIL)).scalar_one()
    imported = carnivals()
    assert set(imported) == {'A1', 'B2'}
    for carnival in imported.values():
        assert carnival.created_by_user_id == system_user.id
        assert carnival.is_manually_entered is False
        assert carnival.claimed_at is None


def test_second_run_with_unchanged_document(settings):
    sync = orchestrator(settings, carnival_page(*FIRST_IMPORT))
    sync.run_once()
    before = {key: c.last_my_sideline_sync for key, c in carnivals().items()}

    result = sync.run_once()

    log = catalog.get_sync_log(result.log_id)
    assert log.status is SyncStatus.COMPLETED
    assert (log.events_processed, log.events_created, log.events_updated) == (2, 0, 0)
    assert log.meta['skipped'] == 2
    after = carnivals()
    assert len(after) == 2
    for key, carnival in after.items():
        assert carnival.last_my_sideline_sync >= before[key]


def test_record_adopted_between_runs(settings, club):
    orchestrator(settings, carnival_page(*FIRST_IMPORT)).run_once()
    a1 = carnivals()['A1']
    a1.claimed_at = utcnow()
    a1.club_id = club.id
    a1.title = 'Brisbane Masters Cup (Adopted)'
    db.session.commit()

    renamed = (('A1', 'Brisbane Masters Cup 2025', 'Dolphin Oval, Redcliffe, QLD', '2025-08-15', 'QLD'),
               FIRST_IMPORT[1])
    result = orchestrator(settings, carnival_page(*renamed)).run_once()

    log = catalog.get_sync_log(result.log_id)
    assert log.events_updated == 1
    a1 = carnivals()['A1']
    assert a1.title == 'Brisbane Masters Cup (Adopted)'
    assert a1.my_sideline_title == 'Brisbane Masters Cup 2025'


def test_duplicate_ids_fail_without_catalog_changes(settings):
    content = carnival_page(
        ('X', 'Masters Cup One', 'Brisbane, QLD', '2025-08-01', None),
        ('X', 'Masters Cup Two', 'Brisbane, QLD', '2025-08-02', None),
    )

    result = orchestrator(settings, content).run_once()

    log = catalog.get_sync_log(result.log_id)
    assert log.status is SyncStatus.FAILED
    assert 'idCollisionInBatch' in log.error_message
    assert log.meta['parseError']['kind'] == 'idCollisionInBatch'
    assert carnivals() == {}


def test_manual_trigger_while_scheduled_run_in_progress(settings):
    scheduled = catalog.open_sync_log(metadata={'trigger': 'scheduled'})

    result = orchestrator(settings, carnival_page(*FIRST_IMPORT)).trigger_manual()

    assert result.outcome is TriggerOutcome.SKIPPED
    assert result.to_dict() == {'outcome': 'skipped', 'reason': 'alreadyRunning'}
    assert [log.id for log in sync_logs()] == [scheduled.id]
    assert carnivals() == {}


def test_transient_503_then_success(settings):
    def respond(status, body=b''):
        response = requests.Response()
        response.status_code = status
        response._content = body
        response.url = settings.url
        response.headers['Content-Type'] = 'text/html'
        return response

    session = Mock()
    session.get.side_effect = [respond(503), respond(503), respond(200, carnival_page(*FIRST_IMPORT))]
    fetcher = partial(fetch_source, session=session, sleep=lambda s: None)

    result = orchestrator(settings, fetcher=fetcher).run_once()

    (log,) = sync_logs()
    assert log.id == result.log_id
    assert log.status is SyncStatus.COMPLETED
    assert log.meta['attemptCount'] == 3
    assert log.events_created == 2


# ---------------------------------------------------------------------------
# Boundaries and failures
# ---------------------------------------------------------------------------

def test_empty_document_completes_with_zero_counts(settings):
    result = orchestrator(settings, b'').run_once()

    log = catalog.get_sync_log(result.log_id)
    assert log.status is SyncStatus.COMPLETED
    assert (log.events_processed, log.events_created, log.events_updated) == (0, 0, 0)


def test_fetch_failure_is_recorded(settings):
    error = FetchError(FetchErrorKind.HTTP_STATUS, status_code=503, attempts=3)

    result = orchestrator(settings, fetcher=failing_fetcher(error)).run_once()

    log = catalog.get_sync_log(result.log_id)
    assert log.status is SyncStatus.FAILED
    assert log.error_message == 'httpStatus(503)'
    assert log.meta['attemptCount'] == 3
    assert log.completed_at is not None


def test_unexpected_error_still_closes_the_log(settings):
    def broken_parser(payload, event_url=None):
        raise KeyError('boom')

    result = orchestrator(settings, carnival_page(*FIRST_IMPORT), parser=broken_parser).run_once()

    log = catalog.get_sync_log(result.log_id)
    assert log.status is SyncStatus.FAILED
    assert log.error_message.startswith('unexpected: KeyError')
    assert catalog.should_run_sync() is True


def test_run_budget_exhausted_before_fetch(settings):
    ticks = iter([0.0, 10_000.0, 10_000.0])

    result = orchestrator(
        settings,
        carnival_page(*FIRST_IMPORT),
        clock=lambda: next(ticks),
    ).run_once()

    log = catalog.get_sync_log(result.log_id)
    assert log.status is SyncStatus.FAILED
    assert log.error_message == 'timeout'
    assert carnivals() == {}


def test_slow_fetch_is_abandoned_at_budget(settings):
    release = threading.Event()

    def slow_fetcher(config, deadline=None):
        release.wait(5)
        return html_payload(carnival_page(*FIRST_IMPORT))

    tight = dataclasses.replace(settings, run_budget_ms=100)
    try:
        result = orchestrator(tight, fetcher=slow_fetcher).run_once()
    finally:
        release.set()

    log = catalog.get_sync_log(result.log_id)
    assert log.status is SyncStatus.FAILED
    assert log.error_message == 'timeout'
    assert carnivals() == {}


def test_slow_reconciliation_is_rolled_back_at_budget(settings):
    # deadline, fetch, pre-reconcile check, first record; the second record is past budget
    ticks = iter([0.0, 1.0, 2.0, 3.0])

    result = orchestrator(
        settings,
        carnival_page(*FIRST_IMPORT),
        clock=lambda: next(ticks, 10_000.0),
    ).run_once()

    log = catalog.get_sync_log(result.log_id)
    assert log.status is SyncStatus.FAILED
    assert log.error_message == 'timeout'
    assert carnivals() == {}


def test_transaction_fault_after_records_applied_leaves_catalog_unchanged(settings):
    def reconcile_then_fail(tx, records, proxy_user_id, **kwargs):
        report = reconcile(tx, records, proxy_user_id, **kwargs)
        assert report.created == 2
        raise OperationalError('COMMIT', {}, Exception('disk I/O error'))

    result = orchestrator(
        settings,
        carnival_page(*FIRST_IMPORT),
        reconciler=reconcile_then_fail,
    ).run_once()

    log = catalog.get_sync_log(result.log_id)
    assert log.status is SyncStatus.FAILED
    assert log.error_message == 'reconcileFailed: OperationalError'
    assert carnivals() == {}
    assert db.session.execute(select(func.count(User.id))).scalar_one() == 0

def test_execute_run_rejects_closed_log(settings):
    log = catalog.open_sync_log()
    catalog.close_sync_log(log.id, SyncOutcome(status=SyncStatus.COMPLETED))

    with pytest.raises(InvalidSyncTransition):
        orchestrator(settings, b'').execute_run(log.id)


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------

def test_manual_trigger_runs_inline_without_dispatch(settings):
    result = orchestrator(settings, carnival_page(*FIRST_IMPORT)).trigger_manual(triggered_by='admin@oldmanfooty.au')

    assert result.outcome is TriggerOutcome.STARTED
    log = catalog.get_sync_log(result.log_id)
    assert log.status is SyncStatus.COMPLETED
    assert log.meta['triggeredBy'] == 'admin@oldmanfooty.au'
    assert log.meta['trigger'] == 'manual'


def test_manual_trigger_hands_log_to_dispatcher(settings):
    dispatched = []

    result = orchestrator(settings, b'').trigger_manual(dispatch=dispatched.append)

    assert dispatched == [result.log_id]
    assert catalog.get_sync_log(result.log_id).status is SyncStatus.RUNNING


def test_dispatch_failure_closes_the_log(settings):
    def dispatch(log_id):
        raise ConnectionError('redis unavailable')

    with pytest.raises(SyncDispatchError):
        orchestrator(settings, b'').trigger_manual(dispatch=dispatch)

    (log,) = sync_logs()
    assert log.status is SyncStatus.FAILED
    assert log.error_message.startswith('dispatchFailed')


def test_disabled_sync(settings):
    disabled = dataclasses.replace(settings, enabled=False, allow_manual_when_disabled=False)
    sync = orchestrator(disabled, carnival_page(*FIRST_IMPORT))

    assert sync.run_scheduled().outcome is TriggerOutcome.DISABLED
    assert sync.trigger_manual().outcome is TriggerOutcome.DISABLED
    assert sync.startup().outcome is TriggerOutcome.DISABLED
    assert sync_logs() == []


def test_manual_allowed_when_scheduled_sync_disabled(settings):
    manual_only = dataclasses.replace(settings, enabled=False, allow_manual_when_disabled=True)

    result = orchestrator(manual_only, carnival_page(*FIRST_IMPORT)).trigger_manual()

    assert result.outcome is TriggerOutcome.STARTED


# ---------------------------------------------------------------------------
# Startup and orphans
# ---------------------------------------------------------------------------

def test_reap_orphans_fails_stale_running_logs(settings):
    stale = catalog.open_sync_log(now=utcnow() - timedelta(hours=2))

    reaped = orchestrator(settings, b'').reap_orphans()

    assert reaped == [stale.id]
    log = catalog.get_sync_log(stale.id)
    assert log.status is SyncStatus.FAILED
    assert log.error_message == 'orphaned'


def test_reap_orphans_leaves_fresh_runs_alone(settings):
    fresh = catalog.open_sync_log(now=utcnow() - timedelta(minutes=10))

    assert orchestrator(settings, b'').reap_orphans() == []
    assert catalog.get_sync_log(fresh.id).is_running


def test_startup_runs_when_no_recent_success(settings):
    catalog.open_sync_log(now=utcnow() - timedelta(hours=3))

    result = orchestrator(settings, carnival_page(*FIRST_IMPORT)).startup()

    assert result.outcome is TriggerOutcome.STARTED
    statuses = [log.status for log in sync_logs()]
    assert statuses == [SyncStatus.FAILED, SyncStatus.COMPLETED]
    assert catalog.get_sync_log(result.log_id).meta['trigger'] == 'startup'


def test_startup_skips_after_recent_success(settings):
    sync = orchestrator(settings, carnival_page(*FIRST_IMPORT))
    sync.run_once()

    result = sync.startup()

    assert result.outcome is TriggerOutcome.SKIPPED
    assert result.reason == 'recentSuccess'
    assert db.session.execute(select(func.count(SyncLog.id))).scalar_one() == 1


def test_from_app_reads_flask_config(app):
    sync = SyncOrchestrator.from_app(app)

    assert sync.settings.url == app.config['MYSIDELINE_URL']
    assert sync.sync_type == 'mysideline'
