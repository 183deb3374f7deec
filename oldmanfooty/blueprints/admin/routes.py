"""Administrator JSON endpoints for the MySideline sync and carnival claims."""

from __future__ import annotations

from functools import partial

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from oldmanfooty.auth import admin_required
from oldmanfooty.blueprints.carnivals import serialize_carnival
from oldmanfooty.config import ConfigError, MySidelineSettings
from oldmanfooty.services import catalog
from oldmanfooty.services.audit import log_admin_action
from oldmanfooty.services.claims import ClaimError, admin_claim_on_behalf
from oldmanfooty.services.sync_orchestrator import (
    SyncDispatchError,
    SyncOrchestrator,
    TriggerOutcome,
)

admin_bp = Blueprint('admin', __name__)

TRIGGER_STATUS = {
    TriggerOutcome.STARTED: 202,
    TriggerOutcome.SKIPPED: 409,
    TriggerOutcome.DISABLED: 503,
}


@admin_bp.route('/mysideline/sync', methods=['POST'])
@admin_required
def trigger_mysideline_sync():
    try:
        orchestrator = SyncOrchestrator.from_app()
    except ConfigError as exc:
        current_app.logger.error(f"MySideline sync misconfigured: {exc}")
        return jsonify({'outcome': 'disabled', 'reason': 'misconfigured', 'error': str(exc)}), 503

    settings = orchestrator.settings
    dispatch = None
    if not settings.inline_runs:
        from oldmanfooty.services.queue import queue_service
        dispatch = partial(queue_service.enqueue_sync_run, budget_ms=settings.run_budget_ms)

    user = current_user._get_current_object()
    try:
        result = orchestrator.trigger_manual(dispatch=dispatch, triggered_by=user.email)
    except SyncDispatchError as exc:
        return jsonify({'outcome': 'failed', 'reason': 'dispatchFailed', 'error': str(exc)}), 503

    if result.outcome is TriggerOutcome.STARTED:
        log_admin_action(user, 'mysideline_sync_triggered', 'sync_log', str(result.log_id))
    return jsonify(result.to_dict()), TRIGGER_STATUS[result.outcome]


@admin_bp.route('/mysideline/status', methods=['GET'])
@admin_required
def mysideline_status():
    limit = min(max(request.args.get('limit', 10, type=int), 1), 100)
    days = min(max(request.args.get('days', 30, type=int), 1), 365)

    try:
        settings = MySidelineSettings.from_config(current_app.config).as_dict()
        config_error = None
    except ConfigError as exc:
        settings = None
        config_error = str(exc)

    logs = catalog.recent_sync_logs(catalog.MYSIDELINE_SYNC, limit=limit)
    return jsonify({
        'settings': settings,
        'configError': config_error,
        'running': any(log.is_running for log in logs),
        'logs': [log.to_dict() for log in logs],
        'stats': catalog.sync_stats(catalog.MYSIDELINE_SYNC, days=days),
    })


@admin_bp.route('/carnivals/<carnival_id>/claim', methods=['POST'])
@admin_required
def admin_claim_carnival(carnival_id):
    payload = request.get_json(silent=True) or {}
    club_id = payload.get('club_id') or request.form.get('club_id')
    if not club_id:
        return jsonify({'error': 'club_id is required'}), 400

    admin = current_user._get_current_object()
    try:
        carnival = admin_claim_on_behalf(carnival_id, admin, club_id)
    except ClaimError as exc:
        return jsonify({'error': exc.message}), exc.status_code

    log_admin_action(admin, 'carnival_claimed_on_behalf', 'carnival', carnival.id, {'club_id': club_id})
    return jsonify({'carnival': serialize_carnival(carnival)})


@admin_bp.route('/clubs/search', methods=['GET'])
@admin_required
def search_clubs():
    term = request.args.get('q', '')
    if len(term.strip()) < 2:
        return jsonify({'items': []})
    clubs = catalog.search_clubs(term)
    return jsonify({'items': [
        {'id': club.id, 'clubName': club.club_name, 'state': club.state}
        for club in clubs
    ]})
