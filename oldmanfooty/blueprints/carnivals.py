"""Carnival claim and release endpoints for club delegates."""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import current_user

from oldmanfooty.auth import delegate_required
from oldmanfooty.models import Carnival
from oldmanfooty.services.audit import log_admin_action
from oldmanfooty.services.claims import ClaimError, release_ownership, take_ownership

carnivals_bp = Blueprint('carnivals', __name__)


def serialize_carnival(carnival: Carnival) -> dict:
    return {
        'id': carnival.id,
        'title': carnival.title,
        'mySidelineId': carnival.my_sideline_id,
        'mySidelineTitle': carnival.my_sideline_title,
        'date': carnival.date.isoformat() if carnival.date else None,
        'state': carnival.state,
        'locationAddress': carnival.location_address,
        'organiserContactEmail': carnival.organiser_contact_email,
        'registrationLink': carnival.registration_link,
        'clubId': carnival.club_id,
        'isManuallyEntered': carnival.is_manually_entered,
        'isActive': carnival.is_active,
        'claimedAt': carnival.claimed_at.isoformat() if carnival.claimed_at else None,
        'lastMySidelineSync': carnival.last_my_sideline_sync.isoformat() if carnival.last_my_sideline_sync else None,
    }


@carnivals_bp.route('/<carnival_id>/claim', methods=['POST'])
@delegate_required
def claim_carnival(carnival_id):
    user = current_user._get_current_object()
    try:
        carnival = take_ownership(carnival_id, user)
    except ClaimError as exc:
        return jsonify({'error': exc.message}), exc.status_code

    log_admin_action(user, 'carnival_claimed', 'carnival', carnival.id, {'club_id': carnival.club_id})
    return jsonify({'carnival': serialize_carnival(carnival)})


@carnivals_bp.route('/<carnival_id>/release', methods=['POST'])
@delegate_required
def release_carnival(carnival_id):
    user = current_user._get_current_object()
    try:
        carnival = release_ownership(carnival_id, user)
    except ClaimError as exc:
        return jsonify({'error': exc.message}), exc.status_code

    log_admin_action(user, 'carnival_released', 'carnival', carnival.id)
    return jsonify({'carnival': serialize_carnival(carnival)})
