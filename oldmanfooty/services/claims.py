"""Club delegates adopting (and letting go of) MySideline-imported carnivals."""

from __future__ import annotations

from sqlalchemy import select

from oldmanfooty.extensions import db
from oldmanfooty.models import Carnival, Club, User, utcnow


class ClaimError(Exception):
    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _locked_carnival(carnival_id: str) -> Carnival:
    stmt = (
        select(Carnival)
        .where(Carnival.id == carnival_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    carnival = db.session.execute(stmt).scalar_one_or_none()
    if carnival is None:
        raise ClaimError('Carnival not found', 404)
    return carnival


def _ensure_claimable(carnival: Carnival, club: Club) -> None:
    if not carnival.is_from_my_sideline or carnival.is_manually_entered:
        raise ClaimError('Only MySideline imported carnivals can be claimed', 400)
    if carnival.claimed_at is not None:
        raise ClaimError('This carnival has already been claimed', 409)
    if carnival.state and club.state and carnival.state != club.state:
        raise ClaimError(
            f"Clubs can only claim carnivals in their own state ({club.state}) "
            f"or carnivals with no state. This carnival is in {carnival.state}.",
            403,
        )


def _claim(carnival: Carnival, club: Club, contact: User) -> Carnival:
    # Keep the source contact so a release can hand it back
    if carnival.original_my_sideline_contact_email is None:
        carnival.original_my_sideline_contact_email = carnival.organiser_contact_email
    carnival.club_id = club.id
    carnival.claimed_at = utcnow()
    carnival.organiser_contact_email = contact.email
    db.session.commit()
    return carnival


def take_ownership(carnival_id: str, user: User) -> Carnival:
    """Claim a carnival for the user's club."""
    carnival = _locked_carnival(carnival_id)
    club = db.session.get(Club, user.club_id) if user.club_id else None
    if club is None:
        db.session.rollback()
        raise ClaimError('You must be associated with a club to claim carnival ownership', 403)
    if not club.is_active:
        db.session.rollback()
        raise ClaimError('Your club must be active to claim carnival ownership', 403)
    try:
        _ensure_claimable(carnival, club)
    except ClaimError:
        db.session.rollback()
        raise
    return _claim(carnival, club, user)


def release_ownership(carnival_id: str, user: User) -> Carnival:
    """Return a claimed carnival to the MySideline-managed pool."""
    carnival = _locked_carnival(carnival_id)
    if carnival.claimed_at is None:
        db.session.rollback()
        raise ClaimError('This carnival is not currently claimed', 409)
    if not carnival.is_from_my_sideline:
        db.session.rollback()
        raise ClaimError('Only MySideline imported carnivals can be released', 400)
    if not user.is_admin and (user.club_id is None or user.club_id != carnival.club_id):
        db.session.rollback()
        raise ClaimError('You can only release carnivals claimed by your club', 403)

    carnival.club_id = None
    carnival.claimed_at = None
    carnival.organiser_contact_email = carnival.original_my_sideline_contact_email
    db.session.commit()
    return carnival


def admin_claim_on_behalf(carnival_id: str, admin: User, club_id: str) -> Carnival:
    """Administrator claim for a club, using the club's primary delegate as contact."""
    if not admin.is_admin:
        raise ClaimError('Only administrators can claim carnivals on behalf of other clubs', 403)

    carnival = _locked_carnival(carnival_id)
    club = db.session.get(Club, club_id)
    if club is None:
        db.session.rollback()
        raise ClaimError('Target club not found', 404)
    if not club.is_active:
        db.session.rollback()
        raise ClaimError('Cannot claim carnival for an inactive club', 400)

    delegate = next(
        (u for u in club.delegates if u.is_primary_delegate and u.active),
        None,
    )
    if delegate is None:
        db.session.rollback()
        raise ClaimError('Target club must have an active primary delegate to claim carnival', 400)

    if not carnival.is_from_my_sideline or carnival.is_manually_entered:
        db.session.rollback()
        raise ClaimError('Only MySideline imported carnivals can be claimed', 400)
    if carnival.claimed_at is not None:
        db.session.rollback()
        raise ClaimError('This carnival has already been claimed', 409)
    return _claim(carnival, club, delegate)


__all__ = [
    'ClaimError',
    'admin_claim_on_behalf',
    'release_ownership',
    'take_ownership',
]
