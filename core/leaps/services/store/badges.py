"""Badge definitions, manual assignment, and automatic grants."""

from typing import Optional, Dict, Any, List, Iterable

from sqlalchemy import func

from ... import logging
from ...domain.badge import Badge
from ...domain.meta import LEARN_TAGS
from ...domain.submission import Submission
from ...exceptions import InvalidRequest
from ...rules.badges import badges_to_grant
from .audit import audit_log
from .exceptions import NoSuchBadge, NoSuchUser, DuplicateEntry, BadgeInUse
from .util import current_session
from . import models

logger = logging.getLogger(__name__)

MAX_BULK_USERS = 100


def _get_badge(code: str) -> models.Badge:
    row = current_session().get(models.Badge, code)
    if row is None:
        raise NoSuchBadge('Badge not found')
    return row


def _meta(code: str, **extra: Any) -> Dict[str, Any]:
    return dict(extra, entityType='badge', entityId=code)


def list_badges(include_stats: bool = True) -> List[Dict[str, Any]]:
    """Get all badge definitions, optionally with who has earned them."""
    session = current_session()
    badges = []
    for row in session.query(models.Badge).order_by(models.Badge.code):
        data = {'code': row.code, 'name': row.name,
                'description': row.description, 'criteria': row.criteria or {},
                'icon_url': row.icon_url}
        if include_stats:
            data['earned_count'] = len(row.earned)
            data['earned_by'] = [
                {'id': earned.user.id, 'name': earned.user.name,
                 'handle': earned.user.handle,
                 'earned_at': earned.earned_at.isoformat()
                 if earned.earned_at else None}
                for earned in row.earned
            ]
        badges.append(data)
    return badges


def create_badge(badge: Badge, actor_id: str) -> Badge:
    """Add a new badge definition."""
    session = current_session()
    if session.get(models.Badge, badge.code) is not None:
        raise DuplicateEntry('Badge code already exists')
    row = models.Badge(code=badge.code, name=badge.name,
                       description=badge.description,
                       criteria=badge.criteria, icon_url=badge.icon_url)
    session.add(row)
    session.flush()
    audit_log(actor_id, 'CREATE_BADGE', badge.code,
              _meta(badge.code, badgeName=badge.name,
                    criteria=badge.criteria))
    return row.to_badge()


def update_badge(code: str, actor_id: str, **updates: Any) -> Badge:
    """Change the name, description, criteria, or icon of a badge."""
    row = _get_badge(code)
    original = {'name': row.name, 'description': row.description,
                'criteria': row.criteria, 'icon_url': row.icon_url}
    changes = {key: value for key, value in updates.items()
               if key in original}
    for key, value in changes.items():
        setattr(row, key, value)
    current_session().flush()
    audit_log(actor_id, 'UPDATE_BADGE', code,
              _meta(code, updates=changes, original=original))
    return row.to_badge()


def delete_badge(code: str, actor_id: str) -> None:
    """Remove a badge definition that nobody has earned."""
    row = _get_badge(code)
    if row.earned:
        raise BadgeInUse('Cannot delete badge that has been earned by users')
    session = current_session()
    session.delete(row)
    session.flush()
    audit_log(actor_id, 'DELETE_BADGE', code,
              _meta(code, badgeName=row.name, criteria=row.criteria))


def _check_bulk(user_ids: List[str]) -> None:
    if not user_ids:
        raise InvalidRequest('badgeCode and userIds are required')
    if len(user_ids) > MAX_BULK_USERS:
        raise InvalidRequest(f'Maximum {MAX_BULK_USERS} users per bulk'
                             ' badge operation')


def assign_badge(code: str, user_ids: List[str], actor_id: str,
                 reason: Optional[str] = None) -> Dict[str, Any]:
    """Manually give a badge to up to 100 users."""
    _check_bulk(user_ids)
    badge = _get_badge(code)
    session = current_session()
    known = {uid for (uid,) in session.query(models.User.id)
             .filter(models.User.id.in_(user_ids))}
    if not known:
        raise NoSuchUser('No valid users found')
    holders = {uid for (uid,) in session.query(models.EarnedBadge.user_id)
               .filter(models.EarnedBadge.badge_code == code)
               .filter(models.EarnedBadge.user_id.in_(user_ids))}
    new_ids = [uid for uid in dict.fromkeys(user_ids)
               if uid in known and uid not in holders]
    if not new_ids:
        raise InvalidRequest('All specified users already have this badge')
    for user_id in new_ids:
        session.add(models.EarnedBadge(user_id=user_id, badge_code=code))
        audit_log(actor_id, 'ASSIGN_BADGE', user_id,
                  _meta(code, badgeCode=code, badgeName=badge.name,
                        reason=reason, manualAssignment=True))
    session.flush()
    return {'message': f'Badge "{badge.name}" assigned to {len(new_ids)}'
                       ' users',
            'processed': len(new_ids),
            'failed': len(user_ids) - len(new_ids)}


def remove_badge(code: str, user_ids: List[str], actor_id: str,
                 reason: Optional[str] = None) -> Dict[str, Any]:
    """Manually take a badge away from up to 100 users."""
    _check_bulk(user_ids)
    session = current_session()
    held = list(session.query(models.EarnedBadge)
                .filter(models.EarnedBadge.badge_code == code)
                .filter(models.EarnedBadge.user_id.in_(user_ids)))
    if not held:
        raise NoSuchBadge('No badge assignments found for specified users')
    name = held[0].badge.name
    for earned in held:
        audit_log(actor_id, 'REMOVE_BADGE', earned.user_id,
                  _meta(code, badgeName=name, reason=reason,
                        earnedAt=earned.earned_at, manualRemoval=True))
        session.delete(earned)
    session.flush()
    return {'message': f'Badge "{name}" removed from {len(held)} users',
            'processed': len(held), 'failed': len(user_ids) - len(held)}


def user_badges(user_ids: Iterable[str]) -> Dict[str, List[Dict[str, Any]]]:
    """Get the badges held by each of several users."""
    held: Dict[str, List[Dict[str, Any]]] = {}
    rows = current_session().query(models.EarnedBadge, models.Badge) \
        .join(models.Badge) \
        .filter(models.EarnedBadge.user_id.in_(list(user_ids))) \
        .order_by(models.EarnedBadge.earned_at)
    for earned, badge in rows:
        held.setdefault(earned.user_id, []).append({
            'code': badge.code, 'name': badge.name,
            'icon_url': badge.icon_url,
            'earned_at': earned.earned_at.isoformat()
            if earned.earned_at else None
        })
    return held


def grant_badges_for_user(user_id: str) -> List[str]:
    """
    Grant any automatic badges that a user has newly earned.

    Badges whose definitions have not been seeded are skipped.
    """
    session = current_session()
    have = [code for (code,) in session.query(models.EarnedBadge.badge_code)
            .filter(models.EarnedBadge.user_id == user_id)]
    tags = [tag for (tag,) in session.query(models.LearnTagGrant.tag_name)
            .filter(models.LearnTagGrant.user_id == user_id)
            .filter(models.LearnTagGrant.tag_name.in_(LEARN_TAGS))]
    approved = dict(
        session.query(models.Submission.activity_code,
                      func.count(models.Submission.id))
        .filter(models.Submission.user_id == user_id)
        .filter(models.Submission.status == Submission.APPROVED)
        .group_by(models.Submission.activity_code)
    )
    granted = []
    for code in badges_to_grant(have, tags, approved):
        if session.get(models.Badge, code) is None:
            logger.warning('Badge %s is not defined; not granting', code)
            continue
        session.add(models.EarnedBadge(user_id=user_id, badge_code=code))
        granted.append(code)
    if granted:
        session.flush()
        logger.info('Granted %s to user %s', ', '.join(granted), user_id)
    return granted
