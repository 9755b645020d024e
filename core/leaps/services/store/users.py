"""Participant and staff accounts."""

import math
from typing import Optional, Dict, Any, List

from sqlalchemy import func, or_

from ... import logging
from ...domain.agent import User
from ...domain.meta import UserRole, UserType
from ...domain.kajabi import normalize_contact_id
from ...domain.util import fold, make_handle
from ...exceptions import InvalidRequest, NotPermitted
from .audit import audit_log
from .exceptions import NoSuchUser, DuplicateEntry
from .util import current_session
from . import models

logger = logging.getLogger(__name__)

EDITABLE = ('name', 'handle', 'school', 'cohort', 'role', 'user_type')
PROTECTED_ROLES = (UserRole.ADMIN, UserRole.SUPERADMIN)


def get_user_row(user_id: str) -> models.User:
    row = current_session().get(models.User, user_id)
    if row is None:
        raise NoSuchUser('User not found')
    return row


def find_user(user_id: str) -> Optional[User]:
    """Get a user by ID, or ``None`` if there is no such user."""
    row = current_session().get(models.User, user_id)
    return row.to_agent() if row is not None else None


def create_user(user_id: str, email: str, name: str = '',
                handle: Optional[str] = None, **fields: Any) -> models.User:
    """Add a local account, e.g. when a user first signs in."""
    session = current_session()
    email = email.lower().strip()
    if session.query(models.User).filter(models.User.email == email).count():
        raise DuplicateEntry('A user with that email already exists')
    handle = handle or _unique_handle(name or email.split('@')[0])
    row = models.User(id=user_id, email=email, name=name, handle=handle,
                      **{k: v for k, v in fields.items()
                         if k in ('school', 'cohort', 'role', 'user_type',
                                  'kajabi_contact_id', 'avatar_url')})
    session.add(row)
    session.flush()
    return row


def _unique_handle(name: str) -> str:
    base = make_handle(name) or 'user'
    session = current_session()
    handle, n = base, 1
    while session.query(models.User).filter(models.User.handle == handle)\
            .count():
        n += 1
        handle = f'{base}-{n}'
    return handle


def find_user_by_email(email: str) -> Optional[models.User]:
    """Case-insensitive lookup by e-mail address."""
    if not email:
        return None
    return current_session().query(models.User) \
        .filter(func.lower(models.User.email) == email.lower().strip()) \
        .first()


def match_kajabi_user(contact_id: Optional[str],
                      email: Optional[str]) -> Optional[models.User]:
    """
    Find the local user for a Kajabi contact.

    Users are matched on their linked contact ID first, then on e-mail. When
    a user matched by e-mail has no linked contact yet, the contact ID is
    linked to them.
    """
    session = current_session()
    contact_id = normalize_contact_id(contact_id)
    user = None
    if contact_id:
        user = session.query(models.User) \
            .filter(models.User.kajabi_contact_id == contact_id) \
            .first()
    if user is None and email:
        user = find_user_by_email(email)
        if user is not None and not user.kajabi_contact_id and contact_id:
            link_kajabi_contact(user, contact_id)
    return user


def link_kajabi_contact(user: models.User, contact_id: str) -> models.User:
    """Associate a Kajabi contact with a user, unless already taken."""
    contact_id = normalize_contact_id(contact_id)
    if not contact_id:
        return user
    session = current_session()
    owner = session.query(models.User) \
        .filter(models.User.kajabi_contact_id == contact_id).first()
    if owner is not None and owner.id != user.id:
        logger.warning('Kajabi contact %s already linked to user %s',
                       contact_id, owner.id)
        return owner
    user.kajabi_contact_id = contact_id
    session.flush()
    return user


def list_users(search: Optional[str] = None, role: Optional[str] = None,
               user_type: Optional[str] = None, cohort: Optional[str] = None,
               page: int = 1, limit: int = 50,
               sort_by: str = 'created', sort_order: str = 'desc') \
        -> Dict[str, Any]:
    """Get a page of users, with their point totals."""
    session = current_session()
    q = session.query(models.User)
    if search:
        pattern = f'%{search.strip().lower()}%'
        q = q.filter(or_(func.lower(models.User.name).like(pattern),
                         func.lower(models.User.email).like(pattern),
                         func.lower(models.User.handle).like(pattern),
                         func.lower(models.User.school).like(pattern)))
    if role and role != 'ALL':
        q = q.filter(models.User.role == role.upper())
    if user_type and user_type != 'ALL':
        q = q.filter(models.User.user_type == user_type.upper())
    if cohort and cohort != 'ALL':
        q = q.filter(models.User.cohort == cohort)
    total = q.count()
    column = getattr(models.User, sort_by
                     if sort_by in ('created', 'name', 'email') else 'created')
    column = column.asc() if sort_order == 'asc' else column.desc()
    rows: List[models.User] = list(
        q.order_by(column).offset((page - 1) * limit).limit(limit)
    )
    totals = dict(
        session.query(models.PointsLedger.user_id,
                      func.sum(models.PointsLedger.delta_points))
        .filter(models.PointsLedger.user_id.in_([r.id for r in rows]))
        .group_by(models.PointsLedger.user_id)
    )
    users = []
    for row in rows:
        data = row.to_dict()
        data['total_points'] = int(totals.get(row.id) or 0)
        data['submission_count'] = len(row.submissions)
        data['badge_count'] = len(row.earned_badges)
        users.append(data)
    return {'users': users,
            'pagination': {'page': page, 'limit': limit, 'total': total,
                           'pages': int(math.ceil(total / limit))}}


def update_user(user_id: str, actor: User, **fields: Any) -> Dict[str, Any]:
    """
    Change profile fields, role, or participant type of a user.

    Only a superadmin may grant or revoke the admin roles, and nobody may
    lower their own role.

    Raises
    ------
    :class:`.NoSuchUser`
    :class:`.NotPermitted`
    :class:`.InvalidRequest`
    :class:`.DuplicateEntry`
        If the requested handle is taken.

    """
    row = get_user_row(user_id)
    changes = {key: value for key, value in fields.items()
               if key in EDITABLE and value is not None
               and value != getattr(row, key)}
    if not changes:
        raise InvalidRequest('No changes provided')

    role = changes.get('role')
    if role is not None:
        role = changes['role'] = str(role).upper()
        if role not in UserRole.ORDER:
            raise InvalidRequest(f'Invalid role: {role}')
        if actor.role != UserRole.SUPERADMIN \
                and (role in PROTECTED_ROLES or row.role in PROTECTED_ROLES):
            raise NotPermitted('Insufficient permissions to modify admin'
                               ' roles')
        if actor.native_id == user_id \
                and UserRole.rank(role) < UserRole.rank(actor.role):
            raise NotPermitted('Cannot demote your own role')
    if 'user_type' in changes:
        changes['user_type'] = str(changes['user_type']).upper()
        if changes['user_type'] not in UserType.ALL:
            raise InvalidRequest(f'Invalid user type: {changes["user_type"]}')
    if 'handle' in changes:
        handle = make_handle(changes['handle'])
        if not handle:
            raise InvalidRequest('Invalid handle')
        taken = current_session().query(models.User) \
            .filter(models.User.handle == handle) \
            .filter(models.User.id != user_id).count()
        if taken:
            raise DuplicateEntry('Handle is already taken')
        changes['handle'] = handle

    original = {key: getattr(row, key) for key in changes}
    for key, value in changes.items():
        setattr(row, key, value)
    current_session().flush()
    audit_log(actor.actor_id, 'UPDATE_USER', user_id,
              {'entityType': 'user', 'entityId': user_id,
               'changes': changes, 'original': original})
    return row.to_dict()


def search_key(row: models.User) -> str:
    """Accent- and case-folded text that a user can be found by."""
    return ' '.join(fold(v) for v in (row.name, row.handle, row.school) if v)


MAX_BULK_USERS = 100


def bulk_update_users(user_ids: List[str], actor: User,
                      **fields: Any) -> Dict[str, Any]:
    """
    Set the participant type, school, or cohort of several users.

    Each user is updated in its own savepoint, so that a failure for one
    user does not undo the others. Users that already match are counted as
    processed.

    Raises
    ------
    :class:`.InvalidRequest`
        If no user IDs or no fields are given, or too many users.

    """
    changes = {key: value for key, value in fields.items()
               if key in ('user_type', 'school', 'cohort')
               and value is not None}
    if not user_ids:
        raise InvalidRequest('userIds must not be empty')
    if len(user_ids) > MAX_BULK_USERS:
        raise InvalidRequest(f'Maximum {MAX_BULK_USERS} users per bulk'
                             ' operation')
    if not changes:
        raise InvalidRequest('Provide at least one field to update')

    session = current_session()
    results: Dict[str, Any] = {'processed': 0, 'failed': 0, 'errors': []}
    for user_id in user_ids:
        try:
            with session.begin_nested():
                row = get_user_row(user_id)
                pending = {key: value for key, value in changes.items()
                           if value != getattr(row, key)}
                if pending:
                    update_user(user_id, actor, **pending)
        except (NoSuchUser, InvalidRequest) as e:
            results['failed'] += 1
            results['errors'].append({'userId': user_id, 'error': str(e)})
        else:
            results['processed'] += 1
    logger.info('Bulk user update by %s: %i processed, %i failed',
                actor.native_id, results['processed'], results['failed'])
    return results
