"""
Persistence for submissions, events, points, badges, and the audit log.

Events and the resulting submission state are stored in the same
transaction, along with whatever ledger, audit, and badge rows the event
implies (see :mod:`.store.log`). To avoid storing events that are stale with
respect to the current state of a submission, the caller should use the
:func:`.util.transaction` context manager and (when committing new events)
call :func:`.get_submission` with ``for_update=True``. This locks the
submission row until the transaction is committed or rolled back.

ORM representations of the tables are located in :mod:`.store.models`. The
event store itself, :class:`.DBEvent`, is defined in :mod:`.store.event`.
"""

import math
from dataclasses import asdict
from functools import wraps
from typing import List, Optional, Tuple, Callable, Any, Dict

from retry import retry
from flask import Flask
from sqlalchemy.exc import OperationalError

from ... import logging
from ...domain.event import Event
from ...domain.submission import Submission
from .models import Base
from .exceptions import StoreBaseException, NoSuchSubmission, \
    NoSuchUser, NoSuchBadge, NoSuchKajabiEvent, DuplicateEntry, BadgeInUse, \
    TransactionFailed, Unavailable
from .util import transaction, current_session, db
from .event import DBEvent
from .audit import audit_log, list_audit, audit_csv
from .ledger import add_points, get_ledger_entry, user_points
from .badges import list_badges, create_badge, update_badge, delete_badge, \
    assign_badge, remove_badge, user_badges, grant_badges_for_user
from .users import find_user, match_kajabi_user, list_users, update_user, \
    create_user, bulk_update_users
from .leaderboard import leaderboard
from . import models, util, log, webhooks, users, reports

logger = logging.getLogger(__name__)

SORTABLE = ('created', 'updated', 'status', 'activity_code')


def handle_operational_errors(func: Callable) -> Callable:
    """Catch SQLAlchemy OperationalErrors and raise :class:`.Unavailable`."""
    @wraps(func)
    def inner(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except OperationalError as e:
            raise Unavailable('LEAPS database unavailable') from e
    return inner


@handle_operational_errors
def is_available() -> bool:
    """Check that the database is reachable."""
    current_session().execute(models.Activity.__table__.select().limit(1))
    return True


@retry(Unavailable, tries=3, delay=1)
@handle_operational_errors
def get_events(submission_id: int) -> List[Event]:
    """
    Load the history of a submission, oldest first.

    Raises
    ------
    :class:`.store.exceptions.NoSuchSubmission`
        If no events were ever stored for ``submission_id``.

    """
    rows = current_session().query(DBEvent) \
        .filter_by(submission_id=submission_id) \
        .order_by(DBEvent.created) \
        .all()
    if not rows:
        raise NoSuchSubmission(f'Submission {submission_id} not found')
    return [row.to_event() for row in rows]


def _get_row(submission_id: int, for_update: bool = False) \
        -> models.Submission:
    query = current_session().query(models.Submission) \
        .filter(models.Submission.id == submission_id)
    if for_update:
        # SELECT ... FOR UPDATE; a no-op on SQLite.
        query = query.with_for_update()
    row = query.one_or_none()
    if row is None:
        raise NoSuchSubmission(f'Submission {submission_id} not found')
    return row


@retry(Unavailable, tries=3, delay=1)
@handle_operational_errors
def get_submission_fast(submission_id: int) -> Submission:
    """Read the stored projection, without loading the event history."""
    return _get_row(submission_id).to_submission()


@handle_operational_errors
def get_submission(submission_id: int, for_update: bool = False) \
        -> Tuple[Submission, List[Event]]:
    """
    Get the current state of a submission, along with its events.

    Runs in the caller's transaction. Pass ``for_update=True`` when new
    events are about to be committed, so that concurrent reviews of the
    same submission queue up behind the row lock.

    Returns
    -------
    :class:`.domain.submission.Submission`
    list
        Items are :class:`Event` instances.

    """
    row = _get_row(submission_id, for_update=for_update)
    try:
        events = get_events(submission_id)
    except NoSuchSubmission:
        # Rows seeded outside of the event model have no history.
        events = []
    return row.to_submission(), events


@handle_operational_errors
def store_event(event: Event, before: Optional[Submission],
                after: Optional[Submission]) -> Tuple[Event, Submission]:
    """
    Write ``event`` to the event log and ``after`` to the submission table.

    This is the ``store`` passed to :meth:`.Event.commit`. It runs in the
    caller's transaction, and also writes the ledger, audit, and badge rows
    that the event implies (see :func:`.log.handle`); if any of that fails,
    the caller's transaction is rolled back as a whole.

    Raises
    ------
    :class:`.store.exceptions.TransactionFailed`
        If the event was already committed, or has not been applied.

    """
    if event.committed:
        raise TransactionFailed(f'{event.event_id} already committed')
    if after is None:
        raise TransactionFailed(f'{event.event_type} has not been applied')
    session = current_session()
    row = models.Submission() if before is None \
        else _get_row(before.submission_id)
    row.update_from_submission(after)
    record = _new_dbevent(event)
    session.add_all([row, record])
    session.flush()     # Assigns the submission ID for new submissions.

    record.submission_id = event.submission_id = after.submission_id = row.id
    logger.debug('stored %s for submission %s', event.event_type, row.id)
    log.handle(event, before, after)
    session.flush()
    event.committed = True
    return event, after


def _new_dbevent(event: Event) -> DBEvent:
    def agent(value: Any) -> Optional[Dict[str, Any]]:
        return asdict(value) if value else None

    data = {key: value for key, value in asdict(event).items()
            if key not in ('before', 'after')}
    return DBEvent(event_id=event.event_id, event_type=event.event_type,
                   event_version=event.event_version, created=event.created,
                   creator=agent(event.creator), proxy=agent(event.proxy),
                   client=agent(event.client), data=data)


@retry(Unavailable, tries=3, delay=1)
@handle_operational_errors
def list_submissions(status: Optional[str] = None,
                     activity: Optional[str] = None,
                     user_id: Optional[str] = None,
                     page: int = 1, limit: int = 50,
                     sort_by: str = 'created',
                     sort_order: str = 'desc') -> Dict[str, Any]:
    """Get a page of submission snapshots, with pagination details."""
    q = current_session().query(models.Submission)
    if status and status != 'ALL':
        q = q.filter(models.Submission.status == status.upper())
    if activity and activity != 'ALL':
        q = q.filter(models.Submission.activity_code == activity.upper())
    if user_id:
        q = q.filter(models.Submission.user_id == user_id)
    total = q.count()
    column = getattr(models.Submission,
                     sort_by if sort_by in SORTABLE else 'created')
    order = column.asc() if sort_order == 'asc' else column.desc()
    rows = q.order_by(order, models.Submission.id.desc()) \
        .offset((page - 1) * limit) \
        .limit(limit)
    submissions = []
    for row in rows:
        data = _submission_dict(row.to_submission())
        data['user'] = {'id': row.user.id, 'name': row.user.name,
                        'handle': row.user.handle, 'email': row.user.email,
                        'school': row.user.school}
        submissions.append(data)
    return {'submissions': submissions,
            'pagination': {'page': page, 'limit': limit, 'total': total,
                           'pages': int(math.ceil(total / limit))}}


def _submission_dict(submission: Submission) -> Dict[str, Any]:
    return {'id': submission.submission_id,
            'user_id': submission.user_id,
            'activity_code': submission.activity_code,
            'status': submission.status,
            'visibility': submission.visibility,
            'payload': submission.payload,
            'attachments': submission.attachments,
            'reviewer_id': submission.reviewer_id,
            'review_note': submission.review_note,
            'approval_org_timezone': submission.approval_org_timezone,
            'created_at': submission.created.isoformat()
            if submission.created else None,
            'updated_at': submission.updated.isoformat()
            if submission.updated else None}


def submission_to_dict(submission: Submission) -> Dict[str, Any]:
    """Get the API representation of a submission, with its user."""
    data = _submission_dict(submission)
    user = find_user(submission.user_id)
    if user is not None:
        data['user'] = {'id': user.native_id, 'name': user.name,
                        'handle': user.handle, 'email': user.email}
    return data


@retry(Unavailable, tries=3, delay=1)
@handle_operational_errors
def approved_payloads(user_id: str, activity_code: str,
                      exclude: Optional[int] = None) -> List[Dict[str, Any]]:
    """Payloads of a user's approved submissions for one stage."""
    q = current_session().query(models.Submission.payload) \
        .filter(models.Submission.user_id == user_id) \
        .filter(models.Submission.activity_code == activity_code) \
        .filter(models.Submission.status == Submission.APPROVED)
    if exclude is not None:
        q = q.filter(models.Submission.id != exclude)
    return [dict(payload or {}) for (payload,) in q]


def init_app(app: Flask) -> None:
    """Register the SQLAlchemy extension to an application."""
    db.init_app(app)

    @app.teardown_request
    def teardown_request(exception: Optional[BaseException]) -> None:
        if exception:
            db.session.rollback()
        db.session.remove()


def create_all() -> None:
    """Create all tables in the database."""
    Base.metadata.create_all(db.engine)


def drop_all() -> None:
    """Drop all tables in the database."""
    Base.metadata.drop_all(db.engine)
