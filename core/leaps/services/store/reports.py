"""
Reports for administrators: CSV exports and program analytics.

Exports are written with :mod:`csv`, one row per record, in the same way as
:func:`.audit.audit_csv`. Text cells that a spreadsheet would evaluate as a
formula are prefixed with a single quote.
"""

import csv
import io
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Iterable, Sequence

from sqlalchemy import func, or_

from ... import serializer
from ...domain.meta import ACTIVITY_CODES, UserRole
from ...domain.submission import Submission
from ...domain.util import get_tzaware_utc_now, as_utc
from ...exceptions import InvalidRequest
from . import models
from .util import current_session

EXPORT_TYPES = ('submissions', 'users', 'leaderboard', 'points')
FORMULA_PREFIXES = ('=', '+', '-', '@')
PAGE_SIZE = 1000
TREND_DAYS = 30
RECENT = 10

SUBMISSION_COLUMNS = ('Submission ID', 'User Handle', 'User Name',
                      'User Email', 'School', 'Cohort', 'Activity', 'Status',
                      'Visibility', 'Reviewer ID', 'Review Note',
                      'Created At', 'Updated At', 'Payload')
USER_COLUMNS = ('User ID', 'Handle', 'Name', 'Email', 'Role', 'School',
                'Cohort', 'Total Points', 'Submissions Count',
                'Badges Count', 'Created At')
LEADERBOARD_COLUMNS = ('Rank', 'User Handle', 'User Name', 'Email', 'School',
                       'Cohort', 'Total Points', 'Joined At')
POINTS_COLUMNS = ('Entry ID', 'User Handle', 'User Name', 'User Email',
                  'School', 'Cohort', 'Activity', 'Points', 'Source',
                  'External Source', 'External Event ID', 'Created At')
DIRECTORY_COLUMNS = ('id', 'name', 'handle', 'email', 'role', 'user_type',
                     'kajabi_contact_id', 'school', 'cohort', 'total_points',
                     'created_at')


def safe_cell(value: Any) -> Any:
    """Neutralize text that a spreadsheet would run as a formula."""
    if value is None:
        return ''
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, str) and value.startswith(FORMULA_PREFIXES):
        return f"'{value}"
    return value


def _csv(columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(columns)
    for row in rows:
        writer.writerow([safe_cell(value) for value in row])
    return buffer.getvalue()


def _in_range(q: Any, column: Any, start: Optional[datetime],
              end: Optional[datetime]) -> Any:
    if start is not None:
        q = q.filter(column >= start)
    if end is not None:
        q = q.filter(column <= end)
    return q


def _in_cohort(q: Any, cohort: Optional[str]) -> Any:
    if cohort and cohort != 'ALL':
        q = q.filter(models.User.cohort == cohort)
    return q


def _point_totals(user_ids: Optional[List[str]] = None) -> Dict[str, int]:
    q = current_session().query(models.PointsLedger.user_id,
                                func.sum(models.PointsLedger.delta_points))
    if user_ids is not None:
        q = q.filter(models.PointsLedger.user_id.in_(user_ids))
    return {user_id: int(points or 0) for user_id, points
            in q.group_by(models.PointsLedger.user_id)}


def _count_by_user(column: Any, user_ids: List[str]) -> Dict[str, int]:
    return dict(current_session().query(column, func.count())
                .filter(column.in_(user_ids))
                .group_by(column))


def export(export_type: str, start: Optional[datetime] = None,
           end: Optional[datetime] = None, activity: Optional[str] = None,
           status: Optional[str] = None,
           cohort: Optional[str] = None) -> str:
    """
    Export program data as CSV.

    Parameters
    ----------
    export_type : str
        One of ``submissions``, ``users``, ``leaderboard``, or ``points``.
    start : datetime
    end : datetime
        Limit submissions and ledger entries to those created in this range.
    activity : str
        Stage code, for submissions.
    status : str
        Submission status.
    cohort : str
        Only include users in this cohort.

    Raises
    ------
    :class:`.InvalidRequest`
        If ``export_type`` is not known.

    """
    if export_type == 'submissions':
        return submissions_csv(start, end, activity, status, cohort)
    if export_type == 'users':
        return users_csv(cohort)
    if export_type == 'leaderboard':
        return leaderboard_csv(cohort)
    if export_type == 'points':
        return points_csv(start, end, cohort)
    raise InvalidRequest('Invalid export type; use one of '
                         + ', '.join(EXPORT_TYPES))


def submissions_csv(start: Optional[datetime] = None,
                    end: Optional[datetime] = None,
                    activity: Optional[str] = None,
                    status: Optional[str] = None,
                    cohort: Optional[str] = None) -> str:
    q = current_session().query(models.Submission, models.User,
                                models.Activity) \
        .join(models.User, models.Submission.user_id == models.User.id) \
        .join(models.Activity,
              models.Submission.activity_code == models.Activity.code)
    q = _in_range(q, models.Submission.created, start, end)
    if activity and activity != 'ALL':
        q = q.filter(models.Submission.activity_code == activity.upper())
    if status and status != 'ALL':
        q = q.filter(models.Submission.status == status.upper())
    q = _in_cohort(q, cohort) \
        .order_by(models.Submission.created.desc(), models.Submission.id)
    return _csv(SUBMISSION_COLUMNS, (
        (sub.id, user.handle, user.name, user.email, user.school,
         user.cohort, act.name, sub.status, sub.visibility, sub.reviewer_id,
         sub.review_note, sub.created, sub.updated,
         _json(sub.payload)) for sub, user, act in q
    ))


def users_csv(cohort: Optional[str] = None) -> str:
    rows: List[models.User] = list(
        _in_cohort(current_session().query(models.User), cohort)
        .order_by(models.User.created.desc(), models.User.id)
    )
    ids = [row.id for row in rows]
    totals = _point_totals(ids)
    submissions = _count_by_user(models.Submission.user_id, ids)
    badges = _count_by_user(models.EarnedBadge.user_id, ids)
    return _csv(USER_COLUMNS, (
        (row.id, row.handle, row.name, row.email, row.role, row.school,
         row.cohort, totals.get(row.id, 0), submissions.get(row.id, 0),
         badges.get(row.id, 0), row.created) for row in rows
    ))


def leaderboard_csv(cohort: Optional[str] = None) -> str:
    """All users with points, highest total first."""
    totals = _point_totals()
    users = {row.id: row for row in
             _in_cohort(current_session().query(models.User), cohort)
             .filter(models.User.id.in_(list(totals)))}
    ranked = sorted(users.values(), key=lambda row: (-totals[row.id], row.id))
    return _csv(LEADERBOARD_COLUMNS, (
        (rank, row.handle, row.name, row.email, row.school, row.cohort,
         totals[row.id], row.created)
        for rank, row in enumerate(ranked, start=1)
    ))


def points_csv(start: Optional[datetime] = None,
               end: Optional[datetime] = None,
               cohort: Optional[str] = None) -> str:
    q = current_session().query(models.PointsLedger, models.User,
                                models.Activity) \
        .join(models.User, models.PointsLedger.user_id == models.User.id) \
        .join(models.Activity,
              models.PointsLedger.activity_code == models.Activity.code)
    q = _in_range(q, models.PointsLedger.created, start, end)
    q = _in_cohort(q, cohort) \
        .order_by(models.PointsLedger.created.desc(), models.PointsLedger.id)
    return _csv(POINTS_COLUMNS, (
        (entry.id, user.handle, user.name, user.email, user.school,
         user.cohort, act.name, entry.delta_points, entry.source,
         entry.external_source, entry.external_event_id, entry.created)
        for entry, user, act in q
    ))


def user_directory_csv(search: Optional[str] = None,
                       role: Optional[str] = None,
                       user_type: Optional[str] = None,
                       cohort: Optional[str] = None,
                       sort_by: str = 'created',
                       sort_order: str = 'desc') -> str:
    """
    Export the user list, filtered as in :func:`.users.list_users`.

    Users are read in pages of :data:`PAGE_SIZE`, so that large exports do
    not load every row at once.
    """
    q = current_session().query(models.User)
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
    q = _in_cohort(q, cohort)
    column = getattr(models.User, sort_by
                     if sort_by in ('created', 'name', 'email') else 'created')
    q = q.order_by(column.asc() if sort_order == 'asc' else column.desc(),
                   models.User.id)

    def rows() -> Iterable[Sequence[Any]]:
        offset = 0
        while True:
            page: List[models.User] = list(q.offset(offset).limit(PAGE_SIZE))
            if not page:
                return
            totals = _point_totals([row.id for row in page])
            for row in page:
                yield (row.id, row.name, row.handle, row.email, row.role,
                       row.user_type, row.kajabi_contact_id, row.school,
                       row.cohort, totals.get(row.id, 0), row.created)
            offset += PAGE_SIZE
    return _csv(DIRECTORY_COLUMNS, rows())


def _json(value: Any) -> str:
    return serializer.dumps(value or {})


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def analytics(start: Optional[datetime] = None,
              end: Optional[datetime] = None,
              cohort: Optional[str] = None) -> Dict[str, Any]:
    """
    Summarize submissions, users, points, badges, and reviews.

    Parameters
    ----------
    start : datetime
    end : datetime
        Limit submissions and ledger entries to those created in this range.
    cohort : str
        Only count users in this cohort, and their submissions and points.

    Returns
    -------
    dict
        With ``overview``, ``distributions``, ``trends``, ``recentActivity``
        and ``performance`` sections.

    """
    session = current_session()
    names = dict(session.query(models.Activity.code, models.Activity.name))

    subs = session.query(models.Submission) \
        .join(models.User, models.Submission.user_id == models.User.id)
    subs = _in_cohort(_in_range(subs, models.Submission.created, start, end),
                      cohort)
    by_status = {s: 0 for s in (Submission.PENDING, Submission.APPROVED,
                                Submission.REJECTED)}
    by_status.update(
        subs.with_entities(models.Submission.status, func.count())
        .group_by(models.Submission.status)
    )
    by_activity = dict(
        subs.with_entities(models.Submission.activity_code, func.count())
        .group_by(models.Submission.activity_code)
    )
    total = sum(by_status.values())
    reviewed = by_status[Submission.APPROVED] + by_status[Submission.REJECTED]

    users = _in_cohort(session.query(models.User), cohort)
    user_total = users.count()
    active = users.filter(models.User.submissions.any()).count()
    with_approved = users.filter(models.User.submissions.any(
        models.Submission.status == Submission.APPROVED
    )).count()
    with_badges = users.filter(models.User.earned_badges.any()).count()
    by_role = users.with_entities(models.User.role, func.count()) \
        .group_by(models.User.role) \
        .order_by(func.count().desc())
    by_cohort = session.query(models.User.cohort, func.count()) \
        .group_by(models.User.cohort) \
        .order_by(func.count().desc())

    ledger = session.query(models.PointsLedger) \
        .join(models.User, models.PointsLedger.user_id == models.User.id)
    ledger = _in_cohort(_in_range(ledger, models.PointsLedger.created, start,
                                  end), cohort)
    points_total, entries = ledger.with_entities(
        func.coalesce(func.sum(models.PointsLedger.delta_points), 0),
        func.count(models.PointsLedger.id)
    ).one()
    points_by_activity = ledger.with_entities(
        models.PointsLedger.activity_code,
        func.sum(models.PointsLedger.delta_points), func.count()
    ).group_by(models.PointsLedger.activity_code)
    per_user = sorted((int(points or 0) for _, points in ledger.with_entities(
        models.PointsLedger.user_id, func.sum(models.PointsLedger.delta_points)
    ).group_by(models.PointsLedger.user_id)), reverse=True)

    return {
        'overview': {
            'submissions': {
                'total': total,
                'pending': by_status[Submission.PENDING],
                'approved': by_status[Submission.APPROVED],
                'rejected': by_status[Submission.REJECTED],
                'approvalRate': _rate(by_status[Submission.APPROVED],
                                      reviewed)
            },
            'users': {'total': user_total, 'active': active,
                      'withSubmissions': with_approved,
                      'withBadges': with_badges,
                      'activationRate': _rate(active, user_total)},
            'points': {'totalAwarded': int(points_total or 0),
                       'totalEntries': int(entries or 0),
                       'avgPerEntry': round(int(points_total or 0)
                                            / entries, 2) if entries else 0},
            'badges': _badge_stats(),
            'reviews': {'pendingReviews': by_status[Submission.PENDING],
                        'avgReviewTimeHours': _review_hours(subs)}
        },
        'distributions': {
            'submissionsByStatus': [{'status': key, 'count': value}
                                    for key, value in by_status.items()],
            'submissionsByActivity': [
                {'activity': code, 'activityName': names.get(code),
                 'count': by_activity.get(code, 0)}
                for code in ACTIVITY_CODES
            ],
            'usersByRole': [{'role': role, 'count': count}
                            for role, count in by_role],
            'usersByCohort': [{'cohort': value or 'No Cohort', 'count': count}
                              for value, count in by_cohort],
            'pointsByActivity': [
                {'activity': code, 'activityName': names.get(code),
                 'totalPoints': int(points or 0), 'entries': count}
                for code, points, count in points_by_activity
            ],
            'pointsDistribution': _distribution(per_user)
        },
        'trends': {
            'submissionsByDate': _by_date(subs),
            'userRegistrationsByDate': _registrations(users)
        },
        'recentActivity': {
            'submissions': _recent(subs.order_by(
                models.Submission.created.desc(), models.Submission.id.desc()
            )),
            'approvals': _recent(subs.filter(
                models.Submission.status == Submission.APPROVED
            ).order_by(models.Submission.updated.desc(),
                       models.Submission.id.desc()))
        },
        'performance': {
            'reviewers': _reviewers(subs),
            'topBadges': _top_badges()
        }
    }


def _badge_stats() -> Dict[str, int]:
    session = current_session()
    return {'totalBadges': session.query(models.Badge).count(),
            'totalEarned': session.query(models.EarnedBadge).count(),
            'uniqueEarners': session.query(
                func.count(func.distinct(models.EarnedBadge.user_id))
            ).scalar() or 0}


def _top_badges() -> List[Dict[str, Any]]:
    rows = current_session().query(models.Badge, func.count()) \
        .join(models.EarnedBadge,
              models.EarnedBadge.badge_code == models.Badge.code) \
        .group_by(models.Badge.code) \
        .order_by(func.count().desc(), models.Badge.code) \
        .limit(RECENT)
    return [{'badge': {'code': badge.code, 'name': badge.name},
             'earnedCount': count} for badge, count in rows]


def _review_hours(subs: Any) -> float:
    reviewed = subs.filter(models.Submission.status.in_(
        [Submission.APPROVED, Submission.REJECTED]
    )).filter(models.Submission.reviewer_id.isnot(None)) \
        .with_entities(models.Submission.created, models.Submission.updated)
    hours = [(as_utc(updated) - as_utc(created)).total_seconds() / 3600
             for created, updated in reviewed if created and updated]
    return round(sum(hours) / len(hours), 2) if hours else 0.0


def _reviewers(subs: Any) -> List[Dict[str, Any]]:
    staff = {row.id: row for row in current_session().query(models.User)
             .filter(models.User.role.in_([UserRole.REVIEWER, UserRole.ADMIN,
                                           UserRole.SUPERADMIN]))}
    counts: Dict[str, Dict[str, int]] = {}
    for reviewer_id, status, count in subs.filter(
            models.Submission.reviewer_id.in_(list(staff))) \
            .with_entities(models.Submission.reviewer_id,
                           models.Submission.status, func.count()) \
            .group_by(models.Submission.reviewer_id,
                      models.Submission.status):
        entry = counts.setdefault(reviewer_id, {'approved': 0, 'rejected': 0})
        if status in (Submission.APPROVED, Submission.REJECTED):
            entry[status.lower()] += count
    return sorted((
        {'id': user_id, 'name': staff[user_id].name,
         'handle': staff[user_id].handle, 'role': staff[user_id].role,
         'approved': entry['approved'], 'rejected': entry['rejected'],
         'total': entry['approved'] + entry['rejected']}
        for user_id, entry in counts.items()
    ), key=lambda item: (-item['total'], item['id']))


def _distribution(totals: List[int]) -> Dict[str, Any]:
    """Point totals per user, in descending order."""
    percentiles = [
        {'percentile': p,
         'value': totals[int(p / 100 * (len(totals) - 1))] if totals else 0}
        for p in (10, 25, 50, 75, 90, 95, 99)
    ]
    return {'totalUsers': len(totals),
            'max': totals[0] if totals else 0,
            'min': totals[-1] if totals else 0,
            'avg': round(sum(totals) / len(totals), 2) if totals else 0,
            'percentiles': percentiles}


def _since_trend() -> datetime:
    return get_tzaware_utc_now() - timedelta(days=TREND_DAYS)


def _by_date(subs: Any) -> List[Dict[str, Any]]:
    days: Dict[str, Dict[str, int]] = {}
    for created, status in subs.filter(
            models.Submission.created >= _since_trend()) \
            .with_entities(models.Submission.created,
                           models.Submission.status):
        day = days.setdefault(as_utc(created).date().isoformat(),
                              {'total': 0, 'approved': 0, 'rejected': 0,
                               'pending': 0})
        day['total'] += 1
        if status.lower() in day:
            day[status.lower()] += 1
    return [dict(stats, date=date) for date, stats in sorted(days.items())]


def _registrations(users: Any) -> List[Dict[str, Any]]:
    days: Dict[str, int] = {}
    for (created,) in users.filter(models.User.created >= _since_trend()) \
            .with_entities(models.User.created):
        date = as_utc(created).date().isoformat()
        days[date] = days.get(date, 0) + 1
    return [{'date': date, 'count': count}
            for date, count in sorted(days.items())]


def _recent(q: Any) -> List[Dict[str, Any]]:
    return [{'id': row.id, 'activity_code': row.activity_code,
             'status': row.status,
             'user': {'id': row.user.id, 'name': row.user.name,
                      'handle': row.user.handle},
             'created_at': _iso(row.created),
             'updated_at': _iso(row.updated)}
            for row in q.limit(RECENT)]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value is not None else None
