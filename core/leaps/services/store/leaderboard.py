"""Public leaderboard of participant point totals."""

from datetime import timedelta
from typing import Optional, Dict, Any, List

from sqlalchemy import func

from ...domain.meta import ACTIVITY_CODES, Visibility, UserType, UserRole
from ...domain.submission import Submission
from ...domain.util import get_tzaware_utc_now, fold, as_utc
from ...exceptions import InvalidRequest
from .badges import user_badges
from .util import current_session
from . import models

PERIODS = {'all': None, '30d': timedelta(days=30)}
MAX_LIMIT = 100


def leaderboard(period: str = 'all', limit: int = 20, offset: int = 0,
                search: Optional[str] = None) -> Dict[str, Any]:
    """
    Rank educator participants by points.

    Parameters
    ----------
    period : str
        ``all`` for lifetime totals, or ``30d`` to count only ledger entries
        created in the last 30 days.
    limit : int
    offset : int
    search : str
        Matches name, handle, or school, ignoring case and accents.

    Returns
    -------
    dict

    """
    if period not in PERIODS:
        raise InvalidRequest(f'Invalid period: {period}')
    limit = max(1, min(int(limit), MAX_LIMIT))
    offset = max(0, int(offset))
    session = current_session()

    q = session.query(models.PointsLedger.user_id,
                      models.PointsLedger.activity_code,
                      func.sum(models.PointsLedger.delta_points),
                      func.max(models.PointsLedger.created))
    if PERIODS[period] is not None:
        since = get_tzaware_utc_now() - PERIODS[period]
        q = q.filter(models.PointsLedger.created >= since)
    q = q.group_by(models.PointsLedger.user_id,
                   models.PointsLedger.activity_code)

    totals: Dict[str, Dict[str, Any]] = {}
    for user_id, code, points, latest in q:
        entry = totals.setdefault(user_id, {
            'total': 0, 'last_activity': None,
            'breakdown': {c: 0 for c in ACTIVITY_CODES}
        })
        entry['total'] += int(points or 0)
        entry['breakdown'][code] = int(points or 0)
        latest = as_utc(latest)
        if latest and (entry['last_activity'] is None
                       or latest > entry['last_activity']):
            entry['last_activity'] = latest

    users = {row.id: row for row in session.query(models.User)
             .filter(models.User.id.in_(list(totals)))
             .filter(models.User.role == UserRole.PARTICIPANT)
             .filter(models.User.user_type == UserType.EDUCATOR)}
    needle = fold(search) if search else None
    ranked = []
    for user_id, entry in totals.items():
        user = users.get(user_id)
        if user is None or entry['total'] <= 0:
            continue
        if needle and not any(needle in fold(value) for value in
                              (user.name, user.handle, user.school) if value):
            continue
        ranked.append((user, entry))
    ranked.sort(key=lambda item: (
        -item[1]['total'],
        -(item[1]['last_activity'].timestamp()
          if item[1]['last_activity'] else 0)
    ))

    page = ranked[offset:offset + limit]
    ids = [user.id for user, _ in page]
    public = dict(
        session.query(models.Submission.user_id,
                      func.count(models.Submission.id))
        .filter(models.Submission.user_id.in_(ids))
        .filter(models.Submission.visibility == Visibility.PUBLIC)
        .filter(models.Submission.status == Submission.APPROVED)
        .group_by(models.Submission.user_id)
    )
    badges = user_badges(ids)
    data: List[Dict[str, Any]] = []
    for rank, (user, entry) in enumerate(page, start=offset + 1):
        last = entry['last_activity']
        data.append({'rank': rank, 'user': {
            'id': user.id, 'name': user.name, 'handle': user.handle,
            'school': user.school, 'avatar_url': user.avatar_url,
            'total_points': entry['total'],
            'points_by_stage': entry['breakdown'],
            'public_submissions': int(public.get(user.id, 0)),
            'last_activity': last.isoformat() if last else None,
            'badges': badges.get(user.id, [])
        }})
    return {'period': period, 'data': data, 'total': len(ranked),
            'limit': limit, 'offset': offset,
            'hasMore': offset + limit < len(ranked)}
