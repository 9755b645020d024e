"""Controllers for data exports and program analytics."""

from datetime import datetime
from http import HTTPStatus as status
from typing import Any, Dict, Mapping, Optional

from dateutil import parser as dateparser
from werkzeug.exceptions import BadRequest

from ... import logging
from ...domain.agent import User
from ...domain.util import as_utc, get_tzaware_utc_now
from ...services import store
from .util import Response, success, translate_errors

logger = logging.getLogger(__name__)


def _date(params: Mapping[str, Any], key: str) -> Optional[datetime]:
    value = params.get(key)
    if not value:
        return None
    try:
        return as_utc(dateparser.parse(value))
    except (ValueError, OverflowError) as e:
        raise BadRequest(f'{key} must be a date') from e


def _range(params: Mapping[str, Any]) -> Dict[str, Optional[datetime]]:
    start, end = _date(params, 'startDate'), _date(params, 'endDate')
    if start and end and start > end:
        raise BadRequest('startDate must not be after endDate')
    return {'start': start, 'end': end}


def _attachment(content: str, name: str) -> Response:
    stamp = get_tzaware_utc_now().strftime('%Y-%m-%d')
    return content, status.OK, {
        'Content-Type': 'text/csv; charset=utf-8',
        'Content-Disposition': f'attachment; filename="{name}-{stamp}.csv"',
        'Cache-Control': 'no-store'
    }


@translate_errors
def export_data(params: Mapping[str, Any], actor: User) -> Response:
    """
    Export submissions, users, the leaderboard, or the points ledger.

    The export, with its filters, is recorded in the audit log.
    """
    export_type = params.get('type', 'submissions')
    if params.get('format', 'csv') != 'csv':
        raise BadRequest('Only CSV format is supported')
    filters = dict(_range(params), activity=params.get('activity'),
                   status=params.get('status'), cohort=params.get('cohort'))
    with store.transaction():
        content = store.reports.export(export_type, **filters)
        store.audit_log(actor.actor_id, 'EXPORT_DATA', export_type, {
            'type': export_type, 'format': 'csv',
            'filters': {key: value.isoformat()
                        if isinstance(value, datetime) else value
                        for key, value in filters.items()}
        })
    logger.info('%s export by %s', export_type, actor.native_id)
    return _attachment(content, f'{export_type}-export')


@translate_errors
def export_users(params: Mapping[str, Any]) -> Response:
    """Get the filtered user list as a CSV attachment."""
    content = store.reports.user_directory_csv(
        search=params.get('search'),
        role=params.get('role'),
        user_type=params.get('userType'),
        cohort=params.get('cohort'),
        sort_by=params.get('sortBy', 'created'),
        sort_order=params.get('sortOrder', 'desc')
    )
    return _attachment(content, 'users')


@translate_errors
def analytics(params: Mapping[str, Any]) -> Response:
    return success(store.reports.analytics(cohort=params.get('cohort'),
                                           **_range(params)))
