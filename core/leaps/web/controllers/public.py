"""Controllers for unauthenticated routes."""

from http import HTTPStatus as status
from typing import Any, Mapping

from ... import logging
from ...config import CORE_VERSION
from ...security.csp import process_csp_violation
from ...services import store
from .util import Response, success, translate_errors, get_int

logger = logging.getLogger(__name__)

CACHE_MAX_AGE = {'30d': 300, 'all': 600}
"""Seconds for which shared caches may keep a leaderboard page."""


def health() -> Response:
    """Report whether the database is reachable."""
    try:
        available = store.is_available()
    except store.Unavailable as e:
        logger.error('Health check failed: %s', e)
        available = False
    body = {'status': 'ok' if available else 'unavailable',
            'database': available, 'version': CORE_VERSION}
    code = status.OK if available else status.SERVICE_UNAVAILABLE
    return {'success': available, 'data': body}, code, {}


@translate_errors
def leaderboard(params: Mapping[str, Any]) -> Response:
    """Ranked point totals, cacheable by CDNs."""
    period = params.get('period') or 'all'
    data = store.leaderboard(period=period,
                             limit=get_int(params, 'limit', 20),
                             offset=get_int(params, 'offset', 0),
                             search=params.get('search') or None)
    max_age = CACHE_MAX_AGE[period]
    headers = {'Cache-Control': f'public, s-maxage={max_age},'
                                f' stale-while-revalidate={max_age * 2}'}
    return success(data, headers=headers)


def csp_report(report: Any) -> Response:
    """Log a browser CSP violation report."""
    if not isinstance(report, dict):
        return {}, status.NO_CONTENT, {}
    outcome = process_csp_violation(report)
    violation = report.get('csp-report') or {}
    log = logger.warning if outcome['action'] == 'alert' else logger.info
    log('CSP violation (%s): %s; directive %s, blocked %s',
        outcome['severity'], outcome['reason'],
        violation.get('violated-directive'), violation.get('blocked-uri'))
    return {}, status.NO_CONTENT, {}
