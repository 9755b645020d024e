"""Controllers for the audit log."""

from datetime import datetime
from http import HTTPStatus as status
from typing import Any, Mapping, Optional

from dateutil import parser as dateparser
from werkzeug.exceptions import BadRequest

from ...domain.util import as_utc, get_tzaware_utc_now
from ...services import store
from .util import Response, success, translate_errors, get_int


def _since(params: Mapping[str, Any]) -> Optional[datetime]:
    value = params.get('since')
    if not value:
        return None
    try:
        return as_utc(dateparser.parse(value))
    except (ValueError, OverflowError) as e:
        raise BadRequest('since must be a date') from e


@translate_errors
def list_audit(params: Mapping[str, Any]) -> Response:
    return success(store.list_audit(
        actor_id=params.get('actorId'),
        action=params.get('action'),
        target_id=params.get('targetId'),
        page=max(get_int(params, 'page', 1), 1),
        limit=min(max(get_int(params, 'limit', 50), 1), 100)
    ))


@translate_errors
def export_csv(params: Mapping[str, Any]) -> Response:
    """Get audit entries as a CSV attachment."""
    content = store.audit_csv(actor_id=params.get('actorId'),
                              action=params.get('action'),
                              target_id=params.get('targetId'),
                              since=_since(params))
    stamp = get_tzaware_utc_now().strftime('%Y%m%d')
    headers = {'Content-Type': 'text/csv; charset=utf-8',
               'Content-Disposition':
                   f'attachment; filename="audit-{stamp}.csv"'}
    return content, status.OK, headers
