"""The audit log of administrative and automated actions."""

import csv
import io
import math
from datetime import datetime
from typing import Optional, Dict, Any, List

from ... import logging, serializer
from .util import current_session
from . import models

logger = logging.getLogger(__name__)

CSV_COLUMNS = ('id', 'created_at', 'actor_id', 'action', 'target_id', 'meta')


def audit_log(actor_id: str, action: str, target_id: Optional[str] = None,
              meta: Optional[Dict[str, Any]] = None) -> models.AuditLog:
    """
    Add an entry to the audit log.

    Parameters
    ----------
    actor_id : str
        User ID of the person responsible, or ``system``.
    action : str
        Upper-case action code, e.g. ``APPROVE_SUBMISSION``.
    target_id : str
        Identifier of the affected entity.
    meta : dict
        Further details about the action.

    """
    entry = models.AuditLog(actor_id=str(actor_id), action=action,
                            target_id=str(target_id) if target_id else None,
                            meta=meta or {})
    session = current_session()
    session.add(entry)
    session.flush()
    logger.debug('audit %s by %s on %s', action, actor_id, target_id)
    return entry


def _query(actor_id: Optional[str] = None, action: Optional[str] = None,
           target_id: Optional[str] = None,
           since: Optional[datetime] = None):
    q = current_session().query(models.AuditLog)
    if actor_id:
        q = q.filter(models.AuditLog.actor_id == actor_id)
    if action:
        q = q.filter(models.AuditLog.action == action)
    if target_id:
        q = q.filter(models.AuditLog.target_id == target_id)
    if since:
        q = q.filter(models.AuditLog.created >= since)
    return q


def list_audit(actor_id: Optional[str] = None, action: Optional[str] = None,
               target_id: Optional[str] = None, page: int = 1,
               limit: int = 50) -> Dict[str, Any]:
    """Get a page of audit entries, most recent first."""
    q = _query(actor_id, action, target_id)
    total = q.count()
    rows = q.order_by(models.AuditLog.created.desc(),
                      models.AuditLog.id.desc()) \
        .offset((page - 1) * limit) \
        .limit(limit)
    return {'logs': [row.to_dict() for row in rows],
            'pagination': {'page': page, 'limit': limit, 'total': total,
                           'pages': int(math.ceil(total / limit))}}


def audit_csv(actor_id: Optional[str] = None, action: Optional[str] = None,
              target_id: Optional[str] = None,
              since: Optional[datetime] = None,
              limit: int = 10000) -> str:
    """Export audit entries as CSV."""
    rows: List[models.AuditLog] = list(
        _query(actor_id, action, target_id, since)
        .order_by(models.AuditLog.created.desc(), models.AuditLog.id.desc())
        .limit(limit)
    )
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for row in rows:
        data = row.to_dict()
        writer.writerow([data['id'], data['created_at'], data['actor_id'],
                         data['action'], data['target_id'] or '',
                         serializer.dumps(data['meta'])])
    return buffer.getvalue()

