"""Points ledger: append-only awards and reversals."""

from typing import Optional, Dict, Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ... import logging
from ...domain.ledger import PointsEntry
from ...domain.meta import ACTIVITY_CODES
from .exceptions import DuplicateEntry
from .util import current_session
from . import models

logger = logging.getLogger(__name__)


def add_points(entry: PointsEntry) -> models.PointsLedger:
    """
    Append an entry to the ledger.

    Raises
    ------
    :class:`.DuplicateEntry`
        If an entry with the same ``external_event_id`` already exists.

    """
    session = current_session()
    if entry.external_event_id is not None \
            and get_ledger_entry(entry.external_event_id) is not None:
        raise DuplicateEntry(f'Ledger entry {entry.external_event_id} exists')
    row = models.PointsLedger(user_id=entry.user_id,
                              activity_code=entry.activity_code,
                              source=entry.source,
                              delta_points=entry.delta_points,
                              external_source=entry.external_source,
                              external_event_id=entry.external_event_id,
                              meta=dict(entry.meta or {}))
    if entry.event_time is not None:
        row.event_time = entry.event_time
    try:
        with session.begin_nested():
            session.add(row)
    except IntegrityError as e:
        raise DuplicateEntry(
            f'Ledger entry {entry.external_event_id} exists'
        ) from e
    logger.debug('%+d points for user %s (%s)', entry.delta_points,
                 entry.user_id, entry.external_event_id)
    return row


def get_ledger_entry(external_event_id: str) -> Optional[PointsEntry]:
    """Find the entry with an idempotency key, if there is one."""
    row = current_session().query(models.PointsLedger) \
        .filter(models.PointsLedger.external_event_id == external_event_id) \
        .one_or_none()
    return row.to_entry() if row is not None else None


def user_points(user_id: str) -> Dict[str, Any]:
    """Get the point total of a user, with a per-stage breakdown."""
    rows = current_session().query(
        models.PointsLedger.activity_code,
        func.sum(models.PointsLedger.delta_points)
    ) \
        .filter(models.PointsLedger.user_id == user_id) \
        .group_by(models.PointsLedger.activity_code)
    breakdown = {code: 0 for code in ACTIVITY_CODES}
    for code, points in rows:
        breakdown[code] = int(points or 0)
    return {'total': sum(breakdown.values()), 'breakdown': breakdown}
