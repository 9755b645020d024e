"""Stored Kajabi webhook deliveries and Learn tag grants."""

from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ...domain.kajabi import KajabiTagEvent
from ...domain.meta import LedgerSource
from ...domain.util import get_tzaware_utc_now
from .exceptions import DuplicateEntry, NoSuchKajabiEvent
from .util import current_session
from . import models

STATUSES = (models.KajabiEvent.PROCESSED, models.KajabiEvent.QUEUED_UNMATCHED,
            models.KajabiEvent.IGNORED, models.KajabiEvent.DUPLICATE,
            models.KajabiEvent.STUDENT)


def record_event(event: KajabiTagEvent) -> models.KajabiEvent:
    """
    Store a received tag event.

    Raises
    ------
    :class:`.DuplicateEntry`
        If this event ID and tag have been received before.

    """
    session = current_session()
    exists = session.query(models.KajabiEvent) \
        .filter(models.KajabiEvent.event_id == event.event_id) \
        .filter(models.KajabiEvent.tag_name_norm == event.tag_norm) \
        .count()
    if exists:
        raise DuplicateEntry(f'Kajabi event {event.event_id} already stored')
    row = models.KajabiEvent(event_id=event.event_id,
                             tag_name_raw=event.tag_name,
                             tag_name_norm=event.tag_norm,
                             contact_id=event.contact_id,
                             email=event.email,
                             created_at_utc=event.created_at,
                             status=models.KajabiEvent.RECEIVED,
                             raw=event.raw)
    try:
        with session.begin_nested():
            session.add(row)
    except IntegrityError as e:
        raise DuplicateEntry(
            f'Kajabi event {event.event_id} already stored'
        ) from e
    return row


def get_event(pk: int) -> models.KajabiEvent:
    row = current_session().get(models.KajabiEvent, pk)
    if row is None:
        raise NoSuchKajabiEvent('Event not found')
    return row


def set_status(row: models.KajabiEvent, status: str,
               user_id: Optional[str] = None,
               processed_at: Optional[datetime] = None) -> None:
    """Record the outcome of handling a stored event."""
    row.status = status
    if user_id is not None:
        row.user_match = user_id
    if status == models.KajabiEvent.PROCESSED:
        row.processed_at = processed_at or get_tzaware_utc_now()
    current_session().flush()


def grant_learn_tag(user_id: str, tag_name: str) -> models.LearnTagGrant:
    """
    Record that a user has received a Learn completion tag.

    Raises
    ------
    :class:`.DuplicateEntry`
        If the user already holds the tag.

    """
    session = current_session()
    exists = session.query(models.LearnTagGrant) \
        .filter(models.LearnTagGrant.user_id == user_id) \
        .filter(models.LearnTagGrant.tag_name == tag_name) \
        .count()
    if exists:
        raise DuplicateEntry(f'User {user_id} already has tag {tag_name}')
    row = models.LearnTagGrant(user_id=user_id, tag_name=tag_name)
    try:
        with session.begin_nested():
            session.add(row)
    except IntegrityError as e:
        raise DuplicateEntry(
            f'User {user_id} already has tag {tag_name}'
        ) from e
    return row


def list_events(limit: int = 50) -> Dict[str, Any]:
    """Get the most recent deliveries, with counts by outcome."""
    session = current_session()
    rows: List[models.KajabiEvent] = list(
        session.query(models.KajabiEvent)
        .order_by(models.KajabiEvent.received_at.desc(),
                  models.KajabiEvent.id.desc())
        .limit(limit)
    )
    counts = dict(session.query(models.KajabiEvent.status,
                                func.count(models.KajabiEvent.id))
                  .group_by(models.KajabiEvent.status))
    awarded = session.query(func.sum(models.PointsLedger.delta_points)) \
        .filter(models.PointsLedger.source == LedgerSource.WEBHOOK) \
        .filter(models.PointsLedger.external_source == 'kajabi') \
        .scalar()
    stats: Dict[str, int] = {'total': sum(counts.values())}
    for status in STATUSES:
        stats[status] = int(counts.get(status, 0))
    stats['points_awarded'] = int(awarded or 0)
    return {'events': [row.to_dict() for row in rows], 'stats': stats}
