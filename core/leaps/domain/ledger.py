"""Data structures for the points ledger."""

from typing import Optional, Dict, Any
from datetime import datetime

from dataclasses import dataclass, field

from .meta import LedgerSource


@dataclass
class PointsEntry:
    """
    A single, immutable change to a participant's point total.

    The ledger is append-only: corrections are made by adding compensating
    entries rather than by changing existing ones. When present,
    :attr:`external_event_id` is unique across the whole ledger and makes
    automatic awards idempotent.
    """

    user_id: str
    activity_code: str
    delta_points: int
    source: str = field(default=LedgerSource.MANUAL)
    external_source: Optional[str] = field(default=None)
    external_event_id: Optional[str] = field(default=None)
    event_time: Optional[datetime] = field(default=None)
    meta: Dict[str, Any] = field(default_factory=dict)
    entry_id: Optional[int] = field(default=None)
    created: Optional[datetime] = field(default=None)

    def compensate(self, external_event_id: str) -> 'PointsEntry':
        """Generate an entry that reverses this one."""
        return PointsEntry(user_id=self.user_id,
                           activity_code=self.activity_code,
                           delta_points=-self.delta_points,
                           source=self.source,
                           external_source=self.external_source,
                           external_event_id=external_event_id,
                           event_time=self.event_time,
                           meta=dict(self.meta, reverses=self.external_event_id))
