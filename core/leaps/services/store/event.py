"""The event log: one row per committed :class:`.Event`."""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Column, String, ForeignKey, DateTime
from sqlalchemy.ext.indexable import index_property
from sqlalchemy.orm import relationship

from ...domain.agent import Agent, agent_factory
from ...domain.event import Event, event_factory
from ...domain.util import as_utc
from .models import Base
from .util import FriendlyJSON

# Kept in their own columns rather than in ``data``.
COLUMNS = frozenset(['creator', 'proxy', 'client', 'submission_id',
                     'created', 'event_type', 'before', 'after'])


def _agent(data: Optional[Dict[str, Any]]) -> Optional[Agent]:
    return agent_factory(**dict(data)) if data else None


class DBEvent(Base):  # type: ignore
    """A stored event, keyed by :attr:`.Event.event_id`."""

    __tablename__ = 'events'

    event_id = Column(String(40), primary_key=True)
    event_type = Column(String(255))
    event_version = Column(String(20))
    created = Column(DateTime(timezone=True))
    submission_id = Column(
        ForeignKey('submissions.id', ondelete='CASCADE'),
        index=True
    )

    creator = Column(FriendlyJSON)
    proxy = Column(FriendlyJSON)
    client = Column(FriendlyJSON)
    data = Column(FriendlyJSON)

    creator_id = index_property('creator', 'agent_identifier')
    proxy_id = index_property('proxy', 'agent_identifier')
    client_id = index_property('client', 'agent_identifier')

    submission = relationship('Submission')

    def get_created(self) -> datetime:
        """Creation time, in UTC."""
        return as_utc(self.created)

    def to_event(self) -> Event:
        """Rebuild the domain event, marked as committed."""
        extra = {key: value for key, value in (self.data or {}).items()
                 if key not in COLUMNS}
        extra['committed'] = True
        return event_factory(self.event_type, self.get_created(),
                             creator=_agent(self.creator),
                             proxy=_agent(self.proxy),
                             client=_agent(self.client),
                             submission_id=self.submission_id, **extra)
