"""SQLAlchemy ORM classes for the LEAPS database."""

from typing import Optional, Dict, Any

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, \
    UniqueConstraint, Index
from sqlalchemy.orm import relationship, declarative_base

from ... import domain
from ...domain.util import get_tzaware_utc_now, as_utc
from .util import FriendlyJSON

Base = declarative_base()


class User(Base):    # type: ignore
    """A program participant, reviewer, or administrator."""

    __tablename__ = 'users'

    id = Column(String(64), primary_key=True)
    email = Column(String(254), unique=True, nullable=False)
    name = Column(String(255), nullable=False, default='')
    handle = Column(String(64), unique=True, nullable=False)
    school = Column(String(255))
    cohort = Column(String(255))
    role = Column(String(16), nullable=False,
                  default=domain.UserRole.PARTICIPANT)
    user_type = Column(String(16), nullable=False,
                       default=domain.UserType.EDUCATOR)
    kajabi_contact_id = Column(String(64), unique=True)
    avatar_url = Column(String(2048))
    created = Column(DateTime(timezone=True), default=get_tzaware_utc_now)

    submissions = relationship('Submission', back_populates='user',
                               cascade='all, delete-orphan',
                               passive_deletes=True)
    ledger = relationship('PointsLedger', back_populates='user',
                          cascade='all, delete-orphan', passive_deletes=True)
    earned_badges = relationship('EarnedBadge', back_populates='user',
                                 cascade='all, delete-orphan',
                                 passive_deletes=True)
    tag_grants = relationship('LearnTagGrant', back_populates='user',
                              cascade='all, delete-orphan',
                              passive_deletes=True)

    def to_agent(self) -> domain.User:
        """Get the :class:`.domain.User` for this row."""
        return domain.User(self.id, email=self.email, name=self.name,
                           handle=self.handle, role=self.role,
                           user_type=self.user_type)

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'email': self.email, 'name': self.name,
                'handle': self.handle, 'school': self.school,
                'cohort': self.cohort, 'role': self.role,
                'user_type': self.user_type,
                'kajabi_contact_id': self.kajabi_contact_id,
                'avatar_url': self.avatar_url,
                'created_at': _iso(self.created)}


class Activity(Base):    # type: ignore
    """One of the five LEAPS stages."""

    __tablename__ = 'activities'

    code = Column(String(16), primary_key=True)
    name = Column(String(64), nullable=False)
    default_points = Column(Integer, nullable=False, default=0)


class Submission(Base):    # type: ignore
    """Projected state of a :class:`.domain.Submission`."""

    __tablename__ = 'submissions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'),
                     nullable=False, index=True)
    activity_code = Column(ForeignKey('activities.code'), nullable=False)
    status = Column(String(16), nullable=False,
                    default=domain.Submission.PENDING, index=True)
    visibility = Column(String(16), nullable=False,
                        default=domain.Visibility.PRIVATE)
    payload = Column(FriendlyJSON)
    attachments = Column(FriendlyJSON)
    reviewer_id = Column(String(64))
    review_note = Column(Text)
    approval_org_timezone = Column(String(64))
    created = Column(DateTime(timezone=True), default=get_tzaware_utc_now)
    updated = Column(DateTime(timezone=True), default=get_tzaware_utc_now)

    user = relationship('User', back_populates='submissions')
    activity = relationship('Activity')

    __table_args__ = (
        Index('ix_submissions_user_activity_status', 'user_id',
              'activity_code', 'status'),
    )

    def update_from_submission(self, submission: domain.Submission) -> None:
        """Update this row with the state of a domain submission."""
        self.user_id = submission.user_id
        self.activity_code = submission.activity_code
        self.status = submission.status
        self.visibility = submission.visibility
        self.payload = dict(submission.payload or {})
        self.attachments = list(submission.attachments or [])
        self.reviewer_id = submission.reviewer_id
        self.review_note = submission.review_note
        self.approval_org_timezone = submission.approval_org_timezone
        if submission.created is not None:
            self.created = submission.created
        self.updated = submission.updated or submission.created

    def to_submission(self) -> domain.Submission:
        """Get the :class:`.domain.Submission` for this row."""
        return domain.Submission(
            submission_id=self.id,
            user_id=self.user_id,
            activity_code=self.activity_code,
            status=self.status,
            visibility=self.visibility,
            payload=dict(self.payload or {}),
            attachments=list(self.attachments or []),
            reviewer_id=self.reviewer_id,
            review_note=self.review_note,
            approval_org_timezone=self.approval_org_timezone,
            created=as_utc(self.created),
            updated=as_utc(self.updated)
        )


class PointsLedger(Base):    # type: ignore
    """Append-only record of point changes."""

    __tablename__ = 'points_ledger'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'),
                     nullable=False, index=True)
    activity_code = Column(ForeignKey('activities.code'), nullable=False)
    source = Column(String(16), nullable=False)
    delta_points = Column(Integer, nullable=False)
    external_source = Column(String(64))
    external_event_id = Column(String(255), unique=True)
    event_time = Column(DateTime(timezone=True), default=get_tzaware_utc_now)
    meta = Column(FriendlyJSON)
    created = Column(DateTime(timezone=True), default=get_tzaware_utc_now,
                     index=True)

    user = relationship('User', back_populates='ledger')

    def to_entry(self) -> domain.PointsEntry:
        return domain.PointsEntry(
            entry_id=self.id,
            user_id=self.user_id,
            activity_code=self.activity_code,
            delta_points=self.delta_points,
            source=self.source,
            external_source=self.external_source,
            external_event_id=self.external_event_id,
            event_time=as_utc(self.event_time),
            meta=dict(self.meta or {}),
            created=as_utc(self.created)
        )


class Badge(Base):    # type: ignore
    """A badge definition."""

    __tablename__ = 'badges'

    code = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default='')
    criteria = Column(FriendlyJSON)
    icon_url = Column(String(2048))
    created = Column(DateTime(timezone=True), default=get_tzaware_utc_now)

    earned = relationship('EarnedBadge', back_populates='badge')

    def to_badge(self) -> domain.Badge:
        return domain.Badge(code=self.code, name=self.name,
                            description=self.description or '',
                            criteria=dict(self.criteria or {}),
                            icon_url=self.icon_url,
                            created=as_utc(self.created))


class EarnedBadge(Base):    # type: ignore
    """A badge held by a user."""

    __tablename__ = 'earned_badges'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'),
                     nullable=False)
    badge_code = Column(ForeignKey('badges.code'), nullable=False)
    earned_at = Column(DateTime(timezone=True), default=get_tzaware_utc_now)

    user = relationship('User', back_populates='earned_badges')
    badge = relationship('Badge', back_populates='earned')

    __table_args__ = (UniqueConstraint('user_id', 'badge_code'),)


class LearnTagGrant(Base):    # type: ignore
    """A Learn completion tag received for a user."""

    __tablename__ = 'learn_tag_grants'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'),
                     nullable=False)
    tag_name = Column(String(255), nullable=False)
    granted_at = Column(DateTime(timezone=True), default=get_tzaware_utc_now)

    user = relationship('User', back_populates='tag_grants')

    __table_args__ = (UniqueConstraint('user_id', 'tag_name'),)


class KajabiEvent(Base):    # type: ignore
    """A webhook delivery from Kajabi, and what became of it."""

    __tablename__ = 'kajabi_events'

    RECEIVED = 'received'
    PROCESSED = 'processed'
    IGNORED = 'ignored'
    QUEUED_UNMATCHED = 'queued_unmatched'
    STUDENT = 'student'
    DUPLICATE = 'duplicate'

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(255), nullable=False)
    tag_name_raw = Column(String(255), nullable=False)
    tag_name_norm = Column(String(255), nullable=False)
    contact_id = Column(String(64))
    email = Column(String(254))
    created_at_utc = Column(DateTime(timezone=True))
    status = Column(String(32), nullable=False, default=RECEIVED, index=True)
    raw = Column(FriendlyJSON)
    user_match = Column(String(64))
    received_at = Column(DateTime(timezone=True), default=get_tzaware_utc_now)
    processed_at = Column(DateTime(timezone=True))

    __table_args__ = (UniqueConstraint('event_id', 'tag_name_norm'),)

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'event_id': self.event_id,
                'tag_name_raw': self.tag_name_raw,
                'tag_name_norm': self.tag_name_norm,
                'contact_id': self.contact_id, 'email': self.email,
                'created_at_utc': _iso(self.created_at_utc),
                'status': self.status, 'user_match': self.user_match,
                'received_at': _iso(self.received_at),
                'processed_at': _iso(self.processed_at)}


class AuditLog(Base):    # type: ignore
    """Record of an administrative or automated action."""

    __tablename__ = 'audit_log'

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(String(64), nullable=False, index=True)
    action = Column(String(64), nullable=False, index=True)
    target_id = Column(String(255), index=True)
    meta = Column(FriendlyJSON)
    created = Column(DateTime(timezone=True), default=get_tzaware_utc_now,
                     index=True)

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'actor_id': self.actor_id,
                'action': self.action, 'target_id': self.target_id,
                'meta': self.meta or {}, 'created_at': _iso(self.created)}


def _iso(value: Optional[Any]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value is not None else None
