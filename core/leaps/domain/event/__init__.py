"""
Data structures for submission events.

- Events have unique identifiers generated from their data (creation time,
  type and agent).
- Events provide methods to update a submission based on the event data.
- Events provide validation methods for event data.

Writing new events/commands
===========================

Events/commands are implemented as classes that inherit from :class:`.Event`.
Each one should:

- Be a dataclass declared with ``@dataclass(eq=False)``.
- Define (using :func:`dataclasses.field`) associated data.
- Implement ``validate(self, submission: Submission) -> None``, raising
  :class:`.InvalidEvent` when the event cannot be applied.
- Implement ``project(self, submission: Submission) -> Submission``. The
  projection *must not* have side-effects; points, badges and audit entries
  are written by the store when the event is committed (see
  :mod:`leaps.services.store.log`), and other side-effects belong in
  callbacks registered with :func:`Event.bind`.

Setting ``ENABLE_CALLBACKS=0`` disables callbacks entirely.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from dataclasses import dataclass, field

from ... import logging
from ...exceptions import InvalidEvent, NothingToDo
from ..meta import ACTIVITY_CODES, Visibility
from ..submission import Submission
from .base import Event, event_factory
from . import validators

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class CreateSubmission(Event):
    """Creation of a new :class:`.domain.submission.Submission`."""

    NAME = "create submission"
    NAMED = "submission created"

    user_id: str = field(default_factory=str)
    activity_code: str = field(default_factory=str)
    payload: Dict[str, Any] = field(default_factory=dict)
    visibility: str = field(default=Visibility.PRIVATE)
    attachments: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        super(CreateSubmission, self).__post_init__()
        self.activity_code = str(self.activity_code).upper()
        if not self.user_id:
            self.user_id = self.creator.native_id

    def validate(self, submission: Optional[Submission] = None) -> None:
        """Creation requires a known stage and a structured payload."""
        if submission is not None:
            raise InvalidEvent(self, "Submission already exists")
        if self.activity_code not in ACTIVITY_CODES:
            raise InvalidEvent(self, f"Unknown activity: {self.activity_code}")
        if not isinstance(self.payload, dict):
            raise InvalidEvent(self, "Payload must be an object")
        if self.visibility not in Visibility.ALL:
            raise InvalidEvent(self, f"Invalid visibility: {self.visibility}")

    def project(self, submission: None = None) -> Submission:
        """Create a new pending :class:`.domain.submission.Submission`."""
        return Submission(user_id=self.user_id,
                          activity_code=self.activity_code,
                          payload=dict(self.payload),
                          visibility=self.visibility,
                          attachments=list(self.attachments),
                          created=self.created)


@dataclass(eq=False)
class SetVisibility(Event):
    """Make a submission public or private."""

    NAME = "set visibility"
    NAMED = "visibility set"

    visibility: str = field(default=Visibility.PRIVATE)

    def __post_init__(self) -> None:
        super(SetVisibility, self).__post_init__()
        self.visibility = str(self.visibility).upper()

    def validate(self, submission: Submission) -> None:
        validators.must_exist(self, submission)
        if self.visibility not in Visibility.ALL:
            raise InvalidEvent(self, f"Invalid visibility: {self.visibility}")

    def project(self, submission: Submission) -> Submission:
        submission.visibility = self.visibility
        return submission


@dataclass(eq=False)
class ApproveSubmission(Event):
    """
    A reviewer accepts the evidence in a submission.

    :attr:`points` is the final award, which may differ from
    :attr:`base_points` when the reviewer adjusted it. The store writes the
    corresponding ledger entry when this event is committed.
    """

    NAME = "approve submission"
    NAMED = "submission approved"

    review_note: Optional[str] = field(default=None)
    points: int = field(default=0)
    base_points: int = field(default=0)
    warnings: List[str] = field(default_factory=list)
    org_timezone: Optional[str] = field(default=None)
    event_time: Optional[datetime] = field(default=None)
    """When the awarded activity took place; defaults to the review time."""

    def validate(self, submission: Submission) -> None:
        """Only pending submissions can be approved."""
        validators.submission_is_pending(self, submission)
        validators.note_is_not_too_long(self, self.review_note)
        if self.points < 0:
            raise InvalidEvent(self, "Points must not be negative")

    def project(self, submission: Submission) -> Submission:
        submission.status = Submission.APPROVED
        submission.reviewer_id = self.creator.native_id
        submission.review_note = self.review_note
        if self.org_timezone:
            submission.approval_org_timezone = self.org_timezone
        return submission

    @property
    def adjusted(self) -> bool:
        """Whether the reviewer awarded something other than the default."""
        return self.points != self.base_points


@dataclass(eq=False)
class RejectSubmission(Event):
    """A reviewer declines the evidence in a submission. No points move."""

    NAME = "reject submission"
    NAMED = "submission rejected"

    review_note: Optional[str] = field(default=None)

    def validate(self, submission: Submission) -> None:
        """Only pending submissions can be rejected."""
        validators.submission_is_pending(self, submission)
        validators.note_is_not_too_long(self, self.review_note)

    def project(self, submission: Submission) -> Submission:
        submission.status = Submission.REJECTED
        submission.reviewer_id = self.creator.native_id
        submission.review_note = self.review_note
        return submission


@dataclass(eq=False)
class RevokeSubmission(Event):
    """
    An administrator withdraws an earlier approval.

    The points awarded by the approval are reversed by a compensating ledger
    entry; earned badges are kept.
    """

    NAME = "revoke submission"
    NAMED = "submission revoked"

    reason: Optional[str] = field(default=None)

    def validate(self, submission: Submission) -> None:
        """Only approved submissions can be revoked."""
        validators.must_exist(self, submission)
        if submission.is_revoked:
            raise NothingToDo('Submission is already revoked')
        if not submission.is_approved:
            raise InvalidEvent(self, "Only approved submissions can be"
                                     " revoked")

    def project(self, submission: Submission) -> Submission:
        submission.status = Submission.REVOKED
        return submission
