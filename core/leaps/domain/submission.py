"""Data structures for LEAPS evidence submissions."""

from typing import Optional, Dict, Any, List
from datetime import datetime

from dataclasses import dataclass, field

from .meta import ACTIVITY_CODES, Visibility


@dataclass
class Submission:
    """
    Represents evidence submitted by a participant for one LEAPS stage.

    A submission starts out ``PENDING``. A reviewer either approves it (which
    awards points) or rejects it. An approved submission can later be revoked
    by an administrator, which reverses the points it awarded.
    """

    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    REVOKED = 'REVOKED'

    STATUSES = (PENDING, APPROVED, REJECTED, REVOKED)

    user_id: str
    activity_code: str
    status: str = field(default=PENDING)
    """Disposition within the review workflow."""

    visibility: str = field(default=Visibility.PRIVATE)
    payload: Dict[str, Any] = field(default_factory=dict)
    """Stage-specific evidence, e.g. a reflection or training counts."""

    attachments: List[str] = field(default_factory=list)
    """Storage paths of uploaded evidence files."""

    submission_id: Optional[int] = field(default=None)
    reviewer_id: Optional[str] = field(default=None)
    review_note: Optional[str] = field(default=None)
    approval_org_timezone: Optional[str] = field(default=None)
    created: Optional[datetime] = field(default=None)
    updated: Optional[datetime] = field(default=None)

    def __post_init__(self) -> None:
        """Normalize enumerated fields."""
        self.activity_code = str(self.activity_code).upper()
        self.status = str(self.status).upper()

    @property
    def is_reviewable(self) -> bool:
        """Only pending submissions may be approved or rejected."""
        return self.status == Submission.PENDING

    @property
    def is_approved(self) -> bool:
        return self.status == Submission.APPROVED

    @property
    def is_revoked(self) -> bool:
        return self.status == Submission.REVOKED

    @property
    def is_public(self) -> bool:
        return self.visibility == Visibility.PUBLIC

    @property
    def has_known_activity(self) -> bool:
        return self.activity_code in ACTIVITY_CODES
