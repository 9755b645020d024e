"""Reusable validators for events."""

from .base import Event
from ..submission import Submission
from ...exceptions import InvalidEvent, AlreadyReviewed


def must_exist(event: Event, submission: Submission) -> None:
    """All events other than creation require an existing submission."""
    if submission is None:
        raise InvalidEvent(event, "No such submission")


def submission_is_pending(event: Event, submission: Submission) -> None:
    """
    Verify that the submission is still awaiting review.

    Raises
    ------
    :class:`.AlreadyReviewed`
        Raised if the submission has already been approved or rejected.

    """
    must_exist(event, submission)
    if not submission.is_reviewable:
        raise AlreadyReviewed(event, "Submission has already been reviewed")


def note_is_not_too_long(event: Event, note: str, limit: int = 1000) -> None:
    """Review notes are shown to participants and must stay short."""
    if note and len(note) > limit:
        raise InvalidEvent(event, f"Review note must be at most {limit}"
                                  " characters")
