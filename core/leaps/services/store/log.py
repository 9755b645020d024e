"""Ledger, audit, and badge writes that accompany committed events."""

from typing import Optional, Dict, Callable, List

from ... import logging
from ...domain.event import Event, ApproveSubmission, RejectSubmission, \
    RevokeSubmission
from ...domain.ledger import PointsEntry
from ...domain.meta import AMPLIFY, LedgerSource
from ...domain.submission import Submission
from .audit import audit_log
from .badges import grant_badges_for_user
from .exceptions import TransactionFailed
from .ledger import add_points, get_ledger_entry

logger = logging.getLogger(__name__)

APPROVAL_SOURCE = 'admin_approval'


def approval_key(submission_id: int) -> str:
    """Ledger idempotency key for the award made by an approval."""
    return f'submission_{submission_id}'


def revocation_key(submission_id: int) -> str:
    """Ledger idempotency key for the reversal of an approval."""
    return f'submission:{submission_id}:revoked:v1'


def _review_meta(event: Event, after: Submission,
                 point_adjustment: Optional[int] = None) -> dict:
    return {'entityType': 'submission',
            'entityId': after.submission_id,
            'reviewNote': getattr(event, 'review_note', None),
            'pointAdjustment': point_adjustment,
            'submissionType': after.activity_code}


def award_points(event: ApproveSubmission, before: Submission,
                 after: Submission) -> None:
    """Credit the participant with the points granted by the reviewer."""
    source = LedgerSource.FORM if after.activity_code == AMPLIFY \
        else LedgerSource.MANUAL
    add_points(PointsEntry(user_id=after.user_id,
                           activity_code=after.activity_code,
                           delta_points=event.points,
                           source=source,
                           external_source=APPROVAL_SOURCE,
                           external_event_id=approval_key(after.submission_id),
                           event_time=event.event_time or event.created,
                           meta={'submission_id': after.submission_id}))
    if event.adjusted:
        audit_log(event.creator.actor_id, 'ADJUST_POINTS',
                  after.submission_id,
                  {'basePoints': event.base_points,
                   'adjustedPoints': event.points,
                   'reason': event.review_note})


def log_approval(event: ApproveSubmission, before: Submission,
                 after: Submission) -> None:
    """Create an audit entry when a reviewer approves a submission."""
    audit_log(event.creator.actor_id, 'APPROVE_SUBMISSION',
              after.submission_id,
              _review_meta(event, after,
                           event.points if event.adjusted else None))


def log_rejection(event: RejectSubmission, before: Submission,
                  after: Submission) -> None:
    """Create an audit entry when a reviewer rejects a submission."""
    audit_log(event.creator.actor_id, 'REJECT_SUBMISSION',
              after.submission_id, _review_meta(event, after))


def reverse_points(event: RevokeSubmission, before: Submission,
                   after: Submission) -> None:
    """Compensate the award made when the submission was approved."""
    award = get_ledger_entry(approval_key(after.submission_id))
    if award is None:
        logger.warning('No award found for submission %s; nothing to'
                       ' reverse', after.submission_id)
        reversed_points = 0
    else:
        reversal = award.compensate(revocation_key(after.submission_id))
        reversal.meta.update({'submission_id': after.submission_id,
                              'reason': event.reason})
        add_points(reversal)
        reversed_points = award.delta_points
    audit_log(event.creator.actor_id, 'REVOKE_SUBMISSION',
              after.submission_id,
              {'entityType': 'submission',
               'entityId': after.submission_id,
               'reason': event.reason,
               'reversedPoints': reversed_points,
               'submissionType': after.activity_code})


def evaluate_badges(event: Event, before: Optional[Submission],
                    after: Submission) -> None:
    """Grant automatic badges that the change in points has unlocked."""
    grant_badges_for_user(after.user_id)


Handler = Callable[[Event, Optional[Submission], Submission], None]

ON_EVENT: Dict[type, List[Handler]] = {
    ApproveSubmission: [award_points, log_approval, evaluate_badges],
    RejectSubmission: [log_rejection],
    RevokeSubmission: [reverse_points, evaluate_badges],
}
"""Store functions to call when an event is committed."""


def handle(event: Event, before: Optional[Submission],
           after: Submission) -> None:
    """
    Write the ledger, audit, and badge rows for an event being committed.

    Looks for handlers in :const:`.ON_EVENT` and, if found, calls them with
    the passed parameters. They run inside the caller's transaction.

    Parameters
    ----------
    event : :class:`event.Event`
        The event being committed.
    before : :class:`.domain.submission.Submission`
        State of the submission before the event.
    after : :class:`.domain.submission.Submission`
        State of the submission after the event.

    """
    if after is None or after.submission_id is None:
        raise TransactionFailed('Cannot handle event without a submission')
    for callback in ON_EVENT.get(type(event), []):
        callback(event, before, after)
