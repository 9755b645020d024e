"""Rules for sending e-mail notifications to participants."""

from typing import Iterable

from flask import render_template

from ..globals import get_application_config
from ..domain.event import Event, ApproveSubmission, RejectSubmission
from ..domain.submission import Submission
from ..domain.meta import ACTIVITY_NAMES
from ..services import mail, store
from .. import logging

logger = logging.getLogger(__name__)


@ApproveSubmission.bind()
def notify_approval(event: ApproveSubmission, before: Submission,
                    after: Submission) -> Iterable[Event]:
    """Let the participant know that their evidence was accepted."""
    if email_is_enabled():
        _send(after, 'approved', 'Your LEAPS submission was approved',
              points=event.points)
    return []


@RejectSubmission.bind()
def notify_rejection(event: RejectSubmission, before: Submission,
                     after: Submission) -> Iterable[Event]:
    """Let the participant know that their evidence was not accepted."""
    if email_is_enabled():
        _send(after, 'rejected', 'Your LEAPS submission needs attention')
    return []


def _send(submission: Submission, outcome: str, subject: str,
          **extra) -> None:
    participant = store.find_user(submission.user_id)
    if participant is None or not participant.email:
        logger.info('No e-mail address for user %s; not notifying',
                    submission.user_id)
        return
    context = dict(extra, submission=submission, user=participant,
                   activity=ACTIVITY_NAMES.get(submission.activity_code,
                                               submission.activity_code))
    mail.send(participant.email, subject,
              render_template(f'leaps/{outcome}-email.txt', **context),
              render_template(f'leaps/{outcome}-email.html', **context))


def email_is_enabled() -> bool:
    """Determine whether or not email is enabled in this application."""
    return bool(int(get_application_config().get('EMAIL_ENABLED', 0)))
