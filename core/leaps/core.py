"""Core persistence methods for submissions, and the review workflow."""

from typing import List, Dict, Tuple, Optional, Any, Iterable
from datetime import datetime

from pytz import UTC
from flask import Flask

from . import logging
from .globals import get_application_config
from .domain.agent import Agent, User
from .domain.event import Event, CreateSubmission, ApproveSubmission, \
    RejectSubmission, RevokeSubmission, validators
from .domain.meta import AMPLIFY
from .domain.submission import Submission
from .exceptions import InvalidEvent, InvalidRequest, NoSuchSubmission, \
    SaveError, NothingToDo
from .rules import compute_points, validate_adjustment, check_amplify, Caps
from .rules.amplify import session_start
from .security.sanitize import sanitize_submission_payload
from .services import store
from .services.kajabi import Kajabi

logger = logging.getLogger(__name__)

APPROVE = 'approve'
REJECT = 'reject'
OUTCOMES = {APPROVE: 'approved', REJECT: 'rejected'}
MAX_BULK_REVIEW = 50


def load(submission_id: int) -> Tuple[Submission, List[Event]]:
    """
    Load a submission and its history.

    Parameters
    ----------
    submission_id : int
        Submission identifier.

    Returns
    -------
    :class:`.domain.submission.Submission`
        The current state of the submission.
    list
        Items are :class:`.Event` instances, in order of their occurrence.

    Raises
    ------
    :class:`leaps.exceptions.NoSuchSubmission`
        Raised when a submission with the passed ID cannot be found.

    """
    try:
        return store.get_submission(submission_id)
    except store.NoSuchSubmission as e:
        raise NoSuchSubmission(f'No submission with id {submission_id}') from e


def load_fast(submission_id: int) -> Submission:
    """
    Load a :class:`.domain.submission.Submission` from its projected state.

    This does not load past events. The most recent stored submission state
    is loaded directly from the database.
    """
    try:
        return store.get_submission_fast(submission_id)
    except store.NoSuchSubmission as e:
        raise NoSuchSubmission(f'No submission with id {submission_id}') from e


def save(*events: Event, submission_id: Optional[int] = None) \
        -> Tuple[Submission, List[Event]]:
    """
    Commit a set of new :class:`.Event` instances for a submission.

    This will persist the events to the database, along with the final
    state of the submission and the ledger, audit and badge rows that the
    events imply.

    Parameters
    ----------
    events : :class:`.Event`
        Events to apply and persist.
    submission_id : int
        The unique ID for the submission, if available. If not provided, it is
        expected that ``events`` includes a :class:`.CreateSubmission`.

    Returns
    -------
    :class:`leaps.domain.submission.Submission`
        The state of the submission after all events (including rule-derived
        events) have been applied.
    list
        A list of :class:`.Event` instances applied to the submission.

    Raises
    ------
    :class:`leaps.exceptions.NoSuchSubmission`
        Raised if ``submission_id`` is not provided and the first event is not
        a :class:`.CreateSubmission`, or ``submission_id`` is provided but
        no such submission exists.
    :class:`.InvalidEvent`
        If an invalid event is encountered, the entire operation is aborted
        and this exception is raised.
    :class:`.SaveError`
        There was a problem persisting the events and/or submission state
        to the database.

    """
    if len(events) == 0:
        raise NothingToDo('Must pass at least one event')
    events = list(events)   # Coerce to list so that we can index.
    prior: List[Event] = []
    before: Optional[Submission] = None

    try:
        # We need ACIDity surrounding the validation and persistence of new
        # events.
        with store.transaction():
            if submission_id is not None:
                # Locks the submission row while we are working with it.
                before, prior = store.get_submission(submission_id,
                                                     for_update=True)

            # Either we need a submission ID, or the first event must be a
            # creation.
            elif events[0].submission_id is None \
                    and not isinstance(events[0], CreateSubmission):
                raise NoSuchSubmission('Unable to determine submission')

            committed: List[Event] = []
            for event in events:
                if event.submission_id is None and submission_id is not None:
                    event.submission_id = submission_id

                # The event ID is based on the creation time, so this must be
                # set before the event is applied.
                event.created = datetime.now(UTC)
                # Mutation happens here; raises InvalidEvent.
                logger.debug('Apply event %s: %s', event.event_id, event.NAME)
                after = event.apply(before)
                committed.append(event)
                if not event.committed:
                    after, consequent_events = event.commit(store.store_event)
                    committed += consequent_events

                before = after      # Prepare for the next event.

            all_ = sorted(set(prior) | set(committed), key=lambda e: e.created)
            return after, list(all_)
    except store.NoSuchSubmission as e:
        raise NoSuchSubmission(f'No submission with id {submission_id}') from e
    except store.TransactionFailed as e:
        raise SaveError('Failed to save submission events') from e


def create(creator: Agent, activity_code: str, payload: Dict[str, Any],
           **extra: Any) -> Submission:
    """Record new evidence for a LEAPS stage; the payload is sanitized."""
    payload = sanitize_submission_payload(activity_code, payload)
    submission, _ = save(CreateSubmission(creator=creator,
                                          activity_code=activity_code,
                                          payload=payload, **extra))
    return submission


def _caps() -> Tuple[Caps, int]:
    config = get_application_config()
    caps = Caps(peers=int(config.get('AMPLIFY_PEERS_PER_7D', 50)),
                students=int(config.get('AMPLIFY_STUDENTS_PER_7D', 200)))
    return caps, int(config.get('AMPLIFY_DUPLICATE_WINDOW_MINUTES', 45))


def _approval(submission: Submission, reviewer: User,
              review_note: Optional[str],
              point_adjustment: Optional[int]) -> ApproveSubmission:
    event = ApproveSubmission(creator=reviewer,
                              submission_id=submission.submission_id,
                              review_note=review_note)
    validators.submission_is_pending(event, submission)

    base = compute_points(submission.activity_code, submission.payload)
    points = base
    if point_adjustment is not None:
        try:
            points = int(point_adjustment)
        except (TypeError, ValueError) as e:
            raise InvalidRequest('Point adjustment must be a number') from e
        validate_adjustment(base, points)
    event.points = points
    event.base_points = base

    if submission.activity_code == AMPLIFY:
        org_timezone = get_application_config().get('ORG_TIMEZONE',
                                                     'Asia/Jakarta')
        caps, duplicate_window = _caps()
        prior = store.approved_payloads(submission.user_id, AMPLIFY,
                                        exclude=submission.submission_id)
        event.warnings = check_amplify(submission.payload, prior,
                                       org_timezone, caps, duplicate_window)
        event.org_timezone = org_timezone
        event.event_time = session_start(submission.payload, org_timezone)
    return event


def review(submission_id: int, action: str, reviewer: User,
           review_note: Optional[str] = None,
           point_adjustment: Optional[int] = None) -> Dict[str, Any]:
    """
    Approve or reject a pending submission.

    Approval awards the stage's points (or the reviewer's adjusted award,
    which must stay within 20% of it). For Amplify, the rolling 7-day caps
    are enforced and any warnings are returned to the reviewer.

    Parameters
    ----------
    submission_id : int
    action : str
        ``approve`` or ``reject``.
    reviewer : :class:`.User`
    review_note : str
    point_adjustment : int
        Final number of points to award, if not the default.

    Returns
    -------
    dict

    Raises
    ------
    :class:`.InvalidRequest`
    :class:`.NoSuchSubmission`
    :class:`.AlreadyReviewed`
    :class:`.InvalidAdjustment`
    :class:`.SubmissionLimitExceeded`

    """
    if action not in (APPROVE, REJECT):
        raise InvalidRequest("Action must be 'approve' or 'reject'")
    with store.transaction():
        submission = load_fast(submission_id)
        if action == APPROVE:
            event: Event = _approval(submission, reviewer, review_note,
                                     point_adjustment)
        else:
            event = RejectSubmission(creator=reviewer,
                                     submission_id=submission_id,
                                     review_note=review_note)
            validators.submission_is_pending(event, submission)
        after, _ = save(event, submission_id=submission_id)
        warnings = list(getattr(event, 'warnings', []))
        logger.info('Submission %s %s by %s', submission_id,
                    OUTCOMES[action], reviewer.native_id)
        return {'message': f'Submission {OUTCOMES[action]} successfully',
                'submission': store.submission_to_dict(after),
                'warnings': warnings}


def bulk_review(submission_ids: Iterable[int], action: str, reviewer: User,
                review_note: Optional[str] = None) -> Dict[str, Any]:
    """Review up to 50 submissions, each one independently of the others."""
    submission_ids = list(submission_ids)
    if not submission_ids:
        raise InvalidRequest('No submissions to review')
    if len(submission_ids) > MAX_BULK_REVIEW:
        raise InvalidRequest(f'Maximum {MAX_BULK_REVIEW} submissions per'
                             ' bulk review')
    if action not in (APPROVE, REJECT):
        raise InvalidRequest("Action must be 'approve' or 'reject'")
    processed = 0
    errors: List[Dict[str, Any]] = []
    for submission_id in submission_ids:
        try:
            review(submission_id, action, reviewer, review_note)
        except (NoSuchSubmission, InvalidEvent, InvalidRequest, SaveError,
                store.StoreBaseException) as e:
            logger.info('Bulk %s of %s failed: %s', action, submission_id, e)
            errors.append({'submissionId': submission_id,
                           'error': getattr(e, 'message', '') or str(e)})
        else:
            processed += 1
    return {'processed': processed, 'failed': len(errors), 'errors': errors}


def revoke(submission_id: int, actor: User,
           reason: Optional[str] = None) -> Dict[str, Any]:
    """
    Withdraw the approval of a submission, reversing its points.

    Revoking a submission that is already revoked does nothing.
    """
    event = RevokeSubmission(creator=actor, submission_id=submission_id,
                             reason=reason)
    try:
        after, _ = save(event, submission_id=submission_id)
    except NothingToDo:
        logger.info('Submission %s is already revoked', submission_id)
        return {'message': 'Submission already revoked', 'revoked': False,
                'submission': store.submission_to_dict(
                    load_fast(submission_id))}
    return {'message': 'Submission revoked successfully', 'revoked': True,
            'submission': store.submission_to_dict(after)}


def list_submissions(status: Optional[str] = None,
                     activity: Optional[str] = None,
                     user_id: Optional[str] = None, page: int = 1,
                     limit: int = 50, sort_by: str = 'created',
                     sort_order: str = 'desc') -> Dict[str, Any]:
    """Get a page of submissions for the review queue."""
    if page < 1 or not 1 <= limit <= 100:
        raise InvalidRequest('Invalid pagination parameters')
    return store.list_submissions(status=status, activity=activity,
                                  user_id=user_id, page=page, limit=limit,
                                  sort_by=sort_by, sort_order=sort_order)


def init_app(app: Flask) -> None:
    """Set default configuration parameters for an application instance."""
    store.init_app(app)
    Kajabi.init_app(app)
    app.config.setdefault('ENABLE_CALLBACKS', 1)
    app.config.setdefault('EMAIL_ENABLED', 0)
