"""Controllers for the submission review queue."""

from typing import Any, Dict, Mapping, Optional

from werkzeug.exceptions import BadRequest

from ... import core, logging
from ...domain.agent import User
from ...security.sanitize import sanitize_text
from ...services import store
from .util import Response, success, translate_errors, get_int, require_json

logger = logging.getLogger(__name__)

# Review notes are stored with at most 1000 characters, ellipsis included.
NOTE_LENGTH = 997


def _note(data: Mapping[str, Any]) -> Optional[str]:
    note = data.get('reviewNote')
    if note is None:
        return None
    return sanitize_text(note, max_length=NOTE_LENGTH) or None


def _submission_id(value: Any) -> int:
    if isinstance(value, bool):
        raise BadRequest('Invalid submission ID')
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise BadRequest('Invalid submission ID') from e


@translate_errors
def list_submissions(params: Mapping[str, Any]) -> Response:
    """Get a page of submissions, filtered and sorted."""
    return success(core.list_submissions(
        status=params.get('status'),
        activity=params.get('activity'),
        user_id=params.get('userId'),
        page=get_int(params, 'page', 1),
        limit=get_int(params, 'limit', 50),
        sort_by=params.get('sortBy', 'created'),
        sort_order=params.get('sortOrder', 'desc')
    ))


@translate_errors
def get_submission(submission_id: int) -> Response:
    submission = core.load_fast(submission_id)
    return success(store.submission_to_dict(submission))


@translate_errors
def review(data: Any, reviewer: User) -> Response:
    """Approve or reject one submission."""
    data = require_json(data)
    adjustment = data.get('pointAdjustment')
    if adjustment is not None and (isinstance(adjustment, bool)
                                   or not isinstance(adjustment, int)):
        raise BadRequest('pointAdjustment must be an integer')
    result = core.review(_submission_id(data.get('submissionId')),
                         str(data.get('action', '')), reviewer,
                         review_note=_note(data),
                         point_adjustment=adjustment)
    return success(result)


@translate_errors
def bulk_review(data: Any, reviewer: User) -> Response:
    """Approve or reject several submissions."""
    data = require_json(data)
    ids = data.get('submissionIds')
    if not isinstance(ids, list):
        raise BadRequest('submissionIds must be a list')
    result: Dict[str, Any] = core.bulk_review(
        [_submission_id(value) for value in ids],
        str(data.get('action', '')), reviewer, review_note=_note(data)
    )
    return success(result)


@translate_errors
def revoke(submission_id: int, data: Any, actor: User) -> Response:
    """Withdraw the approval of a submission."""
    reason = (data or {}).get('reason') if isinstance(data, dict) else None
    if reason is not None:
        reason = sanitize_text(reason, max_length=NOTE_LENGTH)
    return success(core.revoke(submission_id, actor, reason=reason))
