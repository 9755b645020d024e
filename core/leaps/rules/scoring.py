"""Point values for approved evidence."""

import math
from typing import Any, Mapping

from ..domain.meta import LEARN, EXPLORE, AMPLIFY, PRESENT, SHINE
from ..exceptions import InvalidAdjustment

PEERS_CAP = 50
STUDENTS_CAP = 200
POINTS_PER_PEER = 2
POINTS_PER_STUDENT = 1
ADJUSTMENT_RATIO = 0.2
"""Reviewers may move an award by at most this share of the base points."""

FIXED_POINTS = {LEARN: 20, EXPLORE: 50, PRESENT: 20, SHINE: 0}


def as_count(value: Any) -> int:
    """Interpret a submitted head-count; anything non-numeric counts as 0."""
    if isinstance(value, bool):
        return 0
    try:
        count = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(count, 0)


def compute_points(activity: str, payload: Mapping[str, Any]) -> int:
    """
    Calculate the default award for a submission.

    Amplify awards two points per peer and one per student trained, with the
    counts capped per submission. All other stages have fixed values.
    """
    activity = str(activity).upper()
    if activity == AMPLIFY:
        payload = payload if isinstance(payload, Mapping) else {}
        peers = min(as_count(payload.get('peers_trained')), PEERS_CAP)
        students = min(as_count(payload.get('students_trained')),
                       STUDENTS_CAP)
        return peers * POINTS_PER_PEER + students * POINTS_PER_STUDENT
    return FIXED_POINTS.get(activity, 0)


def max_adjustment(base: int) -> int:
    return int(math.ceil(abs(base) * ADJUSTMENT_RATIO))


def validate_adjustment(base: int, adjusted: int) -> None:
    """
    Check that a reviewer's final award is close enough to the default.

    Raises
    ------
    :class:`.InvalidAdjustment`

    """
    allowed = max_adjustment(base)
    if abs(adjusted - base) > allowed:
        raise InvalidAdjustment(f'Point adjustment must be within ±{allowed}'
                                f' of base points ({base})')
