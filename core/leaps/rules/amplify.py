"""
Checks applied when approving Amplify (training) submissions.

Participants report how many peers and students they trained in a session.
The totals credited in any rolling 7-day window are capped, and some
patterns are surfaced to the reviewer as warnings rather than refused.
"""

from datetime import datetime, timedelta, time
from typing import Any, Mapping, Iterable, List, Optional, Tuple, NamedTuple

import pytz
from dateutil import parser as dateparser

from .. import logging
from ..exceptions import SubmissionLimitExceeded, InvalidRequest
from .scoring import as_count

logger = logging.getLogger(__name__)

MISSING_SESSION_START_TIME = 'MISSING_SESSION_START_TIME'
MISSING_CITY = 'MISSING_CITY'
DUPLICATE_SESSION_SUSPECT = 'DUPLICATE_SESSION_SUSPECT'

WINDOW_DAYS = 7


class Caps(NamedTuple):
    peers: int = 50
    students: int = 200


class Session(NamedTuple):
    """The parts of an Amplify payload that matter for the checks."""

    peers: int
    students: int
    date: Optional[str]
    start_time: Optional[str]
    city: Optional[str]

    @classmethod
    def from_payload(cls, payload: Any) -> 'Session':
        payload = payload if isinstance(payload, Mapping) else {}
        location = payload.get('location')
        city = location.get('city') if isinstance(location, Mapping) else None
        start = payload.get('session_start_time')
        date = payload.get('session_date')
        return cls(peers=as_count(payload.get('peers_trained')),
                   students=as_count(payload.get('students_trained')),
                   date=date if isinstance(date, str) and date else None,
                   start_time=start if isinstance(start, str) and start
                   else None,
                   city=city.strip() if isinstance(city, str) and city.strip()
                   else None)


def to_utc(date: str, start_time: Optional[str],
           tz: pytz.BaseTzInfo) -> datetime:
    """Interpret a local session date and time in the org timezone."""
    day = dateparser.parse(date).date()
    at = dateparser.parse(start_time).time() if start_time else time(0, 0)
    return tz.localize(datetime.combine(day, at)).astimezone(pytz.UTC)


def session_start(payload: Mapping[str, Any], org_timezone: str) -> datetime:
    """Start of the reported session, in UTC."""
    session = Session.from_payload(payload)
    if session.date is None:
        raise InvalidRequest('Amplify submission has no session date')
    try:
        return to_utc(session.date, session.start_time,
                      pytz.timezone(org_timezone))
    except (ValueError, OverflowError) as e:
        raise InvalidRequest('Invalid session date or time') from e


def window(payload: Mapping[str, Any],
           org_timezone: str) -> Tuple[datetime, datetime]:
    """The 7-day window ending on the day of the session (inclusive)."""
    session = Session.from_payload(payload)
    start_of_day = session_start({'session_date': session.date},
                                 org_timezone)
    return (start_of_day - timedelta(days=WINDOW_DAYS - 1),
            start_of_day + timedelta(days=1) - timedelta(microseconds=1))


def check_amplify(payload: Mapping[str, Any],
                  prior_approved: Iterable[Mapping[str, Any]],
                  org_timezone: str, caps: Caps = Caps(),
                  duplicate_window_minutes: int = 45) -> List[str]:
    """
    Validate an Amplify submission against the participant's approved ones.

    Parameters
    ----------
    payload : dict
        Payload of the submission being approved.
    prior_approved : iterable
        Payloads of the participant's already-approved Amplify submissions.
    org_timezone : str
        Name of the timezone in which session times were reported.
    caps : :class:`Caps`
    duplicate_window_minutes : int
        Sessions in the same city that start closer together than this are
        flagged as possible duplicates.

    Returns
    -------
    list
        Zero or one warning codes.

    Raises
    ------
    :class:`.SubmissionLimitExceeded`
        If approving would credit more people than allowed in the window.

    """
    this = Session.from_payload(payload)
    start = session_start(payload, org_timezone)
    window_start, window_end = window(payload, org_timezone)

    peers_used = 0
    students_used = 0
    duplicate = False
    for other_payload in prior_approved:
        other = Session.from_payload(other_payload)
        try:
            other_start = session_start(other_payload, org_timezone)
        except InvalidRequest:
            logger.debug('Skipping approved session without a usable date')
            continue
        if window_start <= other_start <= window_end:
            peers_used += other.peers
            students_used += other.students
        if this.start_time and other.start_time and this.city and other.city \
                and this.city.lower() == other.city.lower():
            delta = abs((other_start - start).total_seconds()) / 60
            if delta <= duplicate_window_minutes:
                duplicate = True

    warnings: List[str] = []
    if not this.start_time:
        warnings.append(MISSING_SESSION_START_TIME)
    elif not this.city:
        warnings.append(MISSING_CITY)
    elif duplicate:
        warnings.append(DUPLICATE_SESSION_SUSPECT)

    if peers_used + this.peers > caps.peers:
        raise SubmissionLimitExceeded('Peer training', peers_used + this.peers,
                                      caps.peers)
    if students_used + this.students > caps.students:
        raise SubmissionLimitExceeded('Student training',
                                      students_used + this.students,
                                      caps.students)
    return warnings
