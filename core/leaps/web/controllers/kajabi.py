"""Controllers for the Kajabi integration."""

from http import HTTPStatus as status
from typing import Any, Mapping

from werkzeug.exceptions import BadRequest

from ... import ingest
from ...domain.agent import User
from ...security.sanitize import sanitize_email, sanitize_text
from .util import Response, success, translate_errors, get_int, require_json


@translate_errors
def list_events(params: Mapping[str, Any]) -> Response:
    limit = min(max(get_int(params, 'limit', 50), 1), 200)
    return success(ingest.list_events(limit=limit))


@translate_errors
def health() -> Response:
    return success(ingest.kajabi_health())


@translate_errors
def reprocess(data: Any, actor: User) -> Response:
    """Retry an unmatched webhook delivery."""
    data = require_json(data)
    event_pk = data.get('event_id')
    if isinstance(event_pk, bool) or not isinstance(event_pk, (int, str)) \
            or not str(event_pk).isdigit():
        raise BadRequest('event_id is required')
    return success(ingest.reprocess(int(event_pk), actor))


@translate_errors
def invite(data: Any, actor: User) -> Response:
    """Enroll an educator in Kajabi."""
    data = require_json(data)
    email = data.get('email')
    if email is not None:
        email = sanitize_email(email)
        if email is None:
            raise BadRequest('Invalid email')
    name = data.get('name')
    if name is not None:
        name = sanitize_text(name, max_length=255, allow_newlines=False)
    result = ingest.invite(email, name, data.get('offerId'), actor,
                           user_id=data.get('userId'))
    return success(result, status.OK)


@translate_errors
def test_event(data: Any, actor: User) -> Response:
    """Credit a user with a simulated Learn completion."""
    data = require_json(data)
    email = sanitize_email(data.get('user_email') or '')
    if email is None:
        raise BadRequest('A valid user_email is required')
    course_name = data.get('course_name')
    if course_name is not None:
        course_name = sanitize_text(course_name, max_length=255,
                                    allow_newlines=False)
    return success(ingest.send_test_event(email, actor,
                                          course_name=course_name))
