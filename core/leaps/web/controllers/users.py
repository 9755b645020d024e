"""Controllers for user administration."""

from typing import Any, Dict, Mapping

from werkzeug.exceptions import BadRequest

from ...domain.agent import User
from ...security.sanitize import sanitize_text
from ...services import store
from .util import Response, success, translate_errors, get_int, require_json

TEXT_FIELDS = ('name', 'school', 'cohort', 'handle')
CODE_FIELDS = ('role', 'user_type')


@translate_errors
def list_users(params: Mapping[str, Any]) -> Response:
    """Get a page of users with point totals."""
    limit = min(max(get_int(params, 'limit', 50), 1), 100)
    return success(store.list_users(
        search=params.get('search'),
        role=params.get('role'),
        user_type=params.get('userType'),
        cohort=params.get('cohort'),
        page=max(get_int(params, 'page', 1), 1),
        limit=limit,
        sort_by=params.get('sortBy', 'created'),
        sort_order=params.get('sortOrder', 'desc')
    ))


@translate_errors
def update_user(user_id: str, data: Any, actor: User) -> Response:
    """
    Change the profile, role, or participant type of a user.

    Free-text fields are sanitized before they are stored.
    """
    data = require_json(data)
    if 'userType' in data and 'user_type' not in data:
        data['user_type'] = data['userType']
    fields = {}
    for key in TEXT_FIELDS:
        if data.get(key) is not None:
            fields[key] = sanitize_text(data[key], max_length=255,
                                        allow_newlines=False)
    for key in CODE_FIELDS:
        if data.get(key) is not None:
            fields[key] = str(data[key])
    with store.transaction():
        user = store.update_user(user_id, actor, **fields)
    return success({'message': 'User updated successfully', 'user': user})


@translate_errors
def bulk_update(data: Any, actor: User) -> Response:
    """Set the participant type, school, or cohort of several users."""
    data = require_json(data)
    user_ids = data.get('userIds')
    if not isinstance(user_ids, list) or not user_ids \
            or not all(isinstance(value, str) for value in user_ids):
        raise BadRequest('userIds must be a list of user IDs')
    fields: Dict[str, Any] = {}
    if data.get('userType') is not None:
        fields['user_type'] = str(data['userType'])
    for key in ('school', 'cohort'):
        if data.get(key) is not None:
            fields[key] = sanitize_text(data[key], max_length=255,
                                        allow_newlines=False)
    with store.transaction():
        result = store.bulk_update_users(user_ids, actor, **fields)
    return success(result)
