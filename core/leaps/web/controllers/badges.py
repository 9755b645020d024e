"""Controllers for badge definitions and manual assignment."""

import re
from http import HTTPStatus as status
from typing import Any, Dict, List

from werkzeug.exceptions import BadRequest

from ...domain.agent import User
from ...domain.badge import Badge
from ...security.sanitize import sanitize_text, sanitize_url
from ...services import store
from .util import Response, success, translate_errors, require_json

BADGE_CODE = re.compile(r'^[A-Z0-9_]{2,64}$')
UPDATABLE = ('name', 'description', 'criteria', 'icon_url')


def _clean(data: Dict[str, Any]) -> Dict[str, Any]:
    """Sanitize the badge fields present in ``data``."""
    fields: Dict[str, Any] = {}
    if 'name' in data:
        fields['name'] = sanitize_text(data['name'], max_length=255,
                                       allow_newlines=False)
        if not fields['name']:
            raise BadRequest('Badge name is required')
    if 'description' in data:
        fields['description'] = sanitize_text(data['description'] or '')
    if 'criteria' in data:
        if not isinstance(data['criteria'], dict):
            raise BadRequest('criteria must be an object')
        fields['criteria'] = data['criteria']
    if 'icon_url' in data:
        fields['icon_url'] = sanitize_url(data['icon_url'])
    return fields


def _user_ids(data: Dict[str, Any]) -> List[str]:
    ids = data.get('userIds')
    if not data.get('badgeCode') or not isinstance(ids, list) or not ids:
        raise BadRequest('badgeCode and userIds are required')
    return [str(user_id) for user_id in ids]


@translate_errors
def list_badges(include_stats: bool = True) -> Response:
    return success(store.list_badges(include_stats=include_stats))


@translate_errors
def create_badge(data: Any, actor: User) -> Response:
    """Add a badge definition."""
    data = require_json(data)
    code = str(data.get('code') or '').upper()
    if not BADGE_CODE.match(code):
        raise BadRequest('Invalid badge code')
    if 'name' not in data:
        raise BadRequest('Badge name is required')
    fields = _clean(data)
    with store.transaction():
        badge = store.create_badge(Badge(code=code, **fields),
                                   actor.actor_id)
    return success({'message': 'Badge created successfully',
                    'code': badge.code}, status.CREATED)


@translate_errors
def update_badge(data: Any, actor: User) -> Response:
    data = require_json(data)
    code = data.get('code')
    if not code:
        raise BadRequest('Badge code is required')
    updates = _clean({k: v for k, v in data.items() if k in UPDATABLE})
    if not updates:
        raise BadRequest('No changes provided')
    with store.transaction():
        store.update_badge(str(code), actor.actor_id, **updates)
    return success({'message': 'Badge updated successfully'})


@translate_errors
def delete_badge(code: Any, actor: User) -> Response:
    """Remove a badge definition; earned badges cannot be deleted."""
    if not code:
        raise BadRequest('Badge code is required')
    with store.transaction():
        store.delete_badge(str(code), actor.actor_id)
    return success({'message': 'Badge deleted successfully'})


@translate_errors
def assign_badge(data: Any, actor: User) -> Response:
    data = require_json(data)
    user_ids = _user_ids(data)
    with store.transaction():
        result = store.assign_badge(str(data['badgeCode']), user_ids,
                                    actor.actor_id,
                                    reason=data.get('reason'))
    return success(result)


@translate_errors
def remove_badge(data: Any, actor: User) -> Response:
    data = require_json(data)
    user_ids = _user_ids(data)
    with store.transaction():
        result = store.remove_badge(str(data['badgeCode']), user_ids,
                                    actor.actor_id,
                                    reason=data.get('reason'))
    return success(result)
