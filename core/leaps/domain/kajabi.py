"""
Kajabi tag events.

Kajabi notifies us when a contact receives a tag. Two payload shapes are in
the wild: a flat one (``contact`` and ``tag`` objects at the top level, or
inside ``data``) and the JSON:API shape used by v1 webhooks, in which the
contact and tag are found in the ``included`` array.
"""

import hashlib
from datetime import datetime
from typing import Optional, Dict, Any, List

from dataclasses import dataclass, field
from dateutil import parser as dateparser

from ..exceptions import InvalidPayload
from .util import get_tzaware_utc_now, as_utc

DEFAULT_EVENT_TYPE = 'tag.added'

PLACEHOLDER_CONTACT_IDS = frozenset(['', '0', 'none', 'null', 'undefined'])


@dataclass
class KajabiTagEvent:
    """A single tag applied to a Kajabi contact."""

    event_id: str
    event_type: str
    contact_id: str
    email: Optional[str]
    tag_name: str
    created_at: datetime
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def tag_norm(self) -> str:
        return normalize_tag(self.tag_name)

    @property
    def external_event_id(self) -> str:
        return external_event_id(self)


def normalize_tag(tag: Any) -> str:
    """Tags are compared case-insensitively, without surrounding space."""
    return str(tag or '').lower().strip()


def normalize_contact_id(contact_id: Any) -> str:
    """A usable contact ID, or '' when the delivery carries none."""
    value = '' if contact_id is None else str(contact_id).strip()
    return '' if value.lower() in PLACEHOLDER_CONTACT_IDS else value


def _normalize_email(email: Any) -> Optional[str]:
    value = str(email or '').lower().strip()
    return value or None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _parse_time(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return as_utc(dateparser.parse(value))
    except (ValueError, OverflowError):
        return None


def _find_included(included: List[Any], *types: str) -> Dict[str, Any]:
    for node in included:
        if isinstance(node, dict) and node.get('type') in types:
            return node
    return {}


def _parse_flat(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    data = _as_dict(payload.get('data'))
    contact = _as_dict(payload.get('contact') or data.get('contact'))
    tag = _as_dict(payload.get('tag') or data.get('tag'))
    email = _normalize_email(contact.get('email'))
    tag_name = tag.get('name')
    if not email or not tag_name or 'id' not in contact:
        return None
    return {'event_id': payload.get('event_id') or data.get('event_id'),
            'event_type': payload.get('event_type') or DEFAULT_EVENT_TYPE,
            'contact_id': contact.get('id'),
            'email': email,
            'tag_name': tag_name}


def _parse_jsonapi(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    data = _as_dict(payload.get('data'))
    attributes = _as_dict(data.get('attributes'))
    included = payload.get('included')
    included = included if isinstance(included, list) else []
    contact = _find_included(included, 'contacts', 'contact')
    tag = _find_included(included, 'tags', 'tag')
    contact_attrs = _as_dict(contact.get('attributes'))
    tag_attrs = _as_dict(tag.get('attributes'))
    email = _normalize_email(contact_attrs.get('email')
                             or contact_attrs.get('email_address'))
    tag_name = tag_attrs.get('name') or tag_attrs.get('title')
    if not email or not tag_name:
        return None
    return {'event_id': payload.get('event_id') or data.get('id'),
            'event_type': (attributes.get('event') or payload.get('event')
                           or DEFAULT_EVENT_TYPE),
            'contact_id': contact.get('id'),
            'email': email,
            'tag_name': tag_name}


def parse(payload: Any, now: Optional[datetime] = None) -> KajabiTagEvent:
    """
    Interpret a Kajabi webhook payload.

    Parameters
    ----------
    payload : dict
        Decoded JSON body of the webhook delivery.
    now : datetime
        Receipt time; used when the payload carries no ``created_at``.

    Returns
    -------
    :class:`KajabiTagEvent`

    Raises
    ------
    :class:`.InvalidPayload`
        If neither payload shape yields an e-mail address and a tag name.

    """
    if not isinstance(payload, dict):
        raise InvalidPayload('Payload must be a JSON object')
    parsed = _parse_flat(payload) or _parse_jsonapi(payload)
    if parsed is None:
        raise InvalidPayload('Missing email or tag name')

    data = _as_dict(payload.get('data'))
    created_at = _parse_time(payload.get('created_at')) \
        or _parse_time(_as_dict(data.get('attributes')).get('created_at')) \
        or as_utc(now) or get_tzaware_utc_now()

    contact_id = normalize_contact_id(parsed['contact_id'])
    tag_name = normalize_tag(parsed['tag_name'])
    event_id = str(parsed['event_id'] or '') \
        or fallback_event_id(contact_id, tag_name, created_at)
    return KajabiTagEvent(event_id=event_id,
                          event_type=str(parsed['event_type']),
                          contact_id=contact_id,
                          email=parsed['email'],
                          tag_name=tag_name,
                          created_at=created_at,
                          raw=payload)


def fallback_event_id(contact_id: str, tag_name: str,
                      created_at: datetime) -> str:
    """Deterministic event ID for deliveries that do not carry one."""
    source = f'{contact_id}:{tag_name}:{created_at.isoformat()}'
    digest = hashlib.sha1(source.encode('utf-8')).hexdigest()
    return f'kajabi_{digest[:16]}'


def external_event_id(event: KajabiTagEvent) -> str:
    """Ledger idempotency key for the points awarded by ``event``."""
    return f'kajabi:{event.event_id}|tag:{event.tag_norm}'
