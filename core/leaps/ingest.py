"""
Ingestion of Kajabi webhook deliveries.

Kajabi tells us when a contact receives a tag. When the tag marks
completion of a Learn course and the contact is a known educator, the
participant is credited with Learn points exactly once: deliveries are
deduplicated on ``(event_id, tag)``, tag grants on ``(user, tag)``, and
ledger entries on their external event ID.

Deliveries for contacts that we cannot match to a user are kept, and can be
reprocessed by an administrator once the user exists.
"""

import hmac
import hashlib
import json
import uuid
from datetime import datetime, timedelta
from http import HTTPStatus as status
from typing import Tuple, Dict, Any, Mapping, Optional, FrozenSet

from . import logging
from .globals import get_application_config
from .domain.agent import User, System
from .domain.kajabi import KajabiTagEvent, parse, normalize_tag, \
    DEFAULT_EVENT_TYPE
from .domain.ledger import PointsEntry
from .domain.meta import LEARN, LEARN_TAGS, LEARN_POINTS_PER_TAG, \
    LedgerSource, UserType
from .domain.util import get_tzaware_utc_now, as_utc
from .exceptions import InvalidPayload, InvalidRequest, AlreadyProcessed, \
    IntegrationFailed
from .services import store
from .services.kajabi import Kajabi, RequestFailed, ConnectionFailed
from .services.store.models import KajabiEvent

logger = logging.getLogger(__name__)

Response = Tuple[Dict[str, Any], int]

SIGNATURE_HEADER = 'x-kajabi-signature'
REPLAY_HEADER = 'x-admin-replay'
MAX_CLOCK_SKEW = timedelta(minutes=5)
EXTERNAL_SOURCE = 'kajabi'
TEST_COURSE = 'Test Course - Admin Console'
SYSTEM = System(__name__)


def verify_signature(body: bytes, signature: Optional[str],
                     secret: Optional[str]) -> bool:
    """
    Check the HMAC-SHA256 signature of a webhook delivery.

    Parameters
    ----------
    body : bytes
        The raw request body, exactly as received.
    signature : str
        Hex digest from the ``X-Kajabi-Signature`` header.
    secret : str
        Shared webhook secret.

    Returns
    -------
    bool

    """
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode('utf-8'), body,
                        hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.strip().encode('utf-8'),
                               expected.encode('utf-8'))


def learn_tags() -> FrozenSet[str]:
    """Tags that mark completion of a Learn course."""
    configured = get_application_config().get('KAJABI_LEARN_TAGS', '') or ''
    tags = [normalize_tag(tag) for tag in configured.split(',')]
    return frozenset([tag for tag in tags if tag] or LEARN_TAGS)


def _allow_unsigned() -> bool:
    return bool(int(get_application_config().get('KAJABI_ALLOW_UNSIGNED',
                                                 0)))


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def _error(message: str, code: int) -> Response:
    return {'success': False, 'error': message}, code


def handle_webhook(body: bytes, headers: Mapping[str, str],
                   now: Optional[datetime] = None) -> Response:
    """
    Handle a Kajabi webhook delivery.

    Parameters
    ----------
    body : bytes
        Raw request body.
    headers : dict-like
        Request headers.
    now : datetime
        Time of receipt. Defaults to the current time.

    Returns
    -------
    dict
        Response content.
    int
        HTTP status code.

    """
    now = as_utc(now) or get_tzaware_utc_now()

    signature = _header(headers, SIGNATURE_HEADER)
    if not _allow_unsigned():
        if not signature:
            logger.warning('Kajabi webhook without a signature')
            return _error('Missing webhook signature', status.UNAUTHORIZED)
        secret = get_application_config().get('KAJABI_WEBHOOK_SECRET')
        if not verify_signature(body, signature, secret):
            logger.warning('Invalid Kajabi webhook signature')
            return _error('Invalid webhook signature', status.UNAUTHORIZED)

    try:
        payload = json.loads(body)
    except (ValueError, TypeError):
        logger.warning('Kajabi webhook body is not valid JSON')
        return _error('Body must be valid JSON', status.BAD_REQUEST)

    try:
        event = parse(payload, now=now)
    except InvalidPayload as e:
        logger.warning('Invalid Kajabi webhook payload: %s', e)
        return _error('Invalid Kajabi webhook payload', status.BAD_REQUEST)

    replay = str(_header(headers, REPLAY_HEADER) or '').lower() == 'true'
    if abs(now - event.created_at) > MAX_CLOCK_SKEW and not replay:
        logger.warning('Kajabi event %s outside allowed window (%s)',
                       event.event_id, event.created_at.isoformat())
        return _error('Event timestamp outside allowed window',
                      status.BAD_REQUEST)

    try:
        with store.transaction():
            try:
                row = store.webhooks.record_event(event)
            except store.DuplicateEntry:
                logger.info('Kajabi event %s (%s) already received',
                            event.event_id, event.tag_norm)
                return {'duplicate': True,
                        'reason': 'already_processed'}, status.OK
            return _process(row, event)
    except store.StoreBaseException as e:
        logger.error('Error processing Kajabi event %s: %s', event.event_id,
                     e, exc_info=True)
        return _error('Internal Server Error', status.INTERNAL_SERVER_ERROR)


def _process(row: KajabiEvent, event: KajabiTagEvent) -> Response:
    """Match, grant and award for a stored delivery."""
    if event.tag_norm not in learn_tags():
        store.webhooks.set_status(row, KajabiEvent.IGNORED)
        logger.debug('Ignoring Kajabi tag %s', event.tag_norm)
        return {'ignored': True, 'reason': 'tag_not_processed'}, \
            status.ACCEPTED

    user = store.match_kajabi_user(event.contact_id, event.email)
    if user is None:
        store.webhooks.set_status(row, KajabiEvent.QUEUED_UNMATCHED)
        logger.info('No user for Kajabi contact %s; queued for review',
                    event.contact_id)
        return {'queued': True, 'reason': 'user_not_found'}, status.ACCEPTED

    if user.user_type == UserType.STUDENT:
        store.webhooks.set_status(row, KajabiEvent.STUDENT, user_id=user.id)
        return _error('Student accounts are not eligible', status.FORBIDDEN)

    if not _award(row, event, user.id):
        return {'duplicate': True}, status.OK
    return {'awarded': True, 'user_id': user.id,
            'points_awarded': LEARN_POINTS_PER_TAG}, status.OK


def _award(row: KajabiEvent, event: KajabiTagEvent, user_id: str) -> bool:
    """Grant the tag and its points; ``False`` if either was already held."""
    try:
        with store.current_session().begin_nested():
            store.webhooks.grant_learn_tag(user_id, event.tag_norm)
            store.add_points(PointsEntry(
                user_id=user_id,
                activity_code=LEARN,
                delta_points=LEARN_POINTS_PER_TAG,
                source=LedgerSource.WEBHOOK,
                external_source=EXTERNAL_SOURCE,
                external_event_id=event.external_event_id,
                event_time=event.created_at,
                meta={'tag_name': event.tag_norm}
            ))
    except store.DuplicateEntry as e:
        logger.info('Kajabi award for %s deduplicated: %s', user_id, e)
        store.webhooks.set_status(row, KajabiEvent.DUPLICATE, user_id=user_id)
        return False
    store.grant_badges_for_user(user_id)
    store.audit_log(SYSTEM.actor_id, 'KAJABI_POINTS_AWARDED', user_id,
                    {'event_id': event.event_id,
                     'tag_name': event.tag_norm,
                     'points': LEARN_POINTS_PER_TAG,
                     'external_event_id': event.external_event_id})
    store.webhooks.set_status(row, KajabiEvent.PROCESSED, user_id=user_id)
    return True


def list_events(limit: int = 50) -> Dict[str, Any]:
    """Recent deliveries, with counts by outcome."""
    return store.webhooks.list_events(limit=limit)


def reprocess(event_pk: int, actor: User) -> Dict[str, Any]:
    """
    Retry a delivery that could not be matched to a user.

    Raises
    ------
    :class:`.AlreadyProcessed`
        If the delivery is not waiting for a user match.
    :class:`.store.NoSuchKajabiEvent`

    """
    with store.transaction():
        row = store.webhooks.get_event(event_pk)
        if row.status != KajabiEvent.QUEUED_UNMATCHED:
            raise AlreadyProcessed(f'Event is {row.status}; only unmatched'
                                   ' events can be reprocessed')
        event = KajabiTagEvent(event_id=row.event_id,
                               event_type='tag.added',
                               contact_id=row.contact_id or '',
                               email=row.email,
                               tag_name=row.tag_name_norm,
                               created_at=as_utc(row.created_at_utc)
                               or get_tzaware_utc_now(),
                               raw=dict(row.raw or {}))
        user = store.match_kajabi_user(event.contact_id, event.email)
        if user is None:
            raise store.NoSuchUser(f'User not found for email: {event.email}')
        if user.user_type == UserType.STUDENT:
            store.webhooks.set_status(row, KajabiEvent.STUDENT,
                                      user_id=user.id)
            awarded = False
        else:
            awarded = _award(row, event, user.id)
        store.audit_log(actor.actor_id, 'KAJABI_EVENT_REPROCESSED',
                        str(row.id), {'event_id': row.event_id,
                                      'user_id': user.id,
                                      'status': row.status})
        return {'message': 'Event reprocessed',
                'user_id': user.id,
                'points_awarded': LEARN_POINTS_PER_TAG if awarded else 0,
                'tag_name': event.tag_norm,
                'duplicate': row.status == KajabiEvent.DUPLICATE}


def send_test_event(email: str, actor: User,
                    course_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Credit a user as if Kajabi had sent a Learn completion tag.

    The synthetic delivery is stored and awarded like a real one, so the
    usual deduplication applies: a user who already holds the tag is not
    credited again.

    Raises
    ------
    :class:`.store.NoSuchUser`
        If no user has the e-mail address.

    """
    email = email.lower().strip()
    now = get_tzaware_utc_now()
    tag = sorted(learn_tags())[0]
    course_name = course_name or TEST_COURSE
    event = KajabiTagEvent(event_id=f'test_{uuid.uuid4().hex}',
                           event_type=DEFAULT_EVENT_TYPE, contact_id='',
                           email=email, tag_name=tag, created_at=now,
                           raw={'source': 'admin_test', 'test_mode': True,
                                'course_name': course_name})
    with store.transaction():
        user = store.users.find_user_by_email(email)
        if user is None:
            raise store.NoSuchUser(f'User not found for email: {email}')
        row = store.webhooks.record_event(event)
        if user.user_type == UserType.STUDENT:
            store.webhooks.set_status(row, KajabiEvent.STUDENT,
                                      user_id=user.id)
            awarded = False
        else:
            awarded = _award(row, event, user.id)
        store.audit_log(actor.actor_id, 'KAJABI_TEST_EVENT_CREATED', user.id,
                        {'event_id': event.event_id, 'tag_name': tag,
                         'course_name': course_name, 'test_mode': True,
                         'status': row.status})
        logger.info('Test Kajabi event %s for %s: %s', event.event_id,
                    user.id, row.status)
        return {'message': 'Test Kajabi event created successfully',
                'test_mode': True, 'event_id': event.event_id,
                'kajabi_event_id': row.id, 'user_id': user.id,
                'user_email': email, 'tag_name': tag,
                'course_name': course_name, 'status': row.status,
                'points_awarded': LEARN_POINTS_PER_TAG if awarded else 0}


def invite(email: Optional[str], name: Optional[str],
           offer_id: Optional[str], actor: User,
           user_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Enroll an educator in Kajabi, granting them the Learn offer.

    Either ``email`` or ``user_id`` is required. The resulting contact is
    linked to the local user, if there is one.

    Raises
    ------
    :class:`.IntegrationFailed`
        If Kajabi refused or could not be reached.

    """
    with store.transaction():
        user = None
        if user_id:
            user = store.users.get_user_row(user_id)
        elif email:
            user = store.users.find_user_by_email(email)
        email = (user.email if user is not None else email or '')
        email = email.lower().strip()
        if not email:
            raise InvalidRequest('Email required')
        name = name or (user.name if user is not None else '') \
            or email.split('@')[0]
        offer_id = offer_id \
            or get_application_config().get('KAJABI_OFFER_ID')
        target = user.id if user is not None else email
        meta: Dict[str, Any] = {'email': email, 'name': name,
                                'offer_id': offer_id}
        try:
            kajabi = Kajabi.current_session()
            if offer_id:
                contact_id = kajabi.enroll(email, name, offer_id)
            else:
                contact_id = kajabi.find_contact(email) \
                    or kajabi.create_contact(email, name)
        except (RequestFailed, ConnectionFailed) as e:
            logger.error('Kajabi invite for %s failed: %s', email, e)
            meta['error'] = str(e)
            store.audit_log(actor.actor_id, 'KAJABI_INVITE_FAILED', target,
                            meta)
            failure = e
        else:
            failure = None
            if user is not None:
                store.users.link_kajabi_contact(user, contact_id)
            meta.update({'contact_id': contact_id,
                         'granted': bool(offer_id)})
            store.audit_log(actor.actor_id, 'KAJABI_INVITE_SENT', target,
                            meta)
            logger.info('Kajabi invite sent to %s (contact %s)', email,
                        contact_id)
    if failure is not None:
        raise IntegrationFailed(f'Kajabi invite failed: {failure}') \
            from failure
    return {'invited': True, 'contactId': contact_id,
            'withOffer': bool(offer_id), 'userId': target}


def kajabi_health() -> Dict[str, Any]:
    """Whether the Kajabi API accepts our credentials."""
    kajabi = Kajabi.current_session()
    configured = kajabi.is_configured
    return {'configured': configured,
            'healthy': kajabi.is_healthy() if configured else False}
