"""Tests for :mod:`leaps.ingest`."""

import hmac
import hashlib
import json
from datetime import datetime, timedelta
from unittest import TestCase, mock

from flask import Flask
from pytz import UTC

from ..domain.agent import User
from ..exceptions import AlreadyProcessed, IntegrationFailed
from ..services import store
from ..services.kajabi import ConnectionFailed
from ..services.store import models, current_session
from ..services.store.tests.util import in_memory_db, add_user
from .. import ingest

SECRET = 'whsec-test'
NOW = datetime(2025, 3, 4, 10, 0, tzinfo=UTC)


def delivery(event_id='evt-1', tag='elevate-ai-1-completed',
             email='ana@school.test', contact_id=4242, created_at=NOW):
    return {'event_id': event_id, 'event_type': 'contact.tagged',
            'created_at': created_at.isoformat(),
            'contact': {'id': contact_id, 'email': email},
            'tag': {'name': tag}}


def signed(payload, secret=SECRET):
    body = json.dumps(payload).encode('utf-8')
    signature = hmac.new(secret.encode('utf-8'), body,
                         hashlib.sha256).hexdigest()
    return body, {'X-Kajabi-Signature': signature}


def make_app(**config):
    app = Flask('test')
    app.config['KAJABI_WEBHOOK_SECRET'] = SECRET
    app.config['KAJABI_ALLOW_UNSIGNED'] = 0
    app.config['KAJABI_LEARN_TAGS'] = ''
    app.config.update(config)
    return app


class TestVerifySignature(TestCase):
    """HMAC-SHA256 signatures are checked in constant time."""

    def test_valid(self):
        body, headers = signed({'a': 1})
        self.assertTrue(ingest.verify_signature(
            body, headers['X-Kajabi-Signature'], SECRET
        ))

    def test_invalid(self):
        body, headers = signed({'a': 1}, secret='other')
        self.assertFalse(ingest.verify_signature(
            body, headers['X-Kajabi-Signature'], SECRET
        ))

    def test_missing(self):
        self.assertFalse(ingest.verify_signature(b'{}', None, SECRET))
        self.assertFalse(ingest.verify_signature(b'{}', 'abc', None))


class TestHandleWebhook(TestCase):
    """Webhook deliveries award Learn points exactly once."""

    def test_missing_signature(self):
        with in_memory_db(make_app()):
            data, code = ingest.handle_webhook(b'{}', {}, NOW)
        self.assertEqual(code, 401)
        self.assertEqual(data['error'], 'Missing webhook signature')

    def test_bad_signature(self):
        with in_memory_db(make_app()):
            body, _ = signed(delivery())
            data, code = ingest.handle_webhook(
                body, {'X-Kajabi-Signature': 'deadbeef'}, NOW
            )
        self.assertEqual(code, 401)
        self.assertEqual(data['error'], 'Invalid webhook signature')

    def test_unsigned_allowed(self):
        """Development deployments may accept unsigned deliveries."""
        with in_memory_db(make_app(KAJABI_ALLOW_UNSIGNED=1)):
            add_user('u1', email='ana@school.test')
            body = json.dumps(delivery()).encode('utf-8')
            data, code = ingest.handle_webhook(body, {}, NOW)
        self.assertEqual(code, 200)
        self.assertTrue(data['awarded'])

    def test_not_json(self):
        with in_memory_db(make_app()):
            body, headers = signed(delivery())
            body = b'not json'
            headers = {'X-Kajabi-Signature': hmac.new(
                SECRET.encode('utf-8'), body, hashlib.sha256
            ).hexdigest()}
            data, code = ingest.handle_webhook(body, headers, NOW)
        self.assertEqual(code, 400)
        self.assertEqual(data['error'], 'Body must be valid JSON')

    def test_unparseable_payload(self):
        with in_memory_db(make_app()):
            body, headers = signed({'hello': 'world'})
            data, code = ingest.handle_webhook(body, headers, NOW)
        self.assertEqual(code, 400)
        self.assertEqual(data['error'], 'Invalid Kajabi webhook payload')

    def test_stale_event(self):
        """Events older than five minutes need the admin replay header."""
        with in_memory_db(make_app()):
            add_user('u1', email='ana@school.test')
            old = delivery(created_at=NOW - timedelta(minutes=6))
            body, headers = signed(old)
            data, code = ingest.handle_webhook(body, headers, NOW)
            self.assertEqual(code, 400)
            self.assertEqual(data['error'],
                             'Event timestamp outside allowed window')

            headers['x-admin-replay'] = 'true'
            data, code = ingest.handle_webhook(body, headers, NOW)
            self.assertEqual(code, 200)

    def test_award(self):
        """A Learn tag for a known educator awards 20 points."""
        with in_memory_db(make_app()):
            add_user('u1', email='Ana@School.test')
            body, headers = signed(delivery())
            data, code = ingest.handle_webhook(body, headers, NOW)
            self.assertEqual(code, 200)
            self.assertEqual(data, {'awarded': True, 'user_id': 'u1',
                                    'points_awarded': 20})

            session = current_session()
            entry = session.query(models.PointsLedger).one()
            self.assertEqual(entry.delta_points, 20)
            self.assertEqual(entry.source, 'WEBHOOK')
            self.assertEqual(entry.external_source, 'kajabi')
            self.assertEqual(entry.external_event_id,
                             'kajabi:evt-1|tag:elevate-ai-1-completed')
            self.assertEqual(entry.meta,
                             {'tag_name': 'elevate-ai-1-completed'})

            event = session.query(models.KajabiEvent).one()
            self.assertEqual(event.status, 'processed')
            self.assertEqual(event.user_match, 'u1')
            self.assertIsNotNone(event.processed_at)

            user = session.get(models.User, 'u1')
            self.assertEqual(user.kajabi_contact_id, '4242')
            audit = session.query(models.AuditLog) \
                .filter(models.AuditLog.action == 'KAJABI_POINTS_AWARDED') \
                .one()
            self.assertEqual(audit.actor_id, 'system')

    def test_redelivery(self):
        """The same event and tag are only handled once."""
        with in_memory_db(make_app()):
            add_user('u1', email='ana@school.test')
            body, headers = signed(delivery())
            ingest.handle_webhook(body, headers, NOW)
            data, code = ingest.handle_webhook(body, headers, NOW)
            self.assertEqual(code, 200)
            self.assertEqual(data, {'duplicate': True,
                                    'reason': 'already_processed'})
            self.assertEqual(store.user_points('u1')['total'], 20)

    def test_same_tag_new_event(self):
        """A user receives points for each Learn tag only once."""
        with in_memory_db(make_app()):
            add_user('u1', email='ana@school.test')
            body, headers = signed(delivery())
            ingest.handle_webhook(body, headers, NOW)
            body, headers = signed(delivery(event_id='evt-2'))
            data, code = ingest.handle_webhook(body, headers, NOW)
            self.assertEqual(code, 200)
            self.assertEqual(data, {'duplicate': True})
            self.assertEqual(store.user_points('u1')['total'], 20)
            statuses = sorted(status for (status,) in current_session()
                              .query(models.KajabiEvent.status))
            self.assertEqual(statuses, ['duplicate', 'processed'])

    def test_other_tag(self):
        with in_memory_db(make_app()):
            add_user('u1', email='ana@school.test')
            body, headers = signed(delivery(tag='newsletter'))
            data, code = ingest.handle_webhook(body, headers, NOW)
            self.assertEqual(code, 202)
            self.assertEqual(data['reason'], 'tag_not_processed')
            self.assertEqual(current_session().query(models.KajabiEvent)
                             .one().status, 'ignored')

    def test_configured_tags(self):
        with in_memory_db(make_app(KAJABI_LEARN_TAGS='Course-A, course-b')):
            add_user('u1', email='ana@school.test')
            body, headers = signed(delivery(tag='COURSE-B'))
            data, code = ingest.handle_webhook(body, headers, NOW)
            self.assertEqual(code, 200)
            self.assertTrue(data['awarded'])

    def test_unmatched(self):
        """Unknown contacts are kept for manual review."""
        with in_memory_db(make_app()):
            body, headers = signed(delivery())
            data, code = ingest.handle_webhook(body, headers, NOW)
            self.assertEqual(code, 202)
            self.assertEqual(data, {'queued': True,
                                    'reason': 'user_not_found'})
            self.assertEqual(current_session().query(models.KajabiEvent)
                             .one().status, 'queued_unmatched')

    def test_student(self):
        with in_memory_db(make_app()):
            add_user('s1', email='ana@school.test', user_type='STUDENT')
            body, headers = signed(delivery())
            data, code = ingest.handle_webhook(body, headers, NOW)
            self.assertEqual(code, 403)
            self.assertEqual(data['error'],
                             'Student accounts are not eligible')
            self.assertEqual(store.user_points('s1')['total'], 0)

    def test_processing_error(self):
        """Unexpected failures roll back and leave nothing processed."""
        with in_memory_db(make_app()):
            add_user('u1', email='ana@school.test')
            body, headers = signed(delivery())
            with mock.patch.object(ingest.store, 'grant_badges_for_user',
                                   side_effect=RuntimeError('boom')):
                data, code = ingest.handle_webhook(body, headers, NOW)
            self.assertEqual(code, 500)
            self.assertEqual(data['error'], 'Internal Server Error')
            self.assertEqual(
                current_session().query(models.PointsLedger).count(), 0
            )
            self.assertEqual(
                current_session().query(models.KajabiEvent).count(), 0
            )


def jsonapi_delivery(event_id, email, tag='elevate-ai-1-completed',
                     created_at=NOW):
    """A JSON:API delivery whose contact node carries no ID."""
    return {'data': {'id': event_id, 'type': 'webhook_events',
                     'attributes': {'event': 'tag.added',
                                    'created_at': created_at.isoformat()}},
            'included': [{'type': 'contacts',
                          'attributes': {'email': email}},
                         {'type': 'tags', 'attributes': {'name': tag}}]}


class TestContactWithoutId(TestCase):
    """Deliveries without a contact ID are matched on e-mail only."""

    def _deliver_twice(self, first, second):
        with in_memory_db(make_app()):
            add_user('a', email='a@school.test')
            add_user('b', email='b@school.test')
            results = [ingest.handle_webhook(*signed(payload), NOW)
                       for payload in (first, second)]
            session = current_session()
            contacts = {row.id: row.kajabi_contact_id
                        for row in session.query(models.User)}
            points = {user_id: store.user_points(user_id)['total']
                      for user_id in ('a', 'b')}
            return results, contacts, points

    def test_jsonapi(self):
        results, contacts, points = self._deliver_twice(
            jsonapi_delivery('wh-1', 'a@school.test'),
            jsonapi_delivery('wh-2', 'b@school.test')
        )
        self.assertEqual(results[0], ({'awarded': True, 'user_id': 'a',
                                       'points_awarded': 20}, 200))
        self.assertEqual(results[1], ({'awarded': True, 'user_id': 'b',
                                       'points_awarded': 20}, 200))
        self.assertEqual(contacts, {'a': None, 'b': None})
        self.assertEqual(points, {'a': 20, 'b': 20})

    def test_flat_null_id(self):
        results, contacts, points = self._deliver_twice(
            delivery('evt-a', email='a@school.test', contact_id=None),
            delivery('evt-b', email='b@school.test', contact_id=None)
        )
        self.assertEqual([code for _, code in results], [200, 200])
        self.assertEqual(results[1][0]['user_id'], 'b')
        self.assertEqual(contacts, {'a': None, 'b': None})
        self.assertEqual(points, {'a': 20, 'b': 20})


class TestConcurrentDelivery(TestCase):
    """Unique constraints settle races that the existence checks miss."""

    def test_same_delivery(self):
        """A delivery stored concurrently is answered as a duplicate."""
        with in_memory_db(make_app()):
            add_user('u1', email='ana@school.test')
            body, headers = signed(delivery())
            ingest.handle_webhook(body, headers, NOW)
            with mock.patch('sqlalchemy.orm.Query.count', return_value=0):
                data, code = ingest.handle_webhook(body, headers, NOW)
            self.assertEqual(code, 200)
            self.assertEqual(data, {'duplicate': True,
                                    'reason': 'already_processed'})
            self.assertEqual(
                current_session().query(models.KajabiEvent).count(), 1
            )
            self.assertEqual(store.user_points('u1')['total'], 20)

    def test_same_tag(self):
        """A tag granted concurrently marks the new delivery duplicate."""
        with in_memory_db(make_app()):
            add_user('u1', email='ana@school.test')
            body, headers = signed(delivery())
            ingest.handle_webhook(body, headers, NOW)
            body, headers = signed(delivery(event_id='evt-2'))
            with mock.patch('sqlalchemy.orm.Query.count', return_value=0):
                data, code = ingest.handle_webhook(body, headers, NOW)
            self.assertEqual(code, 200)
            self.assertEqual(data, {'duplicate': True})
            session = current_session()
            self.assertEqual(session.query(models.LearnTagGrant).count(), 1)
            statuses = sorted(status for (status,) in
                              session.query(models.KajabiEvent.status))
            self.assertEqual(statuses, ['duplicate', 'processed'])
            self.assertEqual(store.user_points('u1')['total'], 20)


class TestReprocess(TestCase):
    """Administrators can retry unmatched deliveries."""

    def setUp(self):
        self.admin = User('admin1', email='admin@elevate.test', role='ADMIN')

    def test_reprocess(self):
        with in_memory_db(make_app()):
            body, headers = signed(delivery())
            ingest.handle_webhook(body, headers, NOW)
            pk = current_session().query(models.KajabiEvent).one().id

            add_user('u1', email='ana@school.test')
            result = ingest.reprocess(pk, self.admin)
            self.assertEqual(result['user_id'], 'u1')
            self.assertEqual(result['points_awarded'], 20)
            self.assertFalse(result['duplicate'])
            self.assertEqual(store.user_points('u1')['total'], 20)
            self.assertEqual(current_session().get(models.KajabiEvent, pk)
                             .status, 'processed')
            self.assertEqual(current_session().query(models.AuditLog)
                             .filter(models.AuditLog.action
                                     == 'KAJABI_EVENT_REPROCESSED')
                             .count(), 1)

            with self.assertRaises(AlreadyProcessed):
                ingest.reprocess(pk, self.admin)

    def test_still_unmatched(self):
        with in_memory_db(make_app()):
            body, headers = signed(delivery())
            ingest.handle_webhook(body, headers, NOW)
            pk = current_session().query(models.KajabiEvent).one().id
            with self.assertRaises(store.NoSuchUser):
                ingest.reprocess(pk, self.admin)

    def test_no_such_event(self):
        with in_memory_db(make_app()):
            with self.assertRaises(store.NoSuchKajabiEvent):
                ingest.reprocess(99, self.admin)


class TestInvite(TestCase):
    """Inviting educators to Kajabi."""

    def setUp(self):
        self.admin = User('admin1', email='admin@elevate.test', role='ADMIN')

    @mock.patch(f'{ingest.__name__}.Kajabi')
    def test_invite(self, mock_Kajabi):
        """The new contact is linked to the local user."""
        kajabi = mock.MagicMock()
        kajabi.enroll.return_value = '777'
        mock_Kajabi.current_session.return_value = kajabi
        with in_memory_db(make_app()):
            add_user('u1', email='ana@school.test', name='Ana Educator')
            result = ingest.invite('ANA@school.test', None, '55', self.admin)
            self.assertTrue(result['invited'])
            self.assertEqual(result['contactId'], '777')
            kajabi.enroll.assert_called_once_with('ana@school.test',
                                                  'Ana Educator', '55')
            self.assertEqual(current_session().get(models.User, 'u1')
                             .kajabi_contact_id, '777')
            audit = current_session().query(models.AuditLog).one()
            self.assertEqual(audit.action, 'KAJABI_INVITE_SENT')
            self.assertEqual(audit.target_id, 'u1')

    @mock.patch(f'{ingest.__name__}.Kajabi')
    def test_invite_fails(self, mock_Kajabi):
        """Failures are audited, and raised as IntegrationFailed."""
        kajabi = mock.MagicMock()
        kajabi.enroll.side_effect = ConnectionFailed('down')
        mock_Kajabi.current_session.return_value = kajabi
        with in_memory_db(make_app()):
            with self.assertRaises(IntegrationFailed):
                ingest.invite('new@school.test', 'New Person', '55',
                              self.admin)
            audit = current_session().query(models.AuditLog).one()
            self.assertEqual(audit.action, 'KAJABI_INVITE_FAILED')
            self.assertEqual(audit.target_id, 'new@school.test')
