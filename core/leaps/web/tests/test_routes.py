"""Tests for the LEAPS API routes."""

import csv
import hmac
import hashlib
import io
import json
from datetime import datetime
from unittest import TestCase, mock

from pytz import UTC

from ...security import ratelimit
from ...services import store
from ...services.store import models
from ...services.store.tests.util import add_user, add_submission
from .util import make_app, context, token, WEBHOOK_SECRET

ADMIN = token('admin', 'ADMIN')
REVIEWER = token('rev', 'REVIEWER')
PARTICIPANT = token('u1', 'PARTICIPANT')


class APITestCase(TestCase):
    """Creates the API with a few users and one pending submission."""

    def setUp(self):
        self.app = make_app()
        self.client = self.app.test_client()
        with context(self.app):
            self.user = add_user('u1', name='Ana Educator', school='SMA 1')
            add_user('rev', name='Rina Reviewer', role='REVIEWER')
            add_user('admin', name='Adi Admin', role='ADMIN')
            self.submission_id = add_submission(self.user).submission_id

    def tearDown(self):
        with context(self.app):
            store.drop_all()

    def approve(self, headers=REVIEWER, **extra):
        body = {'submissionId': self.submission_id, 'action': 'approve'}
        body.update(extra)
        return self.client.patch('/api/admin/submissions', json=body,
                                 headers=headers)


class TestPublic(APITestCase):
    """Unauthenticated routes."""

    def test_health(self):
        response = self.client.get('/api/health')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()['data']['database'])

    def test_leaderboard(self):
        self.approve()
        response = self.client.get('/api/leaderboard?period=30d')
        self.assertEqual(response.status_code, 200)
        self.assertIn('s-maxage=300', response.headers['Cache-Control'])
        data = response.get_json()['data']
        self.assertEqual(data['data'][0]['user']['total_points'], 50)

        response = self.client.get('/api/leaderboard')
        self.assertIn('s-maxage=600', response.headers['Cache-Control'])

    def test_leaderboard_bad_period(self):
        response = self.client.get('/api/leaderboard?period=7d')
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.get_json()['success'])

    def test_csp_report(self):
        response = self.client.post(
            '/api/csp-report',
            data=json.dumps({'csp-report': {
                'violated-directive': 'script-src',
                'blocked-uri': 'javascript:alert(1)'
            }}),
            content_type='application/csp-report'
        )
        self.assertEqual(response.status_code, 204)
        self.assertEqual(self.client.post('/api/csp-report').status_code,
                         204)

    def test_not_found(self):
        response = self.client.get('/api/nothing-here')
        self.assertEqual(response.status_code, 404)
        self.assertFalse(response.get_json()['success'])


class TestAuthorization(APITestCase):
    """Admin routes require a token with a sufficient role."""

    def test_no_token(self):
        response = self.client.get('/api/admin/submissions')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json(),
                         {'success': False,
                          'error': 'Authentication required'})

    def test_bad_token(self):
        headers = {'Authorization': 'Bearer not-a-token'}
        response = self.client.get('/api/admin/submissions', headers=headers)
        self.assertEqual(response.status_code, 401)

    def test_participant(self):
        response = self.client.get('/api/admin/submissions',
                                   headers=PARTICIPANT)
        self.assertEqual(response.status_code, 403)

    def test_student(self):
        headers = token('s1', 'ADMIN', user_type='STUDENT')
        response = self.client.get('/api/admin/users', headers=headers)
        self.assertEqual(response.status_code, 403)

    def test_reviewer_cannot_revoke(self):
        self.approve()
        response = self.client.post(
            f'/api/admin/submissions/{self.submission_id}/revoke',
            json={}, headers=REVIEWER
        )
        self.assertEqual(response.status_code, 403)


class TestReview(APITestCase):
    """Review submissions through the API."""

    def test_list(self):
        response = self.client.get('/api/admin/submissions?status=PENDING',
                                   headers=REVIEWER)
        self.assertEqual(response.status_code, 200)
        data = response.get_json()['data']
        self.assertEqual(data['pagination']['total'], 1)
        self.assertEqual(data['submissions'][0]['user']['name'],
                         'Ana Educator')

    def test_bad_pagination(self):
        response = self.client.get('/api/admin/submissions?limit=500',
                                   headers=REVIEWER)
        self.assertEqual(response.status_code, 400)
        response = self.client.get('/api/admin/submissions?page=x',
                                   headers=REVIEWER)
        self.assertEqual(response.status_code, 400)

    def test_get(self):
        response = self.client.get(
            f'/api/admin/submissions/{self.submission_id}', headers=REVIEWER
        )
        self.assertEqual(response.get_json()['data']['status'], 'PENDING')
        response = self.client.get('/api/admin/submissions/999',
                                   headers=REVIEWER)
        self.assertEqual(response.status_code, 404)

    def test_approve(self):
        response = self.approve(reviewNote='Nice <b>work</b>')
        self.assertEqual(response.status_code, 200)
        data = response.get_json()['data']
        self.assertEqual(data['message'], 'Submission approved successfully')
        self.assertEqual(data['submission']['status'], 'APPROVED')
        self.assertEqual(data['submission']['review_note'], 'Nice work')
        with context(self.app):
            self.assertEqual(store.user_points('u1')['total'], 50)

    def test_long_note(self):
        """Long notes are truncated to fit, ellipsis included."""
        response = self.approve(reviewNote='x' * 1200)
        self.assertEqual(response.status_code, 200)
        note = response.get_json()['data']['submission']['review_note']
        self.assertEqual(len(note), 1000)
        self.assertTrue(note.endswith('...'))

    def test_long_note_with_spaces(self):
        response = self.approve(reviewNote='Good work ' * 120)
        self.assertEqual(response.status_code, 200)
        note = response.get_json()['data']['submission']['review_note']
        self.assertLessEqual(len(note), 1000)
        self.assertTrue(note.endswith('Good...'))

    def test_approve_twice(self):
        self.approve()
        response = self.approve()
        self.assertEqual(response.status_code, 409)

    def test_adjustment_out_of_bounds(self):
        response = self.approve(pointAdjustment=70)
        self.assertEqual(response.status_code, 400)
        response = self.approve(pointAdjustment='lots')
        self.assertEqual(response.status_code, 400)

    def test_bad_action(self):
        response = self.approve(action='maybe')
        self.assertEqual(response.status_code, 400)

    def test_missing(self):
        body = {'submissionId': 999, 'action': 'reject'}
        response = self.client.patch('/api/admin/submissions', json=body,
                                     headers=REVIEWER)
        self.assertEqual(response.status_code, 404)

    def test_bulk(self):
        body = {'submissionIds': [self.submission_id, 999],
                'action': 'reject', 'reviewNote': 'Incomplete'}
        response = self.client.post('/api/admin/submissions', json=body,
                                    headers=REVIEWER)
        self.assertEqual(response.status_code, 200)
        data = response.get_json()['data']
        self.assertEqual(data['processed'], 1)
        self.assertEqual(data['failed'], 1)
        self.assertEqual(data['errors'][0]['submissionId'], 999)

    def test_bulk_too_many(self):
        body = {'submissionIds': list(range(1, 52)), 'action': 'approve'}
        response = self.client.post('/api/admin/submissions', json=body,
                                    headers=REVIEWER)
        self.assertEqual(response.status_code, 400)

    def test_revoke(self):
        self.approve()
        path = f'/api/admin/submissions/{self.submission_id}/revoke'
        response = self.client.post(path, json={'reason': 'Duplicate'},
                                    headers=ADMIN)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()['data']['revoked'])
        with context(self.app):
            self.assertEqual(store.user_points('u1')['total'], 0)

        response = self.client.post(path, json={}, headers=ADMIN)
        self.assertFalse(response.get_json()['data']['revoked'])


class TestBadges(APITestCase):
    """Badge definitions and assignments."""

    def test_crud(self):
        body = {'code': 'mentor', 'name': 'Mentor',
                'description': 'Helped others', 'criteria': {}}
        response = self.client.post('/api/admin/badges', json=body,
                                    headers=ADMIN)
        self.assertEqual(response.status_code, 201)
        response = self.client.post('/api/admin/badges', json=body,
                                    headers=ADMIN)
        self.assertEqual(response.status_code, 409)

        response = self.client.patch('/api/admin/badges',
                                     json={'code': 'MENTOR',
                                           'name': 'Super Mentor'},
                                     headers=ADMIN)
        self.assertEqual(response.status_code, 200)

        badges = self.client.get('/api/admin/badges',
                                 headers=ADMIN).get_json()['data']
        mentor = [b for b in badges if b['code'] == 'MENTOR'][0]
        self.assertEqual(mentor['name'], 'Super Mentor')

        response = self.client.delete('/api/admin/badges?code=MENTOR',
                                      headers=ADMIN)
        self.assertEqual(response.status_code, 200)
        response = self.client.delete('/api/admin/badges?code=MENTOR',
                                      headers=ADMIN)
        self.assertEqual(response.status_code, 404)

    def test_assign_and_remove(self):
        body = {'badgeCode': 'STARTER', 'userIds': ['u1'], 'reason': 'Test'}
        response = self.client.post('/api/admin/badges/assign', json=body,
                                    headers=ADMIN)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['data']['processed'], 1)

        response = self.client.delete('/api/admin/badges?code=STARTER',
                                      headers=ADMIN)
        self.assertEqual(response.status_code, 409, 'Badge has been earned')

        response = self.client.delete('/api/admin/badges/assign', json=body,
                                      headers=ADMIN)
        self.assertEqual(response.status_code, 200)

    def test_assign_requires_users(self):
        response = self.client.post('/api/admin/badges/assign',
                                    json={'badgeCode': 'STARTER'},
                                    headers=ADMIN)
        self.assertEqual(response.status_code, 400)


class TestUsersAndAudit(APITestCase):
    """User administration and the audit trail."""

    def test_list_users(self):
        response = self.client.get('/api/admin/users?search=ana',
                                   headers=ADMIN)
        users = response.get_json()['data']['users']
        self.assertEqual([u['id'] for u in users], ['u1'])

    def test_update_user(self):
        response = self.client.patch('/api/admin/users/u1',
                                     json={'school': '<i>SMA 2</i>',
                                           'userType': 'student'},
                                     headers=ADMIN)
        self.assertEqual(response.status_code, 200)
        user = response.get_json()['data']['user']
        self.assertEqual(user['school'], 'SMA 2')
        self.assertEqual(user['user_type'], 'STUDENT')

    def test_update_missing_user(self):
        response = self.client.patch('/api/admin/users/nobody',
                                     json={'name': 'X'}, headers=ADMIN)
        self.assertEqual(response.status_code, 404)

    def test_admin_cannot_grant_admin(self):
        response = self.client.patch('/api/admin/users/u1',
                                     json={'role': 'ADMIN'}, headers=ADMIN)
        self.assertEqual(response.status_code, 403)

    def test_audit(self):
        self.approve()
        response = self.client.get('/api/admin/audit', headers=ADMIN)
        actions = [e['action'] for e in response.get_json()['data']['logs']]
        self.assertIn('APPROVE_SUBMISSION', actions)

        response = self.client.get('/api/admin/audit/export.csv',
                                   headers=ADMIN)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.content_type.startswith('text/csv'))
        self.assertIn('attachment', response.headers['Content-Disposition'])
        self.assertIn('APPROVE_SUBMISSION', response.get_data(as_text=True))


class TestReports(APITestCase):
    """CSV exports, analytics, and bulk user updates."""

    def rows(self, response):
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.content_type.startswith('text/csv'))
        self.assertIn('attachment', response.headers['Content-Disposition'])
        return list(csv.reader(io.StringIO(response.get_data(as_text=True))))

    def test_export_submissions(self):
        self.approve()
        rows = self.rows(self.client.get(
            '/api/admin/exports?type=submissions&status=APPROVED',
            headers=ADMIN
        ))
        self.assertEqual(rows[0][0], 'Submission ID')
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[1][1], 'u1')
        self.assertEqual(rows[1][6], 'Explore')
        self.assertEqual(rows[1][7], 'APPROVED')

        logs = self.client.get('/api/admin/audit?action=EXPORT_DATA',
                               headers=ADMIN).get_json()['data']['logs']
        self.assertEqual(logs[0]['meta']['type'], 'submissions')
        self.assertEqual(logs[0]['meta']['filters']['status'], 'APPROVED')

    def test_export_points_and_leaderboard(self):
        self.approve()
        rows = self.rows(self.client.get('/api/admin/exports?type=points',
                                         headers=ADMIN))
        self.assertEqual(rows[1][1], 'u1')
        self.assertEqual(rows[1][7], '50')

        rows = self.rows(self.client.get(
            '/api/admin/exports?type=leaderboard', headers=ADMIN
        ))
        self.assertEqual(rows[1][:3], ['1', 'u1', 'Ana Educator'])
        self.assertEqual(rows[1][6], '50')

    def test_export_users(self):
        rows = self.rows(self.client.get('/api/admin/exports?type=users',
                                         headers=ADMIN))
        self.assertEqual(sorted(row[0] for row in rows[1:]),
                         ['admin', 'rev', 'u1'])
        u1 = [row for row in rows if row[0] == 'u1'][0]
        self.assertEqual(u1[8], '1', 'One submission')

    def test_export_bad_request(self):
        for query in ('type=grades', 'format=json', 'startDate=whenever',
                      'startDate=2025-02-01&endDate=2025-01-01'):
            response = self.client.get(f'/api/admin/exports?{query}',
                                       headers=ADMIN)
            self.assertEqual(response.status_code, 400, query)

    def test_export_requires_admin(self):
        response = self.client.get('/api/admin/exports', headers=REVIEWER)
        self.assertEqual(response.status_code, 403)

    def test_user_directory(self):
        with context(self.app):
            add_user('u9', name='Formula Fan', school='=1+1')
        rows = self.rows(self.client.get(
            '/api/admin/users/export.csv?search=formula', headers=ADMIN
        ))
        self.assertEqual(rows[0][:3], ['id', 'name', 'handle'])
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[1][7], "'=1+1", 'Formulas are neutralized')

    def test_analytics(self):
        self.approve()
        response = self.client.get('/api/admin/analytics', headers=REVIEWER)
        self.assertEqual(response.status_code, 200)
        data = response.get_json()['data']
        submissions = data['overview']['submissions']
        self.assertEqual(submissions['total'], 1)
        self.assertEqual(submissions['approved'], 1)
        self.assertEqual(submissions['approvalRate'], 100.0)
        self.assertEqual(data['overview']['points']['totalAwarded'], 50)
        self.assertEqual(data['overview']['users']['total'], 3)
        by_activity = {item['activity']: item['count'] for item
                       in data['distributions']['submissionsByActivity']}
        self.assertEqual(by_activity['EXPLORE'], 1)
        self.assertEqual(by_activity['SHINE'], 0)
        reviewers = data['performance']['reviewers']
        self.assertEqual(reviewers[0]['id'], 'rev')
        self.assertEqual(reviewers[0]['approved'], 1)

    def test_analytics_requires_reviewer(self):
        response = self.client.get('/api/admin/analytics',
                                   headers=PARTICIPANT)
        self.assertEqual(response.status_code, 403)

    def test_bulk_update_users(self):
        body = {'userIds': ['u1', 'nobody'], 'school': '<b>SMA 3</b>',
                'userType': 'STUDENT'}
        response = self.client.post('/api/admin/users/leaps', json=body,
                                    headers=ADMIN)
        self.assertEqual(response.status_code, 200)
        data = response.get_json()['data']
        self.assertEqual(data['processed'], 1)
        self.assertEqual(data['failed'], 1)
        self.assertEqual(data['errors'][0]['userId'], 'nobody')
        with context(self.app) as session:
            user = session.get(models.User, 'u1')
            self.assertEqual(user.school, 'SMA 3')
            self.assertEqual(user.user_type, 'STUDENT')

    def test_bulk_update_bad_request(self):
        for body in ({'userIds': ['u1']}, {'school': 'SMA 3'},
                     {'userIds': [f'u{n}' for n in range(101)],
                      'school': 'SMA 3'}):
            response = self.client.post('/api/admin/users/leaps', json=body,
                                        headers=ADMIN)
            self.assertEqual(response.status_code, 400)


class TestKajabi(APITestCase):
    """Webhook deliveries and the Kajabi admin routes."""

    def deliver(self, payload):
        body = json.dumps(payload).encode('utf-8')
        signature = hmac.new(WEBHOOK_SECRET.encode('utf-8'), body,
                             hashlib.sha256).hexdigest()
        return self.client.post('/api/kajabi/webhook', data=body,
                                content_type='application/json',
                                headers={'X-Kajabi-Signature': signature})

    def payload(self, email='u1@school.test'):
        return {'event_id': 'evt-1',
                'created_at': datetime.now(UTC).isoformat(),
                'contact': {'id': 4242, 'email': email},
                'tag': {'name': 'elevate-ai-1-completed'}}

    def test_webhook(self):
        response = self.deliver(self.payload())
        self.assertEqual(response.status_code, 200)
        with context(self.app):
            self.assertEqual(store.user_points('u1')['total'], 20)

        response = self.deliver(self.payload())
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()['duplicate'])

    def test_unsigned(self):
        response = self.client.post('/api/kajabi/webhook', json={})
        self.assertEqual(response.status_code, 401)

    def test_unmatched_then_reprocess(self):
        response = self.deliver(self.payload(email='new@school.test'))
        self.assertEqual(response.status_code, 202)

        events = self.client.get('/api/admin/kajabi',
                                 headers=ADMIN).get_json()['data']
        self.assertEqual(events['stats']['queued_unmatched'], 1)
        event_pk = events['events'][0]['id']

        with context(self.app):
            add_user('u2', email='new@school.test', name='Budi')
        response = self.client.post('/api/admin/kajabi/reprocess',
                                    json={'event_id': event_pk},
                                    headers=ADMIN)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['data']['points_awarded'], 20)

        response = self.client.post('/api/admin/kajabi/reprocess',
                                    json={'event_id': event_pk},
                                    headers=ADMIN)
        self.assertEqual(response.status_code, 409)

    def test_reprocess_missing(self):
        response = self.client.post('/api/admin/kajabi/reprocess',
                                    json={'event_id': 999}, headers=ADMIN)
        self.assertEqual(response.status_code, 404)
        response = self.client.post('/api/admin/kajabi/reprocess',
                                    json={}, headers=ADMIN)
        self.assertEqual(response.status_code, 400)

    @mock.patch('leaps.ingest.Kajabi')
    def test_invite(self, mock_kajabi):
        session = mock_kajabi.current_session.return_value
        session.enroll.return_value = 'c-77'
        response = self.client.post('/api/admin/kajabi/invite',
                                    json={'userId': 'u1', 'offerId': 'o-1'},
                                    headers=ADMIN)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['data']['contactId'], 'c-77')
        session.enroll.assert_called_once_with('u1@school.test',
                                               'Ana Educator', 'o-1')

    def test_invite_bad_email(self):
        response = self.client.post('/api/admin/kajabi/invite',
                                    json={'email': 'nope'}, headers=ADMIN)
        self.assertEqual(response.status_code, 400)

    @mock.patch('leaps.ingest.Kajabi')
    def test_health(self, mock_kajabi):
        session = mock_kajabi.current_session.return_value
        session.is_configured = False
        response = self.client.get('/api/admin/kajabi/health', headers=ADMIN)
        self.assertEqual(response.get_json()['data'],
                         {'configured': False, 'healthy': False})

    def test_test_event(self):
        body = {'user_email': 'U1@school.test', 'course_name': 'AI 101'}
        response = self.client.post('/api/admin/kajabi/test', json=body,
                                    headers=ADMIN)
        self.assertEqual(response.status_code, 200)
        data = response.get_json()['data']
        self.assertTrue(data['test_mode'])
        self.assertEqual(data['user_id'], 'u1')
        self.assertEqual(data['points_awarded'], 20)

        response = self.client.post('/api/admin/kajabi/test', json=body,
                                    headers=ADMIN)
        data = response.get_json()['data']
        self.assertEqual(data['points_awarded'], 0)
        self.assertEqual(data['status'], 'duplicate')
        with context(self.app):
            self.assertEqual(store.user_points('u1')['total'], 20)

    def test_test_event_unknown_user(self):
        response = self.client.post('/api/admin/kajabi/test',
                                    json={'user_email': 'who@school.test'},
                                    headers=ADMIN)
        self.assertEqual(response.status_code, 404)
        response = self.client.post('/api/admin/kajabi/test',
                                    json={'user_email': 'nope'},
                                    headers=ADMIN)
        self.assertEqual(response.status_code, 400)


class TestSecurityHooks(APITestCase):
    """CSRF and rate limits are applied to the API."""

    def test_csrf(self):
        self.app.config['CSRF_ENABLED'] = 1
        response = self.approve()
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.get_json()['code'], 'CSRF_INVALID')

        csrf_token = self.client.get('/api/csrf-token') \
            .get_json()['data']['token']
        headers = dict(REVIEWER, **{'X-CSRF-Token': csrf_token})
        self.assertEqual(self.approve(headers=headers).status_code, 200)

    def test_rate_limit(self):
        self.app.config['RATE_LIMIT_ENABLED'] = 1
        ratelimit.public_api.clear()
        self.addCleanup(ratelimit.public_api.clear)
        with mock.patch.object(ratelimit.public_api, 'max_requests', 1):
            self.assertEqual(self.client.get('/api/leaderboard').status_code,
                             200)
            response = self.client.get('/api/leaderboard')
        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.headers['X-RateLimit-Name'], 'public_api')
