"""Tests for :mod:`leaps.rules.notifications`."""

from unittest import TestCase, mock

from flask import Flask

from ...domain.agent import User
from ...services.store.tests.util import in_memory_db, add_user, \
    add_submission
from ... import core
from .. import notifications


class TestReviewNotifications(TestCase):
    """Participants are e-mailed when their evidence is reviewed."""

    def setUp(self):
        self.app = Flask('leaps')
        self.reviewer = User('rev1', email='rev@elevate.test',
                             role='REVIEWER')

    def _review(self, action, enabled=1, **kwargs):
        with in_memory_db(self.app):
            self.app.config['ENABLE_CALLBACKS'] = 1
            self.app.config['EMAIL_ENABLED'] = enabled
            user = add_user(name='Ana Educator')
            submission = add_submission(user, 'EXPLORE')
            core.review(submission.submission_id, action, self.reviewer,
                        **kwargs)

    @mock.patch(f'{notifications.__name__}.mail')
    def test_approval(self, mock_mail):
        """An approved submission sends an e-mail with the points."""
        self._review('approve', review_note='Nice work')
        self.assertEqual(mock_mail.send.call_count, 1)
        recipient, subject, text, html = mock_mail.send.call_args[0]
        self.assertEqual(recipient, 'u1@school.test')
        self.assertIn('approved', subject)
        self.assertIn('Hi Ana Educator', text)
        self.assertIn('50 points', text)
        self.assertIn('Nice work', text)
        self.assertIn('<', html)

    @mock.patch(f'{notifications.__name__}.mail')
    def test_rejection(self, mock_mail):
        """A rejected submission sends an e-mail too."""
        self._review('reject', review_note='Missing photo')
        self.assertEqual(mock_mail.send.call_count, 1)
        self.assertIn('needs attention', mock_mail.send.call_args[0][1])

    @mock.patch(f'{notifications.__name__}.mail')
    def test_disabled(self, mock_mail):
        """Nothing is sent when e-mail is disabled."""
        self._review('approve', enabled=0)
        self.assertEqual(mock_mail.send.call_count, 0)
