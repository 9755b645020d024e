"""Tests for :mod:`leaps.serializer`."""

import json
from datetime import datetime
from json.decoder import JSONDecodeError
from unittest import TestCase

from dataclasses import asdict
from pytz import UTC

from ..domain.agent import User
from ..domain.event import ApproveSubmission, RejectSubmission
from ..domain.submission import Submission
from ..serializer import dumps, loads


class TestDumpLoad(TestCase):
    """Tests for :func:`.dumps` and :func:`.loads`."""

    def test_dump_approval(self):
        """Serialize and deserialize an :class:`.ApproveSubmission` event."""
        reviewer = User('rev', 'rev@school.test', role='REVIEWER')
        event = ApproveSubmission(creator=reviewer, submission_id=3,
                                  created=datetime.now(UTC), points=45,
                                  base_points=50, review_note='Good')
        data = dumps(event)
        self.assertDictEqual(asdict(reviewer), json.loads(data)['creator'],
                             'User data is fully encoded')
        deserialized = loads(data)
        self.assertEqual(deserialized, event)
        self.assertEqual(deserialized.creator, reviewer)
        self.assertEqual(deserialized.created, event.created)

    def test_dump_load_submission(self):
        submission = Submission(user_id='u1', activity_code='AMPLIFY',
                                submission_id=7,
                                payload={'peers_trained': 4,
                                         'session_date': '2025-03-01'},
                                created=datetime.now(UTC))
        deserialized = loads(dumps(submission))
        self.assertEqual(deserialized, submission)
        self.assertEqual(deserialized.payload['session_date'], '2025-03-01',
                         'Plain dates are not mistaken for timestamps')

    def test_event_type(self):
        self.assertIs(loads(dumps(RejectSubmission)), RejectSubmission)

    def test_foreign_type(self):
        """Only event classes from this package can be loaded."""
        data = json.dumps({'__type__': 'type', '__module__': 'os',
                           '__name__': 'system'})
        with self.assertRaises(JSONDecodeError):
            loads(data)
