"""Test that all event classes are well-formed."""

from unittest import TestCase
from datetime import datetime
import inspect

from pytz import UTC

from .. import Event, CreateSubmission, ApproveSubmission, \
    RejectSubmission, RevokeSubmission, SetVisibility
from ..base import event_factory
from ...agent import User


class TestNamed(TestCase):
    """Verify that all event classes are named."""

    def test_has_name(self):
        """All event classes must have ``NAME`` and ``NAMED`` attributes."""
        for klass in Event.__subclasses__():
            self.assertTrue(hasattr(klass, 'NAME'),
                            f'{klass.__name__} is missing attribute NAME')
            self.assertTrue(hasattr(klass, 'NAMED'),
                            f'{klass.__name__} is missing attribute NAMED')


class TestHasProjectionAndValidation(TestCase):
    """Verify that all event classes implement the event protocol."""

    def test_has_methods(self):
        """Each event class must define ``project()`` and ``validate()``."""
        for klass in (CreateSubmission, SetVisibility, ApproveSubmission,
                      RejectSubmission, RevokeSubmission):
            for name in ('project', 'validate'):
                self.assertIn(name, klass.__dict__,
                              f'{klass.__name__} is missing {name}()')
                self.assertTrue(inspect.isfunction(klass.__dict__[name]))


class TestEventFactory(TestCase):
    """Events can be rebuilt from stored data."""

    def test_rebuild_approval(self):
        """Agents are rebuilt from dicts; unknown keys are dropped."""
        reviewer = User('r-1', email='rev@example.org', role='REVIEWER')
        created = datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC)
        data = {
            'creator': {'agent_type': 'User', 'native_id': 'r-1',
                        'email': 'rev@example.org', 'role': 'REVIEWER'},
            'submission_id': 3,
            'points': 55,
            'base_points': 50,
            'event_version': '0.1.0',
            'something_else': True,
        }
        rebuilt = event_factory('ApproveSubmission', created, **data)
        self.assertIsInstance(rebuilt, ApproveSubmission)
        self.assertEqual(rebuilt.creator, reviewer)
        self.assertEqual(rebuilt.points, 55)
        self.assertTrue(rebuilt.adjusted)
        self.assertEqual(rebuilt.created, created)

    def test_events_compare_by_id(self):
        """Two events with the same type, creator and time are the same."""
        reviewer = User('r-1')
        created = datetime(2025, 1, 2, tzinfo=UTC)
        one = RejectSubmission(creator=reviewer, created=created,
                               review_note='a')
        two = RejectSubmission(creator=reviewer, created=created,
                               review_note='b')
        self.assertEqual(one, two)
        self.assertEqual(len({one, two}), 1)

    def test_unknown_type(self):
        """An unknown event type cannot be rebuilt."""
        with self.assertRaises(RuntimeError):
            event_factory('MakeCoffee', None, creator=User('1'))
