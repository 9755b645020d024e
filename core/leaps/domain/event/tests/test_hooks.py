"""Test callback hook functionality on :class:`Event`."""

from unittest import TestCase, mock

from dataclasses import dataclass

from ..base import Event
from ...agent import System, User
from ...submission import Submission


class TestCommitEvent(TestCase):
    """Tests for :func:`Event.bind` and :class:`Event.commit`."""

    def setUp(self):
        self.save = mock.MagicMock(
            side_effect=lambda event, before, after: (event, after)
        )
        self.submission = Submission(user_id='1', activity_code='LEARN',
                                     submission_id=1)

    def test_commit_event(self):
        """Test a simple commit hook."""
        @dataclass(eq=False)
        class ChildEvent(Event):
            def _should_apply_callbacks(self):
                return True

        @dataclass(eq=False)
        class OtherChildEvent(Event):
            def _should_apply_callbacks(self):
                return True

        callback = mock.MagicMock(return_value=[], __name__='test')
        ChildEvent.bind(lambda *a: True)(callback)

        event = ChildEvent(creator=System('system'), after=self.submission)
        other = OtherChildEvent(creator=System('system'),
                                after=self.submission)
        event.commit(self.save)
        other.commit(self.save)
        self.assertEqual(callback.call_count, 1,
                         "Callback is only executed on the class to which it"
                         " is bound")
        self.assertTrue(event.committed)

    def test_callback_inheritance(self):
        """Callback is inherited by subclasses."""
        @dataclass(eq=False)
        class ParentEvent(Event):
            def _should_apply_callbacks(self):
                return True

        @dataclass(eq=False)
        class ChildEvent(ParentEvent):
            pass

        callback = mock.MagicMock(return_value=[], __name__='test')
        ParentEvent.bind(lambda *a: True)(callback)

        event = ChildEvent(creator=System('system'), after=self.submission)
        event.commit(self.save)
        self.assertEqual(callback.call_count, 1,
                         "Callback bound to parent class is called when child"
                         " is committed")

    def test_default_condition_skips_system(self):
        """By default, events created by the system do not trigger hooks."""
        @dataclass(eq=False)
        class SomeEvent(Event):
            def _should_apply_callbacks(self):
                return True

        callback = mock.MagicMock(return_value=[], __name__='test')
        SomeEvent.bind()(callback)

        SomeEvent(creator=System('system'), after=self.submission)\
            .commit(self.save)
        self.assertEqual(callback.call_count, 0)
        SomeEvent(creator=User('1'), after=self.submission).commit(self.save)
        self.assertEqual(callback.call_count, 1)

    def test_callbacks_disabled(self):
        """Callbacks do not run when disabled by configuration."""
        @dataclass(eq=False)
        class QuietEvent(Event):
            def _should_apply_callbacks(self):
                return False

        callback = mock.MagicMock(return_value=[], __name__='test')
        QuietEvent.bind(lambda *a: True)(callback)
        after, consequences = \
            QuietEvent(creator=User('1'), after=self.submission)\
            .commit(self.save)
        self.assertEqual(callback.call_count, 0)
        self.assertEqual(consequences, [])
        self.assertEqual(after, self.submission)
