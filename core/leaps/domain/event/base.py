"""
Commands that change LEAPS submissions, and the machinery to run them.

Nothing changes a :class:`.Submission` in place. Callers build an event,
``apply()`` it to the current state (which validates the event and then
projects it onto a copy), and ``commit()`` it through a store function.
Committing also runs the callbacks that rules have attached to the event
class with :meth:`Event.bind`.
"""

import copy
import hashlib
from collections import defaultdict
from datetime import datetime
from functools import wraps
from typing import Optional, Callable, Tuple, Iterable, List, ClassVar, \
    Dict, Type, Any

from dataclasses import dataclass, field

from ... import logging
from ...globals import get_application_config
from ..agent import Agent, System, agent_factory
from ..submission import Submission
from ..util import get_tzaware_utc_now

logger = logging.getLogger(__name__)

Events = Iterable['Event']
Condition = Callable[['Event', Optional[Submission], Submission], bool]
Callback = Callable[['Event', Optional[Submission], Submission], Events]
Decorator = Callable[[Callable], Callable]
Store = Callable[['Event', Optional[Submission], Submission],
                 Tuple['Event', Submission]]

AGENT_FIELDS = ('creator', 'proxy', 'client')
STATE_FIELDS = ('before', 'after')


def _not_by_system(event: 'Event', *args: Any, **kwargs: Any) -> bool:
    return not isinstance(event.creator, System)


@dataclass(eq=False)
class Event:
    """
    A single change to a submission.

    Subclasses add their own fields, and implement two methods:

    - ``validate(submission)`` raises :class:`.InvalidEvent` when the event
      cannot be applied to ``submission``.
    - ``project(submission)`` makes the change and returns the submission.

    Declare subclasses with ``@dataclass(eq=False)``; equality and hashing
    go by :attr:`event_id`.
    """

    NAME = 'base event'
    NAMED = 'base event'

    creator: Agent
    """
    Who is responsible for the change.

    For review events this is the reviewer, not the participant.
    """

    created: Optional[datetime] = field(default=None)
    """Set when the event is applied, if not already set."""

    proxy: Optional[Agent] = field(default=None)
    """Acting on behalf of :attr:`creator`, if anyone."""

    client: Optional[Agent] = field(default=None)
    """API client used by :attr:`creator`, if any."""

    submission_id: Optional[int] = field(default=None)
    """Empty until a :class:`.CreateSubmission` has been stored."""

    committed: bool = field(default=False)

    before: Optional[Submission] = None
    after: Optional[Submission] = None

    event_type: str = field(default_factory=str)
    event_version: str = field(default_factory=str)

    _callbacks: ClassVar[Dict[type, List[Tuple[Condition, Callback]]]] = \
        defaultdict(list)

    def __post_init__(self) -> None:
        self.event_type = self.get_event_type()
        self.event_version = str(
            get_application_config().get('CORE_VERSION', '0.0.0')
        )
        # Events loaded from storage carry plain dicts.
        for name in AGENT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, dict):
                setattr(self, name, agent_factory(**value))
        for name in STATE_FIELDS:
            value = getattr(self, name)
            if isinstance(value, dict):
                setattr(self, name, Submission(**value))

    def __hash__(self) -> int:
        return hash(self.event_id)

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Event) and self.event_id == other.event_id

    @classmethod
    def get_event_type(cls) -> str:
        return cls.__name__

    @property
    def event_id(self) -> str:
        """SHA1 of the creation time, event type, and creator."""
        if self.created is None:
            raise RuntimeError('Event has no creation time yet')
        key = ':'.join([self.created.isoformat(), self.event_type,
                        self.creator.agent_identifier])
        return hashlib.sha1(key.encode('utf-8')).hexdigest()

    def validate(self, submission: Submission) -> None:
        raise NotImplementedError(f'{type(self).__name__} must validate')

    def project(self, submission: Submission) -> Submission:
        raise NotImplementedError(f'{type(self).__name__} must project')

    def apply(self, submission: Optional[Submission] = None) -> Submission:
        """
        Validate the event against ``submission`` and project it.

        ``submission`` is left untouched; the projection is made on a copy
        and kept on :attr:`after`. Only creation events accept ``None``.
        """
        self.created = self.created or get_tzaware_utc_now()
        self.before = copy.deepcopy(submission)
        self.validate(submission)    # type: ignore
        after = self.project(copy.deepcopy(submission))    # type: ignore
        after.updated = self.created
        if after.submission_id is None:
            after.submission_id = self.submission_id
        elif self.submission_id is None:
            self.submission_id = after.submission_id
        self.after = after
        return after

    @classmethod
    def bind(cls, condition: Optional[Condition] = None) -> Decorator:
        """
        Attach a callback to this event class (and its subclasses).

        The callback receives ``(event, before, after)`` once the event is
        committed, and returns further events to apply and commit (usually
        none)::

            @ApproveSubmission.bind()
            def tell_someone(event, before, after):
                ...
                return []

        Unless another ``condition`` is given, callbacks are skipped for
        events created by a :class:`.System` agent, so that automated
        processes do not trigger each other.
        """
        when = condition or _not_by_system

        def decorator(func: Callback) -> Callback:
            name = f'{cls.__name__}::{func.__module__}.{func.__name__}'

            @wraps(func)
            def callback(event: Event, before: Optional[Submission],
                         after: Submission) -> Events:
                return func(event, before, after)

            callback.__name__ = name
            cls._callbacks[cls].append((when, callback))
            return callback
        return decorator

    def _should_apply_callbacks(self) -> bool:
        config = get_application_config()
        return bool(int(config.get('ENABLE_CALLBACKS', '0')))

    def _bound(self) -> Iterable[Tuple[Condition, Callback]]:
        # Callbacks bound to base classes run first.
        for klass in reversed(type(self).__mro__):
            yield from self._callbacks.get(klass, [])

    def commit(self, store: Store) -> Tuple[Submission, List['Event']]:
        """
        Persist the event with ``store``, then run any bound callbacks.

        ``store`` is called as ``store(event, before, after)`` and returns
        ``(event, stored_submission)``. Events returned by callbacks are
        applied and committed in turn.

        Returns
        -------
        :class:`.Submission`
            The submission after this event and all of its consequences.
        list
            The :class:`.Event` instances produced by callbacks.

        """
        assert self.after is not None, 'Apply the event before committing'
        _, self.after = store(self, self.before, self.after)
        self.committed = True
        produced: List[Event] = []
        if not self._should_apply_callbacks():
            return self.after, produced
        for condition, callback in self._bound():
            if not condition(self, self.before, self.after):
                continue
            logger.debug('%s triggers %s', self.event_type, callback.__name__)
            for follow_on in callback(self, self.before, self.after):
                follow_on.created = get_tzaware_utc_now()
                follow_on.apply(self.after)
                self.after, more = follow_on.commit(store)
                produced.append(follow_on)
                produced.extend(more)
        return self.after, produced


def _event_classes(root: Type[Event] = Event) -> Dict[str, Type[Event]]:
    classes: Dict[str, Type[Event]] = {}
    pending = list(root.__subclasses__())
    while pending:
        klass = pending.pop()
        classes.setdefault(klass.get_event_type(), klass)
        pending.extend(klass.__subclasses__())
    return classes


def event_factory(event_type: str, created: datetime, **data: Any) -> Event:
    """
    Rebuild an event from its stored representation.

    Keys that are not fields of the event class are ignored.

    Raises
    ------
    RuntimeError
        If ``event_type`` is not the name of an :class:`.Event` subclass.

    """
    klass = _event_classes().get(event_type)
    if klass is None:
        raise RuntimeError(f'Unknown event type: {event_type}')
    fields = klass.__dataclass_fields__    # type: ignore
    kwargs = {key: value for key, value in data.items()
              if key in fields and key not in ('event_type', 'event_version')}
    kwargs['created'] = created
    return klass(**kwargs)
