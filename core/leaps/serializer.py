"""
JSON serialization for LEAPS domain objects.

Events, submissions and agents are written as plain objects tagged with a
``__type__`` key so that :func:`loads` can rebuild them. ISO-8601 timestamps
are turned back into :class:`datetime` instances; bare dates are left alone.
"""

import json
import re
from datetime import datetime, date
from importlib import import_module
from json.decoder import JSONDecodeError
from typing import Any, Callable, Dict

from dataclasses import asdict
from dateutil import parser as dateparser

from .domain import Event, event_factory, Submission, Agent, agent_factory

TIMESTAMP = re.compile(r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}')
TYPE_KEY = '__type__'


def _event_data(event: Event) -> Dict[str, Any]:
    data = asdict(event)
    for state in ('before', 'after'):    # Stored separately.
        data.pop(state, None)
    return data


def _load_event(data: Dict[str, Any]) -> Event:
    return event_factory(data.pop('event_type'), data.pop('created'), **data)


def _load_class(data: Dict[str, Any]) -> type:
    module, name = data['__module__'], data['__name__']
    if not module.startswith(f'{__package__}.'):
        raise JSONDecodeError(f'Refusing to load {module}', '', 0)
    klass = getattr(import_module(module), name, None)
    if not isinstance(klass, type) or not issubclass(klass, Event):
        raise JSONDecodeError(f'{name} is not an event class', '', 0)
    return klass


LOADERS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    'event': _load_event,
    'submission': lambda data: Submission(**data),
    'agent': lambda data: agent_factory(**data),
    'type': _load_class,
}


class EventJSONEncoder(json.JSONEncoder):
    """Encodes domain objects in this package for serialization."""

    def default(self, obj: object) -> Any:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, type):
            return {TYPE_KEY: 'type', '__module__': obj.__module__,
                    '__name__': obj.__name__}
        if isinstance(obj, Event):
            return dict(_event_data(obj), **{TYPE_KEY: 'event'})
        if isinstance(obj, Submission):
            return dict(asdict(obj), **{TYPE_KEY: 'submission'})
        if isinstance(obj, Agent):
            return dict(asdict(obj), **{TYPE_KEY: 'agent'})
        return super(EventJSONEncoder, self).default(obj)


class EventJSONDecoder(json.JSONDecoder):
    """Decode :class:`.Event` and other domain objects from JSON data."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault('object_hook', self.object_hook)
        super(EventJSONDecoder, self).__init__(*args, **kwargs)

    @staticmethod
    def _timestamp(value: Any) -> Any:
        if not isinstance(value, str) or not TIMESTAMP.match(value):
            return value
        try:
            return dateparser.isoparse(value)
        except ValueError:
            return value

    def object_hook(self, obj: dict, **extra: Any) -> Any:
        """Decode timestamps and tagged domain objects."""
        data = {key: self._timestamp(value) for key, value in obj.items()}
        loader = LOADERS.get(data.get(TYPE_KEY))
        if loader is None:
            return data
        del data[TYPE_KEY]
        return loader(data)


def dumps(obj: Any) -> str:
    """Generate JSON from a Python object."""
    return json.dumps(obj, cls=EventJSONEncoder)


def loads(data: str) -> Any:
    """Load a Python object from JSON."""
    return json.loads(data, cls=EventJSONDecoder)
