"""
Agents: whoever (or whatever) is responsible for an event.

Participants, reviewers and administrators are :class:`User` agents, built
from the claims of their access token. Automated processes, such as the
Kajabi webhook ingester or a rule callback, are :class:`System` agents and
appear in the audit log as ``system``.
"""

import hashlib
from typing import Any, Dict, Optional, Type

from dataclasses import dataclass, field

from .meta import UserRole, UserType

__all__ = ('Agent', 'User', 'System', 'Client', 'agent_factory')


@dataclass(eq=False)
class Agent:
    """Base class for agents; use one of the subclasses."""

    native_id: str
    """Identifier in the agent's own namespace, e.g. a user ID."""

    agent_type: str = field(default='', init=False)
    agent_identifier: str = field(default='', init=False)

    def __post_init__(self) -> None:
        self.native_id = str(self.native_id)
        self.agent_type = self.get_agent_type()
        key = f'{self.agent_type}:{self.native_id}'.encode('utf-8')
        self.agent_identifier = hashlib.sha1(key).hexdigest()

    @classmethod
    def get_agent_type(cls) -> str:
        return cls.__name__

    @property
    def actor_id(self) -> str:
        """Recorded as the actor in the audit log."""
        return self.native_id

    def __eq__(self, other: Any) -> bool:
        return type(other) is type(self) \
            and other.agent_identifier == self.agent_identifier

    def __hash__(self) -> int:
        return hash(self.agent_identifier)


@dataclass(eq=False)
class User(Agent):
    """A participant, reviewer, or administrator."""

    email: str = field(default_factory=str)
    name: str = field(default_factory=str)
    handle: str = field(default_factory=str)
    role: str = field(default=UserRole.PARTICIPANT)
    user_type: str = field(default=UserType.EDUCATOR)
    hostname: Optional[str] = field(default=None)
    """Where the user's request came from, if known."""

    def __post_init__(self) -> None:
        super(User, self).__post_init__()
        self.role = str(self.role).upper()

    @property
    def is_student(self) -> bool:
        return self.user_type == UserType.STUDENT

    def has_role(self, required: str) -> bool:
        """Whether the user's role is ``required`` or above it."""
        return UserRole.satisfies(self.role, required)


@dataclass(eq=False)
class System(Agent):
    """A process within this application, named by ``native_id``."""

    @property
    def actor_id(self) -> str:
        return 'system'


@dataclass(eq=False)
class Client(Agent):
    """An API client acting for a user."""

    hostname: Optional[str] = field(default=None)


AGENT_TYPES: Dict[str, Type[Agent]] = {
    klass.get_agent_type(): klass for klass in (User, System, Client)
}


def agent_factory(**data: Any) -> Agent:
    """
    Rebuild an agent from its dict form (see :func:`dataclasses.asdict`).

    Raises
    ------
    ValueError
        If the agent type or native ID is missing or unknown.

    """
    agent_type = data.get('agent_type')
    native_id = data.get('native_id')
    if not agent_type or not native_id:
        raise ValueError(f'No such agent: {agent_type}, {native_id}')
    klass = AGENT_TYPES.get(agent_type)
    if klass is None:
        raise ValueError(f'No such agent type: {agent_type}')
    fields = klass.__dataclass_fields__    # type: ignore
    kwargs = {key: value for key, value in data.items()
              if key in fields and fields[key].init}
    return klass(**kwargs)
