"""Core data structures for the LEAPS tracker."""

from .agent import Agent, User, System, Client, agent_factory
from .badge import Badge, EarnedBadge, AUTOMATIC_BADGES
from .event import Event, event_factory, CreateSubmission, SetVisibility, \
    ApproveSubmission, RejectSubmission, RevokeSubmission
from .kajabi import KajabiTagEvent
from .ledger import PointsEntry
from .meta import LEARN, EXPLORE, AMPLIFY, PRESENT, SHINE, ACTIVITY_CODES, \
    Visibility, LedgerSource, UserRole, UserType
from .submission import Submission
